"""dart-vm-launcher 命令行入口。

包含参数解析、日志配置和单次运行的生命周期管理。

用法:
    dart-vm-launcher bin/main.dart --vm-options=--observe --args "foo bar"
    dart-vm-launcher --config run.json --debug
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import BinaryIO

from . import __version__
from .config import Config, get_config
from .errors import ConfigurationError, LauncherError, ResourceError
from .launcher import Launcher
from .run_configuration import ExecutionMode, RunConfiguration, load_run_configuration
from .runtime.supervisor import OutputCallback, ProcessSupervisor
from .sdk import DartSdk, get_dart_sdk

__all__ = ["build_parser", "configure_logging", "main", "run_app", "run_configuration_from_args"]

logger = logging.getLogger(__name__)

EXIT_RESOURCE_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_INTERRUPTED = 130  # 128 + SIGINT(2)


def build_parser() -> argparse.ArgumentParser:
    """构建命令行解析器。"""
    parser = argparse.ArgumentParser(
        prog="dart-vm-launcher",
        description="Launch a Dart application with the VM service enabled",
    )
    parser.add_argument("script", nargs="?", help="Dart file to run (overrides --config)")
    parser.add_argument("--config", help="Run configuration JSON file")
    parser.add_argument("--sdk", help="Dart SDK directory (default: $DVL_DART_SDK / $DART_SDK)")
    # 以 - 开头的值需写成 --vm-options=... 形式
    parser.add_argument("--vm-options", help="VM options, shell-quoted")
    parser.add_argument("--args", dest="arguments", help="Program arguments, shell-quoted")
    parser.add_argument("--checked", action="store_true", help="Run in checked mode")
    parser.add_argument("--debug", action="store_true", help="Pause isolates on start for a debugger")
    parser.add_argument("--cwd", help="Working directory (default: script directory)")
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for the application (repeatable)",
    )
    parser.add_argument(
        "--no-parent-env",
        action="store_true",
        help="Do not inherit the launcher's environment",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _parse_env_assignments(assignments: Sequence[str]) -> dict[str, str]:
    """解析 KEY=VALUE 形式的环境变量。

    Raises:
        ConfigurationError: 格式错误或 KEY 为空
    """
    envs: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Invalid environment variable (expected KEY=VALUE): {item}")
        envs[key] = value
    return envs


def run_configuration_from_args(args: argparse.Namespace) -> RunConfiguration:
    """由命令行参数构建运行配置。

    --config 文件作为基础，其余参数覆盖文件中的值。
    """
    base = load_run_configuration(args.config) if args.config else RunConfiguration()

    updates: dict[str, object] = {}
    if args.script:
        updates["dart_file"] = args.script
    if args.vm_options is not None:
        updates["vm_options"] = args.vm_options
    if args.arguments is not None:
        updates["arguments"] = args.arguments
    if args.checked:
        updates["checked_mode"] = True
    if args.debug:
        updates["mode"] = ExecutionMode.DEBUG
    if args.cwd:
        updates["working_directory"] = args.cwd
    if args.env:
        updates["envs"] = {**base.envs, **_parse_env_assignments(args.env)}
    if args.no_parent_env:
        updates["include_parent_envs"] = False

    return base.model_copy(update=updates)


def _exit_code(returncode: int | None) -> int:
    if returncode is None:
        return EXIT_RESOURCE_ERROR
    if returncode < 0:
        # POSIX: killed by signal -returncode
        return 128 - returncode
    return returncode


def _write_stream(stream: BinaryIO) -> OutputCallback:
    def write(data: bytes) -> None:
        stream.write(data)
        stream.flush()
    return write


async def run_app(
    run_config: RunConfiguration,
    sdk: DartSdk | None,
    config: Config | None = None,
) -> int:
    """启动应用并等待其退出。

    SIGINT/SIGTERM 会停止子进程（SIGTERM -> 超时 -> SIGKILL）。

    Returns:
        进程退出码（被中断时为 130）
    """
    config = config or get_config()
    launcher = Launcher(sdk, ProcessSupervisor.from_config(config))

    handle = await launcher.launch(
        run_config,
        on_stdout=_write_stream(sys.stdout.buffer),
        on_stderr=_write_stream(sys.stderr.buffer),
    )
    sys.stderr.write(f"Observatory listening on {handle.service_url}\n")
    sys.stderr.flush()

    interrupted = False
    stop_tasks: list[asyncio.Task] = []

    def request_stop() -> None:
        nonlocal interrupted
        if interrupted:
            return
        interrupted = True
        logger.info("Interrupt received, stopping application...")
        stop_tasks.append(asyncio.create_task(handle.stop()))

    loop = asyncio.get_running_loop()
    _install_signal_handlers(loop, request_stop)
    try:
        returncode = await handle.wait()
        for task in stop_tasks:
            await task
    finally:
        _remove_signal_handlers(loop)

    logger.debug(f"Application exited returncode={returncode} interrupted={interrupted}")
    if interrupted:
        return EXIT_INTERRUPTED
    return _exit_code(returncode)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, callback: Callable[[], None]) -> None:
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, callback)
        loop.add_signal_handler(signal.SIGTERM, callback)
    else:
        signal.signal(signal.SIGINT, lambda sig, frame: loop.call_soon_threadsafe(callback))


def _remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    if sys.platform != "win32":
        try:
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)
        except Exception as e:
            logger.debug(f"Error removing signal handlers: {e}")
    else:
        signal.signal(signal.SIGINT, signal.default_int_handler)


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - 默认: stderr, INFO
    - DVL_LOG_DEBUG: 临时文件, DEBUG
    """
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(formatter)
    log_handlers.append(handler)

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 dart_vm_launcher 命名空间启用详细日志
    logging.getLogger("dart_vm_launcher").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config)
    logger.debug(f"Starting dart-vm-launcher: {config}")

    sdk = DartSdk(Path(args.sdk).expanduser()) if args.sdk else get_dart_sdk(config)

    try:
        run_config = run_configuration_from_args(args)
        exit_code = asyncio.run(run_app(run_config, sdk, config))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        exit_code = EXIT_CONFIGURATION_ERROR
    except ResourceError as e:
        logger.error(f"Cannot start application: {e}")
        exit_code = EXIT_RESOURCE_ERROR
    except LauncherError as e:
        logger.error(f"Launch failed: {e}")
        exit_code = EXIT_RESOURCE_ERROR

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
