"""DVL 环境变量配置管理。

环境变量:
    DVL_DART_SDK: Dart SDK 根目录
        - 未设置时回退到 DART_SDK
        - 都未设置时 SDK 视为未配置（启动时报 ConfigurationError）

    DVL_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件，DEBUG 级别)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    DVL_TERM_TIMEOUT: 优雅终止等待时间（秒）
        - 默认 2.0 秒，限制在 0.1-30 秒范围

    DVL_KILL_TIMEOUT: 强制终止后的等待时间（秒）
        - 默认 1.0 秒，限制在 0.1-30 秒范围
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间环境变量。"""
    if not value:
        return default
    try:
        timeout = float(value)
        return max(0.1, min(timeout, 30.0))
    except ValueError:
        return default


def _parse_sdk_home(primary: str | None, fallback: str | None) -> str | None:
    """解析 SDK 根目录，空字符串视为未设置。"""
    for value in (primary, fallback):
        if value and value.strip():
            return value.strip()
    return None


@dataclass
class Config:
    """DVL 配置。

    Attributes:
        dart_sdk: Dart SDK 根目录（None 表示未配置）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        term_timeout: SIGTERM 后等待退出的时间（秒）
        kill_timeout: SIGKILL 后等待退出的时间（秒）
    """

    dart_sdk: str | None = None
    log_debug: bool = False
    log_file: str | None = None
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    def __repr__(self) -> str:
        return (
            f"Config(dart_sdk={self.dart_sdk or 'unset'}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "dart-vm-launcher"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"dvl_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("DVL_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        dart_sdk=_parse_sdk_home(
            os.environ.get("DVL_DART_SDK"),
            os.environ.get("DART_SDK"),
        ),
        log_debug=log_debug,
        log_file=log_file,
        term_timeout=_parse_timeout(
            os.environ.get("DVL_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("DVL_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
