"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_DART = FIXTURES_DIR / "fake_dart.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def fake_sdk(tmp_path: Path):
    """带 bin/dart 的假 SDK 目录。

    bin/dart 是调用 fixtures/fake_dart.py 的脚本（仅 POSIX 可执行）。
    """
    from dart_vm_launcher.sdk import DartSdk

    home = tmp_path / "dart-sdk"
    bin_dir = home / "bin"
    bin_dir.mkdir(parents=True)
    exe = bin_dir / ("dart.exe" if IS_WINDOWS else "dart")
    exe.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_DART}" "$@"\n',
        encoding="utf-8",
    )
    exe.chmod(exe.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return DartSdk(home)


@pytest.fixture
def dart_file(tmp_path: Path) -> Path:
    """项目中的 Dart 入口文件。"""
    bin_dir = tmp_path / "app" / "bin"
    bin_dir.mkdir(parents=True)
    path = bin_dir / "main.dart"
    path.write_text("void main(List<String> args) {}\n", encoding="utf-8")
    return path


@pytest.fixture
def fixed_port():
    """固定端口分配器，记录调用次数。"""

    class _Allocator:
        def __init__(self, port: int = 40123) -> None:
            self.port = port
            self.calls = 0

        def __call__(self) -> int:
            self.calls += 1
            return self.port

    return _Allocator()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """清除 DVL_* / DART_SDK 环境变量。"""
    for key in list(os.environ):
        if key.startswith("DVL_") or key == "DART_SDK":
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
