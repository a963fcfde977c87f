"""dart-vm-launcher - 启动并监管 Dart VM 进程。

环境变量:
    DVL_DART_SDK: Dart SDK 根目录（默认读取 DART_SDK）
    DVL_LOG_DEBUG: 日志调试模式 (默认 false)

用法:
    dart-vm-launcher bin/main.dart --debug
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
