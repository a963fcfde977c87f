"""启动器异常类。

dart-vm-launcher v0.1.0

异常分类:
    ConfigurationError: 配置错误（SDK 未配置、脚本不存在等），进程启动前抛出
    ResourceError: 环境/资源错误（端口分配失败、进程无法启动等）
"""

from __future__ import annotations

__all__ = [
    "LauncherError",
    "ConfigurationError",
    "ResourceError",
]


class LauncherError(Exception):
    """启动器基础异常。"""
    pass


class ConfigurationError(LauncherError):
    """配置错误（如 Dart SDK 未配置、脚本路径无效）。"""
    pass


class ResourceError(LauncherError):
    """资源错误（端口分配失败、进程启动失败、I/O 错误）。

    Attributes:
        message: 错误消息
        operation: 失败的操作名称（如 "allocate_port"、"spawn"）
    """

    def __init__(self, message: str, operation: str = "") -> None:
        self.message = message
        self.operation = operation
        super().__init__(f"[{operation}] {message}" if operation else message)
