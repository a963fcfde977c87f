"""Dart SDK location."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

from .config import Config, get_config
from .errors import ConfigurationError

__all__ = ["DartSdk", "get_dart_sdk"]

IS_WINDOWS = sys.platform == "win32"


@dataclass(frozen=True)
class DartSdk:
    """An installed Dart SDK.

    Attributes:
        home_path: SDK root directory (contains bin/dart)
    """

    home_path: Path

    @property
    def exe_path(self) -> Path:
        """Path of the dart VM executable."""
        return self.home_path / "bin" / ("dart.exe" if IS_WINDOWS else "dart")

    def check(self) -> None:
        """Validate the installation.

        Raises:
            ConfigurationError: SDK directory or dart executable missing
        """
        if not self.home_path.is_dir():
            raise ConfigurationError(f"Dart SDK directory not found: {self.home_path}")
        if not self.exe_path.is_file():
            raise ConfigurationError(f"Dart executable not found: {self.exe_path}")


def get_dart_sdk(config: Config | None = None) -> DartSdk | None:
    """Return the configured SDK, or None when none is configured."""
    config = config or get_config()
    if not config.dart_sdk:
        return None
    return DartSdk(Path(config.dart_sdk).expanduser())
