"""RunConfiguration 测试。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from dart_vm_launcher.errors import ConfigurationError
from dart_vm_launcher.run_configuration import (
    ExecutionMode,
    ParentEnvironmentType,
    RunConfiguration,
    load_run_configuration,
)


class TestDefaults:
    """默认值。"""

    def test_defaults(self):
        config = RunConfiguration()
        assert config.dart_file == ""
        assert config.working_directory is None
        assert config.envs == {}
        assert config.include_parent_envs is True
        assert config.vm_options is None
        assert config.arguments is None
        assert config.checked_mode is False
        assert config.mode == ExecutionMode.RUN
        assert config.is_debug is False

    def test_frozen(self):
        config = RunConfiguration(dart_file="main.dart")
        with pytest.raises(ValidationError):
            config.dart_file = "other.dart"  # type: ignore

    def test_parent_environment_type(self):
        assert RunConfiguration().parent_environment_type == ParentEnvironmentType.CONSOLE
        assert (
            RunConfiguration(include_parent_envs=False).parent_environment_type
            == ParentEnvironmentType.NONE
        )

    def test_mode_from_string(self):
        assert RunConfiguration(mode="debug").is_debug is True


class TestCheck:
    """运行前校验。"""

    def test_valid(self, dart_file: Path):
        RunConfiguration(dart_file=str(dart_file)).check()

    def test_directory_target_is_valid(self, dart_file: Path):
        RunConfiguration(dart_file=str(dart_file.parent)).check()

    @pytest.mark.parametrize("value", ["", "   "])
    def test_empty_script(self, value: str):
        with pytest.raises(ConfigurationError, match="not set"):
            RunConfiguration(dart_file=value).check()

    def test_missing_script(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            RunConfiguration(dart_file=str(tmp_path / "nope.dart")).check()

    def test_missing_working_directory(self, dart_file: Path, tmp_path: Path):
        config = RunConfiguration(dart_file=str(dart_file), working_directory=str(tmp_path / "nope"))
        with pytest.raises(ConfigurationError, match="does not exist"):
            config.check()

    def test_working_directory_is_file(self, dart_file: Path):
        config = RunConfiguration(dart_file=str(dart_file), working_directory=str(dart_file))
        with pytest.raises(ConfigurationError, match="not a directory"):
            config.check()


class TestWorkingDirectory:
    """工作目录推导。"""

    def test_configured(self, dart_file: Path, tmp_path: Path):
        config = RunConfiguration(dart_file=str(dart_file), working_directory=str(tmp_path))
        assert config.compute_process_working_directory() == tmp_path

    def test_script_parent(self, dart_file: Path):
        config = RunConfiguration(dart_file=str(dart_file))
        assert config.compute_process_working_directory() == dart_file.parent

    def test_directory_target(self, dart_file: Path):
        config = RunConfiguration(dart_file=str(dart_file.parent))
        assert config.compute_process_working_directory() == dart_file.parent

    def test_blank_working_directory_ignored(self, dart_file: Path):
        config = RunConfiguration(dart_file=str(dart_file), working_directory="  ")
        assert config.compute_process_working_directory() == dart_file.parent


class TestLoadRunConfiguration:
    """从 JSON 文件加载。"""

    def test_load(self, tmp_path: Path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({
            "dart_file": "bin/main.dart",
            "vm_options": "--observe",
            "arguments": "a b",
            "checked_mode": True,
            "mode": "debug",
            "envs": {"KEY": "value"},
            "include_parent_envs": False,
            "unknown_field": 1,
        }), encoding="utf-8")

        config = load_run_configuration(path)

        assert config.dart_file == "bin/main.dart"
        assert config.vm_options == "--observe"
        assert config.arguments == "a b"
        assert config.checked_mode is True
        assert config.mode == ExecutionMode.DEBUG
        assert config.envs == {"KEY": "value"}
        assert config.include_parent_envs is False

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_run_configuration(tmp_path / "missing.json")

    def test_invalid_content(self, tmp_path: Path):
        path = tmp_path / "run.json"
        path.write_text('{"mode": "profile"}', encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid run configuration"):
            load_run_configuration(path)

    def test_not_utf8(self, tmp_path: Path):
        path = tmp_path / "run.json"
        path.write_bytes(b'{"dart_file": "\xff\xfe"}')
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_run_configuration(path)

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "run.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_run_configuration(path)
