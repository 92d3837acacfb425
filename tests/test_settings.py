"""Tests for the settings manager."""

import logging

import pytest
import yaml

from livemodules.settings import LiveModulesSettings
from livemodules.settings import SettingsManager
from livemodules.settings import deep_merge


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("LIVEMODULES_LOG_LEVEL", "LIVEMODULES_LOG_PATH", "LIVEMODULES_LOAD_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def manager(tmp_path):
    return SettingsManager(settings_dir=tmp_path / ".livemodules", user_settings_file=tmp_path / "home" / "settings.yaml")


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data))


def test_deep_merge_merges_dicts_recursively():
    """Test that nested dicts are merged recursively."""
    result = deep_merge({"a": {"x": 1, "y": 2}, "l": [1]}, {"a": {"y": 3}, "l": [2]})

    assert result == {"a": {"x": 1, "y": 3}, "l": [2]}


def test_deep_merge_does_not_modify_inputs():
    """Test that the inputs are left untouched."""
    base = {"a": {"x": 1}}

    deep_merge(base, {"a": {"x": 2}})

    assert base == {"a": {"x": 1}}


class TestSettingsManager:
    """Test scope merging and overrides."""

    def test_defaults(self, manager):
        """Test missing files give default settings."""
        settings = manager.load()

        assert settings == LiveModulesSettings()
        assert settings.load_timeout == 1.0

    def test_scope_precedence(self, manager):
        """Test local beats project beats user."""
        write_yaml(manager.user_settings_file, {"load_timeout": 3, "log_level": "DEBUG"})
        write_yaml(manager.project_settings_file, {"load_timeout": 2, "package_base_dirs": ["/p"]})
        write_yaml(manager.local_settings_file, {"load_timeout": 0.5})

        settings = manager.load()

        assert settings.load_timeout == 0.5
        assert settings.log_level == "DEBUG"
        assert settings.package_base_dirs == ["/p"]

    def test_environment_overrides_files(self, manager, monkeypatch):
        """Test LIVEMODULES_* variables win over every file."""
        write_yaml(manager.local_settings_file, {"load_timeout": 0.5})
        monkeypatch.setenv("LIVEMODULES_LOAD_TIMEOUT", "4")

        assert manager.load().load_timeout == 4.0

    def test_explicit_overrides_win(self, manager, monkeypatch):
        """Test keyword overrides beat the environment; None is ignored."""
        monkeypatch.setenv("LIVEMODULES_LOG_LEVEL", "WARNING")

        settings = manager.load(log_level="DEBUG", base_url=None)

        assert settings.log_level == "DEBUG"
        assert settings.base_url is None

    def test_invalid_settings(self, manager):
        """Test values that do not validate raise ValueError."""
        write_yaml(manager.project_settings_file, {"load_timeout": -1})

        with pytest.raises(ValueError, match="Invalid livemodules settings"):
            manager.load()

    def test_non_mapping_file_is_ignored(self, manager, caplog):
        """Test a settings file that is not a mapping is skipped with a warning."""
        manager.project_settings_file.parent.mkdir(parents=True)
        manager.project_settings_file.write_text("- just\n- a list\n")

        with caplog.at_level(logging.WARNING):
            assert manager.get_merged_settings() == {}

        assert "expected a mapping" in caplog.text

    def test_set_value(self, manager):
        """Test dotted keys are written into the chosen scope."""
        manager.set_value("project", "load_timeout", 2.5)
        manager.set_value("project", "extra.nested", True)

        data = yaml.safe_load(manager.project_settings_file.read_text())
        assert data == {"load_timeout": 2.5, "extra": {"nested": True}}
        assert manager.load().load_timeout == 2.5
