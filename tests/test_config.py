"""
Unit Tests for Configuration Module

This module tests config.yaml loading and the section accessors.

Usage:
    pytest tests/test_config.py -v
"""

import pytest

from core import config as config_module
from core.config import (
    get_config,
    get_model_dir,
    get_project_root,
    get_section,
    load_config,
    resolve_path,
)


class TestConfig:
    """Tests for the configuration singleton."""

    def test_project_root_has_config(self):
        assert (get_project_root() / "config.yaml").exists()

    def test_shipped_sections(self, monkeypatch):
        monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)
        config = get_config(reload=True)
        for section in ("camera", "face_detection", "presence", "verification", "api", "logging"):
            assert section in config

    def test_shipped_defaults(self, monkeypatch):
        """Test that the shipped file matches the client contract defaults."""
        monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)
        config = get_config(reload=True)
        assert config["camera"]["width"] == 640
        assert config["camera"]["height"] == 480
        assert config["camera"]["facing_mode"] == "user"
        assert config["camera"]["frame_rate"] == 30
        assert config["verification"]["success_delay_sec"] == 1.5
        assert config["api"]["base_url"] == "http://localhost:5000/api"
        assert config["face_detection"]["variant"] == "fast"

    def test_singleton(self):
        assert get_config() is get_config()

    def test_missing_section(self):
        with pytest.raises(KeyError):
            get_section("does_not_exist")

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("camera:\n  width: 1280\n", encoding="utf-8")

        assert load_config(str(path)) == {"camera": {"width": 1280}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_logging_section_fallback(self, monkeypatch):
        monkeypatch.setattr(config_module, "_config_instance", {"camera": {}})
        assert config_module.get_logging_config() == {}

    def test_env_var_override(self, tmp_path, monkeypatch):
        path = tmp_path / "machine.yaml"
        path.write_text("api:\n  base_url: http://staging:5000/api\n", encoding="utf-8")
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(path))

        assert load_config()["api"]["base_url"] == "http://staging:5000/api"


class TestPaths:
    """Tests for resolving configured paths."""

    def test_relative_model_dir_is_under_project_root(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert get_model_dir({"model_dir": "storage/models"}) == get_project_root() / "storage" / "models"

    def test_default_model_dir(self):
        assert get_model_dir({}) == get_project_root() / "storage" / "models"

    def test_absolute_path_unchanged(self, tmp_path):
        assert resolve_path(str(tmp_path)) == tmp_path
