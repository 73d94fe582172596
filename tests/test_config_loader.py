"""Tests for config_loader module."""

from __future__ import annotations

from pathlib import Path

import pytest

from ghlink.config_loader import (
    ConfigError,
    _apply_env_overlay,
    _deep_merge,
    _env_to_config_key,
    _get_project_config_dir,
    _get_user_config_dir,
    clear_config_cache,
    ensure_config_dir,
    get_config,
    get_config_paths,
    load_config,
    template_path,
)
from ghlink.config_schema import GhlinkConfig


@pytest.fixture
def fake_home(tmp_path, monkeypatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_config_cache()
    yield
    clear_config_cache()


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_simple_merge(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self):
        base = {"git": {"host": "github.com", "timeout": 120}}
        override = {"git": {"timeout": 30}}
        assert _deep_merge(base, override) == {"git": {"host": "github.com", "timeout": 30}}

    def test_list_replaced_not_merged(self):
        assert _deep_merge({"items": [1, 2]}, {"items": [3]}) == {"items": [3]}

    def test_original_unchanged(self):
        base = {"a": 1, "nested": {"b": 2}}
        _deep_merge(base, {"nested": {"b": 3}})
        assert base == {"a": 1, "nested": {"b": 2}}


class TestEnvToConfigKey:
    """Tests for _env_to_config_key function."""

    def test_top_level_keys(self):
        assert _env_to_config_key("GHLINK_DEFAULT_BRANCH") == ([], "default_branch")
        assert _env_to_config_key("GHLINK_REPOS_ROOT") == ([], "repos_root")

    def test_section_keys(self):
        assert _env_to_config_key("GHLINK_GIT_TIMEOUT") == (["git"], "timeout")
        assert _env_to_config_key("GHLINK_LOCK_TTL") == (["sync"], "lock_ttl")
        assert _env_to_config_key("GHLINK_LOG_LEVEL") == (["logging"], "level")

    def test_unknown_var(self):
        assert _env_to_config_key("SOMETHING_ELSE") == ([], "SOMETHING_ELSE")


class TestApplyEnvOverlay:
    """Tests for _apply_env_overlay function."""

    def test_creates_sections(self, monkeypatch):
        monkeypatch.setenv("GHLINK_GIT_TIMEOUT", "15")
        result = _apply_env_overlay({})
        assert result["git"] == {"timeout": "15"}

    def test_does_not_mutate_input(self, monkeypatch):
        monkeypatch.setenv("GHLINK_GIT_HOST", "ghe.example.com")
        original = {"git": {"host": "github.com"}}
        result = _apply_env_overlay(original)
        assert result["git"]["host"] == "ghe.example.com"
        assert original["git"]["host"] == "github.com"


class TestConfigDirs:
    """Tests for config directory discovery."""

    def test_user_config_dir(self, fake_home):
        assert _get_user_config_dir() == fake_home / ".ghlink"

    def test_project_dir_found_upward(self, fake_home, tmp_path):
        project = tmp_path / "project"
        (project / ".ghlink").mkdir(parents=True)
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        assert _get_project_config_dir(nested) == project / ".ghlink"

    def test_project_dir_missing(self, fake_home, tmp_path):
        lonely = tmp_path / "lonely"
        lonely.mkdir()
        assert _get_project_config_dir(lonely) is None

    def test_user_dir_is_not_a_project_dir(self, fake_home):
        (fake_home / ".ghlink").mkdir()
        inside = fake_home / "code"
        inside.mkdir()
        assert _get_project_config_dir(inside) is None

    def test_ensure_project_dir(self, fake_home, tmp_path):
        result = ensure_config_dir(user=False, project_path=tmp_path)
        assert result == tmp_path / ".ghlink"
        assert result.is_dir()

    def test_ensure_user_dir(self, fake_home):
        assert ensure_config_dir() == fake_home / ".ghlink"
        assert (fake_home / ".ghlink").is_dir()

    def test_config_paths(self, fake_home, tmp_path):
        project = tmp_path / "project"
        (project / ".ghlink").mkdir(parents=True)
        paths = get_config_paths(project_path=project)
        assert paths["user_config"] == fake_home / ".ghlink" / "config.toml"
        assert paths["project_config"] == project / ".ghlink" / "config.toml"

    def test_template_ships_with_package(self):
        assert template_path().is_file()


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults_without_files(self, fake_home, tmp_path):
        config = load_config(project_path=tmp_path, skip_env=True)
        assert isinstance(config, GhlinkConfig)
        assert config.default_branch == "main"
        assert config.git.timeout == 120.0

    def test_user_config(self, fake_home, tmp_path):
        (fake_home / ".ghlink").mkdir()
        (fake_home / ".ghlink" / "config.toml").write_text(
            'repos_root = "/srv/code"\n\n[git]\ntimeout = 45\n'
        )
        config = load_config(project_path=tmp_path, skip_env=True)
        assert config.repos_root == "/srv/code"
        assert config.git.timeout == 45

    def test_project_overrides_user(self, fake_home, tmp_path):
        (fake_home / ".ghlink").mkdir()
        (fake_home / ".ghlink" / "config.toml").write_text(
            '[git]\nhost = "github.com"\ntimeout = 45\n'
        )
        project = tmp_path / "project"
        (project / ".ghlink").mkdir(parents=True)
        (project / ".ghlink" / "config.toml").write_text("[git]\ntimeout = 10\n")

        config = load_config(project_path=project, skip_env=True)
        assert config.git.timeout == 10
        assert config.git.host == "github.com"

    def test_env_overlay_wins(self, fake_home, tmp_path, monkeypatch):
        (fake_home / ".ghlink").mkdir()
        (fake_home / ".ghlink" / "config.toml").write_text("auto_sync = true\n")
        monkeypatch.setenv("GHLINK_AUTO_SYNC", "false")
        monkeypatch.setenv("GHLINK_LOG_LEVEL", "debug")

        config = load_config(project_path=tmp_path)
        assert config.auto_sync is False
        assert config.logging.level == "DEBUG"

    def test_skip_env(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setenv("GHLINK_DEFAULT_BRANCH", "trunk")
        assert load_config(project_path=tmp_path, skip_env=True).default_branch == "main"
        assert load_config(project_path=tmp_path).default_branch == "trunk"

    def test_invalid_user_config_warns(self, fake_home, tmp_path):
        (fake_home / ".ghlink").mkdir()
        (fake_home / ".ghlink" / "config.toml").write_text("not toml [[[")
        with pytest.warns(UserWarning, match="Skipping invalid user config"):
            config = load_config(project_path=tmp_path, skip_env=True)
        assert config.default_branch == "main"

    def test_invalid_project_toml_raises(self, fake_home, tmp_path):
        project = tmp_path / "project"
        (project / ".ghlink").mkdir(parents=True)
        (project / ".ghlink" / "config.toml").write_text("invalid toml [[[")
        with pytest.raises(ConfigError, match="Invalid project config"):
            load_config(project_path=project, skip_env=True)

    def test_invalid_values_raise(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setenv("GHLINK_GIT_TIMEOUT", "not-a-number")
        with pytest.raises(ConfigError, match="Config validation failed"):
            load_config(project_path=tmp_path)


class TestGetConfig:
    """Tests for cached get_config function."""

    def test_caches_config(self, fake_home, tmp_path):
        assert get_config(project_path=tmp_path) is get_config(project_path=tmp_path)

    def test_force_reload(self, fake_home, tmp_path):
        first = get_config(project_path=tmp_path)
        second = get_config(project_path=tmp_path, force_reload=True)
        assert first is not second
        assert first == second

    def test_different_project_paths(self, fake_home, tmp_path):
        one = tmp_path / "one"
        two = tmp_path / "two"
        one.mkdir()
        two.mkdir()
        assert get_config(project_path=one) is not get_config(project_path=two)

    def test_empty_path_treated_as_none(self, fake_home):
        assert isinstance(get_config(project_path=Path("")), GhlinkConfig)
