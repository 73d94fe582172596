"""Tests for config_schema module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ghlink.config_schema import GhlinkConfig, GitConfig, LoggingConfig, SyncConfig


class TestGitConfig:
    """Tests for GitConfig model."""

    def test_defaults(self):
        config = GitConfig()
        assert config.host == "github.com"
        assert config.clone_pattern == "https://{host}/{owner}/{repo}.git"
        assert config.default_remote == "origin"
        assert config.timeout == 120.0

    def test_ssh_pattern_accepted(self):
        config = GitConfig(clone_pattern="git@{host}:{owner}/{repo}.git")
        assert config.clone_pattern.startswith("git@")

    def test_pattern_requires_owner_and_repo(self):
        with pytest.raises(ValidationError, match="placeholders"):
            GitConfig(clone_pattern="https://github.com/{owner}.git")

    def test_pattern_rejects_unknown_placeholders(self):
        with pytest.raises(ValidationError, match="unknown placeholders"):
            GitConfig(clone_pattern="https://{host}/{owner}/{repo}/{token}.git")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            GitConfig(timeout=0)


class TestSyncConfig:
    """Tests for SyncConfig model."""

    def test_defaults(self):
        config = SyncConfig()
        assert config.lock_timeout == 60.0
        assert config.lock_ttl == 900
        assert config.stash_prefix == "ghlink-auto"

    def test_empty_stash_prefix_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(stash_prefix="")


class TestLoggingConfig:
    """Tests for LoggingConfig model."""

    def test_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")

    def test_log_dir_not_directory_warns(self, tmp_path):
        target = tmp_path / "file.log"
        target.write_text("")
        with pytest.warns(UserWarning, match="not a directory"):
            LoggingConfig(dir=str(target))


class TestGhlinkConfig:
    """Tests for the root config model."""

    def test_defaults(self):
        config = GhlinkConfig()
        assert config.version == 1
        assert config.default_branch == "main"
        assert config.auto_sync is True
        assert config.repos_root_path == Path("~/repos").expanduser()

    def test_nested_sections_from_dict(self):
        config = GhlinkConfig.model_validate(
            {"auto_sync": "false", "git": {"timeout": "30"}, "sync": {"lock_timeout": 5}}
        )
        assert config.auto_sync is False
        assert config.git.timeout == 30.0
        assert config.sync.lock_timeout == 5

    def test_repos_root_not_directory_warns(self, tmp_path):
        target = tmp_path / "repos"
        target.write_text("")
        with pytest.warns(UserWarning, match="repos_root"):
            GhlinkConfig(repos_root=str(target))

    def test_empty_default_branch_rejected(self):
        with pytest.raises(ValidationError):
            GhlinkConfig(default_branch="")
