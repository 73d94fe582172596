"""Configuration schema for ghlink.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import re
import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class GitConfig(BaseModel):
    """Git transport settings."""

    host: str = Field(
        default="github.com",
        description="Source host used when building clone URLs",
    )
    clone_pattern: str = Field(
        default="https://{host}/{owner}/{repo}.git",
        description="Clone URL pattern. Placeholders: {host}, {owner}, {repo}",
    )
    default_remote: str = Field(
        default="origin",
        description="Remote used for fetch/pull when none is resolved",
    )
    timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds before a clone, fetch or pull is killed",
    )

    @field_validator("clone_pattern")
    @classmethod
    def validate_clone_pattern(cls, v: str) -> str:
        """Require both owner and repo placeholders."""
        if "{owner}" not in v or "{repo}" not in v:
            raise ValueError("clone_pattern must contain {owner} and {repo} placeholders")
        unknown = set(re.findall(r"\{([^}]*)\}", v)) - {"host", "owner", "repo"}
        if unknown:
            raise ValueError(f"clone_pattern has unknown placeholders: {sorted(unknown)}")
        return v


class SyncConfig(BaseModel):
    """Sync engine behavior settings."""

    lock_timeout: float = Field(
        default=60.0,
        ge=0,
        description="Seconds to wait for another sync pass on the same repository",
    )
    lock_ttl: int = Field(
        default=900,
        ge=0,
        description="Seconds before a lock file left by a crashed process is considered stale",
    )
    stash_prefix: str = Field(
        default="ghlink-auto",
        min_length=1,
        description="Message prefix for stashes created before a branch switch",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.ghlink/logs)",
    )
    max_bytes: int = Field(
        default=5242880,  # 5MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory path exists but isn't a directory."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class GhlinkConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )
    default_branch: str = Field(
        default="main",
        min_length=1,
        description="Branch assumed when a URL names none",
    )
    auto_sync: bool = Field(
        default=True,
        description="Offer pull --rebase when the local branch is behind its remote",
    )
    repos_root: str = Field(
        default="~/repos",
        description="Base directory for <owner>/<repo> clones",
    )

    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("repos_root")
    @classmethod
    def validate_repos_root(cls, v: str) -> str:
        """Warn if the repos root exists but is not a directory."""
        path = Path(v).expanduser()
        if path.exists() and not path.is_dir():
            warnings.warn(
                f"repos_root exists but is not a directory: {v}",
                UserWarning,
            )
        return v

    @property
    def repos_root_path(self) -> Path:
        return Path(self.repos_root).expanduser()
