"""Layered configuration for ghlink.

Sources, lowest priority first: built-in defaults, the user file
``~/.ghlink/config.toml``, the nearest project ``.ghlink/config.toml``
above the working directory, then ``GHLINK_*`` environment variables.
The merged mapping is validated once by ``GhlinkConfig``.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

# tomllib is stdlib from 3.11; tomli is the same parser for 3.10
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import GhlinkConfig


CONFIG_FILENAME = "config.toml"

USER_CONFIG_DIR = ".ghlink"
PROJECT_CONFIG_DIR = ".ghlink"

# env var -> (section path, key)
ENV_MAPPING: Dict[str, Tuple[list[str], str]] = {
    "GHLINK_DEFAULT_BRANCH": ([], "default_branch"),
    "GHLINK_AUTO_SYNC": ([], "auto_sync"),
    "GHLINK_REPOS_ROOT": ([], "repos_root"),
    "GHLINK_GIT_HOST": (["git"], "host"),
    "GHLINK_CLONE_PATTERN": (["git"], "clone_pattern"),
    "GHLINK_DEFAULT_REMOTE": (["git"], "default_remote"),
    "GHLINK_GIT_TIMEOUT": (["git"], "timeout"),
    "GHLINK_LOCK_TIMEOUT": (["sync"], "lock_timeout"),
    "GHLINK_LOCK_TTL": (["sync"], "lock_ttl"),
    "GHLINK_LOG_LEVEL": (["logging"], "level"),
    "GHLINK_LOG_DIR": (["logging"], "dir"),
    "GHLINK_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "GHLINK_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "GHLINK_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """A config file could not be read or the merged config is invalid."""

    pass


def _get_user_config_dir() -> Path:
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.ghlink/`` at or above ``project_path`` (default: cwd).

    The user-level directory is skipped so a checkout under $HOME does not
    pick up user settings twice.
    """
    start = (project_path or Path.cwd()).resolve()
    user_dir = _get_user_config_dir()
    for directory in (start, *start.parents):
        if directory == directory.parent:
            break
        candidate = directory / PROJECT_CONFIG_DIR
        if candidate != user_dir and candidate.is_dir():
            return candidate
    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Parse one TOML file.

    Raises:
        ConfigError: missing file or bad TOML
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    try:
        return tomllib.loads(data.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated by ``override``; tables merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _env_to_config_key(env_var: str) -> Tuple[list[str], str]:
    """Where an env var lands in the config mapping.

    Examples:
        GHLINK_REPOS_ROOT -> ([], "repos_root")
        GHLINK_GIT_TIMEOUT -> (["git"], "timeout")
    """
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay every set ``GHLINK_*`` variable; values stay strings for pydantic to coerce."""
    overlay: Dict[str, Any] = {}
    for env_var in ENV_MAPPING:
        value = os.environ.get(env_var)
        if value is None:
            continue
        sections, key = _env_to_config_key(env_var)
        table = overlay
        for section in sections:
            table = table.setdefault(section, {})
        table[key] = value
    return _deep_merge(config_dict, overlay)


def _file_layers(project_path: Optional[Path]) -> Iterator[Tuple[str, Optional[Path]]]:
    yield "user", _get_user_config_dir() / CONFIG_FILENAME
    project_dir = _get_project_config_dir(project_path)
    yield "project", project_dir / CONFIG_FILENAME if project_dir else None


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> GhlinkConfig:
    """Build a validated ``GhlinkConfig`` from every source.

    A broken user file is skipped with a warning; a broken project file is
    an error because it usually means a typo the project relies on.

    Raises:
        ConfigError: invalid project file or invalid merged values
    """
    merged: Dict[str, Any] = {}
    for layer, path in _file_layers(project_path):
        if path is None or not path.exists():
            continue
        try:
            merged = _deep_merge(merged, _load_toml(path))
        except ConfigError as e:
            if layer == "project":
                raise ConfigError(f"Invalid project config: {e}")
            warnings.warn(f"Skipping invalid user config at {path}: {e}", UserWarning)

    if not skip_env:
        merged = _apply_env_overlay(merged)

    try:
        return GhlinkConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Config file locations keyed ``user_config``/``project_config``, lowest priority first."""
    return {f"{layer}_config": path for layer, path in _file_layers(project_path)}


def ensure_config_dir(user: bool = True, project_path: Optional[Path] = None) -> Path:
    """Create and return the user or project config directory."""
    if user:
        config_dir = _get_user_config_dir()
    else:
        config_dir = (project_path or Path.cwd()) / PROJECT_CONFIG_DIR
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def template_path() -> Path:
    """Path to the bundled example config."""
    return Path(__file__).parent / "templates" / "config.example.toml"


_cached_config: Optional[GhlinkConfig] = None
_cached_project_path: Optional[Path] = None
_config_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> GhlinkConfig:
    """Cached ``load_config``; reloads when ``project_path`` changes or on request."""
    global _cached_config, _cached_project_path

    key = project_path.resolve() if project_path and str(project_path) else None
    with _config_lock:
        if force_reload or _cached_config is None or _cached_project_path != key:
            _cached_config = load_config(project_path)
            _cached_project_path = key
        return _cached_config


def clear_config_cache() -> None:
    global _cached_config, _cached_project_path
    with _config_lock:
        _cached_config = None
        _cached_project_path = None
