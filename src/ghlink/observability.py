from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "ghlink"

# Environment variables for configuration
ENV_LOG_DIR = "GHLINK_LOG_DIR"
ENV_LOG_LEVEL = "GHLINK_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "GHLINK_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "GHLINK_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "GHLINK_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".ghlink" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
DEFAULT_BACKUP_COUNT = 3

_logger_initialized = False
_session_start: Optional[str] = None


def _session_stamp() -> str:
    global _session_start
    if _session_start is None:
        _session_start = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    return _session_start


def _get_log_level() -> int:
    """Get log level from environment, defaulting to INFO."""
    level_name = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled via GHLINK_LOG_DISABLE_FILE=1.
    """
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR)).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    # Session-based filename: ghlink_2024-01-15_143022.log
    return log_dir / f"ghlink_{_session_stamp()}.log"


def _get_logger() -> logging.Logger:
    """Get or initialize the ghlink logger.

    By default, logs to ~/.ghlink/logs/ghlink_<session>.log

    Configuration via environment variables:
    - GHLINK_LOG_DIR: Directory for log files (default: ~/.ghlink/logs/)
    - GHLINK_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - GHLINK_LOG_MAX_BYTES: Max log file size before rotation (default: 5MB)
    - GHLINK_LOG_BACKUP_COUNT: Number of backup files to keep (default: 3)
    - GHLINK_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        logger.handlers.clear()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        try:
            log_file = _get_log_file_path()
        except OSError:
            # Read-only home directory; stderr logging still works
            log_file = None
        if log_file:
            max_bytes = int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # stderr gets warnings and above only; user-facing output goes through notify()
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def configure_from(logging_config: Any) -> None:
    """Push a LoggingConfig into the environment before the logger starts.

    Explicit environment variables win over config file values.
    """
    if logging_config is None:
        return
    os.environ.setdefault(ENV_LOG_LEVEL, logging_config.level)
    if logging_config.dir:
        os.environ.setdefault(ENV_LOG_DIR, logging_config.dir)
    os.environ.setdefault(ENV_LOG_MAX_BYTES, str(logging_config.max_bytes))
    os.environ.setdefault(ENV_LOG_BACKUP_COUNT, str(logging_config.backup_count))
    if logging_config.disable_file:
        os.environ.setdefault(ENV_LOG_DISABLE_FILE, "1")


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    repo: Optional[str] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON for safety. Keep schema lightweight.

    Args:
        action: Name of the action being logged (e.g. "sync.fetch")
        outcome: Result status ("ok", "error", "cancelled", ...)
        duration_ms: How long the action took in milliseconds
        repo: Repository path or owner/repo slug the action touched
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": datetime.utcnow().isoformat() + "Z",
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if repo is not None:
        payload["repo"] = repo
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        if fields:
            field_str = " " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)
            logger.debug(f"{message}{field_str}")
        else:
            logger.debug(message)


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    logger = _get_logger()
    if fields:
        field_str = " " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)
        logger.warning(f"{message}{field_str}")
    else:
        logger.warning(message)


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    logger = _get_logger()
    if fields:
        field_str = " " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)
        logger.error(f"{message}{field_str}")
    else:
        logger.error(message)


@contextmanager
def timeit(action: str, *, repo: Optional[str] = None, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" (or "cancelled" for
    CancellationError) and re-raises.

    Yields:
        A dict the block can fill with extra fields for the final log line
    """
    from .errors import CancellationError

    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
    except CancellationError:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="cancelled", duration_ms=duration_ms, repo=repo, **fields)
        raise
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="error", duration_ms=duration_ms, repo=repo, **fields)
        raise
    duration_ms = (time.perf_counter() - start) * 1000.0
    log_action(
        action,
        outcome="ok",
        duration_ms=duration_ms,
        repo=repo,
        **{**fields, **result_info},
    )
