from __future__ import annotations

import getpass
import hashlib
import os
import threading
import time
import uuid
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import LockTimeoutError
from .observability import log_debug

ENV_LOCK_DIR = "GHLINK_LOCK_DIR"
DEFAULT_LOCK_DIR = Path.home() / ".ghlink" / "locks"


def _pid_alive(pid: int) -> bool:
    """Whether ``pid`` names a running process on this host."""
    if os.name == "nt":
        # os.kill would terminate the process on Windows; rely on the TTL there
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class AdvisoryLock:
    """Simple file-based advisory lock with TTL and timeout.

    Environment variables (optional):
    - GHLINK_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(self, path: Path, *, ttl: int = 900, timeout: float | None = None, force_break: bool = False):
        self.path = Path(path)
        self.ttl = ttl
        self.poll = float(os.getenv("GHLINK_LOCK_POLL", "0.1"))
        self.timeout = timeout
        self.force_break = force_break
        self.acquired = False
        self.token = uuid.uuid4().hex

    def _is_stale(self) -> bool:
        """Older than ``ttl`` and not held by a process that is still running.

        A live holder may sit at an interactive prompt for longer than the
        TTL, so age alone never breaks its lock.
        """
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        if (time.time() - mtime) <= self.ttl:
            return False
        info = self.get_lock_info() or {}
        pid = info.get("pid")
        if isinstance(pid, int) and _pid_alive(pid):
            return False
        return True

    def _write_pid(self) -> None:
        """Write lock file with holder metadata for debugging."""
        try:
            user = getpass.getuser()
        except Exception:
            user = "unknown"
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self.path.write_text(
            f"pid={os.getpid()} time={timestamp} user={user} token={self.token}\n",
            encoding="utf-8"
        )

    def get_lock_info(self) -> dict | None:
        """Get lock metadata (pid, time, user), or None if no lock exists."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, OSError):
            return None
        if not content:
            return None
        info: dict = {}
        for part in content.split():
            if "=" in part:
                key, value = part.split("=", 1)
                info[key] = value
        if "pid" in info:
            try:
                info["pid"] = int(info["pid"])
            except ValueError:
                pass
        return info or None

    def acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.time()
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
                self._write_pid()
                self.acquired = True
                return True
            except FileExistsError:
                if self.force_break:
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout == 0:
                    return False
                # ttl <= 0 means never stale
                if self.ttl > 0 and self._is_stale():
                    log_debug(f"[LOCK] Breaking stale lock {self.path}")
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)

    def release(self) -> None:
        """Remove the lock file, but only while it still carries our token."""
        if not self.acquired:
            return
        self.acquired = False
        info = self.get_lock_info() or {}
        if info.get("token") != self.token:
            log_debug(f"[LOCK] {self.path} was taken over by pid={info.get('pid')}; leaving it")
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self):
        if not self.acquire():
            raise LockTimeoutError(f"Failed to acquire lock {self.path} within timeout")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


_registry_guard = threading.Lock()
# Entries vanish once no pass holds or waits on the path
_path_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def _thread_lock_for(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _path_locks[key] = lock
        return lock


def _path_key(repo_path: Path) -> str:
    return str(Path(repo_path).expanduser().resolve())


def lock_file_for(repo_path: Path, lock_dir: Optional[Path] = None) -> Path:
    """Lock file shared by every process touching ``repo_path``.

    Lives outside the working tree so that a missing or half-cloned
    repository can still be locked.
    """
    key = _path_key(repo_path)
    if lock_dir is None:
        lock_dir = Path(os.getenv(ENV_LOCK_DIR, DEFAULT_LOCK_DIR)).expanduser()
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
    return Path(lock_dir) / f"{Path(key).name or 'root'}-{digest}.lock"


@contextmanager
def repository_lock(
    repo_path: Path,
    lock_file: Optional[Path] = None,
    *,
    timeout: float = 60.0,
    ttl: int = 900,
) -> Iterator[None]:
    """Serialise git mutations against one working tree.

    Holds an in-process mutex keyed by the resolved repository path and an
    AdvisoryLock file for other processes. Different paths never contend.

    Raises:
        LockTimeoutError: if either lock is not obtained within ``timeout``
    """
    key = _path_key(repo_path)
    if lock_file is None:
        lock_file = lock_file_for(repo_path)
    thread_lock = _thread_lock_for(key)
    start = time.monotonic()
    if not thread_lock.acquire(timeout=timeout if timeout >= 0 else -1):
        raise LockTimeoutError(
            f"Another sync pass is running on {key}; gave up after {timeout:.0f}s"
        )
    try:
        remaining = max(0.0, timeout - (time.monotonic() - start))
        file_lock = AdvisoryLock(lock_file, ttl=ttl, timeout=remaining)
        if not file_lock.acquire():
            info = file_lock.get_lock_info() or {}
            raise LockTimeoutError(
                f"Repository {key} is locked by pid={info.get('pid', 'unknown')} "
                f"user={info.get('user', 'unknown')} since={info.get('time', 'unknown')}. "
                f"If that process is gone, remove {lock_file}"
            )
        log_debug(f"[LOCK] acquired {lock_file}")
        try:
            yield
        finally:
            file_lock.release()
            log_debug(f"[LOCK] released {lock_file}")
    finally:
        thread_lock.release()
