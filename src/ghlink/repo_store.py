"""Local clones laid out as ``<repos_root>/<owner>/<repo>``.

``RepositoryStore.ensure`` returns a handle to a valid working tree,
cloning it when absent and re-cloning it when the directory is not a usable
repository. Acquisition of one path is serialised with ``repository_lock``.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from git import Repo
from git.exc import GitCommandError

from . import git_ops
from .errors import AcquisitionError, GitTimeoutError
from .interaction import UserInteraction
from .lock import repository_lock
from .observability import log_debug, log_warning, timeit

if TYPE_CHECKING:
    from .config_schema import GhlinkConfig

DEFAULT_CLONE_PATTERN = "https://{host}/{owner}/{repo}.git"


@dataclass(frozen=True)
class RepositoryHandle:
    """A local working tree. Validity is checked on use, never cached."""

    path: Path
    owner: Optional[str] = None
    repo: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.owner and self.repo:
            return f"{self.owner}/{self.repo}"
        return str(self.path)

    def open(self) -> Repo:
        """Open a fresh GitPython Repo for this working tree."""
        return git_ops.open_repo(self.path)


def _validate_segment(value: str, kind: str) -> None:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise ValueError(f"Invalid {kind} name: {value!r}")


class RepositoryStore:
    """Maps owner/repo to a local clone under ``repos_root``."""

    def __init__(
        self,
        repos_root: Path,
        interaction: UserInteraction,
        *,
        clone_pattern: str = DEFAULT_CLONE_PATTERN,
        host: str = "github.com",
        remote: str = "origin",
        timeout: float = 120.0,
        lock_timeout: float = 60.0,
        lock_ttl: int = 900,
    ):
        self.repos_root = Path(repos_root).expanduser()
        self.interaction = interaction
        self.clone_pattern = clone_pattern
        self.host = host
        self.remote = remote
        self.timeout = timeout
        self.lock_timeout = lock_timeout
        self.lock_ttl = lock_ttl

    @classmethod
    def from_config(cls, config: "GhlinkConfig", interaction: UserInteraction) -> "RepositoryStore":
        return cls(
            config.repos_root_path,
            interaction,
            clone_pattern=config.git.clone_pattern,
            host=config.git.host,
            remote=config.git.default_remote,
            timeout=config.git.timeout,
            lock_timeout=config.sync.lock_timeout,
            lock_ttl=config.sync.lock_ttl,
        )

    def path_for(self, owner: str, repo: str) -> Path:
        _validate_segment(owner, "owner")
        _validate_segment(repo, "repository")
        return self.repos_root / owner / repo

    def clone_url(self, owner: str, repo: str) -> str:
        return self.clone_pattern.format(host=self.host, owner=owner, repo=repo)

    def exists(self, owner: str, repo: str) -> bool:
        path = self.path_for(owner, repo)
        return path.exists() and git_ops.is_valid_repository(path)

    def ensure(self, owner: str, repo: str, branch: Optional[str] = None) -> RepositoryHandle:
        """Return a handle to a valid clone of owner/repo, cloning if needed.

        Args:
            owner: GitHub owner
            repo: Repository name
            branch: Branch to check out after a fresh clone (None = remote default)

        Raises:
            AcquisitionError: clone failed or ``branch`` is not on the remote
            GitTimeoutError: clone exceeded the network timeout
            LockTimeoutError: another process is acquiring the same path
        """
        path = self.path_for(owner, repo)
        full_name = f"{owner}/{repo}"
        handle = RepositoryHandle(path=path, owner=owner, repo=repo)

        with repository_lock(path, timeout=self.lock_timeout, ttl=self.lock_ttl):
            with timeit("store.ensure", repo=full_name) as info:
                if path.exists():
                    if git_ops.is_valid_repository(path):
                        info["cloned"] = False
                        return handle
                    log_warning(f"[STORE] {path} is not a valid repository; re-cloning")
                    shutil.rmtree(path)

                self._clone(path, owner, repo)
                info["cloned"] = True
                if branch:
                    self._checkout_after_clone(handle, branch)

        self.interaction.notify(f"Cloned {full_name}")
        return handle

    def _clone(self, path: Path, owner: str, repo: str) -> None:
        url = self.clone_url(owner, repo)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.interaction.notify(f"Cloning {owner}/{repo}...")
        try:
            git_ops.clone(url, path, timeout=self.timeout, remote=self.remote)
        except GitCommandError as e:
            self._remove_partial(path)
            stderr = (e.stderr or "").strip()
            raise AcquisitionError(
                f"Failed to clone {owner}/{repo} from {url}: {stderr or e}"
            ) from e
        except GitTimeoutError:
            self._remove_partial(path)
            raise

    def _remove_partial(self, path: Path) -> None:
        if path.exists():
            log_debug(f"[STORE] Removing partial clone at {path}")
            shutil.rmtree(path, ignore_errors=True)

    def _checkout_after_clone(self, handle: RepositoryHandle, branch: str) -> None:
        try:
            git_ops.validate_branch_name(branch)
        except ValueError as e:
            raise AcquisitionError(str(e)) from e

        repo = handle.open()
        if git_ops.current_branch(repo) == branch:
            return
        try:
            if git_ops.has_local_branch(repo, branch):
                git_ops.checkout(repo, branch)
                return
            remote_ref = f"{self.remote}/{branch}"
            if not git_ops.ref_exists(repo, remote_ref):
                git_ops.fetch(repo, self.remote, branch, timeout=self.timeout)
            if not git_ops.ref_exists(repo, remote_ref):
                raise AcquisitionError(f"Branch '{branch}' does not exist on {handle.full_name}")
            git_ops.create_tracking_branch(repo, branch, self.remote)
        except GitCommandError as e:
            raise AcquisitionError(
                f"Branch '{branch}' does not exist on {handle.full_name}: {(e.stderr or '').strip() or e}"
            ) from e
