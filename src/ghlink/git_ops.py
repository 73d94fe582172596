"""GitPython helpers shared by the repository store and sync engine.

All git access goes through these functions so that every operation is
logged, runs non-interactively and honours the network timeout. GitPython's
``kill_after_timeout`` is used for clone, fetch and pull; an expired timer
surfaces as ``GitTimeoutError``. Other ``GitCommandError`` instances are left
for the caller to translate into the domain error that fits the stage.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import git
from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import GitTimeoutError
from .observability import log_debug

# Disable interactive prompts so git fails fast instead of hanging when
# credentials are required.
GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
    "GIT_SSH_COMMAND": "ssh -o BatchMode=yes",
}

MAX_BRANCH_LENGTH = 255

# Each tuple is (compiled_pattern, human_readable_message), per git-check-ref-format
_BRANCH_VALIDATION_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r'\.\.'), 'contains consecutive dots (..)'),
    (re.compile(r'^-'), 'starts with hyphen'),
    (re.compile(r'^\.|\.$'), 'starts or ends with dot'),
    (re.compile(r'\.lock$'), 'ends with .lock'),
    (re.compile(r'@\{'), 'contains reflog syntax (@{)'),
    (re.compile(r'[\x00-\x1f\x7f]'), 'contains control characters'),
    (re.compile(r'[~^:?*\[\]\\]'), 'contains invalid git characters (~^:?*[]\\)'),
    (re.compile(r'\s'), 'contains whitespace'),
    (re.compile(r'//'), 'contains consecutive slashes'),
    (re.compile(r'/$'), 'ends with slash'),
]

_TIMEOUT_MARKER = "did not complete in"


def validate_branch_name(branch: str) -> None:
    """Reject branch names git would refuse or could read as an option.

    Raises:
        ValueError: If branch name is invalid or potentially dangerous
    """
    if not branch:
        raise ValueError("Branch name cannot be empty")
    if len(branch) > MAX_BRANCH_LENGTH:
        raise ValueError(
            f"Branch name too long: {len(branch)} chars (max {MAX_BRANCH_LENGTH})"
        )
    for compiled_pattern, message in _BRANCH_VALIDATION_RULES:
        if compiled_pattern.search(branch):
            raise ValueError(f"Branch name '{branch}' {message}")


def open_repo(path: Path) -> Repo:
    """Open the repository rooted exactly at ``path`` with a non-interactive env.

    Raises:
        InvalidGitRepositoryError / NoSuchPathError: if ``path`` is not a repo root
    """
    repo = Repo(path)
    repo.git.update_environment(**GIT_ENV)
    return repo


def is_valid_repository(path: Path) -> bool:
    """True when ``path`` is a working tree root and ``git status`` succeeds."""
    try:
        repo = open_repo(path)
        if repo.bare:
            return False
        repo.git.status("--porcelain")
        return True
    except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError) as e:
        log_debug(f"[GIT] {path} is not a valid repository: {e}")
        return False


def _is_timeout(error: GitCommandError) -> bool:
    return _TIMEOUT_MARKER in str(error.stderr or "") or _TIMEOUT_MARKER in str(error)


def run_git(repo: Repo, command: str, *args: str, timeout: Optional[float] = None) -> str:
    """Run ``git <command> <args>`` in ``repo`` with GIT_OP logging.

    Raises:
        GitTimeoutError: if ``timeout`` expired and git was killed
        GitCommandError: for any other failure
    """
    label = " ".join((command,) + args)
    log_debug(f"GIT_OP_START: {label}")
    try:
        output = repo.git.execute(
            ["git", command, *args],
            kill_after_timeout=timeout,
        )
    except GitCommandError as e:
        if timeout is not None and _is_timeout(e):
            log_debug(f"GIT_OP_TIMEOUT: {label} after {timeout}s")
            raise GitTimeoutError(f"git {command} timed out after {timeout:.0f}s") from e
        log_debug(f"GIT_OP_FAIL: {label}: {e}")
        raise
    log_debug(f"GIT_OP_END: {label}")
    return output if isinstance(output, str) else str(output)


def clone(
    url: str, path: Path, *, timeout: Optional[float] = None, remote: str = "origin"
) -> Repo:
    """Clone ``url`` into ``path`` as remote ``remote`` and return the opened repository.

    Raises:
        GitTimeoutError: if the clone did not finish within ``timeout``
        GitCommandError: if git reported a failure
    """
    log_debug(f"GIT_OP_START: clone {url}")
    runner = git.Git()
    runner.update_environment(**GIT_ENV)
    try:
        runner.execute(
            ["git", "clone", "--origin", remote, "--", url, str(path)],
            kill_after_timeout=timeout,
        )
    except GitCommandError as e:
        if timeout is not None and _is_timeout(e):
            raise GitTimeoutError(f"git clone {url} timed out after {timeout:.0f}s") from e
        raise
    log_debug(f"GIT_OP_END: clone {url}")
    return open_repo(path)


def current_branch(repo: Repo) -> Optional[str]:
    """Active branch name, or None for a detached HEAD or unborn repository."""
    try:
        if repo.head.is_detached:
            return None
        return repo.active_branch.name
    except (TypeError, ValueError):
        return None


def head_sha(repo: Repo) -> Optional[str]:
    try:
        return repo.head.commit.hexsha
    except ValueError:
        return None


def is_dirty(repo: Repo) -> bool:
    """Uncommitted changes, tracked or untracked."""
    return repo.is_dirty(untracked_files=True)


def has_local_branch(repo: Repo, branch: str) -> bool:
    return branch in [head.name for head in repo.heads]


def ref_exists(repo: Repo, ref: str) -> bool:
    try:
        repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
        return True
    except GitCommandError:
        return False


def upstream_ref(repo: Repo) -> Optional[Tuple[str, str]]:
    """(remote, branch) tracked by the active branch, if any."""
    try:
        tracking = repo.active_branch.tracking_branch()
    except (TypeError, ValueError):
        return None
    if tracking is None:
        return None
    return tracking.remote_name, tracking.remote_head


def remote_names(repo: Repo) -> list[str]:
    return [remote.name for remote in repo.remotes]


def fetch(
    repo: Repo,
    remote: Optional[str] = None,
    refspec: Optional[str] = None,
    *,
    timeout: Optional[float] = None,
) -> None:
    """Fetch one remote (optionally one refspec) or all remotes."""
    if remote is None:
        run_git(repo, "fetch", "--all", timeout=timeout)
    elif refspec is None:
        run_git(repo, "fetch", remote, timeout=timeout)
    else:
        run_git(repo, "fetch", remote, refspec, timeout=timeout)


def checkout(repo: Repo, branch: str) -> None:
    validate_branch_name(branch)
    run_git(repo, "checkout", branch, "--")


def create_tracking_branch(repo: Repo, branch: str, remote: str) -> None:
    """Create ``branch`` from ``remote/branch`` with upstream tracking and check it out."""
    validate_branch_name(branch)
    run_git(repo, "checkout", "-b", branch, "--track", f"{remote}/{branch}")


def commit_all(repo: Repo, message: str) -> str:
    """Stage everything (including untracked files) and commit. Returns the new sha."""
    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-m", message)
    return repo.head.commit.hexsha


def stash_count(repo: Repo) -> int:
    output = run_git(repo, "stash", "list")
    return len([line for line in output.splitlines() if line.strip()])


def stash_push(repo: Repo, prefix: str) -> Optional[str]:
    """Stash all changes under a timestamped message.

    Returns the stash message, or None if there was nothing to stash.
    Never drops an existing stash.
    """
    if not is_dirty(repo):
        return None
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    message = f"{prefix}-{stamp}"
    output = run_git(repo, "stash", "push", "--include-untracked", "-m", message)
    if "No local changes" in output:
        return None
    return message


def find_stash(repo: Repo, message: str) -> Optional[str]:
    """Return the ``stash@{n}`` ref whose subject carries ``message``."""
    output = run_git(repo, "stash", "list")
    for line in output.splitlines():
        ref, _, subject = line.partition(":")
        if subject.rstrip().endswith(message):
            return ref.strip()
    return None


def stash_pop(repo: Repo, ref: str) -> None:
    """Pop ``ref``. On conflict git keeps the entry and raises GitCommandError."""
    run_git(repo, "stash", "pop", ref)


def rev_count(repo: Repo, ref: str) -> int:
    """Number of commits reachable from ``ref``."""
    return int(run_git(repo, "rev-list", "--count", ref).strip() or 0)


def pull_rebase(repo: Repo, remote: str, branch: str, *, timeout: Optional[float] = None) -> None:
    validate_branch_name(branch)
    run_git(repo, "pull", "--rebase", remote, branch, timeout=timeout)


def is_rebase_in_progress(repo: Repo) -> bool:
    """Check if a rebase or merge is in progress."""
    git_dir = Path(repo.git_dir)
    return (
        (git_dir / "rebase-merge").exists()
        or (git_dir / "rebase-apply").exists()
        or (git_dir / "MERGE_HEAD").exists()
    )


def has_conflicts(repo: Repo) -> bool:
    """Check if the index has unmerged paths."""
    try:
        status = repo.git.status("--porcelain")
    except GitCommandError:
        return False
    for line in status.split("\n"):
        if len(line) >= 2 and (line[:2] in ("DD", "AU", "UD", "UA", "DU", "AA", "UU")):
            return True
    return False
