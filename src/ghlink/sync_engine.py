"""Reconcile a local working tree with the branch a link points at.

One ``SyncEngine.sync`` pass runs these stages in order, under the
repository lock:

1. dirty check: stash, commit, continue or abort
2. fetch (best effort)
3. branch resolution: checkout, or create a local branch tracking the remote
4. freshness (auto-sync only): offer ``pull --rebase`` when behind
5. rebase
6. stash reapply: only when stage 1 stashed

Nothing is ever force-reset. A cancelled or aborted decision raises
``CancellationError`` and no git mutation follows it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from . import git_ops
from .errors import CancellationError, GitTimeoutError, SyncError
from .interaction import CANCELLED, Severity, SyncDecision, UserInteraction
from .lock import repository_lock
from .observability import log_debug, log_warning, timeit
from .repo_store import RepositoryHandle

if TYPE_CHECKING:
    from .config_schema import GhlinkConfig


class CancelPolicy(str, Enum):
    """How a dismissed freshness prompt is treated."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class SyncReport:
    """What a sync pass did to the working tree."""

    target_branch: Optional[str] = None
    starting_branch: Optional[str] = None
    final_branch: Optional[str] = None
    fetched: bool = False
    switched: bool = False
    created_branch: bool = False
    committed: Optional[str] = None
    stash_ref: Optional[str] = None
    behind: int = 0
    ahead: int = 0
    pulled: bool = False
    stash_reapplied: bool = False
    stash_conflict: bool = False
    actions: List[str] = field(default_factory=list)

    @property
    def mutated(self) -> bool:
        """True if anything other than a fetch touched the repository."""
        return any(action != "fetch" for action in self.actions)


def _git_detail(error: Exception) -> str:
    if isinstance(error, GitCommandError):
        return (error.stderr or "").strip() or str(error)
    return str(error)


class SyncEngine:
    """Drives one reconciliation pass per call.

    Prompts go through the injected ``UserInteraction``; every stage is
    timed with ``timeit`` and every git call is logged by ``git_ops``.
    """

    def __init__(
        self,
        interaction: UserInteraction,
        *,
        auto_sync: bool = True,
        default_remote: str = "origin",
        timeout: float = 120.0,
        lock_timeout: float = 60.0,
        lock_ttl: int = 900,
        stash_prefix: str = "ghlink-auto",
    ):
        self.interaction = interaction
        self.auto_sync = auto_sync
        self.default_remote = default_remote
        self.timeout = timeout
        self.lock_timeout = lock_timeout
        self.lock_ttl = lock_ttl
        self.stash_prefix = stash_prefix

    @classmethod
    def from_config(cls, config: "GhlinkConfig", interaction: UserInteraction) -> "SyncEngine":
        return cls(
            interaction,
            auto_sync=config.auto_sync,
            default_remote=config.git.default_remote,
            timeout=config.git.timeout,
            lock_timeout=config.sync.lock_timeout,
            lock_ttl=config.sync.lock_ttl,
            stash_prefix=config.sync.stash_prefix,
        )

    def sync(
        self,
        handle: RepositoryHandle,
        target_branch: Optional[str] = None,
        *,
        remote_name: Optional[str] = None,
        cancel_policy: CancelPolicy = CancelPolicy.CONTINUE,
        allow_dirty: bool = False,
    ) -> SyncReport:
        """Bring ``handle`` onto ``target_branch`` (None = stay put) and up to date.

        Args:
            handle: Working tree to reconcile
            target_branch: Branch the caller needs checked out
            remote_name: Remote to fetch and pull from (default: configured remote)
            cancel_policy: ABORT turns a dismissed freshness prompt into CancellationError
            allow_dirty: Offer "Continue Anyway" when the tree has uncommitted changes

        Returns:
            SyncReport describing every action taken

        Raises:
            CancellationError: user aborted or dismissed a required decision
            SyncError: checkout, commit or rebase failed
            LockTimeoutError: another pass holds the repository lock
        """
        report = SyncReport(target_branch=target_branch)
        with repository_lock(handle.path, timeout=self.lock_timeout, ttl=self.lock_ttl):
            with timeit("sync", repo=handle.full_name, target_branch=target_branch) as info:
                repo = self._open(handle)
                remote = self._pick_remote(repo, remote_name)
                report.starting_branch = git_ops.current_branch(repo)

                try:
                    self._dirty_stage(repo, handle, report, allow_dirty)
                    self._fetch_stage(repo, handle, report, remote)
                    if target_branch is not None:
                        self._branch_stage(repo, handle, report, remote, target_branch)
                    if self.auto_sync:
                        self._freshness_stage(repo, handle, report, remote, cancel_policy)
                    if report.stash_ref is not None:
                        self._reapply_stage(repo, handle, report)
                except GitCommandError as e:
                    raise SyncError(
                        f"git failed while syncing {handle.full_name}: {_git_detail(e)}",
                        guidance=self._stash_guidance(report),
                    ) from e

                report.final_branch = git_ops.current_branch(repo)
                info["actions"] = list(report.actions)
        return report

    def _open(self, handle: RepositoryHandle) -> Repo:
        try:
            return handle.open()
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise SyncError(f"{handle.path} is not a git repository") from e

    def _pick_remote(self, repo: Repo, remote_name: Optional[str]) -> Optional[str]:
        if remote_name:
            return remote_name
        names = git_ops.remote_names(repo)
        if self.default_remote in names:
            return self.default_remote
        if len(names) == 1:
            return names[0]
        return None

    # -- stage 1 -------------------------------------------------------------

    def _dirty_stage(
        self,
        repo: Repo,
        handle: RepositoryHandle,
        report: SyncReport,
        allow_dirty: bool,
    ) -> None:
        with timeit("sync.dirty_check", repo=handle.full_name) as info:
            dirty = git_ops.is_dirty(repo)
            info["dirty"] = dirty
            if not dirty:
                return

            options = [
                SyncDecision.STASH_AND_SWITCH,
                SyncDecision.COMMIT_AND_SWITCH,
                SyncDecision.ABORT,
            ]
            if allow_dirty:
                options.insert(0, SyncDecision.CONTINUE)
                message = (
                    f"You have uncommitted changes in {handle.full_name}. "
                    "The generated link may not work for others."
                )
            else:
                message = (
                    f"You have uncommitted changes in {handle.full_name}. "
                    "Stash or commit them before syncing?"
                )

            choice = self.interaction.prompt_choice(message, options)
            info["decision"] = repr(choice) if choice is CANCELLED else choice.value
            if choice is CANCELLED or choice is SyncDecision.ABORT:
                raise CancellationError("Sync cancelled: working tree has uncommitted changes")
            if choice is SyncDecision.CONTINUE:
                return
            if choice is SyncDecision.STASH_AND_SWITCH:
                self._stash(repo, handle, report)
            elif choice is SyncDecision.COMMIT_AND_SWITCH:
                self._commit(repo, handle, report)

    def _stash(self, repo: Repo, handle: RepositoryHandle, report: SyncReport) -> None:
        try:
            message = git_ops.stash_push(repo, self.stash_prefix)
        except GitCommandError as e:
            raise SyncError(f"Failed to stash changes in {handle.full_name}: {_git_detail(e)}") from e
        if message is None:
            log_debug(f"[SYNC] Nothing to stash in {handle.path}")
            return
        report.stash_ref = message
        report.actions.append("stash")
        self.interaction.notify(f"Stashed local changes as '{message}'")

    def _commit(self, repo: Repo, handle: RepositoryHandle, report: SyncReport) -> None:
        message = self.interaction.prompt_text(
            "Enter commit message", placeholder="Update changes for sharing"
        )
        if message is CANCELLED:
            raise CancellationError("Sync cancelled: no commit message given")
        message = message.strip()
        if not message:
            raise SyncError("Commit message cannot be empty")
        try:
            report.committed = git_ops.commit_all(repo, message)
        except GitCommandError as e:
            raise SyncError(f"Failed to commit in {handle.full_name}: {_git_detail(e)}") from e
        report.actions.append("commit")
        self.interaction.notify("Changes committed successfully")

    # -- stage 2 -------------------------------------------------------------

    def _fetch_stage(
        self,
        repo: Repo,
        handle: RepositoryHandle,
        report: SyncReport,
        remote: Optional[str],
    ) -> None:
        with timeit("sync.fetch", repo=handle.full_name, remote=remote) as info:
            try:
                git_ops.fetch(repo, remote, timeout=self.timeout)
            except (GitCommandError, GitTimeoutError) as e:
                log_warning(f"[SYNC] Fetch from {remote or 'all remotes'} failed: {_git_detail(e)}")
                info["fetched"] = False
                return
            report.fetched = True
            report.actions.append("fetch")
            info["fetched"] = True

    # -- stage 3 -------------------------------------------------------------

    def _branch_stage(
        self,
        repo: Repo,
        handle: RepositoryHandle,
        report: SyncReport,
        remote: Optional[str],
        target: str,
    ) -> None:
        if git_ops.current_branch(repo) == target:
            return
        with timeit("sync.branch", repo=handle.full_name, branch=target):
            try:
                git_ops.validate_branch_name(target)
            except ValueError as e:
                raise SyncError(str(e)) from e

            if git_ops.has_local_branch(repo, target):
                try:
                    git_ops.checkout(repo, target)
                except GitCommandError as e:
                    raise SyncError(
                        f"Failed to switch to '{target}': {_git_detail(e)}",
                        guidance=self._stash_guidance(report),
                    ) from e
                report.switched = True
                report.actions.append("checkout")
                return

            if remote is None:
                raise SyncError(f"Branch '{target}' does not exist locally and no remote is configured")
            try:
                git_ops.fetch(repo, remote, target, timeout=self.timeout)
                git_ops.create_tracking_branch(repo, target, remote)
            except (GitCommandError, GitTimeoutError) as e:
                raise SyncError(
                    f"Branch '{target}' could not be checked out from {remote}: {_git_detail(e)}",
                    guidance=self._stash_guidance(report),
                ) from e
            report.switched = True
            report.created_branch = True
            report.actions.append("create_branch")

    # -- stages 4 and 5 ------------------------------------------------------

    def _freshness_stage(
        self,
        repo: Repo,
        handle: RepositoryHandle,
        report: SyncReport,
        remote: Optional[str],
        cancel_policy: CancelPolicy,
    ) -> None:
        branch = git_ops.current_branch(repo)
        if branch is None:
            log_debug(f"[SYNC] Detached HEAD in {handle.path}; skipping freshness check")
            return
        if git_ops.head_sha(repo) is None:
            log_debug(f"[SYNC] {branch} has no commits in {handle.path}; skipping freshness check")
            return

        upstream = git_ops.upstream_ref(repo)
        if upstream is not None:
            pull_remote, pull_branch = upstream
        elif remote is not None:
            pull_remote, pull_branch = remote, branch
        else:
            log_debug(f"[SYNC] No remote for {branch} in {handle.path}; skipping freshness check")
            return
        remote_ref = f"{pull_remote}/{pull_branch}"
        if not git_ops.ref_exists(repo, remote_ref):
            log_debug(f"[SYNC] {remote_ref} not found; skipping freshness check")
            return

        with timeit("sync.freshness", repo=handle.full_name, ref=remote_ref) as info:
            local_count = git_ops.rev_count(repo, "HEAD")
            remote_count = git_ops.rev_count(repo, remote_ref)
            info["local"] = local_count
            info["remote"] = remote_count
            if local_count > remote_count:
                report.ahead = local_count - remote_count
            if remote_count <= local_count:
                return

            report.behind = remote_count - local_count
            choice = self.interaction.prompt_choice(
                f"The local {branch} branch is {report.behind} commits behind {remote_ref}. "
                "Would you like to pull the latest changes?",
                [SyncDecision.CONTINUE, SyncDecision.PULL_REBASE],
            )
            info["decision"] = repr(choice) if choice is CANCELLED else choice.value
            if choice is CANCELLED:
                if cancel_policy is CancelPolicy.ABORT:
                    raise CancellationError(
                        "Sync cancelled: local branch is behind the remote"
                        + self._stash_suffix(report)
                    )
                return
            if choice is not SyncDecision.PULL_REBASE:
                return

        self._rebase_stage(repo, handle, report, pull_remote, pull_branch)

    def _rebase_stage(
        self,
        repo: Repo,
        handle: RepositoryHandle,
        report: SyncReport,
        remote: str,
        branch: str,
    ) -> None:
        self.interaction.notify("Pulling latest changes with rebase...")
        with timeit("sync.pull_rebase", repo=handle.full_name, remote=remote, branch=branch):
            try:
                git_ops.pull_rebase(repo, remote, branch, timeout=self.timeout)
            except (GitCommandError, GitTimeoutError) as e:
                raise SyncError(
                    f"Failed to pull with rebase from {remote}/{branch}: {_git_detail(e)}",
                    guidance=self._rebase_guidance(repo, handle, report),
                ) from e
        report.pulled = True
        report.actions.append("pull_rebase")
        self.interaction.notify("Successfully pulled latest changes")

    def _rebase_guidance(self, repo: Repo, handle: RepositoryHandle, report: SyncReport) -> str:
        if git_ops.is_rebase_in_progress(repo) or git_ops.has_conflicts(repo):
            lines = [
                f"Resolve the conflicts in {handle.path}, then run 'git rebase --continue' "
                "(or 'git rebase --abort' to return to where you started)."
            ]
        else:
            lines = [f"Commit or stash the changes in {handle.path} and pull again."]
        stash = self._stash_guidance(report)
        if stash:
            lines.append(stash)
        return "\n".join(lines)

    # -- stage 6 -------------------------------------------------------------

    def _reapply_stage(self, repo: Repo, handle: RepositoryHandle, report: SyncReport) -> None:
        message = report.stash_ref
        with timeit("sync.stash_reapply", repo=handle.full_name, stash=message) as info:
            choice = self.interaction.prompt_choice(
                f"Your changes were stashed as '{message}'. Reapply them now?",
                [SyncDecision.REAPPLY_STASH, SyncDecision.KEEP_STASHED],
            )
            info["decision"] = repr(choice) if choice is CANCELLED else choice.value
            if choice is not SyncDecision.REAPPLY_STASH:
                self.interaction.notify(
                    f"Your changes remain in stash '{message}'. Restore them with 'git stash pop'."
                )
                return

            ref = git_ops.find_stash(repo, message)
            if ref is None:
                report.stash_conflict = True
                self.interaction.notify(
                    f"Could not find stash '{message}'; check 'git stash list'.",
                    Severity.WARNING,
                )
                return
            try:
                git_ops.stash_pop(repo, ref)
            except GitCommandError as e:
                report.stash_conflict = True
                info["conflict"] = True
                self.interaction.notify(
                    f"Reapplying stash '{message}' caused conflicts: {_git_detail(e)}\n"
                    f"Resolve them in {handle.path}. The stash entry was kept; "
                    "drop it with 'git stash drop' once you are done.",
                    Severity.WARNING,
                )
                return
            report.stash_reapplied = True
            report.actions.append("stash_pop")

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _stash_guidance(report: SyncReport) -> Optional[str]:
        if report.stash_ref is None:
            return None
        return (
            f"Your uncommitted changes are saved in stash '{report.stash_ref}'; "
            "restore them with 'git stash pop' when you are done."
        )

    @staticmethod
    def _stash_suffix(report: SyncReport) -> str:
        if report.stash_ref is None:
            return ""
        return f". Your changes remain in stash '{report.stash_ref}'"
