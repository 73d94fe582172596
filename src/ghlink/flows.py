"""Open-link and generate-link orchestration.

These are the only entry points a front end needs: they wire the parser,
repository store, remote resolver and sync engine together and report the
outcome through the injected ``UserInteraction``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from git import Repo
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from . import git_ops
from .config_schema import GhlinkConfig
from .errors import ParseError, RemoteResolutionError, SyncError
from .interaction import UserInteraction
from .link_spec import LinkSpec, format_link, parse_link
from .observability import timeit
from .remote_resolver import resolve_github_remote
from .repo_store import RepositoryHandle, RepositoryStore
from .sync_engine import CancelPolicy, SyncEngine, SyncReport

Selection = Tuple[int, Optional[int]]


@dataclass
class OpenedLocation:
    """Result of ``open_link``: where the linked file lives on disk."""

    spec: LinkSpec
    handle: RepositoryHandle
    path: Path
    start_line: Optional[int]
    end_line: Optional[int]
    report: SyncReport

    def read_excerpt(self) -> str:
        """Return the linked line range, or an empty string when there is none."""
        if self.start_line is None or not self.path.is_file():
            return ""
        end = self.end_line or self.start_line
        lines = self.path.read_text(encoding="utf-8", errors="replace").splitlines()
        return "\n".join(lines[self.start_line - 1:end])


def find_repository_root(path: Union[str, Path]) -> Optional[Path]:
    """Return the working tree root containing ``path``, or None."""
    path = Path(path).expanduser()
    start = path if path.is_dir() else path.parent
    if not start.exists():
        return None
    try:
        repo = Repo(start, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None
    if repo.bare or not repo.working_tree_dir:
        return None
    return Path(repo.working_tree_dir).resolve()


def _resolve_inside(root: Path, relative: str) -> Optional[Path]:
    target = (root / relative).resolve() if relative else root.resolve()
    try:
        target.relative_to(root.resolve())
    except ValueError:
        return None
    return target


def open_link(
    url: str,
    *,
    config: GhlinkConfig,
    interaction: UserInteraction,
    store: Optional[RepositoryStore] = None,
    engine: Optional[SyncEngine] = None,
) -> OpenedLocation:
    """Check out the file a GitHub URL points at.

    Raises:
        ParseError: ``url`` is not a GitHub source link
        AcquisitionError: the repository could not be cloned
        SyncError: reconciliation failed or the file is absent on the branch
        CancellationError: the user backed out of a required decision
    """
    spec = parse_link(url, default_branch=config.default_branch, host=config.git.host)
    if spec is None:
        raise ParseError(url)

    store = store or RepositoryStore.from_config(config, interaction)
    engine = engine or SyncEngine.from_config(config, interaction)

    with timeit("flow.open", repo=spec.full_name, branch=spec.branch):
        handle = store.ensure(spec.owner, spec.repo, spec.branch)
        report = engine.sync(
            handle,
            spec.branch,
            cancel_policy=CancelPolicy.CONTINUE,
        )
        target = _resolve_inside(handle.path, spec.file_path)
        if target is None:
            raise ParseError(url, f"Path escapes the repository: {spec.file_path}")
        if not target.exists():
            raise SyncError(
                f"'{spec.file_path}' does not exist on {spec.branch} in {spec.full_name}"
            )

    interaction.notify(f"Opened {spec.full_name} at {spec.file_path or '.'}")
    return OpenedLocation(
        spec=spec,
        handle=handle,
        path=target,
        start_line=spec.start_line,
        end_line=spec.end_line,
        report=report,
    )


def generate_link(
    file_path: Union[str, Path],
    *,
    selection: Optional[Selection] = None,
    config: GhlinkConfig,
    interaction: UserInteraction,
    engine: Optional[SyncEngine] = None,
) -> str:
    """Build the GitHub URL for a local file and optional 1-based line selection.

    The repository is synced first (dirty tree and freshness prompts, with a
    dismissed freshness prompt aborting) so that the link reflects what is
    on the remote.

    Raises:
        RemoteResolutionError: no enclosing repository, no GitHub remote, or the
            file resolves (through a symlink) outside the repository
        CancellationError: the user backed out of a required decision
        SyncError: commit or rebase failed
    """
    path = Path(os.path.abspath(Path(file_path).expanduser()))
    root = find_repository_root(path)
    if root is None:
        raise RemoteResolutionError(
            f"{path} is not in a Git repository. Please ensure you are working within a git repository."
        )

    identity, remote_name = resolve_github_remote(
        RepositoryHandle(path=root), host=config.git.host, preferred=config.git.default_remote
    )
    if identity is None:
        raise RemoteResolutionError(
            "No GitHub remote found. Please ensure the repository has a remote pointing to GitHub."
        )
    handle = RepositoryHandle(path=root, owner=identity.owner, repo=identity.repo)
    engine = engine or SyncEngine.from_config(config, interaction)

    with timeit("flow.generate", repo=identity.full_name):
        engine.sync(
            handle,
            None,
            remote_name=remote_name,
            cancel_policy=CancelPolicy.ABORT,
            allow_dirty=True,
        )

        repo = handle.open()
        ref = git_ops.current_branch(repo) or git_ops.head_sha(repo)
        if ref is None:
            raise SyncError(f"{identity.full_name} has no commits yet")

        resolved = path.resolve()
        try:
            relative = resolved.relative_to(root).as_posix() if resolved != root else ""
        except ValueError:
            raise RemoteResolutionError(
                f"{path} resolves to {resolved}, outside the repository at {root}"
            )
        start, end = selection if selection else (None, None)
        spec = LinkSpec(owner=identity.owner, repo=identity.repo, branch=ref, file_path=relative)
        link = format_link(
            spec, start, end, default_branch=config.default_branch, host=config.git.host
        )

    interaction.notify(f"GitHub link: {link}")
    return link
