"""Find the GitHub remote of a local repository and extract owner/repo.

Recognised remote URL forms::

    https://github.com/owner/repo(.git)
    git@github.com:owner/repo(.git)
    git@github.com:/owner/repo(.git)
    ssh://git@github.com/owner/repo(.git)

Patterns are anchored at both ends so nested paths such as
``https://github.com/owner/repo/extra`` never match. Another host (GitHub
Enterprise) replaces ``github.com`` in every form.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Optional, Tuple

from git.exc import GitCommandError

from .link_spec import GITHUB_HOST
from .observability import log_debug

if TYPE_CHECKING:
    from .repo_store import RepositoryHandle


@lru_cache(maxsize=8)
def _remote_patterns(host: str) -> Tuple["re.Pattern[str]", ...]:
    h = re.escape(host)
    tail = r"(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+?)(?:\.git)?/?$"
    return (
        re.compile(r"^https://" + h + r"/" + tail),
        re.compile(r"^git@" + h + r":/?" + tail),
        re.compile(r"^ssh://git@" + h + r"/" + tail),
    )


@dataclass(frozen=True)
class RemoteIdentity:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_remote_url(url: Optional[str], host: str = GITHUB_HOST) -> Optional[RemoteIdentity]:
    """Extract owner/repo from a remote URL on ``host``, or None for anything else."""
    if not url:
        return None
    url = url.strip()
    for pattern in _remote_patterns(host):
        match = pattern.match(url)
        if match:
            return RemoteIdentity(owner=match.group("owner"), repo=match.group("repo"))
    return None


def _remote_urls(remote) -> list[str]:
    try:
        return list(remote.urls)
    except GitCommandError as e:
        log_debug(f"[REMOTE] Could not read urls for {remote.name}: {e}")
        return []


def resolve_github_remote(
    handle: "RepositoryHandle",
    *,
    host: str = GITHUB_HOST,
    preferred: str = "origin",
) -> Tuple[Optional[RemoteIdentity], Optional[str]]:
    """Pick the most likely GitHub remote of ``handle``.

    ``preferred`` wins when its URL points at ``host``; otherwise the
    remaining remotes are scanned in the order git lists them.

    Returns:
        (identity, remote_name), or (None, None) when no remote matches
    """
    repo = handle.open()
    remotes = list(repo.remotes)
    ordered = [r for r in remotes if r.name == preferred] + [
        r for r in remotes if r.name != preferred
    ]

    for remote in ordered:
        for url in _remote_urls(remote):
            identity = parse_remote_url(url, host)
            if identity is not None:
                log_debug(
                    f"[REMOTE] Resolved {identity.full_name} via {remote.name}",
                    url=url,
                )
                return identity, remote.name

    log_debug(f"[REMOTE] No GitHub remote among {[r.name for r in remotes]}")
    return None, None
