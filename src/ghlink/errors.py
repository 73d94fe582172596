"""Exception hierarchy for ghlink.

Every error raised by the link, store and sync layers derives from
GhlinkError so the CLI can report failures once at the top level.
"""

from __future__ import annotations

from typing import Optional


class GhlinkError(Exception):
    """Base exception for ghlink operations."""
    pass


class ParseError(GhlinkError):
    """URL does not match the GitHub source-link grammar."""

    def __init__(self, url: str, message: Optional[str] = None):
        self.url = url
        super().__init__(message or f"Invalid GitHub URL format: {url}")


class AcquisitionError(GhlinkError):
    """Failed to clone or otherwise acquire a local repository."""
    pass


class SyncError(GhlinkError):
    """A checkout, rebase or stash operation failed during reconciliation.

    The repository is left in whatever state git left it; ``guidance``
    carries the manual steps the user should take.
    """

    def __init__(self, message: str, *, guidance: Optional[str] = None):
        self.guidance = guidance
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.guidance:
            return f"{base}\n{self.guidance}"
        return base


class CancellationError(GhlinkError):
    """The user declined or dismissed a required decision."""
    pass


class RemoteResolutionError(GhlinkError):
    """No repository or GitHub remote could be found for a local file."""
    pass


class GitTimeoutError(GhlinkError, TimeoutError):
    """A network git operation did not finish within the configured timeout."""
    pass


class LockTimeoutError(GitTimeoutError):
    """Another sync pass held the repository lock for too long."""
    pass
