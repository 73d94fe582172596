"""User-interaction boundary for the sync engine and flows.

The engine never talks to a terminal or editor directly. It asks an
injected ``UserInteraction`` for decisions and text, and reports progress
through ``notify``. ``CANCELLED`` is a first-class answer that is never
equal to any ``SyncDecision``.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Optional, Protocol, Sequence, TextIO, Union, runtime_checkable


class SyncDecision(str, Enum):
    """Choices a user can make at a sync branch point."""

    CONTINUE = "continue"
    ABORT = "abort"
    STASH_AND_SWITCH = "stash_and_switch"
    COMMIT_AND_SWITCH = "commit_and_switch"
    PULL_REBASE = "pull_rebase"
    KEEP_STASHED = "keep_stashed"
    REAPPLY_STASH = "reapply_stash"

    @property
    def label(self) -> str:
        return DECISION_LABELS[self]


DECISION_LABELS = {
    SyncDecision.CONTINUE: "Continue Anyway",
    SyncDecision.ABORT: "Abort",
    SyncDecision.STASH_AND_SWITCH: "Stash and Switch",
    SyncDecision.COMMIT_AND_SWITCH: "Commit and Switch",
    SyncDecision.PULL_REBASE: "Pull with Rebase",
    SyncDecision.KEEP_STASHED: "Keep Stashed",
    SyncDecision.REAPPLY_STASH: "Reapply Stash",
}


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class _Cancelled:
    """Sentinel for a dismissed prompt."""

    _instance: Optional["_Cancelled"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CANCELLED"

    def __bool__(self) -> bool:
        return False


CANCELLED = _Cancelled()

ChoiceResult = Union[SyncDecision, _Cancelled]
TextResult = Union[str, _Cancelled]


@runtime_checkable
class UserInteraction(Protocol):
    """What the core needs from whatever front end is driving it."""

    def prompt_choice(self, message: str, options: Sequence[SyncDecision]) -> ChoiceResult:
        ...

    def prompt_text(self, message: str, placeholder: str = "") -> TextResult:
        ...

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        ...


class ConsoleInteraction:
    """Terminal implementation: numbered menus on stdin, notices on stderr.

    An empty answer or EOF counts as cancelling the prompt.
    """

    _PREFIX = {
        Severity.INFO: "",
        Severity.WARNING: "warning: ",
        Severity.ERROR: "error: ",
    }

    def __init__(
        self,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr

    def _readline(self, prompt: str) -> Optional[str]:
        self._stdout.write(prompt)
        self._stdout.flush()
        line = self._stdin.readline()
        if not line:
            return None
        return line.strip()

    def prompt_choice(self, message: str, options: Sequence[SyncDecision]) -> ChoiceResult:
        self._stdout.write(f"{message}\n")
        for index, option in enumerate(options, start=1):
            self._stdout.write(f"  [{index}] {option.label}\n")
        while True:
            answer = self._readline("Choose an option (empty to cancel): ")
            if not answer:
                return CANCELLED
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return options[int(answer) - 1]
            lowered = answer.lower()
            for option in options:
                if lowered in (option.value, option.label.lower()):
                    return option
            self._stdout.write(f"Please enter a number between 1 and {len(options)}.\n")

    def prompt_text(self, message: str, placeholder: str = "") -> TextResult:
        hint = f" [{placeholder}]" if placeholder else ""
        answer = self._readline(f"{message}{hint}: ")
        if answer is None:
            return CANCELLED
        return answer

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self._stderr.write(f"{self._PREFIX[severity]}{message}\n")
        self._stderr.flush()
