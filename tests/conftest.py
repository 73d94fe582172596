from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.ghlink/logs
    os.environ.setdefault("GHLINK_LOG_DISABLE_FILE", "1")


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path, monkeypatch):
    """Give every test its own lock dir and a git identity for commits, stashes and rebases."""
    monkeypatch.setenv("GHLINK_LOCK_DIR", str(tmp_path / "locks"))
    monkeypatch.setenv("GHLINK_LOCK_POLL", "0.01")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "ghlink tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@ghlink.invalid")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "ghlink tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@ghlink.invalid")
    for key in list(os.environ):
        if key.startswith("GHLINK_") and key not in (
            "GHLINK_LOCK_DIR",
            "GHLINK_LOCK_POLL",
            "GHLINK_LOG_DISABLE_FILE",
        ):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def scripted():
    from ghlink.testing import ScriptedInteraction

    return ScriptedInteraction()


@pytest.fixture
def sandbox(tmp_path):
    from ghlink.testing import GitSandbox

    return GitSandbox(tmp_path).create()
