from __future__ import annotations

import threading

import pytest
from git import Repo

from ghlink.config_schema import GhlinkConfig
from ghlink.errors import AcquisitionError, GitTimeoutError
from ghlink.git_ops import current_branch
from ghlink.repo_store import RepositoryHandle, RepositoryStore
from ghlink.testing import GitSandbox


def make_store(sandbox: GitSandbox, interaction, **kwargs) -> RepositoryStore:
    return RepositoryStore(
        sandbox.repos_root,
        interaction,
        clone_pattern=sandbox.clone_pattern,
        **kwargs,
    )


def test_path_for_layout(tmp_path, scripted):
    store = RepositoryStore(tmp_path / "repos", scripted)
    assert store.path_for("octo", "widgets") == tmp_path / "repos" / "octo" / "widgets"


@pytest.mark.parametrize("owner,repo", [("", "r"), ("o", ""), ("..", "r"), ("o", "a/b"), (".", "r")])
def test_path_for_rejects_unsafe_names(tmp_path, scripted, owner, repo):
    store = RepositoryStore(tmp_path / "repos", scripted)
    with pytest.raises(ValueError):
        store.path_for(owner, repo)


def test_clone_url_from_pattern(tmp_path, scripted):
    store = RepositoryStore(tmp_path, scripted)
    assert store.clone_url("octo", "widgets") == "https://github.com/octo/widgets.git"


def test_from_config_uses_git_section(tmp_path, scripted):
    config = GhlinkConfig.model_validate(
        {
            "repos_root": str(tmp_path / "repos"),
            "git": {
                "host": "ghe.example.com",
                "clone_pattern": "git@{host}:{owner}/{repo}.git",
                "default_remote": "upstream",
            },
        }
    )
    store = RepositoryStore.from_config(config, scripted)
    assert store.clone_url("octo", "widgets") == "git@ghe.example.com:octo/widgets.git"
    assert store.remote == "upstream"
    assert store.repos_root == tmp_path / "repos"


def test_ensure_clones_under_configured_remote(sandbox, scripted):
    sandbox.push_branch("dev", {"dev.txt": "dev\n"})
    store = make_store(sandbox, scripted, remote="upstream")

    handle = store.ensure("octo", "widgets", "dev")

    repo = handle.open()
    assert [r.name for r in repo.remotes] == ["upstream"]
    assert current_branch(repo) == "dev"
    assert repo.active_branch.tracking_branch().name == "upstream/dev"


def test_ensure_clones_when_absent(sandbox, scripted):
    store = make_store(sandbox, scripted)
    assert not store.exists("octo", "widgets")

    handle = store.ensure("octo", "widgets")

    assert handle == RepositoryHandle(path=sandbox.local_path(), owner="octo", repo="widgets")
    assert (handle.path / "README.md").exists()
    assert store.exists("octo", "widgets")
    assert scripted.messages() == ["Cloning octo/widgets...", "Cloned octo/widgets"]


def test_ensure_reuses_existing_clone(sandbox, scripted):
    sandbox.clone_into_repos_root()
    marker = sandbox.local_path() / "untracked.txt"
    marker.write_text("keep me\n")
    store = make_store(sandbox, scripted)

    handle = store.ensure("octo", "widgets")

    assert handle.path == sandbox.local_path()
    assert marker.exists()
    assert scripted.notifications == []


def test_ensure_reclones_invalid_directory(sandbox, scripted):
    broken = sandbox.local_path()
    broken.mkdir(parents=True)
    (broken / "junk.txt").write_text("not a repo\n")
    store = make_store(sandbox, scripted)

    handle = store.ensure("octo", "widgets")

    assert not (handle.path / "junk.txt").exists()
    assert (handle.path / "README.md").exists()


def test_ensure_checks_out_requested_branch(sandbox, scripted):
    sandbox.push_branch("dev", {"dev.txt": "dev\n"})
    store = make_store(sandbox, scripted)

    handle = store.ensure("octo", "widgets", "dev")

    repo = handle.open()
    assert current_branch(repo) == "dev"
    assert repo.active_branch.tracking_branch().name == "origin/dev"
    assert (handle.path / "dev.txt").exists()


def test_ensure_missing_branch_raises(sandbox, scripted):
    store = make_store(sandbox, scripted)
    with pytest.raises(AcquisitionError, match="nope"):
        store.ensure("octo", "widgets", "nope")


def test_clone_failure_cleans_up(tmp_path, scripted):
    store = RepositoryStore(
        tmp_path / "repos",
        scripted,
        clone_pattern=(tmp_path / "missing").as_posix() + "/{owner}/{repo}.git",
    )
    with pytest.raises(AcquisitionError, match="octo/widgets"):
        store.ensure("octo", "widgets")
    assert not (tmp_path / "repos" / "octo" / "widgets").exists()


def test_clone_timeout_cleans_up(sandbox, scripted, monkeypatch):
    from ghlink import git_ops

    def slow_clone(url, path, *, timeout=None, remote="origin"):
        path.mkdir(parents=True)
        raise GitTimeoutError(f"git clone {url} timed out after {timeout:.0f}s")

    monkeypatch.setattr(git_ops, "clone", slow_clone)
    store = make_store(sandbox, scripted, timeout=1)
    with pytest.raises(GitTimeoutError):
        store.ensure("octo", "widgets")
    assert not sandbox.local_path().exists()


def test_concurrent_ensure_clones_once(sandbox, scripted, monkeypatch):
    from ghlink import git_ops

    calls = []
    original_clone = git_ops.clone

    def counting_clone(url, path, *, timeout=None, remote="origin"):
        calls.append(url)
        return original_clone(url, path, timeout=timeout, remote=remote)

    monkeypatch.setattr(git_ops, "clone", counting_clone)
    store = make_store(sandbox, scripted)
    errors = []

    def worker():
        try:
            store.ensure("octo", "widgets")
        except Exception as e:  # pragma: no cover - surfaced via assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(calls) == 1
    assert Repo(sandbox.local_path()).head.commit is not None
