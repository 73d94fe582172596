"""Testing utilities: scripted prompts and throwaway git remotes.

Usage:
    from ghlink.testing import ScriptedInteraction, GitSandbox

    ui = ScriptedInteraction(choices=[SyncDecision.PULL_REBASE])
    sandbox = GitSandbox(tmp_path).create()
    sandbox.push_commits(3)
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from git import Actor, Repo

from .interaction import CANCELLED, ChoiceResult, Severity, SyncDecision, TextResult

TEST_AUTHOR = Actor("ghlink tests", "tests@ghlink.invalid")


class ScriptedInteraction:
    """UserInteraction that replays queued answers and records every call.

    ``choices`` answers ``prompt_choice`` in order and ``texts`` answers
    ``prompt_text``; either may contain ``CANCELLED``. A prompt with no
    queued answer fails the test.
    """

    def __init__(
        self,
        choices: Iterable[ChoiceResult] = (),
        texts: Iterable[TextResult] = (),
    ):
        self._choices: List[ChoiceResult] = list(choices)
        self._texts: List[TextResult] = list(texts)
        self.prompts: List[Tuple[str, List[SyncDecision]]] = []
        self.text_prompts: List[Tuple[str, str]] = []
        self.notifications: List[Tuple[str, Severity]] = []

    def prompt_choice(self, message, options):
        self.prompts.append((message, list(options)))
        if not self._choices:
            raise AssertionError(f"Unexpected prompt: {message!r}")
        answer = self._choices.pop(0)
        if answer is not CANCELLED and answer not in options:
            raise AssertionError(f"Scripted answer {answer!r} is not among {list(options)!r}")
        return answer

    def prompt_text(self, message, placeholder=""):
        self.text_prompts.append((message, placeholder))
        if not self._texts:
            raise AssertionError(f"Unexpected text prompt: {message!r}")
        return self._texts.pop(0)

    def notify(self, message, severity=Severity.INFO):
        self.notifications.append((message, severity))

    def queue_choice(self, *answers: ChoiceResult) -> None:
        self._choices.extend(answers)

    def queue_text(self, *answers: TextResult) -> None:
        self._texts.extend(answers)

    @property
    def pending(self) -> int:
        """Answers queued but never consumed."""
        return len(self._choices) + len(self._texts)

    def messages(self, severity: Optional[Severity] = None) -> List[str]:
        return [m for m, s in self.notifications if severity is None or s is severity]


def commit_file(repo: Repo, relative: str, content: str, message: Optional[str] = None) -> str:
    """Write ``relative`` in ``repo``'s working tree and commit it. Returns the sha."""
    path = Path(repo.working_tree_dir) / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    repo.index.add([relative])
    commit = repo.index.commit(
        message or f"update {relative}", author=TEST_AUTHOR, committer=TEST_AUTHOR
    )
    return commit.hexsha


def configure_identity(repo: Repo) -> None:
    with repo.config_writer() as cw:
        cw.set_value("user", "name", TEST_AUTHOR.name)
        cw.set_value("user", "email", TEST_AUTHOR.email)


class GitSandbox:
    """A bare "GitHub" remote plus an upstream working copy that pushes to it.

    ``clone_pattern`` points a RepositoryStore at the bare remotes, so
    ``owner/repo`` resolves to ``<root>/remotes/owner/repo.git``.
    """

    def __init__(
        self,
        root: Path,
        owner: str = "octo",
        repo: str = "widgets",
        default_branch: str = "main",
    ):
        self.root = Path(root)
        self.owner = owner
        self.repo = repo
        self.default_branch = default_branch
        self.remotes_dir = self.root / "remotes"
        self.bare_path = self.remotes_dir / owner / f"{repo}.git"
        self.upstream_path = self.root / "upstream" / owner / repo
        self.repos_root = self.root / "repos"
        self._upstream: Optional[Repo] = None

    @property
    def clone_pattern(self) -> str:
        return self.remotes_dir.as_posix() + "/{owner}/{repo}.git"

    @property
    def url(self) -> str:
        return self.bare_path.as_posix()

    @property
    def upstream(self) -> Repo:
        if self._upstream is None:
            raise RuntimeError("call create() first")
        return self._upstream

    def create(self, files: Optional[Dict[str, str]] = None) -> "GitSandbox":
        """Initialise the bare remote and push an initial commit on the default branch."""
        files = files or {
            "README.md": "# widgets\n",
            "src/app.py": "".join(f"line {n}\n" for n in range(1, 31)),
        }
        self.bare_path.mkdir(parents=True, exist_ok=True)
        bare = Repo.init(self.bare_path, bare=True)
        bare.git.symbolic_ref("HEAD", f"refs/heads/{self.default_branch}")

        self.upstream_path.mkdir(parents=True, exist_ok=True)
        upstream = Repo.init(self.upstream_path)
        configure_identity(upstream)
        for relative, content in files.items():
            commit_file(upstream, relative, content, message=f"add {relative}")
        upstream.git.branch("-M", self.default_branch)
        upstream.create_remote("origin", self.url)
        upstream.git.push("-u", "origin", self.default_branch)
        self._upstream = upstream
        return self

    def push_commits(self, count: int, branch: Optional[str] = None, filename: str = "CHANGES.md") -> List[str]:
        """Push ``count`` new commits to ``branch`` on the remote."""
        branch = branch or self.default_branch
        upstream = self.upstream
        upstream.git.checkout(branch)
        shas = []
        path = Path(upstream.working_tree_dir) / filename
        for n in range(count):
            existing = path.read_text(encoding="utf-8") if path.exists() else ""
            shas.append(commit_file(upstream, filename, existing + f"change {n}\n"))
        upstream.git.push("origin", branch)
        return shas

    def push_branch(self, branch: str, files: Optional[Dict[str, str]] = None) -> str:
        """Create ``branch`` from the default branch, commit ``files`` and push it."""
        upstream = self.upstream
        upstream.git.checkout(self.default_branch)
        upstream.git.checkout("-b", branch)
        sha = upstream.head.commit.hexsha
        for relative, content in (files or {f"{branch}.txt": f"{branch}\n"}).items():
            sha = commit_file(upstream, relative, content)
        upstream.git.push("origin", branch)
        upstream.git.checkout(self.default_branch)
        return sha

    def clone_to(self, path: Path) -> Repo:
        """Clone the remote into ``path`` with a test identity configured."""
        repo = Repo.clone_from(self.url, path)
        configure_identity(repo)
        return repo

    def local_path(self) -> Path:
        return self.repos_root / self.owner / self.repo

    def clone_into_repos_root(self) -> Repo:
        """Pre-populate ``<repos_root>/<owner>/<repo>`` as if ghlink had cloned it."""
        return self.clone_to(self.local_path())

