from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.sync-bot/logs
    os.environ.setdefault("SYNCBOT_LOG_DISABLE_FILE", "1")


# ---------------------------------------------------------------------------
# Local git remotes
# ---------------------------------------------------------------------------


class SeededRemote:
    """A bare repository at ``<root>/remote/<owner>/<repo>.git`` plus a seed
    working copy used to add commits, branches and pull request refs."""

    def __init__(self, root: Path, owner: str, repo: str):
        from git import Repo

        self.owner = owner
        self.repo = repo
        self.bare_path = root / "remote" / owner / f"{repo}.git"
        self.bare_path.mkdir(parents=True, exist_ok=True)
        self.bare = Repo.init(self.bare_path, bare=True)
        self.bare.git.symbolic_ref("HEAD", "refs/heads/master")

        self.work_path = root / "seed" / owner / repo
        self.work_path.mkdir(parents=True, exist_ok=True)
        self.work = Repo.init(self.work_path)
        with self.work.config_writer() as cw:
            cw.set_value("user", "name", "Seed")
            cw.set_value("user", "email", "seed@example.com")
        self.work.create_remote("origin", self.bare_path.as_posix())

        self.commit("README.md", "seed\n", "seed")
        self.work.git.branch("-M", "master")
        self.work.git.push("origin", "master:master")

    def commit(self, path: str, content: str, message: str) -> str:
        target = self.work_path / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        self.work.git.add(path)
        self.work.git.commit("-m", message)
        return self.work.head.commit.hexsha

    def remove(self, path: str, message: str) -> str:
        self.work.git.rm(path)
        self.work.git.commit("-m", message)
        return self.work.head.commit.hexsha

    def branch(self, name: str, start: str = "master") -> None:
        """Create ``name`` at ``start`` and publish it."""
        self.work.git.branch(name, start)
        self.work.git.push("origin", f"{name}:{name}")

    def on_branch(self, name: str) -> None:
        self.work.git.checkout(name)

    def publish(self, name: str) -> None:
        self.work.git.push("origin", f"{name}:{name}")

    def pull_request(
        self,
        number: int,
        base: str,
        changes: Sequence[Tuple[str, str]],
        source: str = "feature",
    ) -> List[str]:
        """Commit ``changes`` on ``source`` (cut from ``base``) and publish
        them as ``refs/pull/<number>/head``. Returns SHAs oldest first."""
        self.work.git.checkout("-B", source, base)
        shas = [self.commit(path, content, f"change {path}") for path, content in changes]
        self.work.git.push("--force", "origin", f"{source}:{source}")
        self.work.git.push("--force", "origin", f"{source}:refs/pull/{number}/head")
        self.work.git.checkout("master")
        return shas

    def remote_sha(self, branch: str) -> Optional[str]:
        try:
            return self.bare.git.rev_parse(f"refs/heads/{branch}")
        except Exception:
            return None

    def remote_file(self, branch: str, path: str) -> str:
        return self.bare.git.show(f"{branch}:{path}")

    @property
    def base_url(self) -> str:
        return self.bare_path.parent.parent.as_posix()


@pytest.fixture
def make_remote(tmp_path):
    def _make(owner: str = "openeuler", repo: str = "demo") -> SeededRemote:
        return SeededRemote(tmp_path, owner, repo)

    return _make


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def git_client(tmp_path, sleeps):
    from sync_bot_hook.git_client import GitClient

    return GitClient(
        tmp_path / "cache",
        (tmp_path / "remote").as_posix(),
        attempts=3,
        initial_backoff=1.0,
        author_name="sync-bot",
        author_email="sync-bot@example.com",
        sleep=sleeps.append,
    )


# ---------------------------------------------------------------------------
# Forge fake
# ---------------------------------------------------------------------------


class FakeForge:
    """In-memory forge recording every write."""

    def __init__(self, host: str = "gitee.com"):
        self.host = host
        self.branches: Dict[str, List] = {}
        self.commits: Dict[int, List] = {}
        self.issues: Dict[int, List] = {}
        self.comments: Dict[int, List] = {}
        self.posted: List[Tuple[str, str, int, str]] = []
        self.created_branches: List[Tuple[str, str, str, str]] = []
        self.pull_requests: List[Dict[str, object]] = []
        self.closed: List[Tuple[str, str, int]] = []
        self.create_pr_failures = 0
        self.create_branch_error: Optional[Exception] = None
        self._next_number = 100

    def set_branches(self, owner: str, repo: str, names: Sequence[str], protected: Sequence[str] = ()) -> None:
        from sync_bot.models import Branch

        self.branches[f"{owner}/{repo}"] = [Branch(name=n, protected=n in protected) for n in names]

    def set_commits(self, number: int, shas_oldest_first: Sequence[str], message: str = "change") -> None:
        from sync_bot.models import PullRequestCommit

        self.commits[number] = [
            PullRequestCommit.model_validate(
                {
                    "sha": sha,
                    "html_url": f"https://{self.host}/commit/{sha}",
                    "commit": {"message": message, "author": {"date": "2024-01-02T03:04:05+08:00"}},
                }
            )
            for sha in reversed(list(shas_oldest_first))
        ]

    def add_comment(self, number: int, body: str, login: str = "alice") -> None:
        from sync_bot.models import Comment

        existing = self.comments.setdefault(number, [])
        existing.append(
            Comment.model_validate(
                {
                    "id": len(existing) + 1,
                    "body": body,
                    "html_url": f"https://{self.host}/comment/{len(existing) + 1}",
                    "user": {"login": login},
                }
            )
        )

    def bodies(self) -> List[str]:
        return [p[3] for p in self.posted]

    # ForgeClient

    def get_branches(self, owner, repo, only_protected=False):
        branches = self.branches.get(f"{owner}/{repo}", [])
        return [b for b in branches if b.protected or not only_protected]

    def get_branch(self, owner, repo, branch):
        from sync_bot_hook.forge import ForgeAPIError

        for b in self.branches.get(f"{owner}/{repo}", []):
            if b.name == branch:
                return b
        raise ForgeAPIError(f"branch {branch} not found", status_code=404)

    def create_branch(self, owner, repo, branch, ref):
        from sync_bot.models import Branch

        if self.create_branch_error is not None:
            raise self.create_branch_error
        self.created_branches.append((owner, repo, branch, ref))
        self.branches.setdefault(f"{owner}/{repo}", []).append(Branch(name=branch))

    def create_pull_request(self, owner, repo, title, body, head, base, prune_source_branch=True):
        from sync_bot_hook.forge import ForgeAPIError

        if self.create_pr_failures > 0:
            self.create_pr_failures -= 1
            raise ForgeAPIError("head branch is not visible yet", status_code=400)
        self._next_number += 1
        self.pull_requests.append(
            {
                "owner": owner,
                "repo": repo,
                "number": self._next_number,
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "prune_source_branch": prune_source_branch,
            }
        )
        return self._next_number

    def list_pull_request_comments(self, owner, repo, number):
        return list(self.comments.get(number, []))

    def create_comment(self, owner, repo, number, body):
        self.posted.append((owner, repo, number, body))

    def list_pull_request_commits(self, owner, repo, number):
        return list(self.commits.get(number, []))

    def list_pull_request_issues(self, owner, repo, number):
        return list(self.issues.get(number, []))

    def close_pull_request(self, owner, repo, number):
        self.closed.append((owner, repo, number))

    def get_text_file(self, owner, repo, path, ref):
        return ""

    def pull_request_url(self, owner, repo, number):
        return f"https://{self.host}/{owner}/{repo}/pulls/{number}"


@pytest.fixture
def forge() -> FakeForge:
    return FakeForge()


def make_pull_request(
    number: int = 1,
    title: str = "Fix the build",
    source: str = "feature",
    target: str = "master",
    head_sha: str = "0" * 40,
    state: str = "merged",
    mergeable: bool = True,
    body: str = "fixes things",
):
    from sync_bot.models import PullRequest

    return PullRequest.model_validate(
        {
            "number": number,
            "title": title,
            "body": body,
            "html_url": f"https://gitee.com/openeuler/demo/pulls/{number}",
            "state": state,
            "merged": state == "merged",
            "mergeable": mergeable,
            "head": {"ref": source, "sha": head_sha},
            "base": {"ref": target},
        }
    )


@pytest.fixture
def pull_request_factory():
    return make_pull_request
