"""Forge records and sync results.

The forge records are pydantic models so the same classes parse webhook
payloads and REST responses. Unknown fields are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# Per-branch status sentinels
BRANCH_EXISTS = "sync operation will be performed"
BRANCH_NOT_FOUND = "branch not found, ignored"
CREATED_PR = "Create sync PR"
SYNC_FAILED = "Sync failed"


class PullRequestState(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"
    PROGRESSING = "progressing"
    REJECTED = "rejected"


class _ForgeModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class User(_ForgeModel):
    # Webhooks send "username", the REST API sends "login"
    login: str = Field(default="", validation_alias=AliasChoices("login", "username"))
    name: str = ""
    email: Optional[str] = ""
    html_url: str = ""
    id: int = 0


class Repository(_ForgeModel):
    namespace: str = ""
    path: str = ""
    name: str = ""
    full_name: str = ""
    html_url: str = ""
    default_branch: str = ""
    owner: User = Field(default_factory=User)

    @property
    def owner_login(self) -> str:
        if self.namespace:
            return self.namespace
        if self.full_name and "/" in self.full_name:
            return self.full_name.split("/", 1)[0]
        return self.owner.login

    @property
    def repo_path(self) -> str:
        return self.path or self.name


class Branch(_ForgeModel):
    name: str
    protected: bool = False


class Comment(_ForgeModel):
    id: int = 0
    body: str = ""
    html_url: str = ""
    user: User = Field(default_factory=User)
    created_at: Optional[datetime] = None


class PullRequestBranch(_ForgeModel):
    label: str = ""
    ref: str = ""
    sha: str = ""
    user: User = Field(default_factory=User)
    repo: Optional[Repository] = None


class PullRequest(_ForgeModel):
    number: int
    title: str = ""
    body: Optional[str] = ""
    html_url: str = ""
    state: str = PullRequestState.OPEN.value
    merged: bool = False
    mergeable: bool = True
    head: PullRequestBranch = Field(default_factory=PullRequestBranch)
    base: PullRequestBranch = Field(default_factory=PullRequestBranch)
    user: User = Field(default_factory=User)

    @property
    def is_open(self) -> bool:
        return self.state == PullRequestState.OPEN.value

    @property
    def is_merged(self) -> bool:
        return self.merged or self.state == PullRequestState.MERGED.value


class GitUser(_ForgeModel):
    name: str = ""
    email: str = ""
    date: Optional[datetime] = None


class GitCommit(_ForgeModel):
    author: GitUser = Field(default_factory=GitUser)
    committer: GitUser = Field(default_factory=GitUser)
    message: str = ""


class PullRequestCommit(_ForgeModel):
    sha: str
    html_url: str = ""
    commit: GitCommit = Field(default_factory=GitCommit)


class Issue(_ForgeModel):
    # Gitee issue numbers are identifiers such as "I1ABCD"
    number: str = ""
    title: str = ""
    html_url: str = ""
    state: str = ""


@dataclass
class BranchStatus:
    """Existence check for one branch named in a /sync command."""

    name: str
    status: str


@dataclass
class SyncOutcome:
    """Result of syncing one requested branch."""

    name: str
    status: str
    pr_url: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == CREATED_PR


def commit_range(commits: List[PullRequestCommit]) -> tuple[str, str]:
    """Return (first, last) SHAs of a PR's commits, oldest first.

    The forge lists a pull request's commits newest first.
    """
    if not commits:
        raise ValueError("pull request has no commits")
    return commits[-1].sha, commits[0].sha
