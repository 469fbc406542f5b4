"""Webhook payloads delivered by the forge."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from sync_bot.models import Comment, PullRequest, Repository, User


# X-Gitee-Event header values
MERGE_REQUEST_HOOK = "Merge Request Hook"
NOTE_HOOK = "Note Hook"
PUSH_HOOK = "Push Hook"
TAG_PUSH_HOOK = "Tag Push Hook"
ISSUE_HOOK = "Issue Hook"

KNOWN_EVENT_TYPES = frozenset({MERGE_REQUEST_HOOK, NOTE_HOOK, PUSH_HOOK, TAG_PUSH_HOOK, ISSUE_HOOK})

# Pull request actions
ACTION_OPEN = "open"
ACTION_UPDATE = "update"
ACTION_MERGE = "merge"
ACTION_CLOSE = "close"
# Note actions
ACTION_COMMENT = "comment"

NOTEABLE_PULL_REQUEST = "PullRequest"


class _EventModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def owner(self) -> str:
        return self.repository.owner_login  # type: ignore[attr-defined]

    @property
    def repo(self) -> str:
        return self.repository.repo_path  # type: ignore[attr-defined]

    def log_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"owner": self.owner, "repo": self.repo}
        pr = getattr(self, "pull_request", None)
        if pr is not None:
            fields["number"] = pr.number
        return fields


class PullRequestEvent(_EventModel):
    """``Merge Request Hook`` payload."""

    action: str = ""
    pull_request: PullRequest
    repository: Repository = Field(default_factory=Repository)
    sender: User = Field(default_factory=User)


class NoteEvent(_EventModel):
    """``Note Hook`` payload for a comment."""

    action: str = ""
    noteable_type: str = ""
    comment: Comment = Field(default_factory=Comment)
    pull_request: Optional[PullRequest] = None
    repository: Repository = Field(default_factory=Repository)
    sender: User = Field(default_factory=User)
