"""Configuration schema for sync-bot.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

from .commands import Strategy


class ServerConfig(BaseModel):
    """Webhook listener settings."""

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=8765, ge=1, le=65535, description="Port to listen on")
    webhook_secret_file: str = Field(
        default="secret.conf",
        description="File holding the webhook secret (X-Gitee-Token)",
    )


class ForgeConfig(BaseModel):
    """Code-hosting service settings."""

    host: str = Field(default="gitee.com", description="Forge host name")
    api_base: str = Field(
        default="https://gitee.com/api/v5",
        description="REST API base URL",
    )
    token_file: str = Field(
        default="token.conf",
        description="File holding the API/push token",
    )
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    dropped_branches: List[str] = Field(
        default_factory=list,
        description="Branches never offered as sync targets",
    )


class GitConfig(BaseModel):
    """Local git cache settings."""

    cache_root: str = Field(
        default="repos",
        description="Directory holding one working copy per owner/repo",
    )
    base_url: str = Field(
        default="",
        description="Clone base URL (empty = https://<forge.host>)",
    )
    user: str = Field(default="", description="User for authenticated push URLs")
    author_name: str = Field(default="sync-bot", description="Commit author name")
    author_email: str = Field(default="sync-bot@localhost", description="Commit author email")

    @field_validator("cache_root")
    @classmethod
    def validate_cache_root(cls, v: str) -> str:
        """Warn if cache root points at a regular file."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Git cache root is not a directory: {v}",
                    UserWarning,
                )
        return v


class LargeRepoConfig(BaseModel):
    """A repository too large to refresh on every event.

    Work for it is pushed to and pulled from ``fork_owner``'s fork.
    """

    owner: str
    repo: str
    fork_owner: str = Field(description="Overflow account holding the working fork")
    skip_refresh: bool = Field(
        default=True,
        description="Skip the fetch on cache hit",
    )


class SyncConfig(BaseModel):
    """Sync algorithm settings."""

    default_strategy: Strategy = Field(
        default=Strategy.MERGE,
        description="Strategy used when /sync does not name one",
    )
    conflict_side: Literal["ours", "theirs"] = Field(
        default="theirs",
        description="Cherry-pick strategy option",
    )
    clone_attempts: int = Field(default=3, ge=1, description="Attempts for clone/fetch")
    pr_create_attempts: int = Field(default=5, ge=1, description="Attempts for PR creation")
    initial_backoff: float = Field(default=1.0, ge=0, description="First retry delay in seconds")
    wait_for_branch: bool = Field(
        default=True,
        description="Poll for the new branch before opening a direct-branch PR",
    )


class DispatchConfig(BaseModel):
    """Event filtering and courtesy behaviour."""

    ignored_owners: List[str] = Field(
        default_factory=list,
        description="Owners whose events are dropped",
    )
    allowed_repos: List[str] = Field(
        default_factory=list,
        description="owner/repo entries still handled inside an ignored owner",
    )
    courtesy_comment: str = Field(
        default="/check-cla",
        description="Comment posted on bot-opened pull requests (empty = off)",
    )
    courtesy_delay: float = Field(
        default=10.0,
        ge=0,
        description="Seconds to wait before the courtesy comment",
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(default="INFO", description="Log level")
    dir: str = Field(default="", description="Log directory (empty = ~/.sync-bot/logs)")
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=0, description="Rotate after bytes")
    backup_count: int = Field(default=5, ge=0, description="Rotated files to keep")
    disable_file: bool = Field(default=False, description="Log to stderr only")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(valid)}")
        return upper


class SyncBotConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(default=1, ge=1, description="Config schema version")

    server: ServerConfig = Field(default_factory=ServerConfig)
    forge: ForgeConfig = Field(default_factory=ForgeConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    large_repos: List[LargeRepoConfig] = Field(default_factory=list)

    def clone_base(self) -> str:
        return self.git.base_url or f"https://{self.forge.host}"
