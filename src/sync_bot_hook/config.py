"""Service wiring: builds the forge client, git cache, orchestrator and
dispatcher from the loaded configuration and caches the result."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sync_bot.commands import CommandParser
from sync_bot.config_loader import get_config
from sync_bot.config_schema import SyncBotConfig
from sync_bot.credentials import (
    CredentialProvider,
    TokenSource,
    forge_credential_provider,
    load_credentials,
    webhook_secret_source,
)
from sync_bot.lock import RepoLockTable

from . import __version__
from .dispatcher import EventDispatcher
from .forge import ForgeClient, GiteeClient
from .git_client import GitClient
from .observability import log_debug
from .orchestrator import SyncOrchestrator


__all__ = [
    "Service",
    "build_service",
    "get_service",
    "set_service",
    "clear_service_cache",
    "get_version",
]


@dataclass(frozen=True)
class Service:
    """Everything a webhook needs to be handled."""

    config: SyncBotConfig
    credentials: CredentialProvider
    webhook_secret: TokenSource
    forge: ForgeClient
    git: GitClient
    orchestrator: SyncOrchestrator
    dispatcher: EventDispatcher


_SERVICE: Optional[Service] = None
_SERVICE_LOCK = threading.Lock()


def build_service(
    config: SyncBotConfig,
    *,
    forge: Optional[ForgeClient] = None,
    credentials: Optional[CredentialProvider] = None,
    webhook_secret: Optional[TokenSource] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Service:
    """Assemble a Service from configuration.

    ``forge``, ``credentials`` and ``webhook_secret`` replace the
    configured ones (tests pass fakes here).
    """
    creds_file = None
    if credentials is None or webhook_secret is None:
        creds_file = load_credentials()
    if credentials is None:
        credentials = forge_credential_provider(
            config.forge.token_file,
            default_user=config.git.user,
            creds=creds_file,
        )
    if webhook_secret is None:
        webhook_secret = webhook_secret_source(config.server.webhook_secret_file, creds=creds_file)

    if forge is None:
        forge = GiteeClient(
            credentials,
            api_base=config.forge.api_base,
            host=config.forge.host,
            timeout=config.forge.timeout,
            dropped_branches=config.forge.dropped_branches,
        )

    git = GitClient(
        Path(config.git.cache_root),
        config.clone_base(),
        credentials,
        large_repos=config.large_repos,
        attempts=config.sync.clone_attempts,
        initial_backoff=config.sync.initial_backoff,
        author_name=config.git.author_name,
        author_email=config.git.author_email,
        lock_table=RepoLockTable(),
        sleep=sleep,
    )
    orchestrator = SyncOrchestrator(
        forge,
        git,
        conflict_side=config.sync.conflict_side,
        pr_create_attempts=config.sync.pr_create_attempts,
        initial_backoff=config.sync.initial_backoff,
        wait_for_branch=config.sync.wait_for_branch,
        sleep=sleep,
    )
    dispatcher = EventDispatcher(
        forge,
        git,
        orchestrator,
        CommandParser(config.sync.default_strategy),
        host=config.forge.host,
        ignored_owners=config.dispatch.ignored_owners,
        allowed_repos=config.dispatch.allowed_repos,
        courtesy_comment=config.dispatch.courtesy_comment,
        courtesy_delay=config.dispatch.courtesy_delay,
        sleep=sleep,
    )
    log_debug(
        "SERVICE_BUILT",
        cache_root=str(git.cache_root),
        base_url=git.base_url,
        default_strategy=config.sync.default_strategy.value,
    )
    return Service(config, credentials, webhook_secret, forge, git, orchestrator, dispatcher)


def get_service() -> Service:
    """Return the process-wide Service, building it from get_config() once."""
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            _SERVICE = build_service(get_config())
        return _SERVICE


def set_service(service: Optional[Service]) -> None:
    global _SERVICE
    with _SERVICE_LOCK:
        _SERVICE = service


def clear_service_cache() -> None:
    set_service(None)


def get_version() -> str:
    return __version__
