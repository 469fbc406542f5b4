"""Credentials management for sync-bot.

Handles loading credentials from ``~/.sync-bot/credentials.toml`` and the
environment, and hands them out through a rotatable provider.

Priority for every secret: Environment > Credentials file > secret file
named in the config (``forge.token_file`` / ``server.webhook_secret_file``).
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

# TOML reading
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore


CREDENTIALS_FILENAME = "credentials.toml"
USER_CONFIG_DIR = ".sync-bot"

ENV_FORGE_TOKEN = "SYNCBOT_FORGE_TOKEN"
ENV_FORGE_USER = "SYNCBOT_FORGE_USER"
ENV_WEBHOOK_SECRET = "SYNCBOT_WEBHOOK_SECRET"

TokenSource = Callable[[], str]


class CredentialsError(Exception):
    """A secret could not be read."""

    pass


class ForgeCredentials(BaseModel):
    """Forge API and push credentials."""

    user: str = Field(default="", description="Account used in push URLs")
    token: str = Field(default="", description="Personal access token")


class WebhookCredentials(BaseModel):
    """Inbound webhook credentials."""

    secret: str = Field(default="", description="Expected X-Gitee-Token value")


class Credentials(BaseModel):
    """All sync-bot credentials."""

    forge: ForgeCredentials = Field(default_factory=ForgeCredentials)
    webhook: WebhookCredentials = Field(default_factory=WebhookCredentials)


def _get_user_credentials_path() -> Path:
    """Get path to user credentials file."""
    return Path.home() / USER_CONFIG_DIR / CREDENTIALS_FILENAME


def _load_toml_credentials(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_credentials(path: Optional[Path] = None) -> Credentials:
    """Load credentials from TOML file, then apply environment overrides.

    An unreadable file is reported as a warning and treated as empty.
    """
    creds_path = path or _get_user_credentials_path()
    creds = Credentials()

    if creds_path.exists():
        try:
            creds = Credentials.model_validate(_load_toml_credentials(creds_path))
        except Exception as e:
            warnings.warn(f"Error loading credentials: {e}", UserWarning)

    env_token = os.getenv(ENV_FORGE_TOKEN)
    if env_token:
        creds.forge.token = env_token
    env_user = os.getenv(ENV_FORGE_USER)
    if env_user:
        creds.forge.user = env_user
    env_secret = os.getenv(ENV_WEBHOOK_SECRET)
    if env_secret:
        creds.webhook.secret = env_secret

    return creds


def file_token_source(path: Path | str) -> TokenSource:
    """Return a source that re-reads ``path`` on every call.

    Replacing the file rotates the secret without a restart. Surrounding
    whitespace is stripped.
    """
    secret_path = Path(path).expanduser()

    def _read() -> str:
        try:
            return secret_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise CredentialsError(f"Cannot read secret file {secret_path}: {e}")

    return _read


def static_token_source(token: str) -> TokenSource:
    return lambda: token


class _ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True

    def release_write(self) -> None:
        with self._cond:
            self._writing = False
            self._cond.notify_all()


class CredentialProvider:
    """Thread-safe holder of the forge user and token source.

    ``get`` may run from many handler threads at once; ``set`` swaps the
    pair atomically with respect to readers.
    """

    def __init__(self, user: str = "", token_source: Optional[TokenSource] = None):
        self._lock = _ReadWriteLock()
        self._user = user
        self._token_source: TokenSource = token_source or static_token_source("")

    def get(self) -> Tuple[str, str]:
        """Return (user, token).

        Raises:
            CredentialsError: the token source could not be read
        """
        self._lock.acquire_read()
        try:
            return self._user, self._token_source()
        finally:
            self._lock.release_read()

    def set(self, user: str, token_source: TokenSource) -> None:
        self._lock.acquire_write()
        try:
            self._user = user
            self._token_source = token_source
        finally:
            self._lock.release_write()

    def token(self) -> str:
        return self.get()[1]


def forge_credential_provider(
    token_file: Optional[str] = None,
    default_user: str = "",
    creds: Optional[Credentials] = None,
) -> CredentialProvider:
    """Build the provider used for forge API calls and pushes.

    A token from the environment or credentials.toml wins; otherwise the
    token file named in the config is read on demand.
    """
    if creds is None:
        creds = load_credentials()
    user = creds.forge.user or default_user
    if creds.forge.token:
        return CredentialProvider(user, static_token_source(creds.forge.token))
    if token_file:
        return CredentialProvider(user, file_token_source(token_file))
    return CredentialProvider(user)


def webhook_secret_source(
    secret_file: Optional[str] = None,
    creds: Optional[Credentials] = None,
) -> TokenSource:
    if creds is None:
        creds = load_credentials()
    if creds.webhook.secret:
        return static_token_source(creds.webhook.secret)
    if secret_file:
        return file_token_source(secret_file)
    return static_token_source("")
