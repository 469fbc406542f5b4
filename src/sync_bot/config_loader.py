"""Configuration loading and merging for sync-bot.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .config_schema import SyncBotConfig


CONFIG_FILENAME = "config.toml"
USER_CONFIG_DIR = ".sync-bot"
PROJECT_CONFIG_DIR = ".sync-bot"
CONFIG_PATH_ENV = "SYNCBOT_CONFIG"


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.sync-bot/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.sync-bot/).

    Searches upward from project_path to find .sync-bot/ directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Server
    "SYNCBOT_HOST": (["server"], "host"),
    "SYNCBOT_PORT": (["server"], "port"),
    "SYNCBOT_WEBHOOK_SECRET_FILE": (["server"], "webhook_secret_file"),
    # Forge
    "SYNCBOT_FORGE_HOST": (["forge"], "host"),
    "SYNCBOT_FORGE_API": (["forge"], "api_base"),
    "SYNCBOT_FORGE_TOKEN_FILE": (["forge"], "token_file"),
    # Git
    "SYNCBOT_CACHE_ROOT": (["git"], "cache_root"),
    "SYNCBOT_GIT_BASE_URL": (["git"], "base_url"),
    "SYNCBOT_GIT_USER": (["git"], "user"),
    # Sync
    "SYNCBOT_DEFAULT_STRATEGY": (["sync"], "default_strategy"),
    "SYNCBOT_CONFLICT_SIDE": (["sync"], "conflict_side"),
    "SYNCBOT_WAIT_FOR_BRANCH": (["sync"], "wait_for_branch"),
    # Dispatch
    "SYNCBOT_COURTESY_DELAY": (["dispatch"], "courtesy_delay"),
    # Logging
    "SYNCBOT_LOG_LEVEL": (["logging"], "level"),
    "SYNCBOT_LOG_DIR": (["logging"], "dir"),
    "SYNCBOT_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "SYNCBOT_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "SYNCBOT_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Values stay strings; Pydantic converts them during validation.
    """
    result = _deep_merge({}, config_dict)

    for env_var, (section_path, key_name) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None:
            continue

        current = result
        for section in section_path:
            if section not in current:
                current[section] = {}
            current = current[section]

        current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    skip_env: bool = False,
) -> SyncBotConfig:
    """Load and merge sync-bot configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.sync-bot/config.toml)
    3. Project config (.sync-bot/config.toml), or an explicit config_path
       / $SYNCBOT_CONFIG file
    4. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If config files are invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    explicit = config_path or (Path(os.environ[CONFIG_PATH_ENV]) if os.getenv(CONFIG_PATH_ENV) else None)
    if explicit is not None:
        config_dict = _deep_merge(config_dict, _load_toml(explicit))
    else:
        project_config_dir = _get_project_config_dir(project_path)
        if project_config_dir:
            project_config_path = project_config_dir / CONFIG_FILENAME
            if project_config_path.exists():
                try:
                    config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
                except ConfigError as e:
                    raise ConfigError(f"Invalid project config: {e}")

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return SyncBotConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


# Global cached config (thread-safe)
_cached_config: Optional[SyncBotConfig] = None
_config_lock = threading.Lock()


def get_config(force_reload: bool = False) -> SyncBotConfig:
    """Get cached config, loading if necessary."""
    global _cached_config

    with _config_lock:
        if force_reload or _cached_config is None:
            _cached_config = load_config()
        return _cached_config


def set_config(config: SyncBotConfig) -> None:
    """Install an already-built config as the cached one."""
    global _cached_config
    with _config_lock:
        _cached_config = config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config
    with _config_lock:
        _cached_config = None
