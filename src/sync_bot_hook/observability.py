from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "sync_bot"

# Environment variables for configuration
ENV_LOG_DIR = "SYNCBOT_LOG_DIR"
ENV_LOG_LEVEL = "SYNCBOT_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "SYNCBOT_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "SYNCBOT_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "SYNCBOT_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".sync-bot" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

_logger_initialized = False
_session_start = datetime.utcnow().strftime("%Y-%m-%d_%H%M%S")
# Values from the config file; environment variables still win
_config_overrides: Dict[str, str] = {}


def _setting(env_var: str, default: Any) -> Any:
    value = os.getenv(env_var)
    if value is not None:
        return value
    return _config_overrides.get(env_var, default)


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    disable_file: Optional[bool] = None,
) -> logging.Logger:
    """Apply config-file logging settings and (re)build the handlers."""
    global _logger_initialized
    if level:
        _config_overrides[ENV_LOG_LEVEL] = level
    if log_dir:
        _config_overrides[ENV_LOG_DIR] = log_dir
    if max_bytes is not None:
        _config_overrides[ENV_LOG_MAX_BYTES] = str(max_bytes)
    if backup_count is not None:
        _config_overrides[ENV_LOG_BACKUP_COUNT] = str(backup_count)
    if disable_file is not None:
        _config_overrides[ENV_LOG_DISABLE_FILE] = "1" if disable_file else "0"
    _logger_initialized = False
    return _get_logger()


def _get_log_level() -> int:
    """Get log level from environment, defaulting to INFO."""
    level_name = str(_setting(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)).upper()
    return getattr(logging, level_name, logging.INFO)


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled via SYNCBOT_LOG_DISABLE_FILE=1.
    """
    if str(_setting(ENV_LOG_DISABLE_FILE, "")).lower() in ("1", "true", "yes"):
        return None

    log_dir = Path(_setting(ENV_LOG_DIR, DEFAULT_LOG_DIR)).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    # Session-based filename: sync-bot_2024-01-15_143022.log
    return log_dir / f"sync-bot_{_session_start}.log"


def _get_logger() -> logging.Logger:
    """Get or initialize the sync-bot logger.

    By default, logs to ~/.sync-bot/logs/sync-bot_<session>.log

    Configuration via environment variables:
    - SYNCBOT_LOG_DIR: Directory for log files (default: ~/.sync-bot/logs/)
    - SYNCBOT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - SYNCBOT_LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
    - SYNCBOT_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    - SYNCBOT_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s %(threadName)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        log_file = _get_log_file_path()
        if log_file:
            max_bytes = int(_setting(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(_setting(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # The service runs unattended, so stderr carries INFO as well
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(log_level)
        logger.addHandler(stream_handler)

    return logger


def _format(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON for safety. Keep schema lightweight.

    Args:
        action: Name of the action being logged
        outcome: Result status ("ok", "error", etc.)
        duration_ms: How long the action took in milliseconds
        **fields: Additional fields (owner, repo, number, branch, ...)
    """
    payload: Dict[str, Any] = {
        "ts": datetime.utcnow().isoformat() + "Z",
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_format(message, fields))


def log_info(message: str, **fields: Any) -> None:
    _get_logger().info(_format(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_format(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_format(message, fields))


@contextmanager
def timeit(action: str, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises.

    Yields:
        A dict whose contents are added to the log line
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="ok", duration_ms=duration_ms, **fields, **result_info)
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="error", duration_ms=duration_ms, **fields, **result_info)
        raise
