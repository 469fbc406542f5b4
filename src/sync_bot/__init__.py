"""sync-bot: propagate merged pull requests to other branches on command."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("sync-bot")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .commands import CommandParser, CommandParseError, Strategy, SyncRequest  # noqa: F401
from .lock import RepoLockTable  # noqa: F401
from .models import SyncOutcome, BranchStatus  # noqa: F401

__all__ = [
    "CommandParser",
    "CommandParseError",
    "Strategy",
    "SyncRequest",
    "RepoLockTable",
    "SyncOutcome",
    "BranchStatus",
    "__version__",
]
