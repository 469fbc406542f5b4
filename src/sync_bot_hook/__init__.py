"""sync-bot webhook service: forge client, git cache, orchestration and HTTP facade."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("sync-bot")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

__all__ = ["__version__"]
