"""Chat command grammar for sync-bot.

Comments on a pull request are matched against a small set of commands:

- ``/sync-check``: list the protected branches that can be synced to
- ``/sync <branch> [<branch> ...]``: register (or run) a sync
- ``/close``: close a bot-created pull request and drop its branch

``CommandParser`` owns the compiled patterns. The module-level helpers use a
shared default parser so callers that only need matching do not have to build
one.
"""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple


class Strategy(str, Enum):
    """How a sync request is carried out."""

    PICK = "pick"            # cherry-pick the PR commit range onto a fresh branch
    MERGE = "merge"          # branch directly from the PR head via the forge
    OVERWRITE = "overwrite"  # replace target contents wholesale (not implemented)


DEFAULT_STRATEGY = Strategy.MERGE


class CommandParseError(ValueError):
    """Raised when a /sync command carries malformed options."""


@dataclass(frozen=True)
class SyncRequest:
    """Parsed /sync command."""

    strategy: Strategy = DEFAULT_STRATEGY
    branches: Tuple[str, ...] = field(default_factory=tuple)


class _CommandArgumentParser(argparse.ArgumentParser):
    """argparse variant that raises instead of printing and exiting."""

    def error(self, message: str):  # type: ignore[override]
        raise CommandParseError(message)

    def exit(self, status: int = 0, message: Optional[str] = None):  # type: ignore[override]
        raise CommandParseError(message or f"exit status {status}")


class CommandParser:
    """Matches and parses chat commands.

    Args:
        default_strategy: Strategy used when the command does not pick one.
    """

    TITLE_PATTERN = r"^(\[sync-bot\]|\[sync\])"
    SYNC_CHECK_PATTERN = r"^\s*/sync-check\s*$"
    SYNC_PATTERN = r"^\s*/sync([ \t]+[\w./_-]+)+\s*$"
    CLOSE_PATTERN = r"^\s*/close\s*$"
    SYNC_BRANCH_PATTERN = r"^sync-pr\d+-.+-to-.+$"

    def __init__(self, default_strategy: Strategy | str = DEFAULT_STRATEGY):
        self.default_strategy = Strategy(default_strategy)
        self._title_re = re.compile(self.TITLE_PATTERN)
        self._sync_check_re = re.compile(self.SYNC_CHECK_PATTERN, re.ASCII)
        self._sync_re = re.compile(self.SYNC_PATTERN, re.ASCII)
        self._close_re = re.compile(self.CLOSE_PATTERN, re.ASCII)
        self._sync_branch_re = re.compile(self.SYNC_BRANCH_PATTERN, re.ASCII)
        self._separator_re = re.compile(r"[ \t]+")

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match_title(self, title: str) -> bool:
        """True for pull requests opened by the bot."""
        return self._title_re.match(title or "") is not None

    def match_sync_check(self, text: str) -> bool:
        return self._sync_check_re.fullmatch(text or "") is not None

    def match_sync(self, text: str) -> bool:
        return self._sync_re.fullmatch(text or "") is not None

    def match_close(self, text: str) -> bool:
        return self._close_re.fullmatch(text or "") is not None

    def match_sync_branch(self, name: str) -> bool:
        """True for temporary branches created by a sync."""
        return self._sync_branch_re.fullmatch(name or "") is not None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _build_argparser(self) -> _CommandArgumentParser:
        parser = _CommandArgumentParser(
            prog="/sync",
            add_help=False,
            allow_abbrev=False,
        )
        parser.add_argument(
            "--strategy",
            choices=[s.value for s in Strategy],
            default=self.default_strategy.value,
        )
        parser.add_argument("branches", nargs="*")
        return parser

    def parse(self, text: str) -> SyncRequest:
        """Parse a /sync command into a SyncRequest.

        Tokens after the keyword that start with ``-`` are options; the rest
        are target branches, kept in order with duplicates.

        Raises:
            CommandParseError: unknown option or bad option value
        """
        tokens = self._separator_re.split((text or "").strip())
        args: Sequence[str] = tokens[1:] if tokens and tokens[0] else []
        namespace = self._build_argparser().parse_intermixed_args(list(args))
        branches: List[str] = list(namespace.branches)
        return SyncRequest(strategy=Strategy(namespace.strategy), branches=tuple(branches))


_default_parser = CommandParser()


def match_title(title: str) -> bool:
    return _default_parser.match_title(title)


def match_sync_check(text: str) -> bool:
    return _default_parser.match_sync_check(text)


def match_sync(text: str) -> bool:
    return _default_parser.match_sync(text)


def match_close(text: str) -> bool:
    return _default_parser.match_close(text)


def match_sync_branch(name: str) -> bool:
    return _default_parser.match_sync_branch(name)


def parse(text: str) -> SyncRequest:
    return _default_parser.parse(text)
