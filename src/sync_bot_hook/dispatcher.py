"""Event state machine.

Maps (event kind, action, pull request state, title and branch shape,
comment text) to the bot's reactions. Handlers run to completion on the
calling thread and never raise: every failure is logged with the
owner/repo/number it concerns.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from sync_bot.commands import CommandParseError, CommandParser
from sync_bot.models import BRANCH_EXISTS, BRANCH_NOT_FOUND, BranchStatus, PullRequest
from sync_bot.templates import (
    NOT_MERGEABLE_COMMENT,
    OVERWRITE_UNSUPPORTED_COMMENT,
    render_parse_failed,
    render_sync_check,
    render_sync_reply,
    render_sync_result,
)

from .events import (
    ACTION_CLOSE,
    ACTION_COMMENT,
    ACTION_MERGE,
    ACTION_OPEN,
    ACTION_UPDATE,
    MERGE_REQUEST_HOOK,
    NOTE_HOOK,
    NOTEABLE_PULL_REQUEST,
    NoteEvent,
    PullRequestEvent,
)
from .forge import ForgeClient, ForgeNotImplementedError
from .git_client import GitClient, MergeOption
from .observability import log_error, log_info, log_warning
from .orchestrator import SyncOrchestrator


class EventDispatcher:
    """Routes forge webhook events to the sync-bot reactions.

    Args:
        forge: forge API client
        git: working-copy cache (auto-merge and branch cleanup)
        orchestrator: performs /sync requests
        parser: command grammar (carries the default strategy)
        host: forge web host used for branch links
        ignored_owners: owners whose events are dropped
        allowed_repos: ``owner/repo`` entries handled despite their owner
            being ignored
        courtesy_comment: posted on pull requests opened by the bot
            (empty disables it)
        courtesy_delay: seconds to wait before the courtesy comment
        sleep: sleep function for the courtesy delay
    """

    def __init__(
        self,
        forge: ForgeClient,
        git: GitClient,
        orchestrator: SyncOrchestrator,
        parser: Optional[CommandParser] = None,
        *,
        host: str = "gitee.com",
        ignored_owners: Iterable[str] = (),
        allowed_repos: Iterable[str] = (),
        courtesy_comment: str = "/check-cla",
        courtesy_delay: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.forge = forge
        self.git = git
        self.orchestrator = orchestrator
        self.parser = parser or CommandParser()
        self.host = host
        self.ignored_owners = frozenset(ignored_owners)
        self.allowed_repos = frozenset(allowed_repos)
        self.courtesy_comment = courtesy_comment
        self.courtesy_delay = courtesy_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def dispatch(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Parse a webhook body by its ``X-Gitee-Event`` type and handle it."""
        try:
            if event_type == MERGE_REQUEST_HOOK:
                self.handle_pull_request_event(PullRequestEvent.model_validate(payload))
            elif event_type == NOTE_HOOK:
                self.handle_note_event(NoteEvent.model_validate(payload))
            else:
                log_info("Ignoring unhandled event type", event_type=event_type)
        except ValidationError as e:
            log_error("Malformed webhook payload", event_type=event_type, error=str(e))

    def is_ignored(self, owner: str, repo: str) -> bool:
        if owner not in self.ignored_owners:
            return False
        return f"{owner}/{repo}" not in self.allowed_repos

    def handle_pull_request_event(self, event: PullRequestEvent) -> None:
        fields = event.log_fields()
        try:
            self._handle_pull_request_event(event)
        except Exception as e:
            log_error("Handling pull request event failed", action=event.action, error=str(e), **fields)

    def handle_note_event(self, event: NoteEvent) -> None:
        fields = event.log_fields()
        try:
            self._handle_note_event(event)
        except Exception as e:
            log_error("Handling note event failed", action=event.action, error=str(e), **fields)

    # ------------------------------------------------------------------
    # Pull request events
    # ------------------------------------------------------------------

    def _handle_pull_request_event(self, event: PullRequestEvent) -> None:
        owner, repo, pr = event.owner, event.repo, event.pull_request
        fields = event.log_fields()
        if self.is_ignored(owner, repo):
            log_info("Ignoring repository", **fields)
            return

        by_bot = self.parser.match_title(pr.title)
        to_sync_branch = self.parser.match_sync_branch(pr.base.ref)
        action = event.action
        log_info("Pull request event", action=action, title=pr.title, **fields)

        if action == ACTION_OPEN:
            if by_bot:
                self._courtesy(owner, repo, pr.number)
            elif to_sync_branch:
                self.auto_merge(owner, repo, pr)
            else:
                self.reply_sync_check(owner, repo, pr.number, pr.base.ref)
        elif action == ACTION_UPDATE:
            if to_sync_branch:
                self.auto_merge(owner, repo, pr)
            else:
                log_info("Ignoring unhandled action", action=action, **fields)
        elif action == ACTION_MERGE:
            if by_bot:
                log_info("Merged pull request was created by sync-bot, ignoring it", **fields)
            elif to_sync_branch:
                log_info("Merged pull request targets a sync branch, ignoring it", **fields)
            else:
                self.sync_from_comments(owner, repo, pr)
        elif action == ACTION_CLOSE:
            if by_bot:
                self.delete_sync_branch(owner, repo, pr)
            else:
                log_info("Pull request not created by sync-bot, ignoring it", **fields)
        else:
            log_info("Ignoring unhandled action", action=action, **fields)

    def _courtesy(self, owner: str, repo: str, number: int) -> None:
        if not self.courtesy_comment:
            return
        # Give other bots time to finish labelling the new pull request
        if self.courtesy_delay > 0:
            self._sleep(self.courtesy_delay)
        self.forge.create_comment(owner, repo, number, self.courtesy_comment)
        log_info(f"Create comment {self.courtesy_comment}", owner=owner, repo=repo, number=number)

    def auto_merge(self, owner: str, repo: str, pr: PullRequest) -> None:
        """Fast-forward a sync branch to the head of a pull request targeting it."""
        target = pr.base.ref
        fields = {"owner": owner, "repo": repo, "number": pr.number, "branch": target}
        if not pr.mergeable:
            log_info("The current pull request can not be merged", **fields)
            self.forge.create_comment(owner, repo, pr.number, NOT_MERGEABLE_COMMENT)
            return

        with self.git.acquire(owner, repo) as handle:
            handle.clean()
            handle.fetch_pull_request(pr.number)
            handle.checkout(f"origin/{target}")
            handle.checkout_new_branch(target, force=True)
            handle.merge(f"origin/pull/{pr.number}", MergeOption.FF)
            handle.push(target, force=True)
        log_info("Auto merged into sync branch", **fields)

    def sync_from_comments(self, owner: str, repo: str, pr: PullRequest) -> None:
        """Run the newest valid /sync command found in the pull request comments."""
        comments = self.forge.list_pull_request_comments(owner, repo, pr.number)
        for comment in reversed(comments):
            if self.parser.match_sync(comment.body):
                log_info("Found /sync command", owner=owner, repo=repo, number=pr.number, comment=comment.body)
                self.run_sync(owner, repo, pr, comment.user.login, comment.html_url, comment.body)
                return
        log_warning("No valid /sync command in pull request comments", owner=owner, repo=repo, number=pr.number)

    def delete_sync_branch(self, owner: str, repo: str, pr: PullRequest) -> None:
        source = pr.head.ref
        fields = {"owner": owner, "repo": repo, "number": pr.number, "branch": source}
        if not self.parser.match_sync_branch(source):
            log_warning("Source branch is not a sync branch", **fields)
            return
        with self.git.acquire(owner, repo) as handle:
            if not handle.remote_branch_exists(source):
                log_warning(f"Source branch {source} not found", **fields)
                return
            handle.delete_remote_branch(source)
        log_info("Deleted sync branch", **fields)

    # ------------------------------------------------------------------
    # Comment events
    # ------------------------------------------------------------------

    def _handle_note_event(self, event: NoteEvent) -> None:
        owner, repo = event.owner, event.repo
        fields = event.log_fields()
        if self.is_ignored(owner, repo):
            log_info("Ignoring repository", **fields)
            return
        if event.action != ACTION_COMMENT:
            log_info("Ignoring unhandled action", action=event.action, **fields)
            return
        if event.noteable_type != NOTEABLE_PULL_REQUEST or event.pull_request is None:
            log_info("Ignoring unhandled notable type", noteable_type=event.noteable_type, **fields)
            return

        pr = event.pull_request
        body = event.comment.body
        user = event.comment.user.login
        url = event.comment.html_url
        log_info("Pull request comment", comment=body, url=url, **fields)

        if self.parser.match_sync_check(body):
            self.reply_sync_check(owner, repo, pr.number, pr.base.ref)
        elif self.parser.match_sync(body):
            if pr.is_open:
                self.reply_sync(owner, repo, pr.number, url, user, body)
            elif pr.is_merged:
                self.run_sync(owner, repo, pr, user, url, body)
            else:
                log_info("Ignoring /sync on pull request", state=pr.state, **fields)
        elif self.parser.match_close(body):
            if pr.is_open and self.parser.match_title(pr.title):
                self.close_sync_pull_request(owner, repo, pr)
            else:
                log_info("Ignoring /close on pull request not opened by sync-bot", **fields)
        else:
            log_info("Ignoring unhandled comment", **fields)

    def reply_sync_check(self, owner: str, repo: str, number: int, target_branch: str) -> None:
        branches = self.forge.get_branches(owner, repo, True)
        body = render_sync_check(branches, self.host, owner, repo, target_branch)
        self.forge.create_comment(owner, repo, number, body)
        log_info("Reply sync-check", owner=owner, repo=repo, number=number)

    def reply_sync(self, owner: str, repo: str, number: int, url: str, user: str, command: str) -> None:
        """Acknowledge a /sync on an open pull request with per-branch existence."""
        try:
            request = self.parser.parse(command)
        except CommandParseError as e:
            self._report_parse_error(owner, repo, number, e)
            return

        existing = {b.name for b in self.forge.get_branches(owner, repo, False)}
        statuses: List[BranchStatus] = [
            BranchStatus(b, BRANCH_EXISTS if b in existing else BRANCH_NOT_FOUND)
            for b in request.branches
        ]
        self.forge.create_comment(owner, repo, number, render_sync_reply(url, command, user, statuses))
        log_info("Reply sync", owner=owner, repo=repo, number=number)

    def run_sync(self, owner: str, repo: str, pr: PullRequest, user: str, url: str, command: str) -> None:
        """Parse ``command``, sync, and post the result table."""
        fields = {"owner": owner, "repo": repo, "number": pr.number}
        try:
            request = self.parser.parse(command)
        except CommandParseError as e:
            self._report_parse_error(owner, repo, pr.number, e)
            return

        try:
            outcomes = self.orchestrator.sync(owner, repo, pr, request)
        except ForgeNotImplementedError:
            raise
        except NotImplementedError as e:
            log_warning("Unsupported sync strategy", strategy=request.strategy.value, error=str(e), **fields)
            self.forge.create_comment(owner, repo, pr.number, OVERWRITE_UNSUPPORTED_COMMENT)
            return

        self.forge.create_comment(owner, repo, pr.number, render_sync_result(url, command, user, outcomes))
        log_info("Reply sync result", **fields)

    def close_sync_pull_request(self, owner: str, repo: str, pr: PullRequest) -> None:
        self.forge.close_pull_request(owner, repo, pr.number)
        log_info("Closed pull request", owner=owner, repo=repo, number=pr.number)
        self.delete_sync_branch(owner, repo, pr)

    def _report_parse_error(self, owner: str, repo: str, number: int, error: CommandParseError) -> None:
        log_error("Parse /sync command failed", owner=owner, repo=repo, number=number, error=str(error))
        self.forge.create_comment(owner, repo, number, render_parse_failed(error))
