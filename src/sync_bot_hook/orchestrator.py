"""Replays a merged pull request onto other branches.

Two strategies:

- ``pick``: cherry-pick the pull request's commit range onto a fresh branch
  cut from each target, push it and open a pull request. The repository
  handle (and its lock) is held for the whole request.
- ``merge``: have the forge create ``sync-pr<N>-to-<target>`` at the pull
  request head and open a pull request from it. No local git work.

Every requested branch yields exactly one ``SyncOutcome``, in command order.
A failure on one branch never stops the others.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Sequence, Set

from sync_bot.commands import Strategy, SyncRequest
from sync_bot.models import (
    BRANCH_NOT_FOUND,
    CREATED_PR,
    SYNC_FAILED,
    PullRequest,
    PullRequestCommit,
    SyncOutcome,
    commit_range,
)
from sync_bot.templates import render_sync_pr_body, render_sync_pr_body_short

from .forge import ForgeAPIError, ForgeClient
from .git_client import UPSTREAM_REMOTE, GitClient, GitOperationError, Repo, StrategyOption
from .observability import log_error, log_info, log_warning, timeit
from .retry import with_retry


def sync_title(pr: PullRequest) -> str:
    return f"[sync] PR-{pr.number}: {pr.title}"


def pick_branch_name(number: int, source: str, target: str) -> str:
    return f"sync-pr{number}-{source}-to-{target}"


def merge_branch_name(number: int, target: str) -> str:
    return f"sync-pr{number}-to-{target}"


class SyncOrchestrator:
    """Carries out ``/sync`` requests against one forge and git cache.

    Args:
        forge: forge API client
        git: working-copy cache used by the pick strategy
        conflict_side: ``--strategy-option`` passed to cherry-pick
        pr_create_attempts: attempts for pull request creation (pick)
        initial_backoff: first retry delay in seconds
        wait_for_branch: poll the forge until a direct branch is visible
        sleep: sleep function used between retries
    """

    def __init__(
        self,
        forge: ForgeClient,
        git: GitClient,
        *,
        conflict_side: str = StrategyOption.THEIRS.value,
        pr_create_attempts: int = 5,
        initial_backoff: float = 1.0,
        wait_for_branch: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.forge = forge
        self.git = git
        self.conflict_side = StrategyOption(conflict_side)
        self.pr_create_attempts = pr_create_attempts
        self.initial_backoff = initial_backoff
        self.wait_for_branch = wait_for_branch
        self._sleep = sleep

    def sync(self, owner: str, repo: str, pr: PullRequest, request: SyncRequest) -> List[SyncOutcome]:
        """Sync ``pr`` onto every branch in ``request``.

        Raises:
            NotImplementedError: the overwrite strategy was requested
            GitOperationError: the working copy could not be cloned or
                refreshed (pick only)
            ForgeAPIError: branches, commits or issues could not be listed
        """
        if request.strategy is Strategy.OVERWRITE:
            raise NotImplementedError("overwrite strategy is not supported")

        fields = {"owner": owner, "repo": repo, "number": pr.number, "strategy": request.strategy.value}
        with timeit("sync", **fields) as info:
            issues = self.forge.list_pull_request_issues(owner, repo, pr.number)
            commits = self.forge.list_pull_request_commits(owner, repo, pr.number)
            branch_set = {b.name for b in self.forge.get_branches(owner, repo, False)}

            title = sync_title(pr)
            if self.git.large_repo(owner, repo) is not None:
                body = render_sync_pr_body_short(pr.html_url, pr.body or "")
            else:
                body = render_sync_pr_body(pr.html_url, issues, commits)

            if request.strategy is Strategy.PICK:
                outcomes = self._pick(owner, repo, pr, request.branches, branch_set, title, body, commits)
            else:
                outcomes = self._merge(owner, repo, pr, request.branches, branch_set, title, body)
            info["created"] = sum(1 for o in outcomes if o.succeeded)
            info["requested"] = len(outcomes)
        return outcomes

    # ------------------------------------------------------------------
    # pick
    # ------------------------------------------------------------------

    def _pick(
        self,
        owner: str,
        repo: str,
        pr: PullRequest,
        branches: Sequence[str],
        branch_set: Set[str],
        title: str,
        body: str,
        commits: List[PullRequestCommit],
    ) -> List[SyncOutcome]:
        try:
            first, last = commit_range(commits)
        except ValueError as e:
            return [
                SyncOutcome(b, str(e) if b in branch_set else BRANCH_NOT_FOUND)
                for b in branches
            ]

        outcomes: List[SyncOutcome] = []
        with self.git.acquire(owner, repo) as handle:
            for branch in branches:
                if branch not in branch_set:
                    outcomes.append(SyncOutcome(branch, BRANCH_NOT_FOUND))
                    continue
                outcomes.append(self._pick_one(handle, pr, branch, first, last, title, body))
        return outcomes

    def _pick_one(
        self,
        handle: Repo,
        pr: PullRequest,
        branch: str,
        first: str,
        last: str,
        title: str,
        body: str,
    ) -> SyncOutcome:
        owner, repo, number = handle.owner, handle.repo, pr.number
        temp_branch = pick_branch_name(number, pr.head.ref, branch)
        fields = {"owner": owner, "repo": repo, "number": number, "branch": branch}

        try:
            if handle.is_fork_clone:
                self._refresh_fork_branch(handle, branch)
            else:
                handle.clean()
                handle.checkout(f"origin/{branch}")
            handle.checkout_new_branch(temp_branch, force=True)
            handle.fetch_pull_request(number)
        except (GitOperationError, ForgeAPIError) as e:
            log_error("Preparing sync branch failed", error=str(e), **fields)
            return SyncOutcome(branch, str(e))

        try:
            handle.cherry_pick(first, last, self.conflict_side)
        except GitOperationError as e:
            log_error("Cherry pick failed", error=str(e), **fields)
            try:
                handle.cherry_pick_abort()
            except GitOperationError as abort_error:
                log_warning("cherry-pick --abort failed", error=str(abort_error), **fields)
            return SyncOutcome(branch, SYNC_FAILED)

        try:
            handle.push(temp_branch, force=True)
        except GitOperationError as e:
            log_error("Push failed", error=str(e), **fields)
            return SyncOutcome(branch, str(e))

        head = f"{handle.clone_owner}:{temp_branch}" if handle.is_fork_clone else temp_branch
        try:
            created = with_retry(
                self.pr_create_attempts,
                self.initial_backoff,
                lambda: self.forge.create_pull_request(owner, repo, title, body, head, branch, True),
                description=f"create pull request {head} -> {branch}",
                sleep=self._sleep,
            )
        except ForgeAPIError as e:
            log_error("Create pull request failed", error=str(e), **fields)
            return SyncOutcome(branch, str(e))

        log_info(f"Created pull request {created}", **fields)
        return SyncOutcome(branch, CREATED_PR, self.forge.pull_request_url(owner, repo, created))

    def _refresh_fork_branch(self, handle: Repo, branch: str) -> None:
        """Bring the fork's copy of ``branch`` up to date with upstream.

        Leaves HEAD at the refreshed branch.
        """
        handle.ensure_upstream()
        handle.clean()

        fork_branches = {b.name for b in self.forge.get_branches(handle.clone_owner, handle.repo, False)}
        if branch not in fork_branches:
            handle.fetch_remote_branch(UPSTREAM_REMOTE, branch)
            handle.create_branch_and_push(branch, f"{UPSTREAM_REMOTE}/{branch}")
            handle.fetch_remote_branch("origin", branch)

        handle.checkout(f"origin/{branch}")
        handle.fetch_remote_branch(UPSTREAM_REMOTE, branch)
        handle.merge(f"{UPSTREAM_REMOTE}/{branch}")
        handle.push_head_to_origin(branch)

    # ------------------------------------------------------------------
    # merge
    # ------------------------------------------------------------------

    def _merge(
        self,
        owner: str,
        repo: str,
        pr: PullRequest,
        branches: Sequence[str],
        branch_set: Set[str],
        title: str,
        body: str,
    ) -> List[SyncOutcome]:
        outcomes: List[SyncOutcome] = []
        for branch in branches:
            if branch not in branch_set:
                outcomes.append(SyncOutcome(branch, BRANCH_NOT_FOUND))
                continue

            temp_branch = merge_branch_name(pr.number, branch)
            fields = {"owner": owner, "repo": repo, "number": pr.number, "branch": temp_branch}
            try:
                self.forge.create_branch(owner, repo, temp_branch, pr.head.sha)
                log_info("Created temp branch", **fields)
            except ForgeAPIError as e:
                # Usually the branch is left over from an earlier sync
                log_warning("Create temp branch failed", error=str(e), **fields)

            if self.wait_for_branch:
                self._wait_for_branch(owner, repo, temp_branch)

            try:
                created = self.forge.create_pull_request(owner, repo, title, body, temp_branch, branch, True)
            except ForgeAPIError as e:
                log_error("Create pull request failed", error=str(e), **fields)
                outcomes.append(SyncOutcome(branch, str(e)))
                continue

            log_info(f"Created pull request {created}", **fields)
            outcomes.append(SyncOutcome(branch, CREATED_PR, self.forge.pull_request_url(owner, repo, created)))
        return outcomes

    def _wait_for_branch(self, owner: str, repo: str, branch: str) -> Optional[str]:
        try:
            found = with_retry(
                self.pr_create_attempts,
                self.initial_backoff,
                lambda: self.forge.get_branch(owner, repo, branch),
                description=f"wait for branch {branch}",
                sleep=self._sleep,
            )
        except ForgeAPIError as e:
            log_warning("Branch not visible yet", owner=owner, repo=repo, branch=branch, error=str(e))
            return None
        return found.name
