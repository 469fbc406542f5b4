"""Markdown comment and pull request body rendering."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .models import Branch, BranchStatus, Issue, PullRequestCommit, SyncOutcome


SYNC_CHECK_TEMPLATE = """
This repository has the following protected branches:
| Protected Branch | Version | Release |
|---|---|---|
{rows}

Use `/sync <branch> ...` command to register the branch that the current PR changes will synchronize to.
Once the current PR is merged, the synchronization operation will be performed.
(Only the last comment which include valid /sync command will be processed.)
"""

SYNC_REPLY_TEMPLATE = """
In response to [this]({url}):
> {command}

@{user}
Receive the synchronization command.
Sync operation will be applied to the following branch(es), if the current PR is merged:

| Branch | Status |
|---|---|
{rows}
"""

SYNC_PR_BODY_TEMPLATE = """
### 1. Origin pull request:
{pr_url}

### 2. Original pull request related issue(s):
{issues}

### 3. Original pull request related commit(s):
| Sha | Datetime | Message |
|---|---|---|
{rows}
"""

SYNC_PR_BODY_SHORT_TEMPLATE = """
### 1. Origin pull request:
{pr_url}

### 2. Original pull request description:
{body}
"""

SYNC_RESULT_TEMPLATE = """
In response to [this]({url}):
> {command}

@{user}

The following sync operations have been performed:

| Branch | Status | Pull Request |
|---|---|---|
{rows}
"""

PARSE_FAILED_COMMENT = "Receive comment look like /sync command, but parse failed: {error}"
NOT_MERGEABLE_COMMENT = "The current pull request can not be merge. "
OVERWRITE_UNSUPPORTED_COMMENT = (
    "Receive /sync command with strategy `overwrite`, "
    "which is not supported yet. No sync operation was performed."
)


def _table(rows: Iterable[Sequence[str]]) -> str:
    return "\n".join("|" + "|".join(cells) + "|" for cells in rows)


def branch_link(host: str, owner: str, repo: str, branch: str) -> str:
    return f"[{branch}](https://{host}/{owner}/{repo}/tree/{branch})"


def render_sync_check(
    branches: Iterable[Branch],
    host: str,
    owner: str,
    repo: str,
    target_branch: str = "",
) -> str:
    """Protected branch table; the pull request's own target is marked.

    Version and Release columns are left empty.
    """
    rows: List[Sequence[str]] = []
    for branch in branches:
        name = branch_link(host, owner, repo, branch.name)
        if branch.name == target_branch:
            name = f"__*__ {name}"
        rows.append((name, " ", " "))
    return SYNC_CHECK_TEMPLATE.format(rows=_table(rows))


def render_sync_reply(url: str, command: str, user: str, branches: Iterable[BranchStatus]) -> str:
    rows = [(b.name, b.status) for b in branches]
    return SYNC_REPLY_TEMPLATE.format(
        url=url,
        command=command.strip(),
        user=user,
        rows=_table(rows),
    )


def render_sync_pr_body(
    pr_url: str,
    issues: Iterable[Issue],
    commits: Iterable[PullRequestCommit],
) -> str:
    """Body of a follow-up pull request.

    Commit messages are flattened to one table cell with ``<br>``.
    """
    issue_lines = "\n".join(issue.html_url for issue in issues)
    rows = []
    for c in commits:
        date = c.commit.author.date.isoformat() if c.commit.author.date else ""
        message = c.commit.message.replace("\n", "<br>")
        rows.append((f"[{c.sha[:8]}]({c.html_url})", date, message))
    return SYNC_PR_BODY_TEMPLATE.format(pr_url=pr_url, issues=issue_lines, rows=_table(rows))


def render_sync_pr_body_short(pr_url: str, body: str) -> str:
    return SYNC_PR_BODY_SHORT_TEMPLATE.format(pr_url=pr_url, body=body or "")


def render_sync_result(url: str, command: str, user: str, outcomes: Iterable[SyncOutcome]) -> str:
    rows = [(o.name, o.status, o.pr_url) for o in outcomes]
    return SYNC_RESULT_TEMPLATE.format(
        url=url,
        command=command.strip(),
        user=user,
        rows=_table(rows),
    )


def render_parse_failed(error: object) -> str:
    return PARSE_FAILED_COMMENT.format(error=error)
