"""Forge (code-hosting service) API client.

``ForgeClient`` is the contract the orchestrator and dispatcher rely on.
``GiteeClient`` implements it against the Gitee v5 REST API with httpx.
"""

from __future__ import annotations

import base64
from urllib.parse import quote
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

import httpx

from sync_bot.credentials import CredentialProvider, CredentialsError
from sync_bot.models import Branch, Comment, Issue, PullRequest, PullRequestCommit

from .observability import log_debug


DEFAULT_API_BASE = "https://gitee.com/api/v5"
PAGE_SIZE = 100


class ForgeAPIError(Exception):
    """The forge answered with an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ForgeNotImplementedError(ForgeAPIError, NotImplementedError):
    """Operation declared by the contract but not provided by this client."""


@runtime_checkable
class ForgeClient(Protocol):
    """Operations sync-bot needs from the forge."""

    def get_branches(self, owner: str, repo: str, only_protected: bool = False) -> List[Branch]:
        """All branches of the repository, minus configured dropped branches."""

    def get_branch(self, owner: str, repo: str, branch: str) -> Branch:
        ...

    def create_branch(self, owner: str, repo: str, branch: str, ref: str) -> None:
        """Create ``branch`` at ``ref`` (a SHA or branch name) on the forge."""

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        prune_source_branch: bool = True,
    ) -> int:
        """Open a pull request and return its number."""

    def list_pull_request_comments(self, owner: str, repo: str, number: int) -> List[Comment]:
        """Comments oldest first."""

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        ...

    def list_pull_request_commits(self, owner: str, repo: str, number: int) -> List[PullRequestCommit]:
        """Commits newest first."""

    def list_pull_request_issues(self, owner: str, repo: str, number: int) -> List[Issue]:
        ...

    def close_pull_request(self, owner: str, repo: str, number: int) -> None:
        ...

    def get_text_file(self, owner: str, repo: str, path: str, ref: str) -> str:
        ...

    def pull_request_url(self, owner: str, repo: str, number: int) -> str:
        ...


class GiteeClient:
    """Gitee v5 REST client.

    Args:
        credentials: provides the access token; read on every request
        api_base: REST root, ``https://gitee.com/api/v5`` by default
        host: web host used to build pull request URLs
        timeout: per-request timeout in seconds
        dropped_branches: names never returned by ``get_branches``
        transport: optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        *,
        api_base: str = DEFAULT_API_BASE,
        host: str = "gitee.com",
        timeout: float = 30.0,
        dropped_branches: Iterable[str] = (),
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.credentials = credentials or CredentialProvider()
        self.api_base = api_base.rstrip("/")
        self.host = host
        self.timeout = timeout
        self.dropped_branches = frozenset(dropped_branches)
        self._transport = transport

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _auth(self) -> Dict[str, str]:
        try:
            token = self.credentials.token()
        except CredentialsError as e:
            raise ForgeAPIError(f"cannot read forge token: {e}") from None
        return {"access_token": token} if token else {}

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.api_base}{path}"
        query: Dict[str, Any] = dict(params or {})
        body: Optional[Dict[str, Any]] = None
        if method in ("GET", "DELETE"):
            query.update(self._auth())
        else:
            body = {**(json or {}), **self._auth()}

        log_debug("FORGE_REQUEST", method=method, path=path)
        try:
            with self._client() as client:
                response = client.request(method, url, params=query, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            text = e.response.text
            raise ForgeAPIError(
                f"{method} {path} failed: HTTP {e.response.status_code}: {text}",
                status_code=e.response.status_code,
                body=text,
            ) from None
        except httpx.RequestError as e:
            raise ForgeAPIError(f"{method} {path} failed: {e}") from None

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ForgeAPIError(f"{method} {path} returned invalid JSON", response.status_code, response.text)

    def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        items: List[Any] = []
        page = 1
        while True:
            batch = self._request("GET", path, params={**(params or {}), "page": page, "per_page": PAGE_SIZE})
            if not batch:
                break
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return items

    def _repo_path(self, owner: str, repo: str) -> str:
        return f"/repos/{owner}/{repo}"

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def get_branches(self, owner: str, repo: str, only_protected: bool = False) -> List[Branch]:
        raw = self._request("GET", f"{self._repo_path(owner, repo)}/branches") or []
        branches = []
        for item in raw:
            branch = Branch.model_validate(item)
            if branch.name in self.dropped_branches:
                continue
            if only_protected and not branch.protected:
                continue
            branches.append(branch)
        return branches

    def get_branch(self, owner: str, repo: str, branch: str) -> Branch:
        path = f"{self._repo_path(owner, repo)}/branches/{quote(branch, safe='')}"
        return Branch.model_validate(self._request("GET", path))

    def create_branch(self, owner: str, repo: str, branch: str, ref: str) -> None:
        self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/branches",
            json={"refs": ref, "branch_name": branch},
        )

    def get_text_file(self, owner: str, repo: str, path: str, ref: str) -> str:
        data = self._request("GET", f"{self._repo_path(owner, repo)}/contents/{quote(path)}", params={"ref": ref})
        if not isinstance(data, dict) or "content" not in data:
            raise ForgeAPIError(f"{path}@{ref} is not a file")
        try:
            return base64.b64decode(data["content"]).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise ForgeAPIError(f"Cannot decode {path}@{ref}: {e}")

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        prune_source_branch: bool = True,
    ) -> int:
        data = self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/pulls",
            json={
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "prune_source_branch": prune_source_branch,
            },
        )
        try:
            return int(data["number"])
        except (TypeError, KeyError, ValueError):
            raise ForgeAPIError(f"Unexpected create pull request response: {data!r}")

    def list_pull_request_comments(self, owner: str, repo: str, number: int) -> List[Comment]:
        raw = self._paginate(f"{self._repo_path(owner, repo)}/pulls/{number}/comments")
        return [Comment.model_validate(item) for item in raw]

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        self._request("POST", f"{self._repo_path(owner, repo)}/pulls/{number}/comments", json={"body": body})

    def list_pull_request_commits(self, owner: str, repo: str, number: int) -> List[PullRequestCommit]:
        raw = self._request("GET", f"{self._repo_path(owner, repo)}/pulls/{number}/commits") or []
        return [PullRequestCommit.model_validate(item) for item in raw]

    def list_pull_request_issues(self, owner: str, repo: str, number: int) -> List[Issue]:
        raw = self._paginate(f"{self._repo_path(owner, repo)}/pulls/{number}/issues")
        return [Issue.model_validate(item) for item in raw]

    def close_pull_request(self, owner: str, repo: str, number: int) -> None:
        self._request("PATCH", f"{self._repo_path(owner, repo)}/pulls/{number}", json={"state": "closed"})

    def pull_request_url(self, owner: str, repo: str, number: int) -> str:
        return f"https://{self.host}/{owner}/{repo}/pulls/{number}"

    # Part of the Gitee client surface, unused by the handlers

    def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        raise ForgeNotImplementedError("get_pull_request is not implemented")

    def get_pull_requests(self, owner: str, repo: str) -> List[PullRequest]:
        raise ForgeNotImplementedError("get_pull_requests is not implemented")

    def get_pull_request_changes(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        raise ForgeNotImplementedError("get_pull_request_changes is not implemented")

    def get_pull_request_patch(self, owner: str, repo: str, number: int) -> bytes:
        raise ForgeNotImplementedError("get_pull_request_patch is not implemented")

