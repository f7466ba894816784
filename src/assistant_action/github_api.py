"""Thin REST client for the repository host API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from assistant_action.errors import GitHubAPIError
from assistant_action.http_utils import request_json

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"


class GitHubClient:
    """Black-box request/response operations used by the run.

    Parameters
    ----------
    token:
        Bearer credential. Never logged.
    api_url:
        Base REST URL (``GITHUB_API_URL`` on enterprise servers).
    """

    def __init__(self, token: str, *, api_url: str = "https://api.github.com", timeout: float = 20) -> None:
        self._token = str(token or "").strip()
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GitHubClient(api_url={self.api_url!r})"

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": _API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        response = request_json(
            f"{self.api_url}{path}",
            method=method,
            headers=headers,
            payload=payload,
            timeout=self.timeout,
        )
        if not response.ok:
            detail = ""
            if isinstance(response.body, dict):
                detail = str(response.body.get("message") or "").strip()
            message = f"GitHub API returned HTTP {response.status} for {method.upper()} {path}."
            if detail:
                message += f" {detail[:220]}"
            raise GitHubAPIError(message, status=response.status)
        return response.body if response.body is not None else {}

    # ------------------------------------------------------------------
    # Users and permissions
    # ------------------------------------------------------------------

    def get_user(self, login: str) -> dict[str, Any]:
        return self._request("GET", f"/users/{quote(login, safe='')}")

    def get_collaborator_permission(self, owner: str, repo: str, username: str) -> str:
        data = self._request(
            "GET",
            f"/repos/{owner}/{repo}/collaborators/{quote(username, safe='')}/permission",
        )
        return str((data or {}).get("permission") or "")

    # ------------------------------------------------------------------
    # Repositories and refs
    # ------------------------------------------------------------------

    def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}")

    def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}/pulls/{int(number)}")

    def compare(self, owner: str, repo: str, base: str, head: str) -> dict[str, Any]:
        basehead = quote(f"{base}...{head}", safe="/.")
        return self._request("GET", f"/repos/{owner}/{repo}/compare/{basehead}")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_issue_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        data = self._request(
            "GET", f"/repos/{owner}/{repo}/issues/{int(number)}/comments?per_page=100"
        )
        return list(data) if isinstance(data, list) else []

    def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        return self._request(
            "POST", f"/repos/{owner}/{repo}/issues/{int(number)}/comments", {"body": body}
        )

    def get_issue_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}/issues/comments/{int(comment_id)}")

    def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/repos/{owner}/{repo}/issues/comments/{int(comment_id)}", {"body": body}
        )

    def get_review_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}/pulls/comments/{int(comment_id)}")

    def update_review_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/repos/{owner}/{repo}/pulls/comments/{int(comment_id)}", {"body": body}
        )
