"""Shared pytest configuration, marker registration and an in-memory GitHub fake."""

from __future__ import annotations

from typing import Any

import pytest

from assistant_action.errors import GitHubAPIError


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first and integration tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


class FakeGitHub:
    """Records calls and serves canned repository data."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.permissions: dict[str, str] = {}
        self.repository: dict[str, Any] = {"default_branch": "main"}
        self.pull_requests: dict[int, dict[str, Any]] = {}
        self.issue_comments: list[dict[str, Any]] = []
        self.review_comment_ids: set[int] = set()
        self.comparison: dict[str, Any] = {"total_commits": 0, "files": []}
        self.compare_error: GitHubAPIError | None = None
        self.permission_error: GitHubAPIError | None = None
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.updated: dict[int, str] = {}
        self._next_id = 1000

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def get_user(self, login: str) -> dict[str, Any]:
        self._record("get_user", login)
        return self.users.get(login, {"login": login, "type": "User"})

    def get_collaborator_permission(self, owner: str, repo: str, username: str) -> str:
        self._record("get_collaborator_permission", owner, repo, username)
        if self.permission_error is not None:
            raise self.permission_error
        return self.permissions.get(username, "read")

    def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        self._record("get_repository", owner, repo)
        return self.repository

    def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        self._record("get_pull_request", owner, repo, number)
        return self.pull_requests[number]

    def compare(self, owner: str, repo: str, base: str, head: str) -> dict[str, Any]:
        self._record("compare", owner, repo, base, head)
        if self.compare_error is not None:
            raise self.compare_error
        return self.comparison

    def list_issue_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        self._record("list_issue_comments", owner, repo, number)
        return list(self.issue_comments)

    def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        self._record("create_issue_comment", owner, repo, number, body)
        self._next_id += 1
        comment = {"id": self._next_id, "body": body, "user": {"login": "assistant-bot[bot]"}}
        self.issue_comments.append(comment)
        return comment

    def get_issue_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        self._record("get_issue_comment", owner, repo, comment_id)
        return {"id": comment_id, "body": ""}

    def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        self._record("update_issue_comment", owner, repo, comment_id, body)
        self.updated[comment_id] = body
        return {"id": comment_id, "body": body}

    def get_review_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]:
        self._record("get_review_comment", owner, repo, comment_id)
        if comment_id not in self.review_comment_ids:
            raise GitHubAPIError("Not Found", status=404)
        return {"id": comment_id, "body": ""}

    def update_review_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        self._record("update_review_comment", owner, repo, comment_id, body)
        self.updated[comment_id] = body
        return {"id": comment_id, "body": body}


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()
