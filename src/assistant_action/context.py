"""Parsed view of the CI event that triggered the run."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENTITY_EVENTS = frozenset(
    {
        "issues",
        "issue_comment",
        "pull_request",
        "pull_request_review",
        "pull_request_review_comment",
    }
)
PULL_REQUEST_EVENTS = frozenset(
    {"pull_request", "pull_request_review", "pull_request_review_comment"}
)


class RepositoryRef(BaseModel):
    owner: str = ""
    repo: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class EventContext(BaseModel):
    """Event name, actor, repository and raw payload of the trigger."""

    event_name: str = ""
    event_action: str = ""
    actor: str = ""
    repository: RepositoryRef = Field(default_factory=RepositoryRef)
    payload: dict[str, Any] = Field(default_factory=dict)

    # -- classification --

    @property
    def is_entity_event(self) -> bool:
        return self.event_name in ENTITY_EVENTS

    @property
    def is_pr(self) -> bool:
        if self.event_name in PULL_REQUEST_EVENTS:
            return True
        if self.event_name == "issue_comment":
            issue = self.payload.get("issue") or {}
            return bool(issue.get("pull_request"))
        return False

    @property
    def is_review_comment(self) -> bool:
        return self.event_name == "pull_request_review_comment"

    @property
    def entity_number(self) -> int | None:
        for key in ("pull_request", "issue"):
            entity = self.payload.get(key)
            if isinstance(entity, dict) and entity.get("number") is not None:
                try:
                    return int(entity["number"])
                except (TypeError, ValueError):
                    return None
        return None

    # -- payload accessors --

    def _entity(self) -> dict[str, Any]:
        entity = self.payload.get("pull_request") or self.payload.get("issue") or {}
        return entity if isinstance(entity, dict) else {}

    @property
    def comment_body(self) -> str:
        comment = self.payload.get("comment") or {}
        return str(comment.get("body") or "")

    @property
    def comment_id(self) -> int | None:
        comment = self.payload.get("comment") or {}
        value = comment.get("id")
        return int(value) if isinstance(value, int) else None

    @property
    def review_body(self) -> str:
        review = self.payload.get("review") or {}
        return str(review.get("body") or "")

    @property
    def entity_title(self) -> str:
        return str(self._entity().get("title") or "")

    @property
    def entity_body(self) -> str:
        return str(self._entity().get("body") or "")

    @property
    def entity_state(self) -> str:
        return str(self._entity().get("state") or "")

    @property
    def assignee_login(self) -> str:
        assignee = self.payload.get("assignee") or {}
        return str(assignee.get("login") or "")

    @property
    def label_name(self) -> str:
        label = self.payload.get("label") or {}
        return str(label.get("name") or "")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EventContext:
        """Read ``GITHUB_EVENT_*``, ``GITHUB_REPOSITORY`` and ``GITHUB_ACTOR``."""
        env = os.environ if environ is None else environ
        payload: dict[str, Any] = {}
        event_path = str(env.get("GITHUB_EVENT_PATH") or "").strip()
        if event_path:
            try:
                loaded = json.loads(Path(event_path).read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Could not read event payload %s: %s", event_path, exc)
            else:
                if isinstance(loaded, dict):
                    payload = loaded

        owner, _, repo = str(env.get("GITHUB_REPOSITORY") or "").partition("/")
        return cls(
            event_name=str(env.get("GITHUB_EVENT_NAME") or ""),
            event_action=str(payload.get("action") or ""),
            actor=str(env.get("GITHUB_ACTOR") or ""),
            repository=RepositoryRef(owner=owner, repo=repo),
            payload=payload,
        )
