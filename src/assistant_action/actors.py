"""Actor gates (human / allowed bot, write permission) and comment filters."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from assistant_action.errors import ActionError, AuthorizationDenied

logger = logging.getLogger(__name__)

BOT_SUFFIX = "[bot]"
BOT_WILDCARD = "*[bot]"
_WRITE_LEVELS = frozenset({"admin", "maintain", "write"})


class ActorLookup(Protocol):
    def get_user(self, login: str) -> dict[str, Any]: ...

    def get_collaborator_permission(self, owner: str, repo: str, username: str) -> str: ...


# ---------------------------------------------------------------------------
# Comment filters
# ---------------------------------------------------------------------------


def parse_actor_filter(filter_string: str | None) -> tuple[str, ...]:
    """Split ``"user1, user2, *[bot]"`` into patterns; blank means no filter."""
    return tuple(part.strip() for part in str(filter_string or "").split(",") if part.strip())


def actor_matches_pattern(actor: str, pattern: str) -> bool:
    """Exact match, or ``*[bot]`` against any login ending with ``[bot]``."""
    if actor == pattern:
        return True
    return pattern == BOT_WILDCARD and actor.endswith(BOT_SUFFIX)


def should_include_comment_by_actor(
    actor: str,
    include_actors: Sequence[str],
    exclude_actors: Sequence[str],
) -> bool:
    """Decide whether a comment by *actor* belongs in the conversation context.

    Exclusion is checked first and wins. A non-empty include list keeps only
    matching actors; with both lists empty every comment is kept.
    """
    if any(actor_matches_pattern(actor, pattern) for pattern in exclude_actors):
        return False
    if include_actors:
        return any(actor_matches_pattern(actor, pattern) for pattern in include_actors)
    return True


def filter_comments_by_actor(
    comments: Iterable[dict[str, Any]],
    include_actors: Sequence[str],
    exclude_actors: Sequence[str],
) -> list[dict[str, Any]]:
    """Keep API comment objects whose ``user.login`` passes the filter."""
    kept: list[dict[str, Any]] = []
    for comment in comments:
        login = str((comment.get("user") or {}).get("login") or "")
        if should_include_comment_by_actor(login, include_actors, exclude_actors):
            kept.append(comment)
    return kept


# ---------------------------------------------------------------------------
# Human / allowed-bot gate
# ---------------------------------------------------------------------------


def _normalize_bot_name(name: str) -> str:
    normalized = name.strip().lower()
    if normalized.endswith(BOT_SUFFIX):
        normalized = normalized[: -len(BOT_SUFFIX)]
    return normalized


def is_allowed_actor(login: str, account_type: str, allowed_bots: str) -> bool:
    """Return True for human accounts and for bots on the allow-list."""
    if account_type == "User":
        return True
    allowed = str(allowed_bots or "").strip()
    if allowed == "*":
        return True
    allowed_names = {_normalize_bot_name(part) for part in allowed.split(",") if part.strip()}
    return _normalize_bot_name(login) in allowed_names


def check_human_actor(client: ActorLookup, actor: str, allowed_bots: str) -> None:
    """Raise :class:`AuthorizationDenied` unless *actor* may trigger a run.

    Stops the assistant from reacting to its own or another automation's
    output.
    """
    try:
        user = client.get_user(actor)
    except ActionError as exc:
        raise AuthorizationDenied(f"Could not look up actor {actor}: {exc}") from exc
    account_type = str(user.get("type") or "")
    logger.info("Actor type: %s", account_type or "unknown")

    if not is_allowed_actor(actor, account_type, allowed_bots):
        bot_name = _normalize_bot_name(actor)
        raise AuthorizationDenied(
            f"Workflow initiated by non-human actor: {bot_name} (type: {account_type}). "
            "Add bot to allowed_bots list or use '*' to allow all bots."
        )
    if account_type == "User":
        logger.info("Verified human actor: %s", actor)
    else:
        logger.info("Bot %s is in allowed_bots, skipping human actor check", actor)


# ---------------------------------------------------------------------------
# Write-permission gate
# ---------------------------------------------------------------------------


def check_write_permissions(
    client: ActorLookup,
    owner: str,
    repo: str,
    actor: str,
    *,
    allowed_non_write_users: str = "",
    override_token_provided: bool = False,
) -> bool:
    """Return True when *actor* may run mutating operations on the repository.

    Passes when an override credential was supplied, when the actor is in
    the non-write allow-list, when the actor is an app, or when the
    collaborator permission is write-level.
    """
    logger.info("Checking permissions for actor: %s", actor)
    if override_token_provided:
        logger.info("Override credential supplied; write permission check bypassed")
        return True

    allowed_users = str(allowed_non_write_users or "").strip()
    if allowed_users == "*":
        logger.warning(
            "SECURITY WARNING: bypassing write permission check for %s because "
            "allowed_non_write_users='*'. Only use this for workflows with very limited permissions.",
            actor,
        )
        return True
    if allowed_users and actor in {u.strip() for u in allowed_users.split(",") if u.strip()}:
        logger.warning(
            "SECURITY WARNING: bypassing write permission check for %s (in allowed_non_write_users).",
            actor,
        )
        return True

    if actor.endswith(BOT_SUFFIX):
        logger.info("Actor is a GitHub App: %s", actor)
        return True

    try:
        permission = client.get_collaborator_permission(owner, repo, actor)
    except ActionError as exc:
        raise AuthorizationDenied(f"Failed to check permissions for {actor}: {exc}") from exc

    logger.info("Permission level retrieved: %s", permission or "none")
    if permission in _WRITE_LEVELS:
        logger.info("Actor has write access: %s", permission)
        return True
    logger.warning("Actor has insufficient permissions: %s", permission or "none")
    return False
