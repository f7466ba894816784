"""Working-branch selection for entity events."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from assistant_action import git_tools
from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.security import validate_branch_name

logger = logging.getLogger(__name__)


class RepositoryLookup(Protocol):
    def get_repository(self, owner: str, repo: str) -> dict[str, Any]: ...

    def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class BranchInfo:
    """``assistant_branch`` is set only when the run created a new branch."""

    base_branch: str
    current_branch: str
    assistant_branch: str | None = None


def new_branch_name(prefix: str, *, is_pr: bool, number: int | None, now: dt.datetime | None = None) -> str:
    """Return a validated ``<prefix><issue|pr>-<n>-<YYYYMMDD-HHMM>`` name."""
    stamp = (now or dt.datetime.now(dt.timezone.utc)).strftime("%Y%m%d-%H%M")
    kind = "pr" if is_pr else "issue"
    suffix = f"{kind}-{number}-{stamp}" if number is not None else f"run-{stamp}"
    return validate_branch_name(f"{prefix}{suffix}")


def setup_branch(
    client: RepositoryLookup,
    context: EventContext,
    config: ActionConfig,
    *,
    now: dt.datetime | None = None,
) -> BranchInfo:
    """Check out the branch the assistant will work on.

    Open pull requests are worked on in place (their head branch). Issues
    and closed pull requests get a fresh branch from the base branch.
    """
    owner, repo = context.repository.owner, context.repository.repo
    repo_root = config.repo_root
    number = context.entity_number

    if context.is_pr and number is not None:
        pr = client.get_pull_request(owner, repo, number)
        state = str(pr.get("state") or "")
        head_ref = str((pr.get("head") or {}).get("ref") or "")
        base_ref = str((pr.get("base") or {}).get("ref") or "")
        if state == "open" and head_ref:
            validate_branch_name(head_ref)
            logger.info("PR #%s is open, checking out head branch %s", number, head_ref)
            git_tools.fetch_branch(repo_root, head_ref, depth=int(pr.get("commits") or 0) + 1)
            git_tools.checkout_branch(repo_root, head_ref)
            return BranchInfo(base_branch=base_ref or head_ref, current_branch=head_ref)
        logger.info("PR #%s is %s, creating a new branch", number, state or "not open")

    base = config.base_branch.strip()
    if not base:
        base = str(client.get_repository(owner, repo).get("default_branch") or "main")
    validate_branch_name(base)

    branch = new_branch_name(config.branch_prefix, is_pr=context.is_pr, number=number, now=now)
    git_tools.fetch_branch(repo_root, base, depth=1)
    git_tools.create_branch(repo_root, branch, f"origin/{base}")
    return BranchInfo(base_branch=base, current_branch=branch, assistant_branch=branch)
