"""Final tracking-comment update and job step summary."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

from assistant_action.branch import BranchInfo
from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.errors import GitHubAPIError
from assistant_action.outputs import ActionOutputs
from assistant_action.workload import load_execution_events

logger = logging.getLogger(__name__)

_MAX_RESULT_CHARS = 60_000


class CommentClient(Protocol):
    def get_issue_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]: ...

    def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]: ...

    def get_review_comment(self, owner: str, repo: str, comment_id: int) -> dict[str, Any]: ...

    def update_review_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]: ...

    def compare(self, owner: str, repo: str, base: str, head: str) -> dict[str, Any]: ...


def _result_event(events: list[dict[str, Any]]) -> dict[str, Any]:
    for event in reversed(events):
        if event.get("type") == "result":
            return event
    return {}


def _format_duration(ms: Any) -> str:
    try:
        seconds = int(float(ms) / 1000)
    except (TypeError, ValueError):
        return ""
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds}s" if minutes else f"{seconds}s"


def branch_has_changes(client: CommentClient, context: EventContext, branch_info: BranchInfo) -> bool:
    """True when the assistant branch differs from its base by commits or files."""
    if not branch_info.assistant_branch:
        return False
    try:
        comparison = client.compare(
            context.repository.owner,
            context.repository.repo,
            branch_info.base_branch,
            branch_info.assistant_branch,
        )
    except GitHubAPIError as exc:
        # A branch that was never pushed has nothing to compare.
        logger.info("Could not compare %s: %s", branch_info.assistant_branch, exc)
        return False
    return int(comparison.get("total_commits") or 0) > 0 or bool(comparison.get("files"))


def build_comment_body(
    context: EventContext,
    config: ActionConfig,
    *,
    success: bool,
    branch_info: BranchInfo | None,
    has_changes: bool,
    events: list[dict[str, Any]],
    prepare_error: str = "",
) -> str:
    owner, repo = context.repository.owner, context.repository.repo
    server = config.server_url.rstrip("/")
    result = _result_event(events)
    duration = _format_duration(result.get("duration_ms"))

    if success:
        header = f"**The assistant finished @{context.actor}'s task**"
        if duration:
            header = f"**The assistant finished @{context.actor}'s task in {duration}**"
    else:
        header = "**The assistant encountered an error**"
        if duration:
            header = f"**The assistant encountered an error after {duration}**"

    links = [f"[View job]({config.job_url(owner, repo)})"]
    if branch_info and branch_info.assistant_branch and has_changes:
        branch = branch_info.assistant_branch
        links.append(f"[`{branch}`]({server}/{owner}/{repo}/tree/{quote(branch, safe='/')})")
        title = quote(f"Changes for #{context.entity_number}: {context.entity_title}"[:200])
        links.append(
            f"[Create PR]({server}/{owner}/{repo}/compare/"
            f"{quote(branch_info.base_branch, safe='/')}...{quote(branch, safe='/')}"
            f"?quick_pull=1&title={title})"
        )

    parts = [header + " | " + " | ".join(links)]
    if prepare_error:
        parts.append(f"```\n{prepare_error}\n```")
    text = result.get("result")
    if isinstance(text, str) and text.strip():
        parts.append("---\n" + text.strip()[:_MAX_RESULT_CHARS])
    return "\n\n".join(parts) + "\n"


def update_tracking_comment(
    client: CommentClient,
    context: EventContext,
    config: ActionConfig,
    *,
    comment_id: int,
    success: bool,
    branch_info: BranchInfo | None = None,
    execution_file: Any = None,
    prepare_error: str = "",
) -> None:
    """Rewrite the tracking comment with the run's final status and links."""
    owner, repo = context.repository.owner, context.repository.repo

    use_review_api = False
    if context.is_review_comment:
        try:
            client.get_review_comment(owner, repo, comment_id)
            use_review_api = True
        except GitHubAPIError as exc:
            if exc.status != 404:
                raise
            logger.debug("Comment %s is not a review comment", comment_id)
    if not use_review_api:
        client.get_issue_comment(owner, repo, comment_id)

    has_changes = branch_has_changes(client, context, branch_info) if branch_info else False
    body = build_comment_body(
        context,
        config,
        success=success,
        branch_info=branch_info,
        has_changes=has_changes,
        events=load_execution_events(execution_file),
        prepare_error=prepare_error,
    )
    if use_review_api:
        client.update_review_comment(owner, repo, comment_id, body)
    else:
        client.update_issue_comment(owner, repo, comment_id, body)
    logger.info("Updated tracking comment %s", comment_id)


def build_step_summary(events: list[dict[str, Any]]) -> str:
    """Markdown report of the workload: turns, cost, duration and final text."""
    result = _result_event(events)
    lines = ["## Assistant report", ""]
    if not events:
        lines.append("No execution output was recorded.")
        return "\n".join(lines) + "\n"

    tool_uses: list[str] = []
    for event in events:
        if event.get("type") != "assistant":
            continue
        content = (event.get("message") or {}).get("content")
        if not isinstance(content, list):
            continue
        for block in content:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                tool_uses.append(str(block.get("name") or "unknown"))

    status = "failed" if result.get("is_error") else "succeeded"
    lines.append(f"- Status: {status}")
    if result.get("num_turns") is not None:
        lines.append(f"- Turns: {result['num_turns']}")
    duration = _format_duration(result.get("duration_ms"))
    if duration:
        lines.append(f"- Duration: {duration}")
    cost = result.get("total_cost_usd")
    if isinstance(cost, (int, float)):
        lines.append(f"- Cost: ${cost:.4f}")
    lines.append(f"- Tool calls: {len(tool_uses)}")
    text = result.get("result")
    if isinstance(text, str) and text.strip():
        lines.extend(["", "### Result", "", text.strip()[:_MAX_RESULT_CHARS]])
    return "\n".join(lines) + "\n"


def write_step_summary(outputs: ActionOutputs, execution_file: Any) -> None:
    outputs.append_summary(build_step_summary(load_execution_events(execution_file)))
