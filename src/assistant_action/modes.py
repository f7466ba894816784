"""Mode detection and per-mode preparation.

``tag`` mode answers mentions, assignments and labels on issues and pull
requests and keeps a tracking comment up to date. ``agent`` mode runs an
explicitly configured prompt, typically from automation events.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol

from assistant_action import git_tools
from assistant_action.actors import (
    check_human_actor,
    filter_comments_by_actor,
    parse_actor_filter,
)
from assistant_action.branch import BranchInfo, setup_branch
from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.errors import ActionError
from assistant_action.file_io import atomic_write_text
from assistant_action.security import validate_branch_name, validate_path_within_repo
from assistant_action.triggers import extract_user_request

logger = logging.getLogger(__name__)

Mode = Literal["tag", "agent"]
CommentCallback = Callable[[int], None]

PROMPT_FILE_NAME = "assistant-prompt.txt"
INITIAL_COMMENT_BODY = "The assistant is working on this. Updates will appear in this comment."
_COMMENT_CONTEXT_LIMIT = 50

TAG_MODE_TOOLS: tuple[str, ...] = (
    "Edit",
    "MultiEdit",
    "Glob",
    "Grep",
    "LS",
    "Read",
    "Write",
)
GIT_CLI_TOOLS: tuple[str, ...] = (
    "Bash(git add:*)",
    "Bash(git commit:*)",
    "Bash(git push:*)",
    "Bash(git status:*)",
    "Bash(git diff:*)",
    "Bash(git log:*)",
    "Bash(git rm:*)",
)

_ALLOWED_TOOLS_PATTERNS = (
    re.compile(r"--(?:allowedTools|allowed-tools)\s+\"([^\"]+)\""),
    re.compile(r"--(?:allowedTools|allowed-tools)\s+'([^']+)'"),
    re.compile(r"--(?:allowedTools|allowed-tools)\s+([^'\"\s]\S*)"),
)


class ModeClient(Protocol):
    def get_user(self, login: str) -> dict[str, Any]: ...

    def get_repository(self, owner: str, repo: str) -> dict[str, Any]: ...

    def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]: ...

    def list_issue_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]: ...

    def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class PrepareResult:
    """Everything the workload phase and the cleanup phase need."""

    mode: Mode
    branch_info: BranchInfo
    prompt_file: Path
    workload_args: list[str] = field(default_factory=list)
    comment_id: int | None = None


def detect_mode(context: EventContext, config: ActionConfig) -> Mode:
    """Entity events without an explicit prompt are ``tag``; everything else is ``agent``."""
    if context.is_entity_event and not config.prompt.strip():
        return "tag"
    return "agent"


def parse_allowed_tools(args: str) -> list[str]:
    """Collect tool names from every ``--allowedTools`` flag in *args*.

    Handles double-quoted, single-quoted and bare values, repeated flags and
    duplicates; a value that is itself a flag is ignored.
    """
    tools: list[str] = []
    seen: set[str] = set()
    for pattern in _ALLOWED_TOOLS_PATTERNS:
        for match in pattern.finditer(args or ""):
            value = match.group(1)
            if not value or value.startswith("--"):
                continue
            for tool in value.split(","):
                name = tool.strip()
                if name and name not in seen:
                    seen.add(name)
                    tools.append(name)
    return tools


def write_prompt_file(config: ActionConfig, content: str) -> Path:
    """Write the prompt under the runner's temp dir and return its validated path."""
    prompts_dir = config.prompts_dir
    prompts_dir.mkdir(parents=True, exist_ok=True)
    path = validate_path_within_repo(PROMPT_FILE_NAME, prompts_dir)
    atomic_write_text(path, content)
    logger.info("Prompt written to %s (%s chars)", path, len(content))
    return path


def _configure_git(config: ActionConfig, context: EventContext, token: str) -> None:
    """SSH signing takes precedence; API commit signing needs no local git auth."""
    use_ssh = bool(config.ssh_signing_key.strip())
    if use_ssh:
        git_tools.setup_ssh_signing(
            config.repo_root,
            config.ssh_signing_key,
            key_path=git_tools.ssh_signing_key_path(config.home_dir),
        )
    elif config.use_commit_signing:
        return
    git_tools.configure_git_auth(
        config.repo_root,
        token,
        owner=context.repository.owner,
        repo_name=context.repository.repo,
        login=config.bot_name,
        user_id=config.bot_id,
        server_url=config.server_url,
    )


def _tag_prompt(
    context: EventContext,
    config: ActionConfig,
    branch_info: BranchInfo,
    comments: list[dict[str, Any]],
    comment_id: int,
) -> str:
    kind = "pull request" if context.is_pr else "issue"
    request = extract_user_request(
        context.comment_body or context.review_body or context.entity_body,
        config.trigger_phrase,
    )
    lines = [
        f"Repository: {context.repository.full_name}",
        f"{kind.capitalize()} #{context.entity_number}: {context.entity_title}",
        f"Triggered by: {context.actor} ({context.event_name})",
        f"Base branch: {branch_info.base_branch}",
        f"Working branch: {branch_info.current_branch}",
        f"Tracking comment id: {comment_id}",
        "",
        f"<{kind.replace(' ', '_')}_body>",
        context.entity_body,
        f"</{kind.replace(' ', '_')}_body>",
        "",
        "<comments>",
    ]
    for comment in comments[-_COMMENT_CONTEXT_LIMIT:]:
        author = str((comment.get("user") or {}).get("login") or "unknown")
        lines.append(f"[{author}]: {comment.get('body') or ''}")
    lines.extend(["</comments>", "", "<request>", request or context.entity_body, "</request>"])
    return "\n".join(lines) + "\n"


def prepare_tag_mode(
    client: ModeClient,
    context: EventContext,
    config: ActionConfig,
    token: str,
    *,
    on_comment_created: CommentCallback | None = None,
) -> PrepareResult:
    """Gate the actor, open the tracking comment, set up the branch and prompt.

    *on_comment_created* receives the tracking comment id as soon as the
    comment exists, so the caller can still update it if a later step fails.
    """
    if not context.is_entity_event or context.entity_number is None:
        raise ActionError("Tag mode requires an issue or pull request event")
    owner, repo = context.repository.owner, context.repository.repo
    number = context.entity_number

    check_human_actor(client, context.actor, config.allowed_bots)

    comment = client.create_issue_comment(owner, repo, number, INITIAL_COMMENT_BODY)
    comment_id = int(comment["id"])
    logger.info("Created tracking comment %s", comment_id)
    if on_comment_created is not None:
        on_comment_created(comment_id)

    comments = filter_comments_by_actor(
        client.list_issue_comments(owner, repo, number),
        parse_actor_filter(config.include_comments_by_actor),
        parse_actor_filter(config.exclude_comments_by_actor),
    )
    comments = [c for c in comments if c.get("id") != comment_id]

    branch_info = setup_branch(client, context, config)
    _configure_git(config, context, token)

    prompt_file = write_prompt_file(config, _tag_prompt(context, config, branch_info, comments, comment_id))

    use_api_signing = config.use_commit_signing and not config.ssh_signing_key.strip()
    tools = list(TAG_MODE_TOOLS)
    if not use_api_signing:
        tools.extend(GIT_CLI_TOOLS)
    for tool in parse_allowed_tools(config.claude_args):
        if tool not in tools:
            tools.append(tool)

    args = ["--allowedTools", ",".join(tools), *shlex.split(config.claude_args)]
    return PrepareResult(
        mode="tag",
        branch_info=branch_info,
        prompt_file=prompt_file,
        workload_args=args,
        comment_id=comment_id,
    )


def prepare_agent_mode(
    client: ModeClient,
    context: EventContext,
    config: ActionConfig,
    token: str,
    *,
    on_comment_created: CommentCallback | None = None,
) -> PrepareResult:
    """Gate the actor, configure git best-effort and write the configured prompt.

    Agent mode opens no tracking comment, so *on_comment_created* is never called.
    """
    if context.actor:
        check_human_actor(client, context.actor, config.allowed_bots)

    try:
        _configure_git(config, context, token)
    except (git_tools.GitError, OSError, ValueError) as exc:
        logger.error("Failed to configure git authentication: %s", exc)

    base = validate_branch_name(config.base_branch.strip() or "main")
    assistant_branch = config.assistant_branch.strip() or None
    if assistant_branch is not None:
        validate_branch_name(assistant_branch)

    content = config.prompt or f"Repository: {context.repository.full_name}"
    prompt_file = write_prompt_file(config, content)
    return PrepareResult(
        mode="agent",
        branch_info=BranchInfo(
            base_branch=base,
            current_branch=assistant_branch or base,
            assistant_branch=assistant_branch,
        ),
        prompt_file=prompt_file,
        workload_args=shlex.split(config.claude_args),
    )


PREPARERS: dict[Mode, Callable[..., PrepareResult]] = {
    "tag": prepare_tag_mode,
    "agent": prepare_agent_mode,
}
