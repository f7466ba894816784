"""Mode detection, allowed-tools parsing and per-mode preparation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from assistant_action.branch import BranchInfo
from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.errors import ActionError, AuthorizationDenied, InvalidBranchName
from assistant_action.git_tools import GitError
from assistant_action.modes import (
    GIT_CLI_TOOLS,
    PROMPT_FILE_NAME,
    detect_mode,
    parse_allowed_tools,
    prepare_agent_mode,
    prepare_tag_mode,
)

BRANCH = BranchInfo(base_branch="main", current_branch="assistant/issue-3-x", assistant_branch="assistant/issue-3-x")


def _comment_context() -> EventContext:
    return EventContext(
        event_name="issue_comment",
        event_action="created",
        actor="alice",
        repository={"owner": "octo", "repo": "widgets"},
        payload={
            "issue": {"number": 3, "title": "Broken build", "body": "CI fails on main"},
            "comment": {"id": 55, "body": "@assistant please fix the build"},
        },
    )


def _config(tmp_path: Path, **kwargs) -> ActionConfig:
    return ActionConfig(repo_root=tmp_path, runner_temp=tmp_path / "runner", home_dir=tmp_path / "home", **kwargs)


# ---------------------------------------------------------------------------
# detect_mode
# ---------------------------------------------------------------------------


def test_entity_event_without_prompt_is_tag_mode(tmp_path: Path):
    assert detect_mode(_comment_context(), _config(tmp_path)) == "tag"


def test_explicit_prompt_is_agent_mode(tmp_path: Path):
    assert detect_mode(_comment_context(), _config(tmp_path, prompt="Review this")) == "agent"


def test_automation_event_is_agent_mode(tmp_path: Path):
    assert detect_mode(EventContext(event_name="schedule"), _config(tmp_path)) == "agent"


# ---------------------------------------------------------------------------
# parse_allowed_tools
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        ("", []),
        ('--allowedTools "Edit,Read"', ["Edit", "Read"]),
        ("--allowedTools 'Bash(git log:*)'", ["Bash(git log:*)"]),
        ("--allowed-tools Edit,Write --model x", ["Edit", "Write"]),
        ('--allowedTools "Edit" --allowedTools Read --allowedTools "Edit"', ["Edit", "Read"]),
        ("--allowedTools --model", []),
        ("--max-turns 3", []),
    ],
)
def test_parse_allowed_tools(args: str, expected: list[str]):
    assert parse_allowed_tools(args) == expected


# ---------------------------------------------------------------------------
# Tag mode
# ---------------------------------------------------------------------------


def test_prepare_tag_mode_creates_comment_branch_and_prompt(fake_github, tmp_path: Path):
    fake_github.issue_comments = [
        {"id": 1, "body": "first thought", "user": {"login": "bob"}},
        {"id": 2, "body": "automated noise", "user": {"login": "ci[bot]"}},
    ]
    config = _config(tmp_path, exclude_comments_by_actor="*[bot]", claude_args='--allowedTools "WebFetch" --max-turns 5')

    with patch("assistant_action.modes.setup_branch", return_value=BRANCH) as setup, patch(
        "assistant_action.modes.git_tools"
    ) as git:
        result = prepare_tag_mode(fake_github, _comment_context(), config, "ghs_tok")

    assert fake_github.call_names()[:3] == ["get_user", "create_issue_comment", "list_issue_comments"]
    assert result.mode == "tag"
    assert result.comment_id == 1001
    assert result.branch_info == BRANCH
    setup.assert_called_once()
    git.configure_git_auth.assert_called_once()
    assert git.configure_git_auth.call_args.args[1] == "ghs_tok"
    git.setup_ssh_signing.assert_not_called()

    assert result.prompt_file == config.prompts_dir / PROMPT_FILE_NAME
    prompt = result.prompt_file.read_text(encoding="utf-8")
    assert "Broken build" in prompt
    assert "[bob]: first thought" in prompt
    assert "automated noise" not in prompt
    assert "please fix the build" in prompt

    assert result.workload_args[0] == "--allowedTools"
    tools = result.workload_args[1].split(",")
    assert "Edit" in tools
    assert "WebFetch" in tools
    assert set(GIT_CLI_TOOLS) <= set(tools)
    assert result.workload_args[2:] == ["--allowedTools", "WebFetch", "--max-turns", "5"]


def test_prepare_tag_mode_with_api_signing_skips_git_auth(fake_github, tmp_path: Path):
    config = _config(tmp_path, use_commit_signing=True)
    with patch("assistant_action.modes.setup_branch", return_value=BRANCH), patch(
        "assistant_action.modes.git_tools"
    ) as git:
        result = prepare_tag_mode(fake_github, _comment_context(), config, "tok")

    git.configure_git_auth.assert_not_called()
    assert not set(GIT_CLI_TOOLS) & set(result.workload_args[1].split(","))


def test_prepare_tag_mode_ssh_signing_takes_precedence(fake_github, tmp_path: Path):
    config = _config(tmp_path, use_commit_signing=True, ssh_signing_key="-----BEGIN KEY-----")
    with patch("assistant_action.modes.setup_branch", return_value=BRANCH), patch(
        "assistant_action.modes.git_tools"
    ) as git:
        result = prepare_tag_mode(fake_github, _comment_context(), config, "tok")

    git.setup_ssh_signing.assert_called_once()
    git.configure_git_auth.assert_called_once()
    assert set(GIT_CLI_TOOLS) <= set(result.workload_args[1].split(","))


def test_prepare_tag_mode_rejects_bot_before_side_effects(fake_github, tmp_path: Path):
    fake_github.users["other[bot]"] = {"login": "other[bot]", "type": "Bot"}
    ctx = _comment_context().model_copy(update={"actor": "other[bot]"})
    with patch("assistant_action.modes.setup_branch") as setup:
        with pytest.raises(AuthorizationDenied):
            prepare_tag_mode(fake_github, ctx, _config(tmp_path), "tok")
    assert "create_issue_comment" not in fake_github.call_names()
    setup.assert_not_called()


def test_prepare_tag_mode_requires_entity_event(fake_github, tmp_path: Path):
    with pytest.raises(ActionError, match="requires an issue or pull request"):
        prepare_tag_mode(fake_github, EventContext(event_name="schedule"), _config(tmp_path), "tok")


# ---------------------------------------------------------------------------
# Agent mode
# ---------------------------------------------------------------------------


def test_prepare_agent_mode_writes_prompt_and_branch_info(fake_github, tmp_path: Path):
    config = _config(tmp_path, prompt="Update the changelog", base_branch="develop", claude_args="--max-turns 2")
    ctx = EventContext(event_name="workflow_dispatch", actor="alice", repository={"owner": "o", "repo": "r"})
    with patch("assistant_action.modes.git_tools") as git:
        result = prepare_agent_mode(fake_github, ctx, config, "tok")

    git.configure_git_auth.assert_called_once()
    assert result.mode == "agent"
    assert result.comment_id is None
    assert result.prompt_file.read_text(encoding="utf-8") == "Update the changelog"
    assert result.branch_info == BranchInfo(base_branch="develop", current_branch="develop")
    assert result.workload_args == ["--max-turns", "2"]


def test_prepare_agent_mode_git_errors_are_not_fatal(fake_github, tmp_path: Path):
    config = _config(tmp_path, prompt="x", assistant_branch="assistant/work")
    with patch("assistant_action.modes.git_tools") as git:
        git.GitError = GitError
        git.configure_git_auth.side_effect = GitError("remote missing")
        result = prepare_agent_mode(fake_github, EventContext(event_name="schedule"), config, "tok")

    assert result.branch_info.current_branch == "assistant/work"
    assert result.branch_info.assistant_branch == "assistant/work"


def test_prepare_agent_mode_rejects_unsafe_branch_names(fake_github, tmp_path: Path):
    with patch("assistant_action.modes.git_tools"):
        with pytest.raises(InvalidBranchName, match="cannot contain"):
            prepare_agent_mode(
                fake_github,
                EventContext(event_name="schedule"),
                _config(tmp_path, prompt="x", assistant_branch="work;rm -rf"),
                "tok",
            )
        with pytest.raises(InvalidBranchName):
            prepare_agent_mode(
                fake_github,
                EventContext(event_name="schedule"),
                _config(tmp_path, prompt="x", base_branch="--upload-pack=evil"),
                "tok",
            )


def test_prepare_agent_mode_never_reports_a_comment(fake_github, tmp_path: Path):
    seen: list[int] = []
    with patch("assistant_action.modes.git_tools"):
        prepare_agent_mode(
            fake_github,
            EventContext(event_name="schedule"),
            _config(tmp_path, prompt="x"),
            "tok",
            on_comment_created=seen.append,
        )
    assert seen == []


# ---------------------------------------------------------------------------
# Tracking comment hand-off
# ---------------------------------------------------------------------------


def test_prepare_tag_mode_reports_comment_before_later_steps(fake_github, tmp_path: Path):
    seen: list[tuple[int, list[str]]] = []

    def record(comment_id: int) -> None:
        seen.append((comment_id, fake_github.call_names()))

    with patch("assistant_action.modes.setup_branch", side_effect=GitError("fetch failed")), patch(
        "assistant_action.modes.git_tools"
    ):
        with pytest.raises(GitError):
            prepare_tag_mode(fake_github, _comment_context(), _config(tmp_path), "tok", on_comment_created=record)

    assert seen == [(1001, ["get_user", "create_issue_comment"])]
