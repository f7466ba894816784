"""ActionConfig and EventContext construction from the environment."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from assistant_action.config import (
    DEFAULT_BRANCH_PREFIX,
    DEFAULT_TOKEN_EXCHANGE_URL,
    DEFAULT_TRIGGER_PHRASE,
    ActionConfig,
    collect_inputs_presence,
)
from assistant_action.context import EventContext


def test_defaults_from_empty_environment(tmp_path: Path):
    config = ActionConfig.from_env({"GITHUB_WORKSPACE": str(tmp_path)})
    assert config.trigger_phrase == DEFAULT_TRIGGER_PHRASE
    assert config.branch_prefix == DEFAULT_BRANCH_PREFIX
    assert config.token_exchange_url == DEFAULT_TOKEN_EXCHANGE_URL
    assert config.repo_root == tmp_path
    assert config.retry_max_attempts == 3
    assert config.display_report is True
    assert config.use_commit_signing is False
    assert not config.override_token_provided


def test_from_env_reads_inputs(tmp_path: Path):
    env = {
        "GITHUB_WORKSPACE": str(tmp_path),
        "OVERRIDE_GITHUB_TOKEN": " ghp_abc ",
        "TRIGGER_PHRASE": " /bot ",
        "ALLOWED_BOTS": "renovate",
        "USE_COMMIT_SIGNING": "true",
        "RETRY_MAX_ATTEMPTS": "5",
        "RETRY_BASE_DELAY_SECONDS": "0.5",
        "RUNNER_TEMP": str(tmp_path / "tmp"),
        "GITHUB_RUN_ID": "42",
        "DISPLAY_REPORT": "false",
    }
    config = ActionConfig.from_env(env)
    assert config.override_github_token == "ghp_abc"
    assert config.override_token_provided
    assert config.trigger_phrase == "/bot"
    assert config.allowed_bots == "renovate"
    assert config.use_commit_signing is True
    assert config.retry_max_attempts == 5
    assert config.retry_base_delay == 0.5
    assert config.prompts_dir == tmp_path / "tmp" / "assistant-prompts"
    assert config.job_url("o", "r") == "https://github.com/o/r/actions/runs/42"
    assert config.display_report is False


def test_bad_numbers_fall_back_to_defaults(tmp_path: Path):
    config = ActionConfig.from_env(
        {"GITHUB_WORKSPACE": str(tmp_path), "RETRY_MAX_ATTEMPTS": "lots", "RETRY_BASE_DELAY_SECONDS": "-3"}
    )
    assert config.retry_max_attempts == 3
    assert config.retry_base_delay == 0.0


def test_config_is_immutable():
    config = ActionConfig()
    with pytest.raises(ValidationError):
        config.prompt = "changed"


def test_secrets_hidden_from_repr():
    config = ActionConfig(override_github_token="ghp_secret", ssh_signing_key="KEY", oidc_request_token="req-secret")
    text = repr(config)
    assert "ghp_secret" not in text
    assert "KEY" not in text
    assert "req-secret" not in text


def test_collect_inputs_presence_reports_non_default_values():
    presence = json.loads(collect_inputs_presence(json.dumps({"trigger_phrase": "/bot", "prompt": ""})))
    assert presence["trigger_phrase"] is True
    assert presence["prompt"] is False
    assert presence["label_trigger"] is True  # missing differs from the non-empty default
    assert presence["base_branch"] is False


@pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]"])
def test_collect_inputs_presence_tolerates_bad_input(raw):
    assert collect_inputs_presence(raw) == "{}"


# ---------------------------------------------------------------------------
# Event context
# ---------------------------------------------------------------------------


def _write_event(tmp_path: Path, payload: dict) -> str:
    path = tmp_path / "event.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_context_from_issue_comment_on_pull_request(tmp_path: Path):
    payload = {
        "action": "created",
        "issue": {"number": 7, "title": "Fix it", "body": "desc", "state": "open", "pull_request": {"url": "x"}},
        "comment": {"id": 99, "body": "@assistant go"},
    }
    ctx = EventContext.from_env(
        {
            "GITHUB_EVENT_NAME": "issue_comment",
            "GITHUB_EVENT_PATH": _write_event(tmp_path, payload),
            "GITHUB_REPOSITORY": "octo/widgets",
            "GITHUB_ACTOR": "alice",
        }
    )
    assert ctx.event_action == "created"
    assert ctx.repository.owner == "octo"
    assert ctx.repository.repo == "widgets"
    assert ctx.repository.full_name == "octo/widgets"
    assert ctx.is_entity_event
    assert ctx.is_pr
    assert not ctx.is_review_comment
    assert ctx.entity_number == 7
    assert ctx.comment_id == 99
    assert ctx.comment_body == "@assistant go"
    assert ctx.entity_title == "Fix it"
    assert ctx.entity_state == "open"


def test_context_for_plain_issue_is_not_pr(tmp_path: Path):
    ctx = EventContext(event_name="issues", payload={"issue": {"number": 1}})
    assert ctx.is_entity_event
    assert not ctx.is_pr


def test_context_non_entity_event(tmp_path: Path):
    ctx = EventContext.from_env({"GITHUB_EVENT_NAME": "workflow_dispatch", "GITHUB_REPOSITORY": "o/r"})
    assert not ctx.is_entity_event
    assert ctx.entity_number is None
    assert ctx.payload == {}


def test_context_unreadable_event_file(tmp_path: Path):
    ctx = EventContext.from_env(
        {"GITHUB_EVENT_NAME": "issues", "GITHUB_EVENT_PATH": str(tmp_path / "missing.json")}
    )
    assert ctx.payload == {}
