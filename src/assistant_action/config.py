"""Run configuration, built once from the environment at process start."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_PHRASE = "@assistant"
DEFAULT_LABEL_TRIGGER = "assistant"
DEFAULT_BRANCH_PREFIX = "assistant/"
DEFAULT_BOT_NAME = "assistant-bot[bot]"
DEFAULT_BOT_ID = "41898282"
DEFAULT_TOKEN_EXCHANGE_URL = "https://api.anthropic.com/api/github/github-app-token-exchange"
DEFAULT_OIDC_AUDIENCE = "claude-code-github-action"

# Input defaults used to report which inputs the workflow actually set.
INPUT_DEFAULTS: dict[str, str] = {
    "trigger_phrase": DEFAULT_TRIGGER_PHRASE,
    "assignee_trigger": "",
    "label_trigger": DEFAULT_LABEL_TRIGGER,
    "base_branch": "",
    "branch_prefix": DEFAULT_BRANCH_PREFIX,
    "allowed_bots": "",
    "allowed_non_write_users": "",
    "include_comments_by_actor": "",
    "exclude_comments_by_actor": "",
    "prompt": "",
    "additional_permissions": "",
    "settings": "",
    "github_token": "",
    "claude_args": "",
    "use_commit_signing": "false",
    "ssh_signing_key": "",
}


def _env_flag(value: str | None, *, default: bool = False) -> bool:
    text = str(value or "").strip().lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "on"}


def _env_int(value: str | None, default: int) -> int:
    try:
        return int(str(value or "").strip())
    except ValueError:
        return default


def _env_float(value: str | None, default: float) -> float:
    try:
        return float(str(value or "").strip())
    except ValueError:
        return default


class ActionConfig(BaseModel):
    """Immutable settings for a single run.

    Components receive this object explicitly and never read ``os.environ``
    themselves.
    """

    model_config = ConfigDict(frozen=True)

    # Credentials
    override_github_token: str = Field(default="", repr=False)
    additional_permissions: str = ""
    token_exchange_url: str = DEFAULT_TOKEN_EXCHANGE_URL
    oidc_audience: str = DEFAULT_OIDC_AUDIENCE
    oidc_request_url: str = ""
    oidc_request_token: str = Field(default="", repr=False)
    retry_max_attempts: int = 3
    retry_base_delay: float = 5.0

    # Actor gates and filters
    allowed_bots: str = ""
    allowed_non_write_users: str = ""
    include_comments_by_actor: str = ""
    exclude_comments_by_actor: str = ""

    # Triggers and modes
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE
    assignee_trigger: str = ""
    label_trigger: str = DEFAULT_LABEL_TRIGGER
    prompt: str = ""

    # Branches and git identity
    base_branch: str = ""
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    assistant_branch: str = ""
    bot_name: str = DEFAULT_BOT_NAME
    bot_id: str = DEFAULT_BOT_ID
    use_commit_signing: bool = False
    ssh_signing_key: str = Field(default="", repr=False)

    # Workload
    claude_args: str = ""
    executable: str = "claude"
    model: str = ""
    display_report: bool = True
    inputs_presence: str = "{}"

    # Runner environment
    repo_root: Path = Path(".")
    runner_temp: Path = Path("/tmp")
    home_dir: Path = Path("~")
    github_output: str = ""
    github_step_summary: str = ""
    server_url: str = "https://github.com"
    api_url: str = "https://api.github.com"
    run_id: str = ""

    @field_validator("trigger_phrase", "label_trigger", "branch_prefix")
    @classmethod
    def _strip(cls, value: str) -> str:
        return str(value or "").strip()

    @property
    def override_token_provided(self) -> bool:
        return bool(self.override_github_token.strip())

    @property
    def prompts_dir(self) -> Path:
        return self.runner_temp / "assistant-prompts"

    def job_url(self, owner: str, repo: str) -> str:
        return f"{self.server_url.rstrip('/')}/{owner}/{repo}/actions/runs/{self.run_id}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ActionConfig:
        """Build the configuration from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            value = env.get(name)
            return default if value is None else str(value)

        workspace = get("GITHUB_WORKSPACE") or os.getcwd()
        return cls(
            override_github_token=get("OVERRIDE_GITHUB_TOKEN").strip(),
            additional_permissions=get("ADDITIONAL_PERMISSIONS"),
            token_exchange_url=get("TOKEN_EXCHANGE_URL") or DEFAULT_TOKEN_EXCHANGE_URL,
            oidc_audience=get("OIDC_AUDIENCE") or DEFAULT_OIDC_AUDIENCE,
            oidc_request_url=get("ACTIONS_ID_TOKEN_REQUEST_URL"),
            oidc_request_token=get("ACTIONS_ID_TOKEN_REQUEST_TOKEN"),
            retry_max_attempts=max(1, _env_int(get("RETRY_MAX_ATTEMPTS"), 3)),
            retry_base_delay=max(0.0, _env_float(get("RETRY_BASE_DELAY_SECONDS"), 5.0)),
            allowed_bots=get("ALLOWED_BOTS"),
            allowed_non_write_users=get("ALLOWED_NON_WRITE_USERS"),
            include_comments_by_actor=get("INCLUDE_COMMENTS_BY_ACTOR"),
            exclude_comments_by_actor=get("EXCLUDE_COMMENTS_BY_ACTOR"),
            trigger_phrase=get("TRIGGER_PHRASE") or DEFAULT_TRIGGER_PHRASE,
            assignee_trigger=get("ASSIGNEE_TRIGGER"),
            label_trigger=get("LABEL_TRIGGER") or DEFAULT_LABEL_TRIGGER,
            prompt=get("PROMPT"),
            base_branch=get("BASE_BRANCH"),
            branch_prefix=get("BRANCH_PREFIX") or DEFAULT_BRANCH_PREFIX,
            assistant_branch=get("ASSISTANT_BRANCH"),
            bot_name=get("BOT_NAME") or DEFAULT_BOT_NAME,
            bot_id=get("BOT_ID") or DEFAULT_BOT_ID,
            use_commit_signing=_env_flag(get("USE_COMMIT_SIGNING")),
            ssh_signing_key=get("SSH_SIGNING_KEY"),
            claude_args=get("CLAUDE_ARGS"),
            executable=get("PATH_TO_CLAUDE_CODE_EXECUTABLE") or "claude",
            model=get("ANTHROPIC_MODEL"),
            display_report=_env_flag(get("DISPLAY_REPORT"), default=True),
            inputs_presence=collect_inputs_presence(get("ALL_INPUTS")),
            repo_root=Path(workspace),
            runner_temp=Path(get("RUNNER_TEMP") or "/tmp"),
            home_dir=Path(get("HOME") or os.path.expanduser("~")),
            github_output=get("GITHUB_OUTPUT"),
            github_step_summary=get("GITHUB_STEP_SUMMARY"),
            server_url=get("GITHUB_SERVER_URL") or "https://github.com",
            api_url=get("GITHUB_API_URL") or "https://api.github.com",
            run_id=get("GITHUB_RUN_ID"),
        )


def collect_inputs_presence(all_inputs_json: str | None) -> str:
    """Return a JSON object mapping each known input to "was it set?".

    An input counts as set when its value differs from the default.
    Missing or malformed input JSON yields ``"{}"``.
    """
    raw = str(all_inputs_json or "").strip()
    if not raw:
        logger.debug("ALL_INPUTS is not set")
        return json.dumps({})
    try:
        all_inputs = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse ALL_INPUTS JSON: %s", exc)
        return json.dumps({})
    if not isinstance(all_inputs, dict):
        return json.dumps({})

    present: dict[str, bool] = {}
    for name, default in INPUT_DEFAULTS.items():
        actual = str(all_inputs.get(name) or "")
        present[name] = actual != default
    return json.dumps(present)
