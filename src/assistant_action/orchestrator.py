"""Top-level run: authenticate, gate, detect the trigger, prepare, execute, clean up.

Phases run strictly in order. A failure is attributed to *preparation* or
*execution* purely from the phase the run had reached, so the tracking
comment and the ``prepare_error`` output can say which stage broke.
"""

from __future__ import annotations

import enum
import logging
import os
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass
from typing import Any, Literal

from assistant_action import git_tools
from assistant_action.actors import check_write_permissions
from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.credentials import CredentialBroker, Failed, Skipped, Success
from assistant_action.errors import AuthorizationDenied, ExecutionFailure
from assistant_action.github_api import GitHubClient
from assistant_action.modes import PREPARERS, PrepareResult, detect_mode
from assistant_action.outputs import ActionOutputs
from assistant_action.reporting import update_tracking_comment, write_step_summary
from assistant_action.triggers import check_contains_trigger
from assistant_action.workload import WorkloadResult, WorkloadRunner

logger = logging.getLogger(__name__)


class RunPhase(enum.IntEnum):
    INIT = 0
    AUTHENTICATED = 1
    PERMISSION_CHECKED = 2
    TRIGGER_CHECKED = 3
    PREPARED = 4
    EXECUTED = 5
    CLEANED_UP = 6
    FAILED = 7


class FailureStage(str, enum.Enum):
    PREPARATION = "prepare"
    EXECUTION = "execute"


def attribute(phase: RunPhase, error: BaseException) -> FailureStage:
    """Return the stage a failure belongs to.

    Workload failures are always execution failures. Anything else raised
    before preparation finished belongs to preparation.
    """
    if isinstance(error, ExecutionFailure):
        return FailureStage.EXECUTION
    if phase < RunPhase.PREPARED:
        return FailureStage.PREPARATION
    return FailureStage.EXECUTION


RunStatus = Literal["success", "skipped", "no_trigger", "failure"]


@dataclass(frozen=True, slots=True)
class RunOutcome:
    status: RunStatus
    phase: RunPhase
    failure_stage: FailureStage | None = None
    message: str = ""
    conclusion: str = ""

    @property
    def exit_code(self) -> int:
        return 1 if self.status == "failure" else 0


class PhaseOrchestrator:
    """Drive one run from credential acquisition to cleanup.

    Parameters
    ----------
    config, context:
        Immutable run configuration and the triggering event.
    outputs:
        Sink for step outputs and runner annotations.
    broker:
        Credential source; defaults to a :class:`CredentialBroker` on *config*.
    client_factory:
        Builds the repository API client from the credential.
    workload:
        Runner for the assistant CLI; built lazily when omitted.
    environ:
        Mapping the credential is exported into for later steps.
    """

    def __init__(
        self,
        config: ActionConfig,
        context: EventContext,
        *,
        outputs: ActionOutputs,
        broker: CredentialBroker | None = None,
        client_factory: Callable[[str], Any] | None = None,
        workload: WorkloadRunner | None = None,
        environ: MutableMapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.context = context
        self.outputs = outputs
        self.broker = broker or CredentialBroker(config)
        self.client_factory = client_factory or (
            lambda token: GitHubClient(token, api_url=config.api_url)
        )
        self._workload = workload
        self.environ = os.environ if environ is None else environ

        self.phase = RunPhase.INIT
        self.token = ""
        self.client: Any = None
        self.prepared: PrepareResult | None = None
        self.comment_id: int | None = None
        self.workload_result: WorkloadResult | None = None
        self.cleanup_runs = 0

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _authenticate(self) -> bool:
        """Resolve the credential; return False when the run should be skipped."""
        outcome = self.broker.acquire()
        match outcome:
            case Success(credential=credential):
                self.token = credential
                self.outputs.mask(credential)
                self.environ["GITHUB_TOKEN"] = credential
                self.environ["GH_TOKEN"] = credential
            case Skipped(reason=reason):
                logger.info("Run skipped: %s", reason)
                self.outputs.warning(f"Skipping action due to workflow validation: {reason}")
                self.outputs.set_output("skipped_due_to_workflow_validation_mismatch", "true")
                return False
            case Failed(error=error):
                raise error
        self.client = self.client_factory(self.token)
        self.phase = RunPhase.AUTHENTICATED
        return True

    def _check_permissions(self) -> None:
        if self.context.is_entity_event:
            allowed = check_write_permissions(
                self.client,
                self.context.repository.owner,
                self.context.repository.repo,
                self.context.actor,
                allowed_non_write_users=self.config.allowed_non_write_users,
                override_token_provided=self.config.override_token_provided,
            )
            if not allowed:
                raise AuthorizationDenied("Actor does not have write permissions to the repository")
        self.phase = RunPhase.PERMISSION_CHECKED

    def _check_trigger(self) -> bool:
        found = check_contains_trigger(self.context, self.config)
        self.outputs.set_output("contains_trigger", str(found).lower())
        if not found:
            logger.info("No trigger found, skipping remaining steps")
            return False
        self.phase = RunPhase.TRIGGER_CHECKED
        return True

    def _record_comment(self, comment_id: int) -> None:
        self.comment_id = comment_id

    def _prepare(self) -> PrepareResult:
        mode = detect_mode(self.context, self.config)
        logger.info("Auto-detected mode: %s for event: %s", mode, self.context.event_name)
        prepared = PREPARERS[mode](
            self.client,
            self.context,
            self.config,
            self.token,
            on_comment_created=self._record_comment,
        )
        self.prepared = prepared
        if prepared.comment_id is not None:
            self.comment_id = prepared.comment_id
        self.phase = RunPhase.PREPARED
        return prepared

    @property
    def workload(self) -> WorkloadRunner:
        if self._workload is None:
            self._workload = WorkloadRunner(
                self.config.executable,
                output_dir=self.config.runner_temp,
                model=self.config.model,
                env_overrides={
                    "GITHUB_TOKEN": self.token,
                    "GH_TOKEN": self.token,
                    "CLAUDE_CODE_ACTION": "1",
                    "INPUT_ACTION_INPUTS_PRESENT": self.config.inputs_presence,
                },
            )
        return self._workload

    def _execute(self, prepared: PrepareResult) -> WorkloadResult:
        result = self.workload.run(
            prepared.prompt_file,
            prepared.workload_args,
            cwd=self.config.repo_root,
        )
        self.workload_result = result
        self.outputs.set_output("conclusion", result.conclusion)
        if result.execution_file is not None:
            self.outputs.set_output("execution_file", str(result.execution_file))
        if result.session_id:
            self.outputs.set_output("session_id", result.session_id)
        if not result.succeeded:
            raise ExecutionFailure(result.error or "Assistant execution failed")
        self.phase = RunPhase.EXECUTED
        return result

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> RunOutcome:
        outcome = RunOutcome(status="failure", phase=self.phase)
        prepare_error = ""
        success = False
        try:
            if not self._authenticate():
                outcome = RunOutcome(status="skipped", phase=self.phase)
            else:
                self._check_permissions()
                if not self._check_trigger():
                    outcome = RunOutcome(status="no_trigger", phase=self.phase)
                else:
                    prepared = self._prepare()
                    result = self._execute(prepared)
                    success = True
                    outcome = RunOutcome(status="success", phase=self.phase, conclusion=result.conclusion)
        except Exception as exc:
            stage = attribute(self.phase, exc)
            message = str(exc) or exc.__class__.__name__
            logger.error("Run failed during %s: %s", stage.value, message)
            if stage is FailureStage.PREPARATION:
                prepare_error = message
                self.outputs.set_output("prepare_error", message)
                self.outputs.set_failed(f"Prepare step failed with error: {message}")
            else:
                self.outputs.set_failed(f"Execution failed with error: {message}")
            outcome = RunOutcome(
                status="failure",
                phase=self.phase,
                failure_stage=stage,
                message=message,
                conclusion=self.workload_result.conclusion if self.workload_result else "",
            )
            self.phase = RunPhase.FAILED
        finally:
            self._cleanup(success=success, prepare_error=prepare_error)
        return outcome

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _cleanup(self, *, success: bool, prepare_error: str) -> None:
        """Best-effort teardown; errors here are logged and never re-raised."""
        self.cleanup_runs += 1
        prepared = self.prepared
        execution_file = self.workload_result.execution_file if self.workload_result else None

        if self.comment_id is not None and self.client is not None:
            try:
                update_tracking_comment(
                    self.client,
                    self.context,
                    self.config,
                    comment_id=self.comment_id,
                    success=success,
                    branch_info=prepared.branch_info if prepared is not None else None,
                    execution_file=execution_file,
                    prepare_error=prepare_error,
                )
            except Exception as exc:
                logger.error("Failed to update tracking comment: %s", exc)

        if execution_file is not None and self.config.display_report:
            try:
                write_step_summary(self.outputs, execution_file)
            except Exception as exc:
                logger.error("Failed to write step summary: %s", exc)

        if self.config.ssh_signing_key.strip():
            try:
                git_tools.cleanup_ssh_signing(git_tools.ssh_signing_key_path(self.config.home_dir))
            except Exception as exc:
                logger.error("Failed to clean up SSH signing key: %s", exc)

        try:
            if prepared is not None:
                self.outputs.set_output("branch_name", prepared.branch_info.current_branch)
            self.outputs.set_output("github_token", self.token)
        except Exception as exc:
            logger.error("Failed to write final outputs: %s", exc)

        if self.phase is not RunPhase.FAILED:
            self.phase = RunPhase.CLEANED_UP
