"""Error taxonomy shared by every phase of a run.

The orchestrator's top-level handler is the only place that catches these
broadly; everything else raises and lets the run unwind.
"""

from __future__ import annotations


class ActionError(RuntimeError):
    """Base class for failures raised by the action itself."""


# ---------------------------------------------------------------------------
# Transient (retried by RetryPolicy, then surfaced)
# ---------------------------------------------------------------------------


class RetryableTransient(ActionError):
    """Network or identity failure that may succeed on a later attempt."""


class NetworkError(RetryableTransient):
    """Raised when an HTTP endpoint cannot be reached at all."""


class IdentityTokenError(RetryableTransient):
    """Raised when the runner cannot issue a workload identity token."""


class TokenExchangeError(RetryableTransient):
    """Raised when the credential exchange endpoint rejects the request."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Control flow
# ---------------------------------------------------------------------------


class WorkflowValidationSkip(ActionError):
    """The workflow file is not on the default branch yet; skip the run cleanly.

    This is never retried and never reported as a failure.
    """


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------


class GitHubAPIError(ActionError):
    """Raised when the repository host API returns a non-success status."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthorizationDenied(ActionError):
    """The triggering actor is not allowed to run the assistant."""


class ValidationRejected(ActionError, ValueError):
    """An untrusted path or branch name failed validation."""


class RootNotFound(ValidationRejected):
    """The repository root used for path containment does not exist."""


class PathEscapesRoot(ValidationRejected):
    """A candidate path resolves outside the repository root."""


class InvalidBranchName(ValidationRejected):
    """A branch name is unsafe to hand to git or a shell."""


class ExecutionFailure(ActionError):
    """The assistant workload ran but did not succeed."""
