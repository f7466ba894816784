"""assistant-action - run a coding assistant safely from CI events."""

from importlib.metadata import PackageNotFoundError, version

from assistant_action.orchestrator import PhaseOrchestrator, RunOutcome, RunPhase

__all__ = ["PhaseOrchestrator", "RunOutcome", "RunPhase"]

try:
    __version__ = version("assistant-action")
except PackageNotFoundError:
    __version__ = "0.0.0"
