"""Run the assistant CLI and record its stream-json output.

The CLI is invoked non-interactively::

    claude -p --output-format stream-json --verbose [args...] < prompt

Every JSON line is kept, in order, in an execution file that later steps
(tracking comment, step summary) read back.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from assistant_action.file_io import atomic_write_text

logger = logging.getLogger(__name__)

Conclusion = Literal["success", "failure"]

EXECUTION_FILE_NAME = "assistant-execution-output.json"
DEFAULT_TIMEOUT = 6 * 60 * 60


@dataclass(frozen=True, slots=True)
class WorkloadResult:
    conclusion: Conclusion
    execution_file: Path | None = None
    session_id: str = ""
    structured_output: Any = None
    exit_code: int = 0
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.conclusion == "success"


def resolve_binary(name: str) -> str:
    """Resolve *name* on ``PATH``; return it unchanged when not found."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    return shutil.which(expanded) or expanded


def parse_stream_json(stdout: str) -> list[dict[str, Any]]:
    """Return the JSON objects in *stdout*, skipping non-JSON lines."""
    events: list[dict[str, Any]] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Non-JSON line from workload: %s", line[:200])
            continue
        if isinstance(data, dict):
            events.append(data)
    return events


def _result_event(events: list[dict[str, Any]]) -> dict[str, Any] | None:
    for event in reversed(events):
        if event.get("type") == "result":
            return event
    return None


def _session_id(events: list[dict[str, Any]]) -> str:
    for event in events:
        value = event.get("session_id")
        if isinstance(value, str) and value:
            return value
    return ""


def _infer_error(events: list[dict[str, Any]], stderr: str, exit_code: int) -> str:
    result = _result_event(events)
    if result is not None and result.get("is_error"):
        text = result.get("result") or result.get("error")
        if isinstance(text, str) and text.strip():
            return text.strip()
    if stderr.strip():
        return stderr.strip()[-2000:]
    return f"Assistant exited with status {exit_code}"


class WorkloadRunner:
    """Spawn the assistant CLI with the prompt on stdin.

    Parameters
    ----------
    executable:
        Name or path of the assistant CLI.
    output_dir:
        Directory that receives the execution file.
    model:
        Passed as ``--model`` unless the workload args already name one.
    env_overrides:
        Extra variables for the child process (the credential, for example).
    """

    def __init__(
        self,
        executable: str = "claude",
        *,
        output_dir: Path,
        model: str = "",
        env_overrides: Mapping[str, str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self.executable = executable
        self.output_dir = Path(output_dir)
        self.model = model.strip()
        self.env_overrides = dict(env_overrides or {})
        self.timeout = timeout

    def build_command(self, args: list[str]) -> list[str]:
        cmd = [resolve_binary(self.executable), "-p", "--output-format", "stream-json", "--verbose"]
        has_model = any(a == "--model" or a.startswith("--model=") for a in args)
        if self.model and not has_model:
            cmd.extend(["--model", self.model])
        cmd.extend(args)
        return cmd

    def run(self, prompt_file: Path, args: list[str], *, cwd: Path) -> WorkloadResult:
        """Execute once and write the execution file; never raises on a non-zero exit."""
        prompt = Path(prompt_file).read_text(encoding="utf-8")
        cmd = self.build_command(list(args))
        logger.info("Running assistant (cwd=%s, args=%s, prompt_len=%s)", cwd, len(args), len(prompt))

        try:
            proc = subprocess.run(
                cmd,
                cwd=cwd,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, **self.env_overrides},
            )
        except FileNotFoundError:
            message = f"Assistant executable not found: {self.executable}"
            logger.error(message)
            return WorkloadResult(conclusion="failure", exit_code=-1, error=message)
        except subprocess.TimeoutExpired:
            message = f"Assistant timed out after {self.timeout}s"
            logger.error(message)
            return WorkloadResult(conclusion="failure", exit_code=-1, error=message)

        events = parse_stream_json(proc.stdout or "")
        execution_file = self.output_dir / EXECUTION_FILE_NAME
        atomic_write_text(execution_file, json.dumps(events, indent=2))
        logger.info("Wrote %s events to %s", len(events), execution_file)

        result = _result_event(events)
        failed = proc.returncode != 0 or bool(result and result.get("is_error"))
        return WorkloadResult(
            conclusion="failure" if failed else "success",
            execution_file=execution_file,
            session_id=_session_id(events),
            structured_output=(result or {}).get("structured_output"),
            exit_code=proc.returncode,
            error=_infer_error(events, proc.stderr or "", proc.returncode) if failed else "",
        )


def load_execution_events(path: str | Path | None) -> list[dict[str, Any]]:
    """Read an execution file back; missing or malformed files yield ``[]``."""
    if not path:
        return []
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read execution file %s: %s", path, exc)
        return []
    return [e for e in data if isinstance(e, dict)] if isinstance(data, list) else []
