"""Step outputs, job summary and workflow annotations for the CI runner."""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path
from typing import TextIO

from assistant_action.file_io import append_text

logger = logging.getLogger(__name__)


def _escape_command_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class ActionOutputs:
    """Opaque key/value sink consumed by later workflow steps.

    Values are appended to the ``GITHUB_OUTPUT`` file using heredoc
    delimiters so multi-line values survive. Every value is also kept in
    :attr:`values` for inspection.
    """

    def __init__(
        self,
        output_path: str | Path | None = None,
        summary_path: str | Path | None = None,
        *,
        stream: TextIO | None = None,
    ) -> None:
        self.output_path = Path(output_path) if output_path else None
        self.summary_path = Path(summary_path) if summary_path else None
        self._stream = stream
        self.values: dict[str, str] = {}
        self.failed = False
        self.failure_message = ""

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def _command(self, name: str, message: str) -> None:
        self.stream.write(f"::{name}::{_escape_command_data(message)}\n")
        self.stream.flush()

    def set_output(self, name: str, value: object) -> None:
        text = "" if value is None else str(value)
        self.values[name] = text
        if self.output_path is None:
            logger.debug("GITHUB_OUTPUT not set; output %s kept in memory only", name)
            return
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        append_text(self.output_path, f"{name}<<{delimiter}\n{text}\n{delimiter}\n")

    def mask(self, secret: str) -> None:
        """Ask the runner to redact *secret* from all subsequent log output."""
        if secret:
            self._command("add-mask", secret)

    def warning(self, message: str) -> None:
        self._command("warning", message)

    def error(self, message: str) -> None:
        self._command("error", message)

    def set_failed(self, message: str) -> None:
        self.failed = True
        self.failure_message = message
        self.error(message)

    def append_summary(self, markdown: str) -> None:
        if self.summary_path is None:
            return
        append_text(self.summary_path, markdown)
