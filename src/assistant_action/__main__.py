"""CLI entrypoint for assistant-action."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import MutableMapping
from pathlib import Path

from dotenv import load_dotenv

from assistant_action.config import ActionConfig
from assistant_action.context import EventContext
from assistant_action.errors import ValidationRejected
from assistant_action.git_tools import cleanup_ssh_signing, ssh_signing_key_path
from assistant_action.orchestrator import PhaseOrchestrator
from assistant_action.outputs import ActionOutputs
from assistant_action.security import validate_branch_name, validate_path_within_repo

logger = logging.getLogger(__name__)


def _load_dotenv() -> None:
    """Load .env from cwd or its parent; existing variables are never overridden."""
    for dir_ in (Path.cwd(), Path.cwd().parent):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file, override=False)
            return


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assistant-action",
        description="Run the coding assistant for a CI event.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Authenticate, prepare and run the assistant for the current event.")

    cleanup = sub.add_parser("cleanup-ssh-signing", help="Remove the SSH signing key written by a run.")
    cleanup.add_argument("--home", default="", help="Home directory holding .ssh (default: $HOME).")

    branch = sub.add_parser("validate-branch", help="Check a branch name against the safety rules.")
    branch.add_argument("name")

    path = sub.add_parser("validate-path", help="Check that a path stays inside a root directory.")
    path.add_argument("path")
    path.add_argument("--root", default=".", help="Root directory (default: current directory).")
    return parser


def _run(environ: MutableMapping[str, str] | None = None) -> int:
    env = os.environ if environ is None else environ
    config = ActionConfig.from_env(env)
    context = EventContext.from_env(env)
    outputs = ActionOutputs(config.github_output or None, config.github_step_summary or None)
    logger.info(
        "Starting run for %s event on %s (actor=%s)",
        context.event_name or "unknown",
        context.repository.full_name,
        context.actor or "unknown",
    )
    outcome = PhaseOrchestrator(config, context, outputs=outputs, environ=env).run()
    logger.info("Run finished: %s", outcome.status)
    return outcome.exit_code


def _cleanup_ssh_signing(args: argparse.Namespace) -> int:
    home = args.home or os.environ.get("HOME") or str(Path.home())
    cleanup_ssh_signing(ssh_signing_key_path(home))
    return 0


def _validate_branch(args: argparse.Namespace) -> int:
    try:
        validate_branch_name(args.name)
    except ValidationRejected as exc:
        print(exc, file=sys.stderr)
        return 1
    print(args.name)
    return 0


def _validate_path(args: argparse.Namespace) -> int:
    try:
        resolved = validate_path_within_repo(args.path, args.root)
    except ValidationRejected as exc:
        print(exc, file=sys.stderr)
        return 1
    print(resolved)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    _load_dotenv()

    if args.command == "run":
        return _run()
    if args.command == "cleanup-ssh-signing":
        return _cleanup_ssh_signing(args)
    if args.command == "validate-branch":
        return _validate_branch(args)
    if args.command == "validate-path":
        return _validate_path(args)

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
