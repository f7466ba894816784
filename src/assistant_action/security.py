"""Validators for untrusted paths and branch names.

Both run before a value reaches the filesystem, git, or a shell. Neither
caches anything: the filesystem can change between calls, so every call
resolves from scratch.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from assistant_action.errors import InvalidBranchName, PathEscapesRoot, RootNotFound

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def _realpath(path: str | os.PathLike[str]) -> Path:
    """Resolve symlinks, raising ``OSError`` when the path does not exist."""
    try:
        return Path(path).resolve(strict=True)
    except RuntimeError as exc:  # symlink loop on older interpreters
        raise OSError(str(exc)) from exc


def _is_within(path: Path, root: Path) -> bool:
    """Component-wise containment; ``/repo-evil`` is not inside ``/repo``."""
    return path == root or root in path.parents


def validate_path_within_repo(
    candidate: str | os.PathLike[str],
    repo_root: str | os.PathLike[str],
) -> Path:
    """Return the absolute path for *candidate* if it stays inside *repo_root*.

    Existing targets are returned with symlinks resolved. A target that does
    not exist yet is accepted when its parent directory resolves inside the
    root; the lexically normalized path is returned in that case.

    Raises
    ------
    RootNotFound
        *repo_root* does not exist.
    PathEscapesRoot
        The candidate (or, for new files, its parent) resolves outside.
    """
    raw = os.fspath(candidate)
    root_text = os.fspath(repo_root)
    lexical = os.path.normpath(os.path.join(os.path.abspath(root_text), raw))
    escape_message = f"Path '{raw}' resolves outside the repository root"

    try:
        resolved_root = _realpath(root_text)
    except OSError:
        raise RootNotFound(f"Repository root '{root_text}' does not exist") from None

    try:
        resolved = _realpath(lexical)
    except OSError:
        resolved = None

    if resolved is not None:
        if not _is_within(resolved, resolved_root):
            raise PathEscapesRoot(escape_message)
        return resolved

    # New file: only the parent can be realpath'd.
    lexical_path = Path(lexical)
    if ".." in lexical_path.parts:
        raise PathEscapesRoot(escape_message)
    if os.path.lexists(lexical):
        # Dangling symlink; its eventual target must stay inside too.
        if not _is_within(lexical_path.resolve(strict=False), resolved_root):
            raise PathEscapesRoot(escape_message)
    try:
        resolved_parent = _realpath(lexical_path.parent)
    except OSError:
        raise PathEscapesRoot(escape_message) from None
    if not _is_within(resolved_parent, resolved_root):
        raise PathEscapesRoot(escape_message)
    return lexical_path


# ---------------------------------------------------------------------------
# Branch names
# ---------------------------------------------------------------------------

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s")
_SHELL_SEQUENCES = ("$(", "`", ";", "&&", "||", "|", "<", ">", "$", "&")
_GIT_SPECIAL_CHARS = frozenset("~^:?*[]\\")
_ALLOWED_BRANCH_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9/_.-]*$")


def _reject(name: str, reason: str) -> InvalidBranchName:
    return InvalidBranchName(f'Invalid branch name: "{name}". {reason}')


def validate_branch_name(name: str) -> str:
    """Return *name* unchanged if it is safe to pass to git; raise otherwise.

    Each rule raises :class:`InvalidBranchName` with its own message so the
    caller can report exactly what was wrong.
    """
    if not name or not name.strip():
        raise InvalidBranchName("Branch name cannot be empty")
    if name.startswith("-"):
        raise _reject(name, "Branch names cannot start with a dash (-).")
    if _CONTROL_CHARS_RE.search(name):
        raise _reject(name, "Branch names cannot contain control characters.")
    if _WHITESPACE_RE.search(name):
        raise _reject(name, "Branch names cannot contain whitespace.")
    for sequence in _SHELL_SEQUENCES:
        if sequence in name:
            raise _reject(name, f"Branch names cannot contain shell metacharacters ('{sequence}').")
    special = sorted({ch for ch in name if ch in _GIT_SPECIAL_CHARS})
    if special:
        raise _reject(
            name,
            "Branch names cannot contain special git characters (~^:?*[]\\): "
            + " ".join(special),
        )
    if ".." in name:
        raise _reject(name, "Branch names cannot contain '..'")
    if "@{" in name:
        raise _reject(name, "Branch names cannot contain '@{'.")
    if name.endswith(".lock"):
        raise _reject(name, "Branch names cannot end with '.lock'.")
    if "//" in name:
        raise _reject(name, "Branch names cannot contain consecutive slashes.")
    if name.endswith("/"):
        raise _reject(name, "Branch names cannot end with a slash.")
    if name.startswith("/"):
        raise _reject(name, "Branch names cannot start with a slash.")
    if name.startswith(".") or name.endswith("."):
        raise _reject(name, "Branch names cannot start or end with a period.")
    if any(part.startswith(".") for part in name.split("/")):
        raise _reject(name, "Branch name components cannot start with a period.")
    if not _ALLOWED_BRANCH_RE.match(name):
        raise _reject(
            name,
            "Branch names must start with an alphanumeric character and contain only "
            "alphanumeric characters, forward slashes, hyphens, underscores, or periods.",
        )
    return name


def is_valid_branch_name(name: str) -> bool:
    """Return True when :func:`validate_branch_name` would accept *name*."""
    try:
        validate_branch_name(name)
    except InvalidBranchName as exc:
        logger.debug("%s", exc)
        return False
    return True
