"""Git helpers for branch setup, authentication and commit signing.

Every command is run as an argument vector; nothing goes through a shell.
Branch names are validated before they reach git.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from urllib.parse import urlparse

from assistant_action.file_io import atomic_write_text
from assistant_action.security import validate_branch_name

logger = logging.getLogger(__name__)

SSH_SIGNING_KEY_NAME = "assistant_signing_key"
_TOKEN_IN_URL_RE = re.compile(r"(x-access-token:)[^@\s]+(@)")


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _redact(text: str) -> str:
    return _TOKEN_IN_URL_RE.sub(r"\1***\2", text)


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 60,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", _redact(" ".join(args)), cwd)
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    if check and result.returncode != 0:
        raise GitError(
            f"`git {_redact(' '.join(args))}` failed (rc={result.returncode}): "
            f"{_redact(result.stderr.strip())}"
        )
    return result


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def current_branch(repo: str | Path) -> str:
    """Return the name of the current branch."""
    return _run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=Path(repo)).stdout.strip()


def fetch_branch(repo: str | Path, branch: str, *, remote: str = "origin", depth: int | None = None) -> None:
    """Fetch *branch* from *remote* into ``refs/remotes/<remote>/<branch>``."""
    validate_branch_name(branch)
    args = ["fetch", remote]
    if depth:
        args.append(f"--depth={int(depth)}")
    args.extend(["--", f"refs/heads/{branch}:refs/remotes/{remote}/{branch}"])
    _run_git(*args, cwd=Path(repo))


def checkout_branch(repo: str | Path, branch: str, *, remote: str = "origin") -> None:
    """Check out *branch*, tracking ``<remote>/<branch>`` when it is new locally."""
    validate_branch_name(branch)
    cwd = Path(repo)
    local = _run_git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", cwd=cwd, check=False)
    if local.returncode == 0:
        _run_git("checkout", branch, "--", cwd=cwd)
    else:
        _run_git("checkout", "-b", branch, "--track", f"{remote}/{branch}", cwd=cwd)
    logger.info("Checked out %s", branch)


def create_branch(repo: str | Path, branch: str, start_point: str) -> str:
    """Create *branch* at *start_point* and check it out; return its name."""
    validate_branch_name(branch)
    _run_git("checkout", "-b", branch, start_point, cwd=Path(repo))
    logger.info("Created branch %s from %s", branch, start_point)
    return branch


# ---------------------------------------------------------------------------
# Authentication and signing
# ---------------------------------------------------------------------------


def noreply_email(login: str, user_id: str, server_url: str) -> str:
    host = urlparse(server_url).hostname or "github.com"
    domain = "users.noreply.github.com" if host == "github.com" else f"users.noreply.{host}"
    return f"{user_id}+{login}@{domain}"


def configure_git_auth(
    repo: str | Path,
    token: str,
    *,
    owner: str,
    repo_name: str,
    login: str,
    user_id: str,
    server_url: str = "https://github.com",
) -> None:
    """Set the commit identity and point ``origin`` at a token-authenticated URL."""
    cwd = Path(repo)
    server = server_url.rstrip("/")
    _run_git("config", "user.name", login, cwd=cwd)
    _run_git("config", "user.email", noreply_email(login, user_id, server), cwd=cwd)
    logger.info("Set git user as %s", login)

    # actions/checkout persists its own auth header; it would shadow the token.
    unset = _run_git("config", "--unset-all", f"http.{server}/.extraheader", cwd=cwd, check=False)
    if unset.returncode == 0:
        logger.info("Removed existing authentication headers")
    else:
        logger.debug("No existing authentication headers to remove")

    host = urlparse(server).netloc or "github.com"
    remote_url = f"https://x-access-token:{token}@{host}/{owner}/{repo_name}.git"
    _run_git("remote", "set-url", "origin", remote_url, cwd=cwd)
    logger.info("Updated remote URL with authentication token")


def ssh_signing_key_path(home: str | Path) -> Path:
    return Path(home).expanduser() / ".ssh" / SSH_SIGNING_KEY_NAME


def setup_ssh_signing(repo: str | Path, signing_key: str, *, key_path: Path) -> None:
    """Write the private key with 0600 permissions and enable SSH commit signing."""
    if not signing_key.strip():
        raise ValueError("SSH signing key cannot be empty")
    if "BEGIN" not in signing_key or "PRIVATE KEY" not in signing_key:
        raise ValueError("Invalid SSH private key format")

    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.chmod(0o700)
    normalized = signing_key if signing_key.endswith("\n") else signing_key + "\n"
    atomic_write_text(key_path, normalized, mode=0o600)
    logger.info("SSH signing key written to %s", key_path)

    cwd = Path(repo)
    _run_git("config", "gpg.format", "ssh", cwd=cwd)
    _run_git("config", "user.signingkey", str(key_path), cwd=cwd)
    _run_git("config", "commit.gpgsign", "true", cwd=cwd)
    logger.info("Git configured to use SSH signing for commits")


def cleanup_ssh_signing(key_path: Path) -> bool:
    """Delete the signing key; return True when a key was removed."""
    try:
        key_path.unlink()
    except FileNotFoundError:
        logger.debug("No SSH signing key to clean up")
        return False
    logger.info("SSH signing key cleaned up")
    return True
