"""
Git Operations for Plugin Management.

This module provides the git commands used to install and update plugins.

Key features:
- Clone plugin repositories
- Fetch and fast-forward to the upstream branch
- Revision queries (HEAD, ancestry, remote head)
- Changelog extraction between two revisions
"""

import logging
import subprocess
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120

UPSTREAM = "@{upstream}"


class GitError(Exception):
    """Base exception for git-related errors."""

    pass


def run_git(
    args: list[str],
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """
    Run a git command and return the finished process.

    Args:
        args: Arguments following `git`
        cwd: Working directory
        timeout: Timeout in seconds
        env: Environment for the child process (defaults to inherited)

    Returns:
        The completed process (any exit code)

    Raises:
        GitError: If git is missing or the command times out
    """
    cmd = ["git", *args]
    logger.debug("Running %s (cwd=%s)", " ".join(cmd), cwd)

    try:
        return subprocess.run(
            cmd,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git command not found. Please install git.") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {args[0]} timed out after {timeout} seconds") from e


def _check(result: subprocess.CompletedProcess, action: str) -> str:
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise GitError(f"Failed to {action}: git exited with status {result.returncode}: {detail}")
    return result.stdout


def clone_plugin(
    repo_url: str,
    target_dir: Path,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> None:
    """
    Clone a plugin repository.

    Full history is kept so later updates can report changelogs.

    Args:
        repo_url: Git repository URL
        target_dir: Target directory for clone

    Raises:
        GitError: If clone operation fails
    """
    target_dir.parent.mkdir(parents=True, exist_ok=True)
    result = run_git(
        ["clone", "--quiet", repo_url, str(target_dir)], timeout=timeout, env=env
    )
    _check(result, "clone repository")


def fetch(repo_dir: Path, timeout: int = DEFAULT_TIMEOUT, env: Mapping[str, str] | None = None) -> None:
    """
    Fetch from the repository's remote.

    Raises:
        GitError: If fetch operation fails
    """
    result = run_git(["fetch", "--quiet"], cwd=repo_dir, timeout=timeout, env=env)
    _check(result, "fetch")


def current_revision(
    repo_dir: Path, ref: str = "HEAD", timeout: int = DEFAULT_TIMEOUT, env: Mapping[str, str] | None = None
) -> str:
    """
    Resolve a ref to its full commit hash.

    Raises:
        GitError: If the ref cannot be resolved
    """
    result = run_git(["rev-parse", "--verify", ref], cwd=repo_dir, timeout=timeout, env=env)
    return _check(result, f"resolve {ref}").strip()


def is_ancestor(
    repo_dir: Path,
    ancestor: str,
    descendant: str,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> bool:
    """
    Check whether `ancestor` is reachable from `descendant`.

    Returns:
        True if a fast-forward from ancestor to descendant is possible

    Raises:
        GitError: If the check itself fails
    """
    result = run_git(
        ["merge-base", "--is-ancestor", ancestor, descendant],
        cwd=repo_dir,
        timeout=timeout,
        env=env,
    )
    if result.returncode in (0, 1):
        return result.returncode == 0
    _check(result, "compare revisions")
    return False


def fast_forward(
    repo_dir: Path, target: str = UPSTREAM, timeout: int = DEFAULT_TIMEOUT, env: Mapping[str, str] | None = None
) -> None:
    """
    Fast-forward the checked out branch to `target`.

    Raises:
        GitError: If the merge is not a fast-forward or fails
    """
    result = run_git(
        ["merge", "--ff-only", "--quiet", target], cwd=repo_dir, timeout=timeout, env=env
    )
    _check(result, "fast-forward")


def log_range(
    repo_dir: Path,
    old_revision: str,
    new_revision: str,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> list[str]:
    """
    List commit summaries between two revisions, oldest first.

    Returns:
        One "<short hash> <subject>" line per commit

    Raises:
        GitError: If log operation fails
    """
    result = run_git(
        ["log", f"{old_revision}..{new_revision}", "--oneline", "--no-decorate", "--reverse"],
        cwd=repo_dir,
        timeout=timeout,
        env=env,
    )
    output = _check(result, "read log")
    return [line.strip() for line in output.splitlines() if line.strip()]


def remote_head(repo_url: str, timeout: int = DEFAULT_TIMEOUT, env: Mapping[str, str] | None = None) -> str:
    """
    Ask a remote for the commit its HEAD points to, without cloning.

    Raises:
        GitError: If the remote cannot be queried
    """
    result = run_git(["ls-remote", repo_url, "HEAD"], timeout=timeout, env=env)
    output = _check(result, "query remote")

    for line in output.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1] == "HEAD":
            return parts[0]

    raise GitError(f"Remote {repo_url} did not report a HEAD")
