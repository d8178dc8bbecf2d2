# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Git utilities for change detection."""

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


def get_git_commit(path: Path, revision: str = "HEAD") -> str:
    """
    Resolve a revision to its full commit hash.

    Args:
        path: Directory inside the git repository
        revision: Any revision git understands (branch, tag, sha, HEAD~1)

    Returns:
        Full commit hash (40 characters)

    Raises:
        RuntimeError: If not a git repository or the revision is unknown
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", f"{revision}^{{commit}}"],
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise RuntimeError(
            f"Failed to resolve git revision '{revision}' in {path}: {e.stderr}"
        ) from e


def get_changed_files(base: str, head: str, path: Path) -> list[str]:
    """
    List the files that differ between two revisions.

    Args:
        base: Base revision of the comparison
        head: Head revision of the comparison
        path: Directory inside the git repository

    Returns:
        Repository-relative POSIX paths, in the order git reports them

    Raises:
        RuntimeError: If the git command fails
    """
    cmd = ["git", "diff", "--name-only", base, head]
    logger.debug(f"Executing: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=path,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise RuntimeError(
            f"Failed to diff {base}..{head} in {path}: {e.stderr}"
        ) from e

    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
