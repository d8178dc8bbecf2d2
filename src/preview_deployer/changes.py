# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Map changed files to the services that need a preview."""

import logging
from pathlib import Path, PurePosixPath

from preview_deployer.config import PreviewConfig
from preview_deployer.git_utils import get_changed_files, get_git_commit

logger = logging.getLogger(__name__)


def services_from_paths(
    paths: list[str], services_root: str, community_root: str
) -> list[str]:
    """
    Derive service identifiers from changed file paths.

    A path below services_root/<category>/<name>/ maps to "category/name". A
    file directly inside the flat community_root maps to its filename stem.
    Everything else is ignored.

    Args:
        paths: Repository-relative changed paths
        services_root: Directory holding <category>/<name> service trees
        community_root: Flat directory of community reference manifests

    Returns:
        Sorted, deduplicated service identifiers
    """
    services_parts = PurePosixPath(services_root).parts
    community_parts = PurePosixPath(community_root).parts
    found: set[str] = set()

    for raw_path in paths:
        parts = PurePosixPath(raw_path).parts

        # <services_root>/<category>/<name>/<file...>
        depth = len(services_parts)
        if parts[:depth] == services_parts and len(parts) >= depth + 3:
            found.add(f"{parts[depth]}/{parts[depth + 1]}")
            continue

        depth = len(community_parts)
        if parts[:depth] == community_parts and len(parts) == depth + 1:
            stem = PurePosixPath(parts[-1]).stem
            if stem and not stem.startswith("."):
                found.add(stem)

    return sorted(found)


def detect_services(
    base: str, head: str, repo_root: Path, config: PreviewConfig
) -> list[str]:
    """
    Detect the services changed between two revisions.

    Args:
        base: Base revision (usually the pull request's target branch)
        head: Head revision (usually the pull request's head commit)
        repo_root: Root of the git checkout
        config: Preview configuration

    Returns:
        Sorted, deduplicated service identifiers; empty when nothing changed

    Raises:
        RuntimeError: If git cannot resolve or diff the revisions
    """
    base_sha = get_git_commit(repo_root, base)
    head_sha = get_git_commit(repo_root, head)
    logger.info(f"Comparing {base_sha[:12]}..{head_sha[:12]}")

    changed = get_changed_files(base_sha, head_sha, repo_root)
    logger.debug(f"{len(changed)} changed file(s)")

    services = services_from_paths(changed, config.services_root, config.community_root)
    if services:
        logger.info(f"Detected {len(services)} changed service(s): {', '.join(services)}")
    else:
        logger.info("No changed services detected")
    return services
