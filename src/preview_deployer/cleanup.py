# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Tear down the preview environments of a closed pull request."""

import logging
from dataclasses import dataclass, field

from preview_deployer import kubectl
from preview_deployer.domains import DomainClient
from preview_deployer.outcomes import EnvironmentState, PreviewEnvironment

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """What a cleanup sweep did."""

    deleted: list[PreviewEnvironment] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    domains_deleted: int = 0
    domain_failures: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


def _environment_from_namespace(item: dict, pr_number: str) -> PreviewEnvironment:
    metadata = item.get("metadata") or {}
    labels = metadata.get("labels") or {}
    return PreviewEnvironment(
        namespace=metadata.get("name", ""),
        pr_number=str(pr_number),
        service=labels.get("service", ""),
        created_at=metadata.get("creationTimestamp"),
        labels=dict(labels),
        domain_id=labels.get("domain-id") or None,
        # Namespaces that are still listed were at least deployed
        state=EnvironmentState.READY,
    )


def find_previews(
    pr_number: str, created_by: str = "preview-deployer"
) -> list[PreviewEnvironment]:
    """
    Find the preview environments of a pull request.

    The pr-number label is the index, so no state has to be stored elsewhere.
    Only namespaces carrying this tool's created-by label are matched.

    Raises:
        RuntimeError: If the namespaces cannot be listed
    """
    items = kubectl.list_namespaces(f"pr-number={pr_number},created-by={created_by}")
    environments = [_environment_from_namespace(item, pr_number) for item in items]
    return sorted(
        (env for env in environments if env.namespace), key=lambda env: env.namespace
    )


def cleanup_previews(
    pr_number: str, domains: DomainClient, created_by: str = "preview-deployer"
) -> CleanupResult:
    """
    Delete every preview environment of a pull request.

    For each namespace the domain record is deleted first (best effort), then
    the namespace itself. A namespace that is already gone counts as deleted.

    Args:
        pr_number: Pull request number
        domains: Domain API client
        created_by: Value of the created-by label the namespaces must carry

    Returns:
        Summary of the sweep

    Raises:
        RuntimeError: If the namespaces cannot be listed
    """
    result = CleanupResult()
    environments = find_previews(pr_number, created_by)
    if not environments:
        logger.info(f"No preview environments found for PR #{pr_number}")
        return result

    logger.info(f"Cleaning up {len(environments)} preview environment(s) for PR #{pr_number}")
    for env in environments:
        if env.domain_id:
            if domains.delete(env.domain_id):
                result.domains_deleted += 1
            else:
                result.domain_failures += 1

        try:
            kubectl.delete_namespace(env.namespace)
        except RuntimeError as e:
            logger.error(f"✗ {env.namespace}: {e}")
            result.failed.append(env.namespace)
            continue

        env.transition(EnvironmentState.DELETED)
        result.deleted.append(env)
        logger.info(f"✓ Deleted {env.namespace}")

    summary = f"Done! Deleted {len(result.deleted)} namespace(s)"
    if result.domains_deleted:
        summary += f" and {result.domains_deleted} domain(s)"
    logger.info(summary)
    return result
