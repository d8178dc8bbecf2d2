# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Preview run orchestration."""

import logging
from pathlib import Path

from preview_deployer.config import PreviewConfig
from preview_deployer.deployer import deploy_service
from preview_deployer.domains import DomainClient
from preview_deployer.manifests import resolve_manifest_source
from preview_deployer.outcomes import (
    DeploymentFailure,
    DeploymentSuccess,
    FailureKind,
    Outcome,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with a formatter for console output.

    Args:
        verbose: If True, set log level to DEBUG; otherwise INFO
    """
    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S %z",
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def run_previews(
    services: list[str],
    pr_number: str,
    branch: str,
    config: PreviewConfig,
    repo_root: Path,
    domains: DomainClient,
) -> list[Outcome]:
    """
    Deploy a preview for every service, one at a time, in list order.

    A failure in one service never stops the others: every error becomes a
    DeploymentFailure in the returned list.

    Args:
        services: Service identifiers from change detection
        pr_number: Pull request number
        branch: Head branch of the pull request
        config: Preview configuration
        repo_root: Root of the repository checkout
        domains: Domain API client

    Returns:
        One outcome per service, in the order the services were given
    """
    if not services:
        logger.info("No services to preview")
        return []

    outcomes: list[Outcome] = []
    for service in services:
        source = resolve_manifest_source(
            repo_root, config.services_root, service, config.overlay
        )
        if source is None:
            logger.error(
                f"✗ {service}: no '{config.overlay}' overlay or base manifests found"
            )
            outcomes.append(
                DeploymentFailure(
                    service,
                    FailureKind.MANIFEST_MISSING,
                    f"Neither overlays/{config.overlay} nor base/ exists under "
                    f"{config.services_root}/{service}",
                )
            )
            continue

        try:
            outcome = deploy_service(source, pr_number, branch, config, domains)
        except Exception as e:
            logger.exception(f"✗ {service}: unexpected error")
            outcome = DeploymentFailure(service, FailureKind.DEPLOYMENT_FAILED, str(e))
        outcomes.append(outcome)

    succeeded = sum(1 for o in outcomes if isinstance(o, DeploymentSuccess))
    logger.info(
        f"Done! {succeeded} of {len(outcomes)} preview(s) deployed for PR #{pr_number}"
    )
    return outcomes
