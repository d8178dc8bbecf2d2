# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Deploy a single service into its preview namespace."""

import logging
from pathlib import Path

from preview_deployer import kubectl
from preview_deployer.config import PreviewConfig
from preview_deployer.domains import DomainClient, DomainRequest, fallback_domain
from preview_deployer.manifests import (
    ManifestParseError,
    ManifestSource,
    base_manifest_files,
    load_documents,
    preview_namespace,
    service_slug,
    strip_namespaces,
)
from preview_deployer.outcomes import (
    DeploymentFailure,
    DeploymentSuccess,
    EnvironmentState,
    FailureKind,
    Outcome,
    PreviewEnvironment,
)
from preview_deployer.resolver import internal_url, resolve_service, wait_for_endpoints

logger = logging.getLogger(__name__)

DOMAIN_ID_LABEL = "domain-id"


class DeploymentError(RuntimeError):
    """A deployment step failed; kind says how the failure is reported."""

    def __init__(self, kind: FailureKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


def namespace_labels(
    pr_number: str, service: str, created_by: str, domain_id: str | None = None
) -> dict[str, str]:
    """Labels that tie a preview namespace to its pull request and domain."""
    labels = {
        "pr-number": str(pr_number),
        "service": service_slug(service),
        "created-by": created_by,
    }
    if domain_id:
        labels[DOMAIN_ID_LABEL] = domain_id
    return labels


def _previous_domain_id(namespace: str) -> str | None:
    """Return the domain id a previous run recorded on the namespace, if any."""
    try:
        labels = kubectl.get_namespace_labels(namespace)
    except RuntimeError as e:
        logger.warning(f"Could not read labels of {namespace}: {e}")
        return None
    return labels.get(DOMAIN_ID_LABEL) or None


def _release_previous_domain(
    namespace: str, domain_id: str, domains: DomainClient
) -> None:
    """Delete the domain minted by an earlier run before a new one is requested."""
    if domains.delete(domain_id):
        logger.info(f"Released domain {domain_id} of the previous {namespace} deployment")
    else:
        logger.warning(
            f"Could not delete domain {domain_id} of the previous {namespace} "
            f"deployment, it has to be removed by hand"
        )


def _render(source: ManifestSource) -> tuple[str | None, list[Path], list[str]]:
    """Return (rendered overlay, base files, base file texts) for a source."""
    if source.overlay_dir is not None:
        try:
            raw = kubectl.kustomize_build(source.overlay_dir)
        except RuntimeError as e:
            raise DeploymentError(FailureKind.VALIDATION_FAILED, str(e)) from e
        rendered = strip_namespaces(raw, str(source.overlay_dir))
        base_texts = []
        if source.base_dir is not None:
            base_texts = [p.read_text() for p in base_manifest_files(source.base_dir)]
        return rendered, [], base_texts

    files = base_manifest_files(source.base_dir)
    texts = []
    for path in files:
        text = path.read_text()
        load_documents(text, str(path))
        texts.append(text)
    return None, files, texts


def _validate(rendered: str | None, files: list[Path]) -> None:
    try:
        if rendered is not None:
            kubectl.dry_run_manifest(rendered)
        for path in files:
            kubectl.dry_run_file(path)
    except RuntimeError as e:
        raise DeploymentError(FailureKind.VALIDATION_FAILED, str(e)) from e


def _apply(rendered: str | None, files: list[Path], namespace: str) -> None:
    if rendered is not None:
        try:
            kubectl.apply_manifest(rendered, namespace)
        except RuntimeError as e:
            raise DeploymentError(FailureKind.DEPLOYMENT_FAILED, str(e)) from e
        return

    applied = 0
    failed: list[str] = []
    for path in files:
        try:
            kubectl.apply_file(path, namespace)
            applied += 1
            logger.debug(f"Applied {path.name}")
        except RuntimeError as e:
            logger.error(f"Failed to apply {path.name}: {e}")
            failed.append(path.name)

    if applied < len(files):
        raise DeploymentError(
            FailureKind.DEPLOYMENT_FAILED,
            f"Applied {applied} out of {len(files)} manifest files "
            f"(failed: {', '.join(failed)})",
        )


def _capture_events(namespace: str) -> str:
    """Log and return recent namespace events for diagnostics."""
    try:
        lines = kubectl.get_recent_events(namespace)
    except RuntimeError as e:
        logger.warning(f"Could not read events for {namespace}: {e}")
        return ""
    if lines:
        logger.info(f"Recent events in {namespace}:\n  " + "\n  ".join(lines))
    return "; ".join(lines[1:])


def _provision_domain(
    env: PreviewEnvironment,
    service_name: str,
    port: int,
    branch: str,
    config: PreviewConfig,
    domains: DomainClient,
    previous_domain_id: str | None = None,
) -> tuple[str, str, str, str | None]:
    """
    Return (domain, url, domain id, warning) for a ready preview.

    A domain recorded on the namespace by an earlier run is deleted first, so
    the namespace never points at more than one domain record.
    """
    request = DomainRequest(
        service_name=service_name,
        namespace=env.namespace,
        internal_service=internal_url(service_name, env.namespace, port),
        port=port,
        pr_number=env.pr_number,
        branch=branch,
        use_zero_trust=config.use_zero_trust,
    )
    if previous_domain_id:
        _release_previous_domain(env.namespace, previous_domain_id, domains)
    record = domains.generate(request)

    if previous_domain_id and (record is None or not record.id):
        try:
            kubectl.remove_namespace_label(env.namespace, DOMAIN_ID_LABEL)
        except RuntimeError as e:
            logger.warning(f"Could not remove stale domain id from {env.namespace}: {e}")

    if record is None:
        if config.strict_domains:
            raise DeploymentError(
                FailureKind.DOMAIN_API_ERROR,
                "Domain API did not return a domain for this preview",
            )
        record = fallback_domain(env.pr_number, env.service, config.fallback_domain_suffix)
        logger.warning(f"Using fallback domain {record.full_domain}, it may not route")
        return record.full_domain, record.url, "", (
            "Domain API gave no domain; the fallback URL may not route"
        )

    env.domain_id = record.id
    if record.id:
        try:
            kubectl.label_namespace(
                env.namespace,
                namespace_labels(env.pr_number, env.service, config.created_by, record.id),
            )
        except RuntimeError as e:
            logger.warning(
                f"Could not label {env.namespace} with domain id {record.id}: {e}"
            )
    return record.full_domain, record.url, record.id, None


def deploy_service(
    source: ManifestSource,
    pr_number: str,
    branch: str,
    config: PreviewConfig,
    domains: DomainClient,
) -> Outcome:
    """
    Deploy one service into its preview namespace and give it a URL.

    Manifests are rendered and dry-run validated before the cluster is touched.
    Every failure is returned as a DeploymentFailure rather than raised, so the
    caller can move on to the next service.

    Args:
        source: Manifest source of the service
        pr_number: Pull request number
        branch: Head branch of the pull request
        config: Preview configuration
        domains: Domain API client

    Returns:
        The outcome for this service
    """
    try:
        namespace = preview_namespace(config.namespace_prefix, pr_number, source.service)
    except ValueError as e:
        return DeploymentFailure(source.service, FailureKind.VALIDATION_FAILED, str(e))

    env = PreviewEnvironment(namespace=namespace, pr_number=str(pr_number), service=source.service)
    namespace_created = False
    logger.info(f"Deploying {source.service} into {namespace}")

    try:
        try:
            rendered, files, base_texts = _render(source)
        except ManifestParseError as e:
            raise DeploymentError(FailureKind.MANIFEST_PARSE_ERROR, str(e)) from e

        _validate(rendered, files)
        logger.debug(f"Manifests for {source.service} passed validation")

        try:
            kubectl.ensure_namespace(namespace)
            namespace_created = True
            kubectl.wait_for_namespace_active(namespace)
            previous_domain_id = _previous_domain_id(namespace)
            kubectl.label_namespace(
                namespace, namespace_labels(pr_number, source.service, config.created_by)
            )
        except RuntimeError as e:
            raise DeploymentError(FailureKind.DEPLOYMENT_FAILED, str(e)) from e

        _apply(rendered, files, namespace)
        env.transition(EnvironmentState.DEPLOYED)

        try:
            count = kubectl.wait_for_deployments(namespace, config.deployment_timeout)
        except RuntimeError as e:
            raise DeploymentError(FailureKind.DEPLOYMENT_FAILED, str(e)) from e
        logger.debug(f"{count} deployment(s) available in {namespace}")

        try:
            endpoint = resolve_service(namespace, rendered, base_texts)
        except ManifestParseError as e:
            raise DeploymentError(FailureKind.MANIFEST_PARSE_ERROR, str(e)) from e
        if endpoint is None:
            raise DeploymentError(
                FailureKind.NO_SERVICE_FOUND,
                f"No Service resource found for {source.service}",
            )

        warnings = []
        if not wait_for_endpoints(
            endpoint.name,
            namespace,
            attempts=config.readiness_attempts,
            interval=config.readiness_interval,
        ):
            logger.warning(f"{endpoint.name} in {namespace} has no ready endpoints yet")
            warnings.append("Service endpoints were not ready; the preview may still be starting")

        domain, url, domain_id, domain_warning = _provision_domain(
            env,
            endpoint.name,
            endpoint.port,
            branch,
            config,
            domains,
            previous_domain_id,
        )
        if domain_warning:
            warnings.append(domain_warning)
        env.transition(EnvironmentState.READY)

    except DeploymentError as e:
        env.transition(EnvironmentState.FAILED)
        detail = e.detail
        if namespace_created:
            events = _capture_events(namespace)
            if events:
                detail = f"{detail}; events: {events}"
        logger.error(f"✗ {source.service}: {e.kind.value}")
        return DeploymentFailure(source.service, e.kind, detail)

    logger.info(f"✓ {source.service} -> {url}")
    return DeploymentSuccess(
        service=source.service,
        domain=domain,
        url=url,
        domain_id=domain_id,
        service_name=endpoint.name,
        port=endpoint.port,
        warning="; ".join(warnings) or None,
    )
