# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Resolve the Service endpoint of a deployed preview."""

import logging
import time

from preview_deployer import kubectl
from preview_deployer.manifests import (
    DEFAULT_SERVICE_PORT,
    ServiceEndpoint,
    find_service_endpoint,
    load_documents,
)

logger = logging.getLogger(__name__)


def internal_url(name: str, namespace: str, port: int) -> str:
    """Build the in-cluster URL of a Service."""
    return f"http://{name}.{namespace}:{port}"


def _endpoint_from_live_service(service: dict) -> ServiceEndpoint | None:
    name = (service.get("metadata") or {}).get("name")
    if not name:
        return None
    ports = (service.get("spec") or {}).get("ports") or []
    port = ports[0].get("port") if ports else None
    return ServiceEndpoint(name=name, port=int(port) if port else DEFAULT_SERVICE_PORT)


def resolve_service(
    namespace: str,
    rendered_manifest: str | None = None,
    base_manifests: list[str] | None = None,
) -> ServiceEndpoint | None:
    """
    Determine the Service that fronts a deployed preview.

    Live cluster state is preferred because it reflects what kustomize
    actually produced. The rendered overlay and then the raw base manifests
    are consulted when the namespace has no Service.

    Args:
        namespace: Preview namespace the service was deployed into
        rendered_manifest: Rendered overlay output, if an overlay was used
        base_manifests: Text of each base manifest file

    Returns:
        The Service name and port, or None if no Service exists anywhere

    Raises:
        ManifestParseError: If fallback manifest text cannot be parsed
    """
    try:
        services = kubectl.get_services(namespace)
    except RuntimeError as e:
        logger.warning(f"Could not list services in {namespace}: {e}")
        services = []

    for service in services:
        endpoint = _endpoint_from_live_service(service)
        if endpoint is not None:
            logger.debug(f"Resolved live service {endpoint.name}:{endpoint.port}")
            return endpoint

    if rendered_manifest:
        endpoint = find_service_endpoint(
            load_documents(rendered_manifest, "rendered overlay")
        )
        if endpoint is not None:
            logger.debug(f"Resolved service {endpoint.name} from rendered overlay")
            return endpoint

    for text in base_manifests or []:
        endpoint = find_service_endpoint(load_documents(text, "base manifest"))
        if endpoint is not None:
            logger.debug(f"Resolved service {endpoint.name} from base manifests")
            return endpoint

    return None


def wait_for_endpoints(
    service: str, namespace: str, attempts: int = 12, interval: float = 5.0
) -> bool:
    """
    Poll until a Service has at least one ready endpoint address.

    Args:
        service: Service name
        namespace: Namespace of the Service
        attempts: Maximum number of polls
        interval: Seconds to sleep between polls

    Returns:
        True if endpoints appeared, False if all attempts were used up
    """
    for attempt in range(1, attempts + 1):
        try:
            addresses = kubectl.get_endpoint_addresses(service, namespace)
        except RuntimeError as e:
            logger.debug(f"Endpoint check {attempt}/{attempts} failed: {e}")
            addresses = []

        if addresses:
            logger.debug(f"{service} has {len(addresses)} ready endpoint(s)")
            return True

        logger.debug(f"Waiting for endpoints of {service} ({attempt}/{attempts})")
        if attempt < attempts:
            time.sleep(interval)

    return False
