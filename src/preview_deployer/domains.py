# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Preview hostnames from the external domain-generation API."""

import logging
from dataclasses import dataclass

import httpx

from preview_deployer.manifests import service_slug

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainRecord:
    """A hostname bound to a preview's internal endpoint."""

    full_domain: str
    url: str
    id: str
    fallback: bool = False


@dataclass(frozen=True)
class DomainRequest:
    """Everything the domain API needs to mint a hostname."""

    service_name: str
    namespace: str
    internal_service: str
    port: int
    pr_number: str
    branch: str
    use_zero_trust: bool = True

    def to_payload(self) -> dict:
        return {
            "serviceName": self.service_name,
            "namespace": self.namespace,
            "internalService": self.internal_service,
            "port": self.port,
            "useZeroTrust": self.use_zero_trust,
            "pullRequestId": self.pr_number,
            "branch": self.branch,
        }


def fallback_domain(pr_number: str, service: str, suffix: str) -> DomainRecord:
    """
    Build the deterministic hostname used when the API gives no domain.

    The hostname is pr-<id>-<category>-<name>.<suffix>. It is not registered
    anywhere and may not route.
    """
    full_domain = f"pr-{pr_number}-{service_slug(service)}.{suffix}"
    return DomainRecord(
        full_domain=full_domain,
        url=f"https://{full_domain}",
        id="",
        fallback=True,
    )


def parse_domain_response(data: object) -> DomainRecord | None:
    """Return the domain from an API response, or None if it has the wrong shape."""
    if not isinstance(data, dict) or data.get("success") is not True:
        return None
    domain = data.get("domain")
    if not isinstance(domain, dict):
        return None
    full_domain = domain.get("full_domain")
    if not isinstance(full_domain, str) or not full_domain:
        return None
    url = domain.get("url") or f"https://{full_domain}"
    domain_id = domain.get("id")
    return DomainRecord(
        full_domain=full_domain,
        url=str(url),
        id="" if domain_id is None else str(domain_id),
    )


class DomainClient:
    """Client for the domain-generation API.

    Args:
        base_url: Root URL of the API, or None when no API is configured
        token: Optional bearer token
        timeout: Request timeout in seconds
        transport: Custom httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str | None,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        headers = {"User-Agent": "preview-deployer"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = None
        if self.base_url:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=headers,
                timeout=timeout,
                transport=transport,
            )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> "DomainClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def configured(self) -> bool:
        return self._client is not None

    def generate(self, request: DomainRequest) -> DomainRecord | None:
        """
        Ask the API for a hostname. The call is never retried.

        Returns:
            The minted domain, or None if the API is not configured, failed,
            or answered without a usable domain
        """
        if self._client is None:
            logger.warning("No domain API configured")
            return None

        try:
            response = self._client.post(
                "/api/domains/generate", json=request.to_payload()
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Domain API request failed for {request.namespace}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Domain API returned invalid JSON for {request.namespace}: {e}")
            return None

        record = parse_domain_response(data)
        if record is None:
            logger.warning(
                f"Domain API returned no domain for {request.namespace}: {data!r}"
            )
        return record

    def delete(self, domain_id: str) -> bool:
        """
        Delete a domain record. Failures are logged and reported, never raised.

        Returns:
            True if the API accepted the deletion
        """
        if self._client is None:
            logger.warning(f"No domain API configured, cannot delete domain {domain_id}")
            return False

        try:
            response = self._client.delete(f"/api/domains/{domain_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to delete domain {domain_id}: {e}")
            return False

        logger.info(f"Deleted domain {domain_id}")
        return True
