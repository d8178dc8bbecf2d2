# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Tests for service resolution and endpoint readiness."""

from unittest.mock import MagicMock, patch

import pytest

from preview_deployer.manifests import ManifestParseError, ServiceEndpoint
from preview_deployer.resolver import internal_url, resolve_service, wait_for_endpoints

RENDERED = """\
apiVersion: v1
kind: Service
metadata:
  name: rendered-svc
spec:
  ports:
    - port: 3000
"""

BASE = """\
apiVersion: v1
kind: Service
metadata:
  name: base-svc
"""


def test_internal_url_format() -> None:
    """internal_url builds the in-cluster http URL of a Service."""
    assert internal_url("excalidraw", "preview-pr-42-utilities-excalidraw", 8080) == (
        "http://excalidraw.preview-pr-42-utilities-excalidraw:8080"
    )


@patch("preview_deployer.resolver.kubectl.get_services")
def test_live_service_preferred(mock_services: MagicMock) -> None:
    """A Service listed by the cluster wins over manifest fallbacks."""
    mock_services.return_value = [
        {"metadata": {"name": "excalidraw"}, "spec": {"ports": [{"port": 8080}]}}
    ]

    endpoint = resolve_service("ns", RENDERED, [BASE])

    assert endpoint == ServiceEndpoint("excalidraw", 8080)
    assert internal_url(endpoint.name, "ns", endpoint.port) == "http://excalidraw.ns:8080"


@patch("preview_deployer.resolver.kubectl.get_services")
def test_live_service_without_ports_defaults_to_80(mock_services: MagicMock) -> None:
    """A live Service without ports defaults to port 80."""
    mock_services.return_value = [{"metadata": {"name": "web"}, "spec": {}}]
    assert resolve_service("ns") == ServiceEndpoint("web", 80)


@patch("preview_deployer.resolver.kubectl.get_services", return_value=[])
def test_falls_back_to_rendered_overlay(mock_services: MagicMock) -> None:
    """Without live Services the rendered overlay is searched."""
    assert resolve_service("ns", RENDERED, [BASE]) == ServiceEndpoint("rendered-svc", 3000)


@patch("preview_deployer.resolver.kubectl.get_services", return_value=[])
def test_falls_back_to_base_manifests(mock_services: MagicMock) -> None:
    """Without live Services or an overlay the base manifests are searched."""
    deployment_only = "kind: Deployment\nmetadata:\n  name: dpl\n"
    assert resolve_service("ns", deployment_only, ["kind: ConfigMap\nmetadata:\n  name: c\n", BASE]) == (
        ServiceEndpoint("base-svc", 80)
    )


@patch("preview_deployer.resolver.kubectl.get_services")
def test_listing_failure_falls_back(mock_services: MagicMock) -> None:
    """A failing kubectl listing falls back to the manifests."""
    mock_services.side_effect = RuntimeError("connection refused")
    assert resolve_service("ns", None, [BASE]) == ServiceEndpoint("base-svc", 80)


@patch("preview_deployer.resolver.kubectl.get_services", return_value=[])
def test_no_service_anywhere_returns_none(mock_services: MagicMock) -> None:
    """resolve_service returns None when no Service exists anywhere."""
    assert resolve_service("ns", None, ["kind: Deployment\nmetadata:\n  name: d\n"]) is None


@patch("preview_deployer.resolver.kubectl.get_services", return_value=[])
def test_unparseable_fallback_raises(mock_services: MagicMock) -> None:
    """Broken fallback YAML should raise ManifestParseError."""
    with pytest.raises(ManifestParseError):
        resolve_service("ns", None, ["kind: [broken\n"])


# ---------------------------------------------------------------------------
# Readiness polling
# ---------------------------------------------------------------------------


@patch("preview_deployer.resolver.time.sleep")
@patch("preview_deployer.resolver.kubectl.get_endpoint_addresses")
def test_wait_for_endpoints_returns_when_ready(
    mock_addresses: MagicMock, mock_sleep: MagicMock
) -> None:
    """wait_for_endpoints returns True once addresses appear."""
    mock_addresses.side_effect = [[], RuntimeError("not found"), ["10.0.0.1"]]

    assert wait_for_endpoints("web", "ns", attempts=12, interval=5.0) is True
    assert mock_addresses.call_count == 3
    assert mock_sleep.call_count == 2
    mock_sleep.assert_called_with(5.0)


@patch("preview_deployer.resolver.time.sleep")
@patch("preview_deployer.resolver.kubectl.get_endpoint_addresses", return_value=[])
def test_wait_for_endpoints_gives_up_after_attempts(
    mock_addresses: MagicMock, mock_sleep: MagicMock
) -> None:
    """wait_for_endpoints gives up after the configured attempts."""
    assert wait_for_endpoints("web", "ns", attempts=12, interval=5.0) is False
    assert mock_addresses.call_count == 12
    # No sleep after the final attempt
    assert mock_sleep.call_count == 11
