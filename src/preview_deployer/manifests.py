# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Manifest discovery, parsing and namespace handling."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

KUSTOMIZATION_FILES = ("kustomization.yaml", "kustomization.yml", "Kustomization")

DEFAULT_SERVICE_PORT = 80


class ManifestParseError(ValueError):
    """Manifest text could not be parsed as YAML."""


def _literal_str_representer(dumper: yaml.Dumper, data: str) -> yaml.Node:
    """Represent multi-line strings using literal block scalar (|-) syntax."""
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


yaml.add_representer(str, _literal_str_representer)


@dataclass(frozen=True)
class ManifestSource:
    """Where the manifests of a service come from."""

    service: str
    service_dir: Path
    overlay_dir: Path | None
    base_dir: Path | None

    @property
    def uses_overlay(self) -> bool:
        return self.overlay_dir is not None


@dataclass(frozen=True)
class ServiceEndpoint:
    """Name and port of the Service that fronts a workload."""

    name: str
    port: int


def make_k8s_name(name: str) -> str:
    """Convert a name to a Kubernetes-safe name.

    Periods, slashes and underscores become dashes and the result is lowercased.
    Namespace names must conform to RFC 1035 label naming rules:
    - Must be 63 characters or less
    - Must begin with an alphanumeric character
    - Must end with an alphanumeric character
    - May contain only lowercase alphanumerics or hyphens

    Args:
        name: The original name (e.g., "utilities/excalidraw")

    Returns:
        A Kubernetes-safe name

    Raises:
        ValueError: If the resulting name violates RFC 1035 label naming constraints
    """
    k8s_name = name.lower()
    for char in "./_":
        k8s_name = k8s_name.replace(char, "-")

    if not k8s_name:
        raise ValueError(f"Name '{name}' results in an empty Kubernetes object name")

    if len(k8s_name) > 63:
        raise ValueError(
            f"Kubernetes name '{k8s_name}' exceeds 63 character limit ({len(k8s_name)} characters)"
        )

    if not k8s_name[0].isalnum():
        raise ValueError(
            f"Kubernetes name '{k8s_name}' must start with an alphanumeric character, "
            f"but starts with '{k8s_name[0]}'"
        )

    if not k8s_name[-1].isalnum():
        raise ValueError(
            f"Kubernetes name '{k8s_name}' must end with an alphanumeric character, "
            f"but ends with '{k8s_name[-1]}'"
        )

    if not all((c.isascii() and c.isalnum()) or c == "-" for c in k8s_name):
        invalid_chars = set(
            c for c in k8s_name if not ((c.isascii() and c.isalnum()) or c == "-")
        )
        raise ValueError(
            f"Kubernetes name '{k8s_name}' contains invalid characters: {invalid_chars}. "
            f"Only lowercase alphanumerics and hyphens are allowed."
        )

    return k8s_name


def service_slug(service: str) -> str:
    """Return the dashed form of a service identifier ("utilities-excalidraw")."""
    return make_k8s_name(service)


def preview_namespace(prefix: str, pr_number: str, service: str) -> str:
    """Build the namespace name <prefix>-pr-<id>-<category>-<name>."""
    return make_k8s_name(f"{prefix}-pr-{pr_number}-{service}")


def _has_kustomization(directory: Path) -> bool:
    return any((directory / name).is_file() for name in KUSTOMIZATION_FILES)


def base_manifest_files(base_dir: Path) -> list[Path]:
    """Return the YAML files of a base directory, kustomization files excluded."""
    files = set(base_dir.glob("*.yaml")) | set(base_dir.glob("*.yml"))
    return sorted(f for f in files if f.name not in KUSTOMIZATION_FILES)


def resolve_manifest_source(
    repo_root: Path, services_root: str, service: str, overlay: str
) -> ManifestSource | None:
    """
    Find the manifests to deploy for a service.

    An overlays/<overlay>/ directory with a kustomization file is preferred
    over a base/ directory holding at least one YAML file.

    Args:
        repo_root: Root of the repository checkout
        services_root: Directory holding the service trees
        service: Service identifier ("category/name" or a bare name)
        overlay: Name of the environment overlay to prefer

    Returns:
        The manifest source, or None if the service has neither
    """
    service_dir = repo_root / services_root / service

    overlay_dir = service_dir / "overlays" / overlay
    if overlay_dir.is_dir() and _has_kustomization(overlay_dir):
        base_dir = service_dir / "base"
        return ManifestSource(
            service=service,
            service_dir=service_dir,
            overlay_dir=overlay_dir,
            base_dir=base_dir if base_dir.is_dir() else None,
        )

    base_dir = service_dir / "base"
    if base_dir.is_dir() and base_manifest_files(base_dir):
        return ManifestSource(
            service=service,
            service_dir=service_dir,
            overlay_dir=None,
            base_dir=base_dir,
        )

    logger.debug(f"No overlay '{overlay}' or base manifests under {service_dir}")
    return None


def load_documents(content: str, source: str = "<manifest>") -> list[dict]:
    """
    Parse multi-document YAML, dropping empty documents.

    Raises:
        ManifestParseError: If the YAML is invalid or a document is not a mapping
    """
    try:
        documents = [doc for doc in yaml.safe_load_all(content) if doc]
    except yaml.YAMLError as e:
        raise ManifestParseError(f"Invalid YAML in {source}: {e}") from e

    for doc in documents:
        if not isinstance(doc, dict):
            raise ManifestParseError(
                f"Expected a mapping in {source}, got {type(doc).__name__}"
            )
    return documents


def strip_namespaces(content: str, source: str = "<manifest>") -> str:
    """
    Remove metadata.namespace from every document of a rendered manifest.

    The namespace is injected at apply time instead, so the same overlay can be
    deployed into any preview namespace.

    Returns:
        The rewritten multi-document YAML
    """
    documents = load_documents(content, source)
    for doc in documents:
        metadata = doc.get("metadata")
        if isinstance(metadata, dict) and "namespace" in metadata:
            logger.debug(
                f"Stripping namespace '{metadata['namespace']}' from "
                f"{doc.get('kind')} {metadata.get('name')}"
            )
            del metadata["namespace"]
    return yaml.dump_all(documents, default_flow_style=False, sort_keys=False)


def find_service_endpoint(documents: list[dict]) -> ServiceEndpoint | None:
    """
    Return the name and port of the first Service resource in documents.

    The first port of the Service is used; a Service without ports is
    assumed to listen on port 80.
    """
    for doc in documents:
        if doc.get("kind") != "Service":
            continue
        name = (doc.get("metadata") or {}).get("name")
        if not name:
            continue
        ports = (doc.get("spec") or {}).get("ports") or []
        port = DEFAULT_SERVICE_PORT
        if ports and isinstance(ports[0], dict) and ports[0].get("port"):
            port = int(ports[0]["port"])
        return ServiceEndpoint(name=name, port=port)
    return None
