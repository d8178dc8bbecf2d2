# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""kubectl and kustomize command execution."""

import json
import logging
import shutil
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


def check_kubectl_available() -> bool:
    """
    Check if kubectl is installed and available.

    Returns:
        True if kubectl is available, False otherwise
    """
    try:
        subprocess.run(
            ["kubectl", "version", "--client"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        return True
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


def _run(
    cmd: list[str],
    action: str,
    input_text: str | None = None,
    timeout: int = 60,
) -> str:
    """Run a command and return its stdout, raising RuntimeError on failure."""
    logger.debug(f"Executing: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        return result.stdout
    except FileNotFoundError as e:
        raise RuntimeError(
            f"{cmd[0]} is not installed or not available in PATH"
        ) from e
    except subprocess.CalledProcessError as e:
        cmd_str = " ".join(cmd)
        stderr = (e.stderr or "").strip()
        raise RuntimeError(
            f"{action} failed:\n  Command: {cmd_str}\n  Error: {stderr}"
        ) from e
    except subprocess.TimeoutExpired as e:
        cmd_str = " ".join(cmd)
        raise RuntimeError(f"{action} timed out:\n  Command: {cmd_str}") from e


def _items(output: str, what: str) -> list[dict]:
    """Return the items of a kubectl JSON list."""
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"kubectl returned invalid JSON for {what}: {e}") from e
    return data.get("items", [])


def kustomize_build(directory: Path) -> str:
    """
    Render a kustomization directory.

    Uses the standalone kustomize binary when present and falls back to the
    version embedded in kubectl.

    Args:
        directory: Directory containing a kustomization file

    Returns:
        Rendered multi-document YAML

    Raises:
        RuntimeError: If rendering fails
    """
    if shutil.which("kustomize"):
        cmd = ["kustomize", "build", str(directory)]
    else:
        cmd = ["kubectl", "kustomize", str(directory)]
    return _run(cmd, f"kustomize build of {directory}")


def dry_run_manifest(manifest: str) -> None:
    """Validate manifest text with a client-side dry run."""
    _run(
        ["kubectl", "apply", "--dry-run=client", "-f", "-"],
        "Manifest validation",
        input_text=manifest,
    )


def dry_run_file(path: Path) -> None:
    """Validate a manifest file with a client-side dry run."""
    _run(
        ["kubectl", "apply", "--dry-run=client", "-f", str(path)],
        f"Validation of {path.name}",
    )


def apply_manifest(manifest: str, namespace: str) -> None:
    """Apply manifest text into a namespace."""
    _run(
        ["kubectl", "apply", "--namespace", namespace, "-f", "-"],
        f"Apply into {namespace}",
        input_text=manifest,
        timeout=120,
    )


def apply_file(path: Path, namespace: str) -> None:
    """Apply a single manifest file into a namespace."""
    _run(
        ["kubectl", "apply", "--namespace", namespace, "-f", str(path)],
        f"Apply of {path.name} into {namespace}",
        timeout=120,
    )


def ensure_namespace(namespace: str) -> None:
    """
    Create a namespace idempotently.

    Renders the namespace with a client-side dry run and applies the result,
    so an existing namespace is not an error.
    """
    manifest = _run(
        ["kubectl", "create", "namespace", namespace, "--dry-run=client", "-o", "yaml"],
        f"Rendering namespace {namespace}",
    )
    _run(
        ["kubectl", "apply", "-f", "-"],
        f"Creating namespace {namespace}",
        input_text=manifest,
    )


def wait_for_namespace_active(namespace: str, timeout: int = 60) -> None:
    """Block until the namespace reports phase Active."""
    _run(
        [
            "kubectl",
            "wait",
            "--for=jsonpath={.status.phase}=Active",
            f"namespace/{namespace}",
            f"--timeout={timeout}s",
        ],
        f"Waiting for namespace {namespace}",
        timeout=timeout + 30,
    )


def label_namespace(namespace: str, labels: dict[str, str]) -> None:
    """Set labels on a namespace, overwriting existing values."""
    cmd = ["kubectl", "label", "namespace", namespace, "--overwrite"]
    cmd.extend(f"{key}={value}" for key, value in sorted(labels.items()))
    _run(cmd, f"Labelling namespace {namespace}")


def get_namespace_labels(namespace: str) -> dict[str, str]:
    """Return the labels of a namespace."""
    output = _run(
        ["kubectl", "get", "namespace", namespace, "-o", "json"],
        f"Reading namespace {namespace}",
    )
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"kubectl returned invalid JSON for {namespace}: {e}") from e
    return dict((data.get("metadata") or {}).get("labels") or {})


def remove_namespace_label(namespace: str, key: str) -> None:
    """Remove a label from a namespace; a missing label is not an error."""
    _run(
        ["kubectl", "label", "namespace", namespace, f"{key}-"],
        f"Removing label {key} from namespace {namespace}",
    )


def wait_for_deployments(namespace: str, timeout: int = 300) -> int:
    """
    Wait for every Deployment in a namespace to become Available.

    Args:
        namespace: Namespace to watch
        timeout: Maximum time to wait in seconds

    Returns:
        Number of deployments waited on (0 if the namespace has none)

    Raises:
        RuntimeError: If a deployment does not become available in time
    """
    names = _run(
        ["kubectl", "get", "deployments", "--namespace", namespace, "-o", "name"],
        f"Listing deployments in {namespace}",
    ).split()
    if not names:
        logger.debug(f"No deployments to wait for in {namespace}")
        return 0

    _run(
        [
            "kubectl",
            "wait",
            "--for=condition=available",
            "deployment",
            "--all",
            "--namespace",
            namespace,
            f"--timeout={timeout}s",
        ],
        f"Waiting for deployments in {namespace}",
        timeout=timeout + 30,
    )
    return len(names)


def get_services(namespace: str) -> list[dict]:
    """Return the Service objects in a namespace as parsed JSON."""
    output = _run(
        ["kubectl", "get", "services", "--namespace", namespace, "-o", "json"],
        f"Listing services in {namespace}",
    )
    return _items(output, f"services in {namespace}")


def get_endpoint_addresses(service: str, namespace: str) -> list[str]:
    """Return the ready endpoint IPs of a Service."""
    output = _run(
        [
            "kubectl",
            "get",
            "endpoints",
            service,
            "--namespace",
            namespace,
            "-o",
            "jsonpath={.subsets[*].addresses[*].ip}",
        ],
        f"Reading endpoints of {service}",
        timeout=30,
    )
    return output.split()


def get_recent_events(namespace: str, limit: int = 10) -> list[str]:
    """Return the most recent event lines of a namespace, newest last."""
    output = _run(
        [
            "kubectl",
            "get",
            "events",
            "--namespace",
            namespace,
            "--sort-by=.lastTimestamp",
        ],
        f"Reading events in {namespace}",
        timeout=30,
    )
    lines = [line for line in output.splitlines() if line.strip()]
    # Keep the header row for readability
    if len(lines) > limit + 1:
        lines = lines[:1] + lines[-limit:]
    return lines


def list_namespaces(selector: str) -> list[dict]:
    """Return namespaces matching a label selector as parsed JSON."""
    output = _run(
        ["kubectl", "get", "namespaces", "--selector", selector, "-o", "json"],
        f"Listing namespaces matching {selector}",
    )
    return _items(output, f"namespaces matching {selector}")


def delete_namespace(namespace: str, timeout: int = 300) -> None:
    """Delete a namespace; a namespace that is already gone is not an error."""
    _run(
        ["kubectl", "delete", "namespace", namespace, "--ignore-not-found"],
        f"Deleting namespace {namespace}",
        timeout=timeout,
    )
