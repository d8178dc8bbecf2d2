# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Deployment outcomes, preview environment lifecycle and the results file."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "|"
RECORD_FIELDS = 7


class FailureKind(str, Enum):
    """Why a service preview could not be provided."""

    MANIFEST_MISSING = "MANIFEST_MISSING"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DEPLOYMENT_FAILED = "DEPLOYMENT_FAILED"
    NO_SERVICE_FOUND = "NO_SERVICE_FOUND"
    MANIFEST_PARSE_ERROR = "MANIFEST_PARSE_ERROR"
    DOMAIN_API_ERROR = "DOMAIN_API_ERROR"


class EnvironmentState(str, Enum):
    """Lifecycle state of a preview environment."""

    PENDING = "pending"
    DEPLOYED = "deployed"
    READY = "ready"
    FAILED = "failed"
    DELETED = "deleted"


_TRANSITIONS = {
    EnvironmentState.PENDING: {EnvironmentState.DEPLOYED, EnvironmentState.FAILED},
    EnvironmentState.DEPLOYED: {EnvironmentState.READY, EnvironmentState.FAILED},
    EnvironmentState.READY: {EnvironmentState.DELETED},
    EnvironmentState.FAILED: {EnvironmentState.DELETED},
    EnvironmentState.DELETED: set(),
}


@dataclass
class PreviewEnvironment:
    """One preview namespace for a (pull request, service) pair."""

    namespace: str
    pr_number: str
    service: str
    created_at: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    domain_id: str | None = None
    state: EnvironmentState = EnvironmentState.PENDING

    def transition(self, new_state: EnvironmentState) -> None:
        """Move to new_state, rejecting transitions the lifecycle does not allow."""
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid state transition for {self.namespace}: "
                f"{self.state.value} -> {new_state.value}"
            )
        logger.debug(f"{self.namespace}: {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass(frozen=True)
class DeploymentSuccess:
    """A service preview that was deployed and given a URL."""

    service: str
    domain: str
    url: str
    domain_id: str
    service_name: str
    port: int
    warning: str | None = None


@dataclass(frozen=True)
class DeploymentFailure:
    """A service preview that failed, with the reason."""

    service: str
    kind: FailureKind
    detail: str


Outcome = DeploymentSuccess | DeploymentFailure


def _clean(text: str | None) -> str:
    """Flatten free text so it fits in a single record field."""
    if not text:
        return ""
    return " ".join(text.replace(RECORD_SEPARATOR, "/").split())


def encode_record(outcome: Outcome) -> str:
    """
    Encode an outcome as one pipe-delimited results line.

    The layout is servicePath|domainOrErrorKind|urlOrDetail|domainId|serviceName|port|warning.
    Failures leave the last four fields empty.
    """
    if isinstance(outcome, DeploymentFailure):
        parts = [outcome.service, outcome.kind.value, _clean(outcome.detail), "", "", "", ""]
    else:
        parts = [
            outcome.service,
            outcome.domain,
            outcome.url,
            outcome.domain_id,
            outcome.service_name,
            str(outcome.port),
            _clean(outcome.warning),
        ]
    return RECORD_SEPARATOR.join(parts)


def decode_record(line: str) -> Outcome:
    """
    Decode one results line produced by encode_record().

    Raises:
        ValueError: If the line does not have the expected shape
    """
    parts = line.rstrip("\n").split(RECORD_SEPARATOR)
    # Older writers omitted the trailing warning field
    if len(parts) == RECORD_FIELDS - 1:
        parts.append("")
    if len(parts) != RECORD_FIELDS:
        raise ValueError(
            f"Malformed results record, expected {RECORD_FIELDS} fields: {line!r}"
        )

    service, domain_or_kind, url_or_detail, domain_id, service_name, port, warning = parts
    if not service:
        raise ValueError(f"Results record has no service path: {line!r}")

    if domain_or_kind in FailureKind.__members__:
        return DeploymentFailure(
            service=service,
            kind=FailureKind(domain_or_kind),
            detail=url_or_detail,
        )

    try:
        port_number = int(port)
    except ValueError as e:
        raise ValueError(f"Invalid port '{port}' in results record: {line!r}") from e

    return DeploymentSuccess(
        service=service,
        domain=domain_or_kind,
        url=url_or_detail,
        domain_id=domain_id,
        service_name=service_name,
        port=port_number,
        warning=warning or None,
    )


def write_results(path: Path, outcomes: list[Outcome]) -> None:
    """Write outcomes to the results file, one record per line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for outcome in outcomes:
            f.write(encode_record(outcome) + "\n")
    logger.debug(f"Wrote {len(outcomes)} result(s) to {path}")


def read_results(path: Path) -> list[Outcome] | None:
    """
    Read outcomes from a results file.

    Returns:
        The decoded outcomes, or None if the file does not exist (the deploy
        step never ran)

    Raises:
        ValueError: If a line is malformed
    """
    if not path.exists():
        return None

    outcomes: list[Outcome] = []
    for line in path.read_text().splitlines():
        if line.strip():
            outcomes.append(decode_record(line))
    return outcomes
