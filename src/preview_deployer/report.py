# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Pull request report rendering from a bundled Mustache template."""

import re
from enum import Enum
from pathlib import Path

import pystache
from pystache.common import MissingTags

from preview_deployer.manifests import preview_namespace
from preview_deployer.outcomes import (
    DeploymentFailure,
    DeploymentSuccess,
    FailureKind,
    Outcome,
)
from preview_deployer.resolver import internal_url


class ReportStatus(str, Enum):
    """Overall classification of a preview run."""

    NOT_RUN = "not_run"
    NO_SERVICES = "no_services"
    ALL_SUCCESS = "all_success"
    ALL_FAILURE = "all_failure"
    MIXED = "mixed"


TROUBLESHOOTING_HINTS: dict[FailureKind, list[str]] = {
    FailureKind.MANIFEST_MISSING: [
        "Add a `base/` directory with manifests or an `overlays/<env>/` kustomization for the service.",
        "Check that the service path follows `<category>/<name>`.",
    ],
    FailureKind.VALIDATION_FAILED: [
        "Run `kubectl apply --dry-run=client -f <file>` locally to reproduce.",
        "For overlays, check that `kustomize build` succeeds.",
    ],
    FailureKind.DEPLOYMENT_FAILED: [
        "Inspect the namespace events above for image pull or scheduling errors.",
        "Check that every manifest applies cleanly; partially applied services are not previewed.",
    ],
    FailureKind.NO_SERVICE_FOUND: [
        "Add a `Service` resource so the workload can be reached.",
        "Make sure the Service is part of the base or the overlay's resources.",
    ],
    FailureKind.MANIFEST_PARSE_ERROR: [
        "Fix the YAML syntax reported above.",
        "Run a YAML linter over the service manifests.",
    ],
    FailureKind.DOMAIN_API_ERROR: [
        "Check that the domain API is reachable and its token is valid.",
        "Re-run the workflow once the domain API is healthy.",
    ],
}

_SUMMARIES = {
    ReportStatus.ALL_SUCCESS: (":white_check_mark:", "All previews deployed."),
    ReportStatus.ALL_FAILURE: (":x:", "All previews failed."),
    ReportStatus.MIXED: (":warning:", "Some previews failed."),
}


def classify(outcomes: list[Outcome] | None) -> ReportStatus:
    """Classify a run from its outcomes (None when the run produced no results)."""
    if outcomes is None:
        return ReportStatus.NOT_RUN
    if not outcomes:
        return ReportStatus.NO_SERVICES
    failures = sum(1 for o in outcomes if isinstance(o, DeploymentFailure))
    if failures == 0:
        return ReportStatus.ALL_SUCCESS
    if failures == len(outcomes):
        return ReportStatus.ALL_FAILURE
    return ReportStatus.MIXED


def _load_template(template_path: Path | None) -> str:
    if template_path is not None:
        return template_path.read_text()
    from importlib.resources import files as get_package_files

    return (
        get_package_files("preview_deployer") / "templates" / "comment.md.mustache"
    ).read_text()


def _success_context(outcome: DeploymentSuccess, pr_number: str, prefix: str) -> dict:
    namespace = preview_namespace(prefix, pr_number, outcome.service)
    return {
        "service": outcome.service,
        "url": outcome.url,
        "domain": outcome.domain,
        "internal_url": internal_url(outcome.service_name, namespace, outcome.port),
        "domain_id": outcome.domain_id,
        "warning": outcome.warning or "",
    }


def _code_fence(text: str) -> str:
    """Return a backtick fence longer than any backtick run inside text."""
    longest = max((len(run) for run in re.findall(r"`+", text)), default=0)
    return "`" * max(3, longest + 1)


def _failure_context(outcome: DeploymentFailure) -> dict:
    detail = outcome.detail or "(no details)"
    return {
        "service": outcome.service,
        "kind": outcome.kind.value,
        "detail": detail,
        "fence": _code_fence(detail),
        "hints": TROUBLESHOOTING_HINTS[outcome.kind],
    }


def render_report(
    outcomes: list[Outcome] | None,
    pr_number: str,
    branch: str,
    namespace_prefix: str = "preview",
    _template_override: Path | None = None,  # for testing only
) -> str:
    """
    Render the Markdown report posted on the pull request.

    Args:
        outcomes: Outcomes of the run, or None if the results file was absent
        pr_number: Pull request number
        branch: Head branch of the pull request
        namespace_prefix: Prefix used for preview namespaces
        _template_override: Use a different template file (for testing only)

    Returns:
        The rendered Markdown
    """
    status = classify(outcomes)
    outcomes = outcomes or []

    successes = [
        _success_context(o, pr_number, namespace_prefix)
        for o in outcomes
        if isinstance(o, DeploymentSuccess)
    ]
    failures = [_failure_context(o) for o in outcomes if isinstance(o, DeploymentFailure)]
    icon, title = _SUMMARIES.get(status, ("", ""))

    context = {
        "pr_number": pr_number,
        "branch": branch,
        "not_run": status is ReportStatus.NOT_RUN,
        "empty": status is ReportStatus.NO_SERVICES,
        "has_outcomes": bool(outcomes),
        "summary_icon": icon,
        "summary_title": title,
        "success_count": len(successes),
        "total": len(outcomes),
        "has_successes": bool(successes),
        "has_failures": bool(failures),
        "successes": successes,
        "failures": failures,
    }

    # Markdown output: no HTML escaping
    renderer = pystache.Renderer(escape=lambda u: u, missing_tags=MissingTags.strict)
    return renderer.render(_load_template(_template_override), context)
