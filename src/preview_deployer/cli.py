# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Command-line interface for preview-deployer."""

import json
import sys
from contextlib import contextmanager
from pathlib import Path

import click

from preview_deployer._version import __version__
from preview_deployer.changes import detect_services
from preview_deployer.cleanup import cleanup_previews, find_previews
from preview_deployer.config import PreviewConfig, load_config
from preview_deployer.domains import DomainClient
from preview_deployer.github import post_comment
from preview_deployer.kubectl import check_kubectl_available
from preview_deployer.outcomes import read_results, write_results
from preview_deployer.pipeline import run_previews, setup_logging
from preview_deployer.report import ReportStatus, classify, render_report

DEFAULT_RESULTS_FILE = Path("preview-results.txt")

pr_option = click.option(
    "--pr",
    "pr_number",
    envvar="PR_NUMBER",
    required=True,
    help="Pull request number [env: PR_NUMBER]",
)
branch_option = click.option(
    "--branch",
    envvar="PR_BRANCH",
    default="",
    help="Head branch of the pull request [env: PR_BRANCH]",
)
results_option = click.option(
    "--results-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_RESULTS_FILE,
    help="File the deploy step writes its outcomes to",
    show_default=True,
)


@contextmanager
def _cli_errors():
    """Turn expected errors into messages and exit codes."""
    try:
        yield
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except RuntimeError as e:
        click.echo(f"Runtime error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)


def _require_kubectl() -> None:
    if not check_kubectl_available():
        raise RuntimeError(
            "kubectl is not installed or not available in PATH. "
            "Please install kubectl: https://kubernetes.io/docs/tasks/tools/"
        )


@click.group()
@click.version_option(version=__version__, prog_name="preview-deployer")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: preview.toml if present)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show detailed output",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Deploy pull request previews of changed services."""
    setup_logging(verbose=verbose)
    with _cli_errors():
        ctx.obj = load_config(config_path)


@main.command()
@click.option("--base", default="origin/main", help="Base revision", show_default=True)
@click.option("--head", default="HEAD", help="Head revision", show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON list")
@click.pass_obj
def detect(config: PreviewConfig, base: str, head: str, as_json: bool) -> None:
    """List the services changed between two revisions."""
    with _cli_errors():
        services = detect_services(base, head, Path.cwd(), config)

    if as_json:
        click.echo(json.dumps(services))
    else:
        for service in services:
            click.echo(service)


@main.command()
@pr_option
@branch_option
@click.option("--base", default="origin/main", help="Base revision", show_default=True)
@click.option("--head", default="HEAD", help="Head revision", show_default=True)
@results_option
@click.option(
    "--fail-on-error",
    is_flag=True,
    help="Exit with status 1 if any preview failed",
)
@click.argument("services", nargs=-1)
@click.pass_obj
def deploy(
    config: PreviewConfig,
    pr_number: str,
    branch: str,
    base: str,
    head: str,
    results_file: Path,
    fail_on_error: bool,
    services: tuple[str, ...],
) -> None:
    """Deploy previews for SERVICES, or for the services changed since --base."""
    repo_root = Path.cwd()
    with _cli_errors():
        if services:
            service_list = sorted(set(services))
        else:
            service_list = detect_services(base, head, repo_root, config)

        if service_list:
            _require_kubectl()

        with DomainClient(config.domain_api_url, config.domain_api_token) as domains:
            outcomes = run_previews(
                service_list, pr_number, branch, config, repo_root, domains
            )
        write_results(results_file, outcomes)

    click.echo(f"✓ Wrote {len(outcomes)} result(s) to {results_file}")
    if fail_on_error and classify(outcomes) in (ReportStatus.ALL_FAILURE, ReportStatus.MIXED):
        sys.exit(1)


@main.command()
@pr_option
@branch_option
@results_option
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the report to a file instead of stdout",
)
@click.pass_obj
def report(
    config: PreviewConfig,
    pr_number: str,
    branch: str,
    results_file: Path,
    output: Path | None,
) -> None:
    """Render the Markdown report for a preview run."""
    with _cli_errors():
        body = render_report(
            read_results(results_file), pr_number, branch, config.namespace_prefix
        )

    if output is None:
        click.echo(body)
    else:
        output.write_text(body)
        click.echo(f"✓ Wrote report to {output}")


@main.command()
@pr_option
@branch_option
@results_option
@click.option(
    "--repository",
    envvar="GITHUB_REPOSITORY",
    default="",
    help="Repository in owner/name form [env: GITHUB_REPOSITORY]",
)
@click.option(
    "--token",
    envvar="GITHUB_TOKEN",
    default="",
    show_default=False,
    help="GitHub token [env: GITHUB_TOKEN]",
)
@click.option("--dry-run", is_flag=True, help="Print the comment instead of posting it")
@click.pass_obj
def comment(
    config: PreviewConfig,
    pr_number: str,
    branch: str,
    results_file: Path,
    repository: str,
    token: str,
    dry_run: bool,
) -> None:
    """Post the preview report as a new pull request comment."""
    with _cli_errors():
        body = render_report(
            read_results(results_file), pr_number, branch, config.namespace_prefix
        )
        if dry_run:
            click.echo(body)
            return
        comment_url = post_comment(repository, pr_number, body, token)

    click.echo(f"✓ Posted comment {comment_url}".rstrip())


@main.command()
@pr_option
@click.pass_obj
def cleanup(config: PreviewConfig, pr_number: str) -> None:
    """Delete every preview environment of a closed pull request."""
    with _cli_errors():
        _require_kubectl()
        with DomainClient(config.domain_api_url, config.domain_api_token) as domains:
            result = cleanup_previews(pr_number, domains, config.created_by)

    if not result.ok:
        click.echo(
            f"Failed to delete namespace(s): {', '.join(result.failed)}", err=True
        )
        sys.exit(1)


@main.command()
@pr_option
@click.pass_obj
def status(config: PreviewConfig, pr_number: str) -> None:
    """List the preview environments of a pull request."""
    with _cli_errors():
        _require_kubectl()
        environments = find_previews(pr_number, config.created_by)

    if not environments:
        click.echo(f"No preview environments for PR #{pr_number}")
        return
    for env in environments:
        domain = f" domain={env.domain_id}" if env.domain_id else ""
        created = env.created_at or "unknown"
        click.echo(f"{env.namespace}  service={env.service}  created={created}{domain}")


if __name__ == "__main__":
    main()
