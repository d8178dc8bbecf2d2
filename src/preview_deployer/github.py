# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Post preview reports as pull request comments."""

import logging

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


def post_comment(
    repository: str,
    pr_number: str,
    body: str,
    token: str,
    api_url: str = GITHUB_API_URL,
    client: httpx.Client | None = None,
) -> str:
    """
    Add a new comment to a pull request.

    A fresh comment is created on every call; earlier comments are left alone.

    Args:
        repository: Repository in owner/name form
        pr_number: Pull request number
        body: Markdown comment body
        token: GitHub token with permission to comment
        api_url: GitHub REST API root
        client: Preconfigured httpx client (used by tests)

    Returns:
        The html_url of the new comment, or an empty string if GitHub did not
        return one

    Raises:
        ValueError: If repository or token is missing or malformed
        RuntimeError: If the GitHub API call fails
    """
    if not token:
        raise ValueError("A GitHub token is required to post comments (GITHUB_TOKEN)")
    if repository.count("/") != 1 or not all(repository.split("/")):
        raise ValueError(f"Repository must be in owner/name form, got '{repository}'")

    url = f"{api_url.rstrip('/')}/repos/{repository}/issues/{pr_number}/comments"
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "User-Agent": "preview-deployer",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=30.0)
    try:
        response = client.post(url, json={"body": body}, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise RuntimeError(
            f"GitHub rejected the comment on {repository}#{pr_number}: "
            f"{e.response.status_code} {e.response.text}"
        ) from e
    except httpx.HTTPError as e:
        raise RuntimeError(
            f"Failed to post comment on {repository}#{pr_number}: {e}"
        ) from e
    finally:
        if owns_client:
            client.close()

    comment_url = response.json().get("html_url", "")
    logger.info(f"Posted preview report on {repository}#{pr_number} {comment_url}".rstrip())
    return comment_url
