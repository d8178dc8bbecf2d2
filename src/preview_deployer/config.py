# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Configuration parsing and validation for preview-deployer."""

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path

DEFAULT_CONFIG_FILE = Path("preview.toml")

# Environment variables that override values from the TOML file
ENV_OVERRIDES = {
    "PREVIEW_DOMAIN_API_URL": "domain_api_url",
    "PREVIEW_DOMAIN_API_TOKEN": "domain_api_token",
}


@dataclass(frozen=True)
class PreviewConfig:
    """Settings shared by every stage of a preview run."""

    services_root: str = "apps"
    community_root: str = "community"
    overlay: str = "preview"
    namespace_prefix: str = "preview"
    domain_api_url: str | None = None
    domain_api_token: str | None = None
    fallback_domain_suffix: str = "preview.local"
    use_zero_trust: bool = True
    strict_domains: bool = False
    readiness_attempts: int = 12
    readiness_interval: float = 5.0
    deployment_timeout: int = 300
    created_by: str = "preview-deployer"


def load_config(path: Path | None = None) -> PreviewConfig:
    """
    Load the preview configuration from a TOML file.

    The file must contain a single [preview] table. When no path is given,
    preview.toml in the current directory is used if it exists, otherwise the
    defaults apply. Environment overrides are applied last.

    Args:
        path: Explicit configuration file, or None to use the default location

    Returns:
        The resolved configuration

    Raises:
        FileNotFoundError: If an explicitly given path does not exist
        ValueError: If the TOML is invalid, has unknown keys or wrong types
    """
    data: dict = {}
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        data = _read_preview_table(path)
    elif DEFAULT_CONFIG_FILE.exists():
        data = _read_preview_table(DEFAULT_CONFIG_FILE)

    config = _parse_preview_config(data, path or DEFAULT_CONFIG_FILE)
    config = apply_env_overrides(config, os.environ)
    validate_config(config)
    return config


def _read_preview_table(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if "preview" not in data:
        raise ValueError(f"No [preview] table found in {path}")
    table = data["preview"]
    if not isinstance(table, dict):
        raise ValueError(f"[preview] must be a table in {path}")
    return table


def _parse_preview_config(data: dict, source_file: Path) -> PreviewConfig:
    """Build a PreviewConfig from the [preview] table, checking keys and types."""
    known = {f.name: f for f in fields(PreviewConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown configuration key(s) {unknown} in {source_file}")

    defaults = PreviewConfig()
    for key, value in data.items():
        expected = type(getattr(defaults, key))
        if getattr(defaults, key) is None:
            expected = str
        # TOML integers are acceptable where a float is expected
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            continue
        if expected is int and isinstance(value, bool):
            raise ValueError(f"Field '{key}' must be an integer in {source_file}")
        if not isinstance(value, expected):
            raise ValueError(
                f"Field '{key}' must be of type {expected.__name__} in {source_file}"
            )

    return replace(defaults, **data)


def apply_env_overrides(config: PreviewConfig, environ) -> PreviewConfig:
    """Return a copy of config with non-empty environment overrides applied."""
    overrides = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name, "").strip()
        if value:
            overrides[field_name] = value
    return replace(config, **overrides) if overrides else config


def validate_config(config: PreviewConfig) -> None:
    """
    Validate a preview configuration.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If validation fails
    """
    if config.readiness_attempts < 1:
        raise ValueError(
            f"readiness_attempts must be at least 1, got {config.readiness_attempts}"
        )
    if config.readiness_interval <= 0:
        raise ValueError(
            f"readiness_interval must be positive, got {config.readiness_interval}"
        )
    if config.deployment_timeout < 1:
        raise ValueError(
            f"deployment_timeout must be at least 1, got {config.deployment_timeout}"
        )
    for name in ("services_root", "community_root", "overlay", "namespace_prefix"):
        value = getattr(config, name)
        if not value or value.startswith("/"):
            raise ValueError(f"{name} must be non-empty and relative, got '{value}'")
    if not config.fallback_domain_suffix:
        raise ValueError("fallback_domain_suffix must not be empty")
