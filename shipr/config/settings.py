"""
Configuration system using Pydantic for type-safe settings management.

Two layers of configuration exist:

- ``ShiprSettings``: process-level run settings (environment name, log level,
  output bounds), read from ``SHIPR_*`` environment variables and overridden by
  command-line options.
- ``EffectiveConfig``: the deployment configuration of one environment,
  produced by merging a multi-environment document with built-in defaults.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipr.exceptions import ConfigurationError

DEFAULT_SECTION = "default"

# Applied before the document's default section.
BUILTIN_DEFAULTS: dict[str, Any] = {
    "branch": "master",
    "keep_releases": 5,
    "shallow_clone": False,
}


class EffectiveConfig(BaseModel):
    """Merged configuration for the selected environment.

    Unknown keys from the environment document are kept as extra attributes,
    so ``config.deploy_to`` works for a document declaring ``deploy_to``.
    """

    model_config = ConfigDict(extra="allow")

    branch: str = Field(default="master", description="Branch to deploy")
    keep_releases: int = Field(default=5, description="Number of releases kept on servers")
    shallow_clone: bool = Field(default=False, description="Clone with --depth 1")
    servers: str | list[str] | None = Field(default=None, description="Remote targets, [user@]host[:port]")
    key: str | None = Field(default=None, description="SSH identity file")
    strict: bool | str | None = Field(default=None, description="SSH StrictHostKeyChecking value")
    ignores: list[str] = Field(default_factory=list, description="Exclude patterns for rsync")
    rsync: list[str] = Field(default_factory=list, description="Extra rsync arguments")

    @field_validator("branch", mode="before")
    @classmethod
    def coerce_branch(cls, v: Any) -> Any:
        """Accept YAML numbers such as ``2024`` as branch names."""
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def server_list(self) -> list[str]:
        """Servers as a list, whatever form the document used."""
        if not self.servers:
            return []
        if isinstance(self.servers, str):
            return [self.servers]
        return list(self.servers)


class ShiprSettings(BaseSettings):
    """Process-level run settings."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPR_",
        case_sensitive=False,
    )

    environment: str = Field(default=DEFAULT_SECTION, description="Environment to deploy")
    shiprfile: str | None = Field(default=None, description="Path to the shiprfile")
    log_level: str = Field(default="WARNING", description="Structured log level")
    max_buffer: int = Field(default=1000 * 1024, ge=1, description="Max buffered characters per stream")
    output_prefix: str = Field(default="@ ", description="Prefix for streamed command output")


def _normalize_section(section: Any, name: str) -> dict[str, Any]:
    """Convert camelCase keys of declared fields to their snake_case names."""
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f'Environment "{name}" must be a mapping, got {type(section).__name__}')

    normalized: dict[str, Any] = {}
    for key, value in section.items():
        snake = to_snake(key) if isinstance(key, str) else key
        normalized[snake if snake in EffectiveConfig.model_fields else key] = value
    return normalized


def resolve_config(document: Mapping[str, Any], environment: str) -> EffectiveConfig:
    """Merge a multi-environment document into one effective configuration.

    Merge order, increasing priority: built-in defaults, the document's
    ``default`` section, the section named ``environment``. The merge is
    shallow: a key in a later source replaces the whole value.

    Args:
        document: Mapping of environment name to settings mapping
        environment: Name of the selected environment

    Returns:
        EffectiveConfig instance

    Raises:
        ConfigurationError: If the environment is not a key of the document,
            a section is not a mapping, or a value fails validation
    """
    if not isinstance(document, Mapping):
        raise ConfigurationError("Configuration must be a mapping of environments")

    if environment not in document:
        raise ConfigurationError(f'Environment "{environment}" not found in config')

    merged = dict(BUILTIN_DEFAULTS)
    merged.update(_normalize_section(document.get(DEFAULT_SECTION), DEFAULT_SECTION))
    merged.update(_normalize_section(document[environment], environment))

    try:
        return EffectiveConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f'Invalid configuration for environment "{environment}": {e}') from e


def load_environment_document(config_path: str | Path) -> dict[str, Any]:
    """Load a multi-environment YAML document with environment variable interpolation.

    Supports ${VAR_NAME} syntax for environment variable substitution.

    Args:
        config_path: Path to YAML document

    Returns:
        The parsed document

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        yaml_content = config_file.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

    try:
        yaml_content = _interpolate_env_vars(yaml_content)
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

    try:
        document = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not isinstance(document, dict):
        raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")
    return document


def _interpolate_env_vars(content: str) -> str:
    """Interpolate ${VAR_NAME} placeholders with environment variables.

    Supports two syntaxes:
    - ${VAR_NAME} - Required environment variable (raises if not set)
    - ${VAR_NAME:-default} - Optional with default value

    YAML comment lines are left unchanged.

    Raises:
        ValueError: If a required environment variable is not set
    """
    pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

    def replace_var(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default_value = match.group(2)
        value = os.getenv(var_name)

        if value is not None:
            return value
        elif default_value is not None:
            return default_value
        else:
            raise ValueError(f"Environment variable {var_name} is not set")

    def process_line(line: str) -> str:
        if line.lstrip().startswith("#"):
            return line
        return pattern.sub(replace_var, line)

    return "\n".join(process_line(line) for line in content.split("\n"))
