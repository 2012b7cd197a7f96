"""Configuration loading for the vault manager and reference validator.

The configuration is a JSON document holding a list of rules. Each rule
carries the store connection parameters, the secret pattern table used by
the scanner and the file patterns used by the validator::

    {"rules": [{"name": "vault-management",
                "trigger": {"file_patterns": ["**/*.env", "**/*.json"]},
                "vault_config": {"backend": "hashicorp",
                                 "address": "http://127.0.0.1:8200",
                                 "token_file": "~/.vault-token",
                                 "mount_path": "secret",
                                 "base_path": "windsurf-projects"},
                "secret_patterns": {"api_key": {"patterns": ["..."],
                                                "vault_path": "api_key"}}}]}
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "vault-config.json"
DEFAULT_VAULT_ADDR = "http://127.0.0.1:8200"
DEFAULT_TOKEN_FILE = "~/.vault-token"
DEFAULT_BACKUP_DIR = ".windsurf/backups"

DEFAULT_FILE_PATTERNS = (
    "**/*.env",
    "**/.env*",
    "**/*.json",
    "**/*.yaml",
    "**/*.yml",
    "**/*.js",
    "**/*.ts",
    "**/*.py",
)


def _is_project_segment(name: str) -> bool:
    return bool(name) and not any(c in name for c in ":}/")


class VaultSettings(BaseModel):
    """Connection parameters for the secret store."""

    backend: str = Field(
        default="hashicorp",
        description="Store backend: hashicorp (HTTP API), vault-cli or memory",
    )
    address: str = Field(
        default=DEFAULT_VAULT_ADDR,
        description="Vault server address",
        examples=["http://127.0.0.1:8200"],
    )
    token_file: str = Field(
        default=DEFAULT_TOKEN_FILE,
        description="File holding the Vault token; VAULT_TOKEN is the fallback",
    )
    mount_path: str = Field(default="secret", description="KV v2 mount point")
    base_path: str = Field(
        default="windsurf-projects",
        description="Path below the mount shared by all projects",
    )
    project_name: Optional[str] = Field(
        default=None,
        description="Project segment of the store path (default: project directory name)",
    )
    auth_method: str = Field(default="token", description="Authentication method")
    role_id: Optional[str] = Field(default=None, description="AppRole role ID")
    secret_id: Optional[str] = Field(default=None, description="AppRole secret ID")
    namespace: Optional[str] = Field(default=None, description="Enterprise namespace")
    timeout: int = Field(
        default=30,
        description="Request timeout in seconds",
        ge=1,
        le=300,
    )
    retries: int = Field(
        default=3,
        description="Attempts per store call",
        ge=1,
        le=10,
    )
    verify: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend kind."""
        valid = {"hashicorp", "vault-cli", "memory"}
        if v not in valid:
            raise ValueError(f"Invalid backend: {v}. Must be one of {valid}")
        return v

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate Vault address format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("address must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("auth_method")
    @classmethod
    def validate_auth_method(cls, v: str) -> str:
        """Validate authentication method."""
        valid = {"token", "approle"}
        if v not in valid:
            raise ValueError(f"Invalid auth_method: {v}. Must be one of {valid}")
        return v

    @field_validator("mount_path", "base_path")
    @classmethod
    def validate_path_segment(cls, v: str) -> str:
        """Store path segments may not break the reference token syntax."""
        v = v.strip("/")
        if not v:
            raise ValueError("path segment cannot be empty")
        if ":" in v or "}" in v or " " in v:
            raise ValueError(f"path segment contains a forbidden character: {v!r}")
        return v

    @field_validator("project_name")
    @classmethod
    def validate_project_name(cls, v: Optional[str]) -> Optional[str]:
        """The project name is a single store path segment."""
        if v is not None and not _is_project_segment(v):
            raise ValueError(f"project_name cannot be used as a store path segment: {v!r}")
        return v

    def store_root(self, project_dir: Union[str, Path]) -> str:
        """Return ``mount/base/project`` for a project directory.

        Raises:
            ConfigError: If the project directory name cannot appear in a
                reference token; set ``project_name`` to override it.
        """
        project = self.project_name or Path(project_dir).resolve().name
        if not _is_project_segment(project):
            raise ConfigError(
                f"Project name {project!r} cannot be used in a vault reference; "
                "set vault_config.project_name"
            )
        return f"{self.mount_path}/{self.base_path}/{project}"

    class Config:
        frozen = True


class PatternEntry(BaseModel):
    """One regular expression with the groups holding identifier and value."""

    regex: str = Field(..., description="Regular expression")
    identifier_group: int = Field(default=1, ge=0)
    value_group: int = Field(default=2, ge=0)
    flags: tuple[str, ...] = Field(
        default=(),
        description="re flag names, e.g. IGNORECASE or MULTILINE",
    )

    class Config:
        frozen = True


class SecretPatternConfig(BaseModel):
    """Pattern list and target subpath for one secret type."""

    patterns: tuple[Union[str, PatternEntry], ...] = Field(..., min_length=1)
    vault_path: Optional[str] = Field(
        default=None,
        description="Subpath below the project root (default: the type name)",
    )

    @field_validator("vault_path")
    @classmethod
    def validate_vault_path(cls, v: Optional[str]) -> Optional[str]:
        """Target subpaths end up inside reference tokens."""
        if v is None:
            return v
        v = v.strip("/")
        if not v or ":" in v or "}" in v:
            raise ValueError(f"Invalid vault_path: {v!r}")
        return v

    class Config:
        frozen = True


class TriggerConfig(BaseModel):
    """File patterns the validator searches for reference tokens."""

    file_patterns: tuple[str, ...] = Field(default=DEFAULT_FILE_PATTERNS)

    class Config:
        frozen = True


class RuleConfig(BaseModel):
    """A single configuration rule."""

    name: str = Field(default="vault-management")
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    vault_config: VaultSettings = Field(default_factory=VaultSettings)
    secret_patterns: dict[str, SecretPatternConfig] = Field(default_factory=dict)
    backup_dir: str = Field(
        default=DEFAULT_BACKUP_DIR,
        description="Backup directory, relative to the project directory",
    )

    class Config:
        frozen = True


def load_config(
    config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
    rule_index: int = 0,
    dotenv_path: Optional[Union[str, Path]] = None,
) -> RuleConfig:
    """Load and validate one rule from a JSON configuration file.

    Args:
        config_path: Path to the JSON configuration document.
        rule_index: Which entry of ``rules`` to use.
        dotenv_path: Optional .env file providing VAULT_ADDR / VAULT_TOKEN.

    Returns:
        The validated, immutable RuleConfig.

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation.
    """
    dotenv_file = dotenv_path or find_dotenv(usecwd=True)
    if dotenv_file:
        load_dotenv(dotenv_path=dotenv_file, override=False)

    path = Path(config_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Could not read configuration {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    rules = document.get("rules") if isinstance(document, dict) else None
    if not isinstance(rules, list) or not rules:
        raise ConfigError(f"Configuration {path} has no rules")
    if not 0 <= rule_index < len(rules):
        raise ConfigError(
            f"Rule index {rule_index} out of range ({len(rules)} rules in {path})"
        )

    rule = rules[rule_index]
    if not isinstance(rule, dict):
        raise ConfigError(f"Rule {rule_index} in {path} is not an object")
    if not rule.get("secret_patterns"):
        raise ConfigError(f"Rule {rule_index} in {path} defines no secret_patterns")

    vault_config = dict(rule.get("vault_config") or {})
    if not vault_config.get("address") and os.environ.get("VAULT_ADDR"):
        vault_config["address"] = os.environ["VAULT_ADDR"]
    rule = {**rule, "vault_config": vault_config}

    try:
        config = RuleConfig.model_validate(rule)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.debug(
        f"Loaded rule '{config.name}' with {len(config.secret_patterns)} secret types"
    )
    return config


def load_vault_token(token_file: Optional[str] = None) -> str:
    """Read the Vault token from a file, falling back to VAULT_TOKEN.

    Args:
        token_file: Token file path; ``~`` is expanded.

    Returns:
        The token, or an empty string when none is available.
    """
    expanded = Path(token_file or DEFAULT_TOKEN_FILE).expanduser()
    try:
        if expanded.is_file():
            return expanded.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Could not read vault token from {expanded}: {e}")

    return os.environ.get("VAULT_TOKEN", "")
