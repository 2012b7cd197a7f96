"""Tests for configuration loading."""

import json

import pytest
from pydantic import ValidationError

from vault_refs.config import (
    DEFAULT_FILE_PATTERNS,
    RuleConfig,
    VaultSettings,
    load_config,
    load_vault_token,
)
from vault_refs.exceptions import ConfigError


def write_config(tmp_path, document):
    path = tmp_path / "vault-config.json"
    path.write_text(json.dumps(document))
    return path


MINIMAL_RULE = {"secret_patterns": {"api_key": {"patterns": ["(API_KEY)=(\\w+)"]}}}


class TestVaultSettings:
    """Test VaultSettings validation."""

    def test_defaults(self):
        """Test default connection settings."""
        settings = VaultSettings()
        assert settings.backend == "hashicorp"
        assert settings.address == "http://127.0.0.1:8200"
        assert settings.mount_path == "secret"
        assert settings.base_path == "windsurf-projects"
        assert settings.retries == 3

    def test_address_must_be_http(self):
        """Test non-HTTP addresses are rejected."""
        with pytest.raises(ValidationError):
            VaultSettings(address="127.0.0.1:8200")

    def test_address_trailing_slash_stripped(self):
        """Test a trailing slash is removed from the address."""
        assert VaultSettings(address="https://vault.example.com/").address == (
            "https://vault.example.com"
        )

    def test_unknown_backend_rejected(self):
        """Test only known backends are accepted."""
        with pytest.raises(ValidationError):
            VaultSettings(backend="consul")

    def test_path_segment_cannot_break_tokens(self):
        """Test a base path containing ':' is rejected."""
        with pytest.raises(ValidationError):
            VaultSettings(base_path="bad:path")

    def test_store_root_uses_project_directory_name(self, tmp_path):
        """Test the project segment defaults to the directory name."""
        project = tmp_path / "myproj"
        project.mkdir()
        assert VaultSettings().store_root(project) == "secret/windsurf-projects/myproj"
        assert VaultSettings(project_name="other").store_root(project) == (
            "secret/windsurf-projects/other"
        )

    @pytest.mark.parametrize("name", ["my:proj", "a}b", "a/b", ""])
    def test_project_name_cannot_break_tokens(self, name):
        """Test a project name that cannot appear in a token is rejected."""
        with pytest.raises(ValidationError):
            VaultSettings(project_name=name)

    def test_store_root_rejects_unusable_directory_name(self, tmp_path):
        """Test a directory name containing ':' needs an explicit project_name."""
        project = tmp_path / "my:proj"
        project.mkdir()
        with pytest.raises(ConfigError, match="project_name"):
            VaultSettings().store_root(project)
        assert VaultSettings(project_name="myproj").store_root(project) == (
            "secret/windsurf-projects/myproj"
        )

    def test_frozen(self):
        """Test settings cannot be changed after loading."""
        settings = VaultSettings()
        with pytest.raises(ValidationError):
            settings.address = "http://other:8200"


class TestLoadConfig:
    """Test load_config."""

    def test_loads_first_rule(self, tmp_path):
        """Test the first rule is used by default."""
        path = write_config(tmp_path, {"rules": [{"name": "first", **MINIMAL_RULE}, {"name": "second", **MINIMAL_RULE}]})
        config = load_config(path, dotenv_path=tmp_path / "missing.env")
        assert config.name == "first"
        assert config.trigger.file_patterns == DEFAULT_FILE_PATTERNS
        assert config.backup_dir == ".windsurf/backups"

    def test_rule_index(self, tmp_path):
        """Test another rule can be selected."""
        path = write_config(tmp_path, {"rules": [MINIMAL_RULE, {"name": "second", **MINIMAL_RULE}]})
        assert load_config(path, rule_index=1, dotenv_path=tmp_path / "missing.env").name == "second"

    def test_missing_file(self, tmp_path):
        """Test a missing file is a ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.json", dotenv_path=tmp_path / "missing.env")

    def test_invalid_json(self, tmp_path):
        """Test malformed JSON is a ConfigError."""
        path = tmp_path / "vault-config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(path, dotenv_path=tmp_path / "missing.env")

    @pytest.mark.parametrize(
        "document",
        [{}, {"rules": []}, {"rules": ["text"]}, {"rules": [{"name": "no-patterns"}]}],
    )
    def test_structural_errors(self, tmp_path, document):
        """Test documents without a usable rule are rejected."""
        with pytest.raises(ConfigError):
            load_config(write_config(tmp_path, document), dotenv_path=tmp_path / "missing.env")

    def test_rule_index_out_of_range(self, tmp_path):
        """Test an out-of-range rule index is rejected."""
        path = write_config(tmp_path, {"rules": [MINIMAL_RULE]})
        with pytest.raises(ConfigError, match="out of range"):
            load_config(path, rule_index=3, dotenv_path=tmp_path / "missing.env")

    def test_validation_error_wrapped(self, tmp_path):
        """Test pydantic errors surface as ConfigError."""
        rule = {**MINIMAL_RULE, "vault_config": {"address": "ftp://vault"}}
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(write_config(tmp_path, {"rules": [rule]}), dotenv_path=tmp_path / "missing.env")

    def test_address_from_environment(self, tmp_path, monkeypatch):
        """Test VAULT_ADDR fills in a missing address."""
        monkeypatch.setenv("VAULT_ADDR", "https://vault.internal:8200")
        config = load_config(write_config(tmp_path, {"rules": [MINIMAL_RULE]}), dotenv_path=tmp_path / "missing.env")
        assert config.vault_config.address == "https://vault.internal:8200"

    def test_address_from_dotenv(self, tmp_path, monkeypatch):
        """Test a .env file can provide VAULT_ADDR."""
        # setenv first so teardown also removes the value load_dotenv sets
        monkeypatch.setenv("VAULT_ADDR", "placeholder")
        monkeypatch.delenv("VAULT_ADDR")
        dotenv = tmp_path / ".env"
        dotenv.write_text("VAULT_ADDR=http://dotenv-vault:8200\n")
        config = load_config(write_config(tmp_path, {"rules": [MINIMAL_RULE]}), dotenv_path=dotenv)
        assert config.vault_config.address == "http://dotenv-vault:8200"

    def test_rule_config_is_immutable(self):
        """Test a loaded rule cannot be modified."""
        config = RuleConfig.model_validate(MINIMAL_RULE)
        with pytest.raises(ValidationError):
            config.name = "changed"


class TestLoadVaultToken:
    """Test load_vault_token."""

    def test_reads_token_file(self, tmp_path):
        """Test the token file is read and stripped."""
        token_file = tmp_path / "token"
        token_file.write_text("s.abc123\n")
        assert load_vault_token(str(token_file)) == "s.abc123"

    def test_falls_back_to_environment(self, tmp_path, monkeypatch):
        """Test VAULT_TOKEN is used when the file is absent."""
        monkeypatch.setenv("VAULT_TOKEN", "s.fromenv")
        assert load_vault_token(str(tmp_path / "absent")) == "s.fromenv"

    def test_empty_when_nothing_available(self, tmp_path, monkeypatch):
        """Test an empty token when neither source exists."""
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        assert load_vault_token(str(tmp_path / "absent")) == ""
