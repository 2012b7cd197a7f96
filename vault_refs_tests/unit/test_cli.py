"""Tests for the vault-manager and vault-validate entry points."""

import json
from unittest.mock import patch

import pytest

from vault_refs.cli import manager_main, validator_main
from vault_refs.store.memory import InMemoryStoreClient

API_KEY_PATTERN = r"([A-Za-z0-9_]*API_KEY)\s*[=:]\s*[\"']?([A-Za-z0-9_\-\.]{6,})[\"']?"
TOKEN = "{{vault:secret/windsurf-projects/myproj/api_key:config__env_api}}"


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "vault-config.json"
    path.write_text(json.dumps({
        "rules": [{
            "name": "vault-management",
            "vault_config": {"backend": "memory"},
            "secret_patterns": {"api_key": {"patterns": [API_KEY_PATTERN], "vault_path": "api_key"}},
        }]
    }))
    return path


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "myproj"
    (root / "config").mkdir(parents=True)
    (root / "config" / ".env").write_text("API_KEY=abc123\n")
    return root


class TestManagerMain:
    """Test vault-manager."""

    def test_scan_store_replace(self, config_path, project):
        """Test a full run exits 0 and rewrites the file."""
        store = InMemoryStoreClient()
        with patch("vault_refs.cli.create_store_client", return_value=store):
            code = manager_main([
                "--scan", "--auto-store", "--replace",
                "--project", str(project), "--config", str(config_path),
            ])

        assert code == 0
        assert (project / "config" / ".env").read_text() == f"API_KEY={TOKEN}\n"

    def test_report_never_prints_values(self, config_path, project, capsys):
        """Test the console report omits secret values."""
        manager_main(["--scan", "--project", str(project), "--config", str(config_path)])
        out = capsys.readouterr().out
        assert "SECRET SCAN REPORT" in out
        assert "config__env_api" in out
        assert "abc123" not in out

    def test_json_report(self, config_path, project, tmp_path):
        """Test --json writes the pipeline result."""
        output = tmp_path / "report.json"
        code = manager_main([
            "--scan", "--project", str(project), "--config", str(config_path), "--json", str(output),
        ])
        assert code == 0
        data = json.loads(output.read_text())
        assert data["summary"]["secrets_found"] == 1
        assert "abc123" not in output.read_text()

    def test_unreachable_store_exits_1(self, config_path, project):
        """Test a connectivity failure aborts with exit code 1."""
        store = InMemoryStoreClient(reachable=False)
        with patch("vault_refs.cli.create_store_client", return_value=store):
            code = manager_main([
                "--scan", "--auto-store", "--replace",
                "--project", str(project), "--config", str(config_path),
            ])
        assert code == 1
        assert (project / "config" / ".env").read_text() == "API_KEY=abc123\n"

    def test_missing_config_exits_1(self, project, tmp_path):
        """Test a missing configuration file exits 1."""
        code = manager_main(["--scan", "--project", str(project), "--config", str(tmp_path / "none.json")])
        assert code == 1

    def test_rollback(self, config_path, project):
        """Test --rollback restores the original file."""
        args = ["--project", str(project), "--config", str(config_path)]
        manager_main(["--scan", "--auto-store", "--replace", *args])

        code = manager_main(["--rollback", str(project / "config" / ".env"), *args])

        assert code == 0
        assert (project / "config" / ".env").read_text() == "API_KEY=abc123\n"


class TestValidatorMain:
    """Test vault-validate."""

    def test_valid_references_exit_0(self, config_path, project):
        """Test a project whose references resolve exits 0."""
        store = InMemoryStoreClient()
        with patch("vault_refs.cli.create_store_client", return_value=store):
            manager_main([
                "--scan", "--auto-store", "--replace",
                "--project", str(project), "--config", str(config_path),
            ])
            code = validator_main(["--path", str(project), "--config", str(config_path)])
        assert code == 0

    def test_invalid_references_exit_1(self, config_path, project, capsys):
        """Test an unresolvable reference exits 1."""
        (project / "config" / ".env").write_text(f"API_KEY={TOKEN}\n")
        code = validator_main(["--path", str(project), "--config", str(config_path)])
        assert code == 1
        assert "Found 1 invalid vault references." in capsys.readouterr().out

    def test_unreachable_store_exits_1(self, config_path, project):
        """Test the validator aborts when the store is unreachable."""
        with patch(
            "vault_refs.cli.create_store_client",
            return_value=InMemoryStoreClient(reachable=False),
        ):
            code = validator_main(["--path", str(project), "--config", str(config_path)])
        assert code == 1
