"""Secret store backend driving the ``vault`` command-line client.

Secret values are passed on stdin (``key=-``) so they never show up in the
process list.
"""

import json
import logging
import os
import subprocess
from typing import Any, Optional

from ..config import VaultSettings
from ..exceptions import (
    ConnectivityError,
    SecretNotFoundError,
    StoreError,
    StoreWriteError,
    VaultSealedError,
)
from ..retry import RetryConfiguration
from .base import StoreClient, StoreStatus

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("no value found", "not present in secret")
_CONNECTIVITY_MARKERS = (
    "connection refused",
    "dial tcp",
    "no such host",
    "context deadline exceeded",
    "i/o timeout",
    "server gave http response",
)


class VaultCliStoreClient(StoreClient):
    """Store client that shells out to the ``vault`` executable."""

    def __init__(
        self,
        settings: VaultSettings,
        token: Optional[str] = None,
        retry_config: Optional[RetryConfiguration] = None,
        executable: str = "vault",
    ):
        super().__init__(retry_config or RetryConfiguration(max_attempts=settings.retries))
        self.settings = settings
        self.executable = executable
        self._token = token

    def _env(self) -> dict[str, str]:
        env = {**os.environ, "VAULT_ADDR": self.settings.address}
        if self._token:
            env["VAULT_TOKEN"] = self._token
        if self.settings.namespace:
            env["VAULT_NAMESPACE"] = self.settings.namespace
        if not self.settings.verify:
            env["VAULT_SKIP_VERIFY"] = "true"
        return env

    def _run(self, args: list[str], stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run one vault command with the configured timeout."""
        logger.debug(f"Executing vault command: {' '.join(args[:2])}")
        try:
            return subprocess.run(
                [self.executable, *args],
                input=stdin,
                env=self._env(),
                capture_output=True,
                text=True,
                timeout=self.settings.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ConnectivityError(f"vault executable not found: {self.executable}") from e
        except subprocess.TimeoutExpired as e:
            raise ConnectivityError(
                f"vault {args[0]} timed out after {self.settings.timeout}s"
            ) from e

    def _error_for(self, result: subprocess.CompletedProcess, path: str, key: Optional[str] = None) -> StoreError:
        """Classify a failed command by its stderr."""
        stderr = (result.stderr or "").strip()
        lowered = stderr.lower()
        if "vault is sealed" in lowered:
            return VaultSealedError(f"Vault is sealed: {stderr}")
        if any(marker in lowered for marker in _CONNECTIVITY_MARKERS):
            return ConnectivityError(f"Vault server is unreachable: {stderr}")
        if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            return SecretNotFoundError(path, key)
        return StoreError(f"vault exited with {result.returncode} for {path}: {stderr}")

    def _status(self) -> StoreStatus:
        result = self._run(["status", "-format=json"])
        # Exit code 2 means sealed, and the JSON status is still printed.
        if result.returncode in (0, 2) and result.stdout.strip():
            try:
                status = json.loads(result.stdout)
            except json.JSONDecodeError as e:
                raise ConnectivityError(f"Unparseable vault status output: {e}") from e
            return StoreStatus(
                sealed=bool(status.get("sealed", False)),
                initialized=status.get("initialized"),
                version=status.get("version"),
            )
        raise ConnectivityError(
            f"Failed to connect to Vault server: {(result.stderr or '').strip()}"
        )

    def _put(self, path: str, key: str, value: str, metadata: dict[str, Any]) -> None:
        result = self._run(["kv", "patch", path, f"{key}=-"], stdin=value)
        if result.returncode != 0:
            error = self._error_for(result, path, key)
            if isinstance(error, ConnectivityError):
                raise error
            if not isinstance(error, SecretNotFoundError):
                raise StoreWriteError(path, key, str(error))
            # patch needs an existing secret; the first key creates it
            result = self._run(["kv", "put", path, f"{key}=-"], stdin=value)
            if result.returncode != 0:
                error = self._error_for(result, path, key)
                if isinstance(error, ConnectivityError):
                    raise error
                raise StoreWriteError(path, key, str(error))

        if metadata:
            flags = [f"-custom-metadata={key}.{name}={item}" for name, item in metadata.items()]
            meta_result = self._run(["kv", "metadata", "patch", *flags, path])
            if meta_result.returncode != 0:
                logger.warning(
                    f"Could not record metadata for {path}/{key}: "
                    f"{(meta_result.stderr or '').strip()}"
                )

    def _get(self, path: str, key: str) -> str:
        # JSON output keeps the value exact; plain -field output adds a newline
        result = self._run(["kv", "get", "-format=json", path])
        if result.returncode != 0:
            raise self._error_for(result, path, key)
        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise StoreError(f"Unparseable vault kv get output for {path}: {e}") from e
        data = (document.get("data") or {}).get("data") or {}
        if key not in data:
            raise SecretNotFoundError(path, key)
        return str(data[key])

    def _path_exists(self, path: str) -> bool:
        for args in (["kv", "list", path], ["kv", "metadata", "get", path]):
            result = self._run(args)
            if result.returncode == 0:
                return True
            error = self._error_for(result, path)
            if isinstance(error, ConnectivityError):
                raise error
        return False
