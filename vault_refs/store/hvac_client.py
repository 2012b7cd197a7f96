"""Secret store backend talking to the Vault HTTP API through hvac.

Secrets live in a KV v2 engine. Several keys share one path, so a put
reads the current version, merges the new key in and writes it back with
check-and-set on the version it read.
"""

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional

import hvac
import requests
from hvac.exceptions import (
    Forbidden,
    InvalidPath,
    InvalidRequest,
    Unauthorized,
    VaultDown,
)
from hvac.exceptions import VaultError as HvacVaultError

from ..config import VaultSettings
from ..exceptions import (
    ConnectivityError,
    SecretNotFoundError,
    StoreAuthenticationError,
    StoreError,
    StoreWriteError,
    VaultSealedError,
)
from ..retry import RetryConfiguration
from .base import StoreClient, StoreStatus, split_store_path

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


class HvacStoreClient(StoreClient):
    """Store client for HashiCorp Vault using the native API.

    Example:
        >>> settings = VaultSettings(address="http://127.0.0.1:8200")
        >>> store = HvacStoreClient(settings, token="s.xxxxx")
        >>> store.put("secret/windsurf-projects/myproj/api_key", "config__env_api", "abc123")
    """

    def __init__(
        self,
        settings: VaultSettings,
        token: Optional[str] = None,
        retry_config: Optional[RetryConfiguration] = None,
        client: Optional[hvac.Client] = None,
    ):
        """Initialize the store client.

        Args:
            settings: Connection settings
            token: Vault token for token authentication
            retry_config: Retry policy (default: ``settings.retries`` attempts)
            client: Preconfigured hvac client, mainly for tests
        """
        super().__init__(retry_config or RetryConfiguration(max_attempts=settings.retries))
        self.settings = settings
        self._token = token
        self._client = client
        self._auth_lock = Lock()
        self._authenticated = False

    def _get_client(self) -> hvac.Client:
        """Get or create the underlying hvac client."""
        if self._client is None:
            with self._auth_lock:
                if self._client is None:
                    self._client = hvac.Client(
                        url=self.settings.address,
                        verify=self.settings.verify,
                        timeout=self.settings.timeout,
                        namespace=self.settings.namespace,
                    )
        return self._client

    def _authenticate(self) -> None:
        """Authenticate with Vault using the configured method."""
        client = self._get_client()

        if self.settings.auth_method == "approle":
            if not self.settings.role_id or not self.settings.secret_id:
                raise StoreAuthenticationError(
                    "AppRole authentication requires role_id and secret_id"
                )
            try:
                response = client.auth.approle.login(
                    role_id=self.settings.role_id,
                    secret_id=self.settings.secret_id,
                )
            except _TRANSPORT_ERRORS as e:
                raise ConnectivityError(f"Vault server is unreachable: {e}") from e
            except HvacVaultError as e:
                raise StoreAuthenticationError(f"AppRole login failed: {e}") from e
            token = response.get("auth", {}).get("client_token")
            if not token:
                raise StoreAuthenticationError("AppRole login did not return a token")
            client.token = token
        else:
            if not self._token:
                raise StoreAuthenticationError(
                    "Token authentication requires a token (token_file or VAULT_TOKEN)"
                )
            client.token = self._token

        self._authenticated = True
        logger.debug("Authenticated to Vault")

    def _ensure_authenticated(self) -> hvac.Client:
        if not self._authenticated:
            with self._auth_lock:
                if not self._authenticated:
                    self._authenticate()
        return self._get_client()

    def _translate(self, error: Exception, path: str, key: Optional[str] = None) -> StoreError:
        """Map hvac and transport exceptions onto the store error hierarchy."""
        if isinstance(error, _TRANSPORT_ERRORS):
            return ConnectivityError(f"Vault server is unreachable: {error}")
        if isinstance(error, VaultDown):
            return VaultSealedError(f"Vault is sealed or unavailable: {error}")
        if isinstance(error, InvalidPath):
            return SecretNotFoundError(path, key)
        if isinstance(error, (Forbidden, Unauthorized)):
            return StoreAuthenticationError(f"Permission denied for {path}: {error}")
        return StoreError(f"Vault request for {path} failed: {error}")

    def _read(self, path: str) -> tuple[dict[str, Any], int]:
        """Read the current data and the version a check-and-set write must name.

        A path without a live version has no data, but its metadata may still
        carry a ``current_version`` (soft-deleted or destroyed latest version).
        """
        client = self._ensure_authenticated()
        mount, secret_path = split_store_path(path)
        try:
            response = client.secrets.kv.v2.read_secret_version(
                path=secret_path,
                mount_point=mount,
                raise_on_deleted_version=True,
            )
        except InvalidPath:
            return {}, self._current_version(client, mount, secret_path)
        data = response.get("data", {})
        version = data.get("metadata", {}).get("version") or 0
        return data.get("data") or {}, version

    def _current_version(self, client: hvac.Client, mount: str, secret_path: str) -> int:
        try:
            metadata = client.secrets.kv.v2.read_secret_metadata(
                path=secret_path,
                mount_point=mount,
            )
        except InvalidPath:
            return 0
        return metadata.get("data", {}).get("current_version") or 0

    def _status(self) -> StoreStatus:
        try:
            status = self._get_client().sys.read_seal_status()
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            raise ConnectivityError(f"Failed to connect to Vault server: {e}") from e
        return StoreStatus(
            sealed=bool(status.get("sealed", False)),
            initialized=status.get("initialized"),
            version=status.get("version"),
        )

    def _put(self, path: str, key: str, value: str, metadata: dict[str, Any]) -> None:
        try:
            client = self._ensure_authenticated()
            mount, secret_path = split_store_path(path)
            existing, version = self._read(path)
            client.secrets.kv.v2.create_or_update_secret(
                path=secret_path,
                secret={**existing, key: value},
                cas=version,
                mount_point=mount,
            )
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            translated = self._translate(e, path, key)
            if isinstance(translated, ConnectivityError):
                raise translated from e
            if isinstance(e, InvalidRequest):
                raise StoreWriteError(path, key, f"Vault rejected write of {key}: {e}") from e
            raise StoreWriteError(path, key, str(translated)) from e

        if metadata:
            self._write_metadata(path, key, metadata)

    def _write_metadata(self, path: str, key: str, metadata: dict[str, Any]) -> None:
        """Merge per-key custom metadata; failures only cost the metadata."""
        client = self._get_client()
        mount, secret_path = split_store_path(path)
        try:
            current = client.secrets.kv.v2.read_secret_metadata(
                path=secret_path,
                mount_point=mount,
            )
            custom = dict(current.get("data", {}).get("custom_metadata") or {})
            custom.update({f"{key}.{name}": str(item) for name, item in metadata.items()})
            custom.setdefault(
                f"{key}.stored_at", datetime.now(timezone.utc).isoformat()
            )
            client.secrets.kv.v2.update_metadata(
                path=secret_path,
                custom_metadata=custom,
                mount_point=mount,
            )
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            logger.warning(f"Could not record metadata for {path}/{key}: {e}")

    def _get(self, path: str, key: str) -> str:
        try:
            client = self._ensure_authenticated()
            mount, secret_path = split_store_path(path)
            response = client.secrets.kv.v2.read_secret_version(
                path=secret_path,
                mount_point=mount,
                raise_on_deleted_version=True,
            )
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, path, key) from e

        data = response.get("data", {}).get("data") or {}
        if key not in data:
            raise SecretNotFoundError(path, key)
        return str(data[key])

    def _path_exists(self, path: str) -> bool:
        client = self._ensure_authenticated()
        mount, secret_path = split_store_path(path)
        try:
            client.secrets.kv.v2.list_secrets(path=secret_path, mount_point=mount)
            return True
        except InvalidPath:
            pass
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, path) from e

        try:
            client.secrets.kv.v2.read_secret_metadata(path=secret_path, mount_point=mount)
            return True
        except InvalidPath:
            return False
        except (HvacVaultError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, path) from e

    def close(self) -> None:
        """Drop the HTTP session; the user's token is left valid."""
        if self._client is not None:
            self._client.adapter.close()
            self._client = None
        self._authenticated = False
