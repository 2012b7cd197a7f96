"""Abstract secret store client.

The engine only ever talks to the store through this narrow interface:
status, put, get and path_exists. Backends implement the underscored
methods; the public methods wrap them in the retry policy.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..exceptions import StoreError, VaultSealedError
from ..retry import RetryConfiguration, build_retrying

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreStatus(BaseModel):
    """Seal status reported by the store."""

    sealed: bool = Field(..., description="Whether the store is sealed")
    initialized: Optional[bool] = Field(default=None, description="Initialization state")
    version: Optional[str] = Field(default=None, description="Server version")


def split_store_path(path: str) -> tuple[str, str]:
    """Split ``mount/rest/of/path`` into the mount point and the secret path.

    Raises:
        StoreError: If the path names only a mount.
    """
    mount, _, secret_path = path.strip("/").partition("/")
    if not mount or not secret_path:
        raise StoreError(f"Store path has no secret below the mount: {path}")
    return mount, secret_path


class StoreClient(ABC):
    """Synchronous request/response access to a secret store."""

    def __init__(self, retry_config: Optional[RetryConfiguration] = None):
        self.retry_config = retry_config or RetryConfiguration()
        self._retrying = build_retrying(self.retry_config)

    def _call(self, func: Callable[..., T], *args: Any) -> T:
        """Run one backend call under this client's retry policy."""
        # copy() gives each call its own attempt counter and statistics
        return self._retrying.copy()(func, *args)

    def status(self) -> StoreStatus:
        """Query the seal status.

        Raises:
            ConnectivityError: If the store is unreachable.
        """
        return self._call(self._status)

    def verify_connection(self) -> StoreStatus:
        """Check the store is reachable and unsealed.

        Raises:
            ConnectivityError: If the store is unreachable.
            VaultSealedError: If the store is sealed.
        """
        status = self.status()
        if status.sealed:
            raise VaultSealedError()
        logger.info("Successfully connected to Vault server")
        return status

    def put(
        self,
        path: str,
        key: str,
        value: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Store ``key=value`` at ``path``, keeping other keys at that path.

        Raises:
            StoreWriteError: If the value was not persisted.
        """
        self._call(self._put, path, key, value, metadata or {})

    def get(self, path: str, key: str) -> str:
        """Read one key.

        Raises:
            SecretNotFoundError: If the path or the key does not exist.
        """
        return self._call(self._get, path, key)

    def path_exists(self, path: str) -> bool:
        """Best-effort existence check; paths may be created by the first write."""
        return self._call(self._path_exists, path)

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self) -> "StoreClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @abstractmethod
    def _status(self) -> StoreStatus:
        ...

    @abstractmethod
    def _put(self, path: str, key: str, value: str, metadata: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def _get(self, path: str, key: str) -> str:
        ...

    @abstractmethod
    def _path_exists(self, path: str) -> bool:
        ...
