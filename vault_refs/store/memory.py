"""In-process secret store used by tests and offline dry runs."""

import logging
from threading import Lock
from typing import Any, Iterable, Optional

from ..exceptions import ConnectivityError, SecretNotFoundError, StoreWriteError
from ..retry import RetryConfiguration
from .base import StoreClient, StoreStatus

logger = logging.getLogger(__name__)


class InMemoryStoreClient(StoreClient):
    """Dict-backed store with the same contract as the real backends.

    Args:
        secrets: Initial contents as ``{path: {key: value}}``.
        sealed: Report the store as sealed.
        reachable: When False every call raises ConnectivityError.
        fail_keys: Keys whose writes fail with StoreWriteError.
    """

    def __init__(
        self,
        secrets: Optional[dict[str, dict[str, str]]] = None,
        sealed: bool = False,
        reachable: bool = True,
        fail_keys: Iterable[str] = (),
        retry_config: Optional[RetryConfiguration] = None,
    ):
        super().__init__(retry_config or RetryConfiguration(max_attempts=1))
        self.secrets: dict[str, dict[str, str]] = {
            path.strip("/"): dict(data) for path, data in (secrets or {}).items()
        }
        self.metadata: dict[str, dict[str, dict[str, Any]]] = {}
        self.sealed = sealed
        self.reachable = reachable
        self.fail_keys = set(fail_keys)
        self.writes: list[tuple[str, str]] = []
        self._lock = Lock()

    def _check_reachable(self) -> None:
        if not self.reachable:
            raise ConnectivityError("Vault server is unreachable")

    def _status(self) -> StoreStatus:
        self._check_reachable()
        return StoreStatus(sealed=self.sealed, initialized=True, version="memory")

    def _put(self, path: str, key: str, value: str, metadata: dict[str, Any]) -> None:
        self._check_reachable()
        path = path.strip("/")
        if key in self.fail_keys:
            raise StoreWriteError(path, key, f"Injected write failure for {key}")
        with self._lock:
            self.secrets.setdefault(path, {})[key] = value
            if metadata:
                self.metadata.setdefault(path, {})[key] = dict(metadata)
            self.writes.append((path, key))

    def _get(self, path: str, key: str) -> str:
        self._check_reachable()
        with self._lock:
            data = self.secrets.get(path.strip("/"))
            if data is None or key not in data:
                raise SecretNotFoundError(path, key)
            return data[key]

    def _path_exists(self, path: str) -> bool:
        self._check_reachable()
        path = path.strip("/")
        with self._lock:
            return any(p == path or p.startswith(path + "/") for p in self.secrets)
