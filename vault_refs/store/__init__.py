"""Secret store clients.

Interchangeable backends behind one StoreClient interface:

* ``HvacStoreClient``: Vault HTTP API through hvac (backend ``hashicorp``)
* ``VaultCliStoreClient``: the ``vault`` executable (backend ``vault-cli``)
* ``InMemoryStoreClient``: in-process fake (backend ``memory``)
"""

from typing import Optional

from ..config import VaultSettings, load_vault_token
from .base import StoreClient, StoreStatus, split_store_path
from .cli_client import VaultCliStoreClient
from .hvac_client import HvacStoreClient
from .memory import InMemoryStoreClient


def create_store_client(settings: VaultSettings, token: Optional[str] = None) -> StoreClient:
    """Build the store client selected by ``settings.backend``."""
    if settings.backend == "memory":
        return InMemoryStoreClient()

    if token is None:
        token = load_vault_token(settings.token_file)
    if settings.backend == "vault-cli":
        return VaultCliStoreClient(settings, token=token)
    return HvacStoreClient(settings, token=token)


__all__ = [
    "StoreClient",
    "StoreStatus",
    "split_store_path",
    "HvacStoreClient",
    "VaultCliStoreClient",
    "InMemoryStoreClient",
    "create_store_client",
]
