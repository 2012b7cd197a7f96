"""Custom exceptions for the secret lifecycle engine.

Every error raised by scanning, storing, rewriting or validating derives
from VaultRefsError so the CLI can decide between fatal and recoverable
failures in one place.
"""

from typing import Optional


class VaultRefsError(Exception):
    """Base exception for vault_refs errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """Initialize the error.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return error string representation."""
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigError(VaultRefsError):
    """Raised when the configuration is missing or malformed."""


class StoreError(VaultRefsError):
    """Base exception for secret store failures."""


class ConnectivityError(StoreError):
    """Raised when the secret store is unreachable."""

    def __init__(
        self,
        message: str = "Failed to connect to Vault server",
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)


class VaultSealedError(ConnectivityError):
    """Raised when the store is sealed and cannot serve requests."""

    def __init__(
        self,
        message: str = "Vault is sealed and cannot be used",
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)


class StoreWriteError(StoreError):
    """Raised when a secret fails to persist."""

    def __init__(
        self,
        path: str,
        key: str,
        message: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message or f"Failed to store {key} at {path}", details)
        self.path = path
        self.key = key


class SecretNotFoundError(StoreError):
    """Raised when a key is absent from the store."""

    def __init__(
        self,
        path: str,
        key: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        if message is None:
            message = (
                f"Secret {key} not found at path: {path}"
                if key
                else f"Secret not found at path: {path}"
            )
        super().__init__(message, details)
        self.path = path
        self.key = key


class FileReadError(VaultRefsError):
    """Raised when a candidate file cannot be read or decoded."""

    def __init__(self, file_path: str, message: Optional[str] = None):
        super().__init__(message or f"Could not read {file_path}")
        self.file_path = file_path


class FileWriteError(VaultRefsError):
    """Raised when a file cannot be backed up or rewritten."""

    def __init__(self, file_path: str, message: Optional[str] = None):
        super().__init__(message or f"Failed to update file {file_path}")
        self.file_path = file_path


class ReferenceValidationError(VaultRefsError):
    """Raised when a reference token does not resolve in the store."""

    def __init__(self, store_path: str, key: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid reference: {{{{vault:{store_path}:{key}}}}}"
        )
        self.store_path = store_path
        self.key = key


class StoreAuthenticationError(StoreError):
    """Raised when the store rejects or lacks credentials."""

    def __init__(
        self,
        message: str = "Vault authentication failed",
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
