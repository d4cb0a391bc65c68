"""
Error taxonomy for the receipt storage layer.

Hierarchy:
  StorageError
    ├── InvalidInput          missing / malformed identifiers or payload
    │     └── InvalidPermissions   unknown SAS permission letters
    ├── NotFound              blob path does not resolve
    ├── CopyFailed            server-side copy ended in failure or timed out
    ├── PolicyEnsureFailed    stored access policy bootstrap (non-fatal)
    └── ContainerEnsureFailed container bootstrap (fatal)

The HTTP layer maps InvalidInput -> 400 and NotFound -> 404.
"""

from typing import Optional


class StorageError(Exception):
    """Base class for every error raised by the storage layer."""


class InvalidInput(StorageError):
    pass


class InvalidPermissions(InvalidInput):
    def __init__(self, permissions: str, invalid: str):
        self.permissions = permissions
        self.invalid = invalid
        super().__init__(
            f"Invalid SAS permissions '{permissions}' (unrecognized: '{invalid}')"
        )


class NotFound(StorageError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Blob not found: {path}")


class CopyFailed(StorageError):
    """Raised when a backup copy does not reach the 'success' state."""

    def __init__(self, path: str, status: str, reason: Optional[str] = None):
        self.path = path
        self.status = status
        self.reason = reason
        message = f"Copy of {path} ended with status '{status}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PolicyEnsureFailed(StorageError):
    pass


class ContainerEnsureFailed(StorageError):
    pass
