"""Domain exceptions raised by the sync engine."""

from typing import Optional


class LedgerSyncError(Exception):
    """Base class for all sync engine errors."""


class FingerprintError(LedgerSyncError, ValueError):
    """A projection handed to the fingerprint module is structurally invalid."""


class MalformedPayloadError(LedgerSyncError):
    """A remote payload failed to decode at the connector boundary."""

    def __init__(self, message: str, entity_type: Optional[str] = None, remote_id: Optional[str] = None):
        super().__init__(message)
        self.entity_type = entity_type
        self.remote_id = remote_id


class DependencyMissingError(LedgerSyncError):
    """A referenced party has not been synced yet."""

    def __init__(self, message: str, hint: str):
        super().__init__(message)
        self.hint = hint


class UnauthenticatedError(LedgerSyncError):
    """No valid access token is available for the ledger."""


class FatalSyncError(LedgerSyncError):
    """An unrecoverable failure that aborts the whole run."""


class SyncAlreadyRunningError(LedgerSyncError):
    """Another run currently holds one of the requested entity types."""

    def __init__(self, entity_types):
        self.entity_types = sorted(entity_types)
        super().__init__(f"Sync already running for: {', '.join(self.entity_types)}")


class ConflictNotFoundError(LedgerSyncError):
    pass


class ConflictAlreadyResolvedError(LedgerSyncError):
    pass


class InvalidResolutionError(LedgerSyncError, ValueError):
    pass
