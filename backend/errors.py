"""Exceptions raised by the storage and persistence layers."""


class IngestionError(Exception):
    """Base exception for ingestion pipeline errors."""


class StorageError(IngestionError):
    """Raised when the storage layer cannot complete an operation."""


class FingerprintExistsError(StorageError):
    """Raised when a raw event for this fingerprint was already claimed.

    This is the uniqueness constraint on `raw_events.event_hash` speaking:
    another request (or an earlier one) owns the fingerprint.
    """

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Raw event already exists for fingerprint {fingerprint}")


class InjectedFaultError(StorageError):
    """Synthetic mid-transaction failure used to exercise rollback."""

    def __init__(self):
        super().__init__("Simulated database failure")
