"""
Idempotency services: duplicate detection and the atomic write unit.

Both are stateless objects parameterized by a storage object (normally
`EventRepo`) that offers three capabilities:
- `find_by_fingerprint(fingerprint)` — lookup of committed state
- `insert_raw_if_absent(fingerprint, payload)` — standalone insert-if-absent
- `transaction()` + `claim_raw()` / `insert_normalized()` — atomic two-step write

How double counting is prevented:
1. The orchestrator fingerprints the event content.
2. `DuplicateDetector` reports any committed raw row for it.
3. `TransactionalPersister` writes raw + normalized rows in one
   transaction; the unique index on the fingerprint is the final
   arbiter if two requests race past step 2.
"""

from typing import Any, Optional

from loguru import logger

from errors import InjectedFaultError
from models import CanonicalEvent, ErrorCategory, ExistingRecord, PersistResult


class DuplicateDetector:
    def __init__(self, store):
        self.store = store

    def find_existing(self, fingerprint: str) -> Optional[ExistingRecord]:
        """Return what is stored for `fingerprint`, or None.

        `data` is only populated when a normalized row exists. A raw row
        without one is still reported; `ExistingRecord.reprocessable`
        tells the caller whether it may be claimed again.
        """

        row = self.store.find_by_fingerprint(fingerprint)
        if row is None:
            return None

        data = None
        if row.get("normalized_event_id") is not None:
            data = CanonicalEvent(
                client_id=row["client_id"],
                metric=row["metric"],
                amount=row["amount"],
                timestamp=row["timestamp"],
            )

        return ExistingRecord(
            raw_event_id=row["raw_event_id"],
            fingerprint=row["event_hash"],
            first_seen_at=str(row["received_at"]),
            normalized_event_id=row.get("normalized_event_id"),
            status=row.get("status"),
            data=data,
            failure_category=row.get("failure_category"),
        )


class TransactionalPersister:
    def __init__(self, store):
        self.store = store

    def persist(
        self,
        fingerprint: str,
        raw_payload: Any,
        canonical: CanonicalEvent,
        inject_fault: bool = False,
    ) -> PersistResult:
        """Store the raw and normalized rows together, or neither.

        Raises `FingerprintExistsError` when another writer owns the
        fingerprint and `InjectedFaultError` when `inject_fault` is set.
        Any exception leaves storage exactly as it was before the call.
        """

        with self.store.transaction() as conn:
            raw_id = self.store.claim_raw(conn, fingerprint, raw_payload)

            if inject_fault:
                raise InjectedFaultError()

            normalized_id = self.store.insert_normalized(conn, raw_id, canonical)

        logger.debug(f"Committed raw={raw_id} normalized={normalized_id} for {fingerprint[:12]}")
        return PersistResult(raw_event_id=raw_id, normalized_event_id=normalized_id)

    def store_raw_if_absent(self, fingerprint: str, raw_payload: Any) -> Optional[int]:
        """Standalone raw insert; returns the id of the raw row for
        `fingerprint`, whether this call created it or not."""

        raw_id = self.store.insert_raw_if_absent(fingerprint, raw_payload)
        if raw_id is not None:
            return raw_id
        # lost a race, or an earlier attempt left the row behind
        existing = self.store.find_by_fingerprint(fingerprint)
        return existing["raw_event_id"] if existing else None

    def record_failure(
        self,
        raw_event_id: Optional[int],
        fingerprint: str,
        raw_payload: Any,
        message: str,
        category: ErrorCategory,
    ) -> int:
        return self.store.insert_failed(raw_event_id, fingerprint, raw_payload, message, category)
