"""
Service / facade layer.

This module orchestrates the ingestion pipeline. It is intentionally
free of SQL — it talks to storage only through `DuplicateDetector`,
`TransactionalPersister` and the repository's audit-log insert. All
write paths go through `EventService.ingest_event`.

Pipeline per request:
    START -> HASHED -> DUPLICATE_RETURNED | NORMALIZE_FAILED
                     | PERSIST_COMMITTED | PERSIST_FAILED -> DONE

1. fingerprint the content and log "started"
2. duplicate check; a settled fingerprint short-circuits
3. normalize; errors are recorded as a "validation" failure
4. persist raw + normalized atomically; failures are rolled back,
   recorded best-effort as a "persistence" failure and reported as
   retryable
"""

from typing import Any, Dict, List

from loguru import logger

from errors import FingerprintExistsError
from hashing import fingerprint
from idempotency import DuplicateDetector, TransactionalPersister
from models import (
    ErrorCategory,
    EventFilters,
    ExistingRecord,
    IngestOutcome,
    IngestResult,
    NormalizationResult,
)
from normalizer import DEFAULT_ALIASES, FieldAliases, Normalizer
from repo_events import EventRepo
from settings import settings


def build_aliases(extra: str | None = None) -> FieldAliases:
    """Default aliases plus whatever `EXTRA_FIELD_ALIASES` adds."""

    extra = settings.extra_field_aliases if extra is None else extra
    return FieldAliases.parse(extra, DEFAULT_ALIASES) if extra else DEFAULT_ALIASES


class EventService:
    """Idempotent ingestion + read-only listings.

    Example usage:
        repo = EventRepo()
        svc = EventService(repo)
        result = svc.ingest_event({"source": "client_A", "payload": {...}})
    """

    def __init__(self, repo: EventRepo, normalizer: Normalizer | None = None):
        self.repo = repo
        self.normalizer = normalizer or Normalizer(build_aliases())
        self.detector = DuplicateDetector(repo)
        self.persister = TransactionalPersister(repo)

    # --- ingestion ---

    def ingest_event(self, raw_event: Any, simulate_failure: bool = False) -> IngestResult:
        """Run one event through the pipeline. Never raises."""

        event_hash = fingerprint(raw_event, self.normalizer.aliases)
        self._audit(event_hash, "ingest", "started")

        try:
            existing = self.detector.find_existing(event_hash)
            if existing is not None and not existing.reprocessable:
                self._audit(event_hash, "ingest", "duplicate", "Event already processed")
                return self._duplicate(event_hash, existing)

            if existing is not None:
                logger.info(f"Reprocessing {event_hash[:12]}: earlier attempt never completed")

            normalized = self.normalizer.normalize(raw_event)
            if not normalized.ok:
                return self._reject(event_hash, raw_event, normalized)

            return self._persist(event_hash, raw_event, normalized, simulate_failure)

        except Exception as e:
            logger.exception(f"Unexpected error while ingesting {event_hash[:12]}")
            self._audit(event_hash, "ingest", "error", str(e))
            return IngestResult(
                outcome=IngestOutcome.SERVER_ERROR,
                http_status=500,
                success=False,
                message="Unexpected error occurred",
                event_hash=event_hash,
                retryable=True,
                error=str(e),
            )

    def _reject(self, event_hash: str, raw_event: Any, normalized: NormalizationResult) -> IngestResult:
        message = "; ".join(normalized.errors)

        raw_id = self.persister.store_raw_if_absent(event_hash, raw_event)
        self.persister.record_failure(raw_id, event_hash, raw_event, message, ErrorCategory.VALIDATION)
        self._audit(event_hash, "normalize", "failed", message)
        logger.info(f"Rejected {event_hash[:12]}: {message}")

        return IngestResult(
            outcome=IngestOutcome.VALIDATION_FAILED,
            http_status=400,
            success=False,
            message="Event validation failed",
            event_hash=event_hash,
            errors=normalized.errors,
            warnings=normalized.warnings,
        )

    def _persist(
        self,
        event_hash: str,
        raw_event: Any,
        normalized: NormalizationResult,
        simulate_failure: bool,
    ) -> IngestResult:
        try:
            stored = self.persister.persist(
                event_hash, raw_event, normalized.canonical, inject_fault=simulate_failure
            )
        except FingerprintExistsError:
            return self._lost_race(event_hash)
        except Exception as e:
            self._audit(event_hash, "persist", "failed", str(e))
            logger.warning(f"Persist failed for {event_hash[:12]}, rolled back: {e}")
            self._record_persistence_failure(event_hash, raw_event, str(e))
            return IngestResult(
                outcome=IngestOutcome.SERVER_ERROR,
                http_status=500,
                success=False,
                message="Database error occurred",
                event_hash=event_hash,
                retryable=True,
                error=str(e),
            )

        self._audit(event_hash, "ingest", "success", "Event processed successfully")
        logger.info(f"Created normalized event {stored.normalized_event_id} for {event_hash[:12]}")
        return IngestResult(
            outcome=IngestOutcome.CREATED,
            http_status=201,
            success=True,
            message="Event processed successfully",
            event_hash=event_hash,
            raw_event_id=stored.raw_event_id,
            normalized_event_id=stored.normalized_event_id,
            data=normalized.canonical,
            warnings=normalized.warnings,
        )

    def _lost_race(self, event_hash: str) -> IngestResult:
        """Another writer claimed the fingerprint between our check and our insert."""

        existing = self.detector.find_existing(event_hash)
        if existing is not None and not existing.reprocessable:
            self._audit(event_hash, "ingest", "duplicate", "Concurrent writer won")
            return self._duplicate(event_hash, existing)

        self._audit(event_hash, "persist", "failed", "Fingerprint claimed by a concurrent writer")
        return IngestResult(
            outcome=IngestOutcome.SERVER_ERROR,
            http_status=500,
            success=False,
            message="Concurrent write in progress",
            event_hash=event_hash,
            retryable=True,
            error="Fingerprint claimed by a concurrent writer",
        )

    def _record_persistence_failure(self, event_hash: str, raw_event: Any, message: str) -> None:
        """Best-effort failure record after a rolled-back unit. Never raises."""

        try:
            raw_id = self.persister.store_raw_if_absent(event_hash, raw_event)
        except Exception:
            logger.exception(f"Could not store raw event for failed {event_hash[:12]}")
            raw_id = None

        try:
            self.persister.record_failure(
                raw_id, event_hash, raw_event, message, ErrorCategory.PERSISTENCE
            )
        except Exception:
            logger.exception(f"Failed to store failure record for {event_hash[:12]}")

    @staticmethod
    def _duplicate(event_hash: str, existing: ExistingRecord) -> IngestResult:
        return IngestResult(
            outcome=IngestOutcome.DUPLICATE,
            http_status=200,
            success=True,
            message="Event already processed (duplicate detected)",
            event_hash=event_hash,
            is_duplicate=True,
            first_seen_at=existing.first_seen_at,
            previous_outcome=existing.previous_outcome,
            data=existing.data,
            raw_event_id=existing.raw_event_id,
            normalized_event_id=existing.normalized_event_id,
        )

    def _audit(self, event_hash: str, action: str, status: str, message: str | None = None) -> None:
        # processing_log is observational; losing an entry must not change the outcome
        try:
            self.repo.append_log(event_hash, action, status, message)
        except Exception as e:
            logger.warning(f"Could not write processing log ({action}/{status}) for {event_hash[:12]}: {e}")

    # --- read-only queries ---

    def get_events(self, filters: EventFilters | None = None, limit: int | None = None) -> List[Dict[str, Any]]:
        """Normalized events, newest first, capped by configured limits."""

        limit = max(1, min(limit or settings.max_list_limit, settings.max_list_limit))
        return self.repo.list_normalized(filters, limit)

    def get_failed_events(self, limit: int | None = None) -> List[Dict[str, Any]]:
        limit = max(1, min(limit or settings.max_list_limit, settings.max_list_limit))
        return self.repo.list_failed(limit)

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = self.repo.count_rows()
        stats["by_client"] = self.repo.count_by("client_id")
        stats["by_metric"] = self.repo.count_by("metric")
        return stats

    def health_check(self) -> None:
        """Perform a lightweight DB ping via the repository."""

        self.repo.ping()
