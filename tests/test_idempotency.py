"""Tests for the duplicate detector and the atomic write unit."""

import pytest

from errors import FingerprintExistsError, InjectedFaultError
from idempotency import DuplicateDetector, TransactionalPersister
from models import CanonicalEvent, ErrorCategory
from repo_events import EventRepo

FP = "a" * 64
PAYLOAD = {"source": "client_A", "payload": {"metric": "revenue", "amount": 5}}
CANONICAL = CanonicalEvent(
    client_id="client_A", metric="revenue", amount=5, timestamp="2024-01-01T00:00:00.000Z"
)


@pytest.fixture
def detector(repo: EventRepo) -> DuplicateDetector:
    return DuplicateDetector(repo)


@pytest.fixture
def persister(repo: EventRepo) -> TransactionalPersister:
    return TransactionalPersister(repo)


class TestDuplicateDetector:
    def test_miss(self, detector: DuplicateDetector):
        assert detector.find_existing(FP) is None

    def test_hit_with_normalized_row(self, detector: DuplicateDetector, persister: TransactionalPersister):
        stored = persister.persist(FP, PAYLOAD, CANONICAL)

        existing = detector.find_existing(FP)
        assert existing.raw_event_id == stored.raw_event_id
        assert existing.normalized_event_id == stored.normalized_event_id
        assert existing.status == "processed"
        assert existing.data == CANONICAL
        assert existing.first_seen_at
        assert not existing.reprocessable
        assert existing.previous_outcome == "processed"

    def test_raw_only_is_reprocessable(self, detector: DuplicateDetector, persister: TransactionalPersister):
        raw_id = persister.store_raw_if_absent(FP, PAYLOAD)
        persister.record_failure(raw_id, FP, PAYLOAD, "boom", ErrorCategory.PERSISTENCE)

        existing = detector.find_existing(FP)
        assert existing.data is None
        assert existing.failure_category == ErrorCategory.PERSISTENCE
        assert existing.reprocessable

    def test_validation_failure_is_settled(self, detector: DuplicateDetector, persister: TransactionalPersister):
        raw_id = persister.store_raw_if_absent(FP, PAYLOAD)
        persister.record_failure(raw_id, FP, PAYLOAD, "bad", ErrorCategory.VALIDATION)

        existing = detector.find_existing(FP)
        assert not existing.reprocessable
        assert existing.previous_outcome == "validation_failed"


class TestTransactionalPersister:
    def test_persist_writes_both_rows(self, repo: EventRepo, persister: TransactionalPersister):
        stored = persister.persist(FP, PAYLOAD, CANONICAL)

        events = repo.list_normalized(None, 10)
        assert len(events) == 1
        assert events[0]["id"] == stored.normalized_event_id
        assert events[0]["event_hash"] == FP
        assert events[0]["raw_data"] == PAYLOAD

    def test_injected_fault_rolls_back_everything(self, repo: EventRepo, persister: TransactionalPersister):
        with pytest.raises(InjectedFaultError):
            persister.persist(FP, PAYLOAD, CANONICAL, inject_fault=True)

        assert repo.find_by_fingerprint(FP) is None
        assert repo.count_rows()["total_raw"] == 0
        assert repo.count_rows()["total_processed"] == 0

    def test_uncommitted_raw_row_is_invisible(self, repo: EventRepo):
        with pytest.raises(RuntimeError):
            with repo.transaction() as conn:
                repo.claim_raw(conn, FP, PAYLOAD)
                # a separate connection only sees committed state
                assert repo.find_by_fingerprint(FP) is None
                raise RuntimeError("abort")

        assert repo.find_by_fingerprint(FP) is None

    def test_second_persist_raises_fingerprint_exists(self, persister: TransactionalPersister):
        persister.persist(FP, PAYLOAD, CANONICAL)
        with pytest.raises(FingerprintExistsError) as exc_info:
            persister.persist(FP, PAYLOAD, CANONICAL)
        assert exc_info.value.fingerprint == FP

    def test_persist_adopts_orphaned_raw_row(self, repo: EventRepo, persister: TransactionalPersister):
        raw_id = persister.store_raw_if_absent(FP, PAYLOAD)
        persister.record_failure(raw_id, FP, PAYLOAD, "boom", ErrorCategory.PERSISTENCE)

        stored = persister.persist(FP, PAYLOAD, CANONICAL)
        assert stored.raw_event_id == raw_id
        assert repo.count_rows()["total_raw"] == 1

    def test_persist_refuses_validation_failed_fingerprint(self, persister: TransactionalPersister):
        raw_id = persister.store_raw_if_absent(FP, PAYLOAD)
        persister.record_failure(raw_id, FP, PAYLOAD, "bad", ErrorCategory.VALIDATION)

        with pytest.raises(FingerprintExistsError):
            persister.persist(FP, PAYLOAD, CANONICAL)

    def test_store_raw_if_absent_returns_existing_id(self, repo: EventRepo, persister: TransactionalPersister):
        first = persister.store_raw_if_absent(FP, PAYLOAD)
        second = persister.store_raw_if_absent(FP, {"different": "payload"})
        assert first == second
        assert repo.insert_raw_if_absent(FP, PAYLOAD) is None
        assert repo.count_rows()["total_raw"] == 1

    def test_failure_without_raw_row(self, repo: EventRepo, persister: TransactionalPersister):
        persister.record_failure(None, FP, PAYLOAD, "disk full", ErrorCategory.PERSISTENCE)

        failed = repo.list_failed(10)
        assert failed[0]["raw_event_id"] is None
        assert failed[0]["error_type"] == "persistence"
        assert failed[0]["raw_data"] == PAYLOAD
        assert repo.find_by_fingerprint(FP) is None
