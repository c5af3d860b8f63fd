"""
Pydantic models used across the backend.

Ingestion input is deliberately NOT modelled here: clients send arbitrary
JSON objects and the normalizer decides what they mean. These models
describe what the pipeline produces.

Guidelines:
- Keep models minimal and stable. Storage rows are returned as plain
    dicts by the repository; only the shapes other layers depend on get
    a model.
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    PERSISTENCE = "persistence"


class IngestOutcome(str, Enum):
    DUPLICATE = "duplicate"
    VALIDATION_FAILED = "validation_failed"
    CREATED = "created"
    SERVER_ERROR = "server_error"


class CanonicalEvent(BaseModel):
    """Normalized, validated representation of an event.

    Fields:
    - `client_id`: who sent the event.
    - `metric`: what was measured (e.g. `revenue`).
    - `amount`: non-negative value of the metric.
    - `timestamp`: UTC ISO 8601 string, e.g. `2024-01-01T00:00:00.000Z`.
    """

    client_id: str
    metric: str
    amount: float = Field(ge=0)
    timestamp: str


class NormalizationResult(BaseModel):
    ok: bool
    canonical: Optional[CanonicalEvent] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ExistingRecord(BaseModel):
    """What the duplicate detector knows about a previously seen fingerprint."""

    raw_event_id: int
    fingerprint: str
    first_seen_at: str
    normalized_event_id: Optional[int] = None
    status: Optional[str] = None
    data: Optional[CanonicalEvent] = None
    failure_category: Optional[ErrorCategory] = None

    @property
    def reprocessable(self) -> bool:
        """True when no earlier attempt reached a final outcome.

        A raw row left behind by a persistence failure (or by a crash
        before the failure was recorded) may be claimed again; a
        processed row or a recorded validation failure may not.
        """
        return (
            self.normalized_event_id is None
            and self.failure_category != ErrorCategory.VALIDATION
        )

    @property
    def previous_outcome(self) -> str:
        if self.normalized_event_id is not None:
            return "processed"
        if self.failure_category == ErrorCategory.VALIDATION:
            return "validation_failed"
        return "pending"


class PersistResult(BaseModel):
    raw_event_id: int
    normalized_event_id: int


class IngestResult(BaseModel):
    """Result contract returned by `EventService.ingest_event`.

    `http_status` is what the HTTP layer should answer with; the rest of
    the fields are serialized as the response body.
    """

    outcome: IngestOutcome
    http_status: int
    success: bool
    message: str
    event_hash: str
    is_duplicate: bool = False
    first_seen_at: Optional[str] = None
    previous_outcome: Optional[str] = None
    data: Optional[CanonicalEvent] = None
    raw_event_id: Optional[int] = None
    normalized_event_id: Optional[int] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    retryable: bool = False
    error: Optional[str] = None


class EventFilters(BaseModel):
    """Filters accepted by the read-only listing and aggregation queries."""

    client_id: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
