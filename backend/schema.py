"""Table definitions for both supported backends."""

from db import get_conn, is_sqlite
from loguru import logger
from settings import settings

POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS raw_events (
    id BIGSERIAL PRIMARY KEY,
    event_hash TEXT NOT NULL UNIQUE,
    raw_data JSONB NOT NULL,
    received_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS normalized_events (
    id BIGSERIAL PRIMARY KEY,
    raw_event_id BIGINT NOT NULL REFERENCES raw_events(id),
    client_id TEXT NOT NULL,
    metric TEXT NOT NULL,
    amount DOUBLE PRECISION NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'processed',
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS failed_events (
    id BIGSERIAL PRIMARY KEY,
    raw_event_id BIGINT REFERENCES raw_events(id),
    event_hash TEXT NOT NULL,
    raw_data JSONB NOT NULL,
    error_message TEXT NOT NULL,
    error_type TEXT NOT NULL,
    failed_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS processing_log (
    id BIGSERIAL PRIMARY KEY,
    event_hash TEXT NOT NULL,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT,
    timestamp TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_normalized_events_raw ON normalized_events (raw_event_id);
CREATE INDEX IF NOT EXISTS idx_normalized_events_client ON normalized_events (client_id);
CREATE INDEX IF NOT EXISTS idx_normalized_events_timestamp ON normalized_events (timestamp);
CREATE INDEX IF NOT EXISTS idx_normalized_events_status ON normalized_events (status);
CREATE INDEX IF NOT EXISTS idx_failed_events_hash ON failed_events (event_hash);
CREATE INDEX IF NOT EXISTS idx_failed_events_raw ON failed_events (raw_event_id);
"""

# SQLite has no timestamptz; times are stored as UTC ISO 8601 text.
SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS raw_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_hash TEXT NOT NULL UNIQUE,
    raw_data TEXT NOT NULL,
    received_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS normalized_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_event_id INTEGER NOT NULL REFERENCES raw_events(id),
    client_id TEXT NOT NULL,
    metric TEXT NOT NULL,
    amount REAL NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'processed',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS failed_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_event_id INTEGER REFERENCES raw_events(id),
    event_hash TEXT NOT NULL,
    raw_data TEXT NOT NULL,
    error_message TEXT NOT NULL,
    error_type TEXT NOT NULL,
    failed_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS processing_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_hash TEXT NOT NULL,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_normalized_events_raw ON normalized_events (raw_event_id);
CREATE INDEX IF NOT EXISTS idx_normalized_events_client ON normalized_events (client_id);
CREATE INDEX IF NOT EXISTS idx_normalized_events_timestamp ON normalized_events (timestamp);
CREATE INDEX IF NOT EXISTS idx_normalized_events_status ON normalized_events (status);
CREATE INDEX IF NOT EXISTS idx_failed_events_hash ON failed_events (event_hash);
CREATE INDEX IF NOT EXISTS idx_failed_events_raw ON failed_events (raw_event_id);
"""


def create_schema(db_url: str | None = None) -> None:
    """Create all tables and indexes if they don't exist yet."""

    db_url = db_url or settings.db_url
    with get_conn(db_url) as conn:
        if is_sqlite(db_url):
            conn.executescript(SQLITE_DDL)
        else:
            conn.execute(POSTGRES_DDL)
    logger.debug("Schema ensured")
