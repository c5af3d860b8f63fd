"""
Repository: SQL operations for the ingestion tables.

This file contains only DB interaction code. It maps pipeline models to
SQL parameters and converts DB rows to plain Python dicts suitable for
JSON responses. Keep business rules out of this module.

Important notes:
- SQL strings use `%s` placeholders; `_sql()` rewrites them for sqlite3.
- On PostgreSQL `raw_data` is stored as native JSONB via `Jsonb`; on
  SQLite it is stored as JSON text.
- Standalone writes commit immediately (autocommit connections). Writes
  that must commit together go through `transaction()`, which hands the
  open connection to `claim_raw()` / `insert_normalized()`.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg.types.json import Jsonb

from db import get_conn, is_sqlite, transaction
from errors import FingerprintExistsError
from models import CanonicalEvent, ErrorCategory, EventFilters
from schema import create_schema
from settings import settings


def _first(cur):
    # fetchall() so sqlite3 finishes (and resets) RETURNING statements
    rows = cur.fetchall()
    return rows[0] if rows else None


class EventRepo:
    """DB access only. No business logic here.

    Responsibilities:
    - lookup by fingerprint, insert-if-absent, atomic transaction scope
    - failure and audit-log inserts
    - read-only listing and rollup queries
    """

    def __init__(self, db_url: str | None = None):
        self.db_url = db_url or settings.db_url
        self.sqlite = is_sqlite(self.db_url)

    # --- helpers ---

    def _sql(self, query: str) -> str:
        return query.replace("%s", "?") if self.sqlite else query

    def _encode(self, payload: Any):
        return json.dumps(payload) if self.sqlite else Jsonb(payload)

    @staticmethod
    def _decode(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    @staticmethod
    def _rows(cur) -> List[Dict[str, Any]]:
        columns = [desc[0] for desc in cur.description]
        out: List[Dict[str, Any]] = []
        for row in cur.fetchall():
            record = dict(zip(columns, row))
            for key, value in record.items():
                if isinstance(value, datetime):
                    record[key] = value.isoformat()
            if "raw_data" in record:
                record["raw_data"] = EventRepo._decode(record["raw_data"])
            out.append(record)
        return out

    def _fetch_all(self, query: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        with get_conn(self.db_url) as conn:
            cur = conn.execute(self._sql(query), params)
            return self._rows(cur)

    def _fetch_one(self, query: str, params: Tuple = ()) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    @staticmethod
    def _is_fingerprint_conflict(exc: Exception) -> bool:
        if isinstance(exc, psycopg.errors.UniqueViolation):
            return True
        return isinstance(exc, sqlite3.IntegrityError) and "event_hash" in str(exc)

    @staticmethod
    def _where(filters: Optional[EventFilters], processed_only: bool = False) -> Tuple[str, List[Any]]:
        clauses = ["1=1"]
        params: List[Any] = []
        if processed_only:
            clauses.append("ne.status = 'processed'")
        if filters is not None:
            if filters.client_id:
                clauses.append("ne.client_id = %s")
                params.append(filters.client_id)
            if filters.status and not processed_only:
                clauses.append("ne.status = %s")
                params.append(filters.status)
            if filters.start_date:
                clauses.append("ne.timestamp >= %s")
                params.append(filters.start_date)
            if filters.end_date:
                clauses.append("ne.timestamp <= %s")
                params.append(filters.end_date)
        return " AND ".join(clauses), params

    # --- schema / health ---

    def init_schema(self) -> None:
        create_schema(self.db_url)

    def ping(self) -> None:
        """Lightweight DB health check. Raises on error."""

        with get_conn(self.db_url) as conn:
            conn.execute("SELECT 1")

    # --- idempotency capabilities ---

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Dict[str, Any]]:
        """Raw row for `fingerprint`, joined with its normalized row and
        the category of the latest failure recorded against it."""

        return self._fetch_one(
            "SELECT re.id AS raw_event_id, re.event_hash, re.received_at, "
            "ne.id AS normalized_event_id, ne.status, ne.client_id, ne.metric, "
            "ne.amount, ne.timestamp, "
            "(SELECT fe.error_type FROM failed_events fe "
            " WHERE fe.raw_event_id = re.id ORDER BY fe.id DESC LIMIT 1) AS failure_category "
            "FROM raw_events re "
            "LEFT JOIN normalized_events ne ON ne.raw_event_id = re.id "
            "WHERE re.event_hash = %s "
            "ORDER BY ne.id LIMIT 1",
            (fingerprint,),
        )

    def insert_raw_if_absent(self, fingerprint: str, payload: Any) -> Optional[int]:
        """Standalone raw insert. Returns the new id, or None if the
        fingerprint is already stored."""

        with get_conn(self.db_url) as conn:
            row = _first(conn.execute(
                self._sql(
                    "INSERT INTO raw_events (event_hash, raw_data) VALUES (%s, %s) "
                    "ON CONFLICT (event_hash) DO NOTHING RETURNING id"
                ),
                (fingerprint, self._encode(payload)),
            ))
        return row[0] if row else None

    @contextmanager
    def transaction(self):
        """Open a connection and run the block as one atomic unit."""

        with get_conn(self.db_url) as conn:
            with transaction(conn):
                yield conn

    def claim_raw(self, conn, fingerprint: str, payload: Any) -> int:
        """Inside a transaction: insert the raw row, or adopt an existing
        one that never reached a final outcome.

        Raises `FingerprintExistsError` when the fingerprint is owned by
        a processed row, a recorded validation failure, or a concurrent
        writer that won the unique index.
        """

        lock = "" if self.sqlite else " FOR UPDATE"
        row = _first(conn.execute(
            self._sql("SELECT id FROM raw_events WHERE event_hash = %s" + lock),
            (fingerprint,),
        ))

        if row is not None:
            raw_id = row[0]
            settled = _first(conn.execute(
                self._sql(
                    "SELECT "
                    "(SELECT COUNT(*) FROM normalized_events WHERE raw_event_id = %s), "
                    "(SELECT COUNT(*) FROM failed_events WHERE raw_event_id = %s AND error_type = %s)"
                ),
                (raw_id, raw_id, ErrorCategory.VALIDATION.value),
            ))
            if settled[0] or settled[1]:
                raise FingerprintExistsError(fingerprint)
            return raw_id

        try:
            row = _first(conn.execute(
                self._sql("INSERT INTO raw_events (event_hash, raw_data) VALUES (%s, %s) RETURNING id"),
                (fingerprint, self._encode(payload)),
            ))
        except (sqlite3.IntegrityError, psycopg.errors.UniqueViolation) as exc:
            if self._is_fingerprint_conflict(exc):
                raise FingerprintExistsError(fingerprint) from exc
            raise
        return row[0]

    def insert_normalized(self, conn, raw_event_id: int, canonical: CanonicalEvent) -> int:
        row = _first(conn.execute(
            self._sql(
                "INSERT INTO normalized_events "
                "(raw_event_id, client_id, metric, amount, timestamp, status) "
                "VALUES (%s, %s, %s, %s, %s, 'processed') RETURNING id"
            ),
            (
                raw_event_id,
                canonical.client_id,
                canonical.metric,
                canonical.amount,
                canonical.timestamp,
            ),
        ))
        return row[0]

    # --- failures / audit ---

    def insert_failed(
        self,
        raw_event_id: Optional[int],
        fingerprint: str,
        payload: Any,
        error_message: str,
        category: ErrorCategory,
    ) -> int:
        with get_conn(self.db_url) as conn:
            row = _first(conn.execute(
                self._sql(
                    "INSERT INTO failed_events "
                    "(raw_event_id, event_hash, raw_data, error_message, error_type) "
                    "VALUES (%s, %s, %s, %s, %s) RETURNING id"
                ),
                (raw_event_id, fingerprint, self._encode(payload), error_message, category.value),
            ))
        return row[0]

    def append_log(self, fingerprint: str, action: str, status: str, message: str | None = None) -> None:
        with get_conn(self.db_url) as conn:
            conn.execute(
                self._sql(
                    "INSERT INTO processing_log (event_hash, action, status, message) "
                    "VALUES (%s, %s, %s, %s)"
                ),
                (fingerprint, action, status, message),
            )

    def fetch_log(self, fingerprint: str) -> List[Dict[str, Any]]:
        """Audit entries for `fingerprint`, oldest first."""

        return self._fetch_all(
            "SELECT event_hash, action, status, message, timestamp "
            "FROM processing_log WHERE event_hash = %s ORDER BY id",
            (fingerprint,),
        )

    # --- read-only queries ---

    def list_normalized(self, filters: Optional[EventFilters], limit: int) -> List[Dict[str, Any]]:
        """Normalized events joined with their raw rows, newest first."""

        where, params = self._where(filters)
        return self._fetch_all(
            "SELECT ne.id, ne.client_id, ne.metric, ne.amount, ne.timestamp, "
            "ne.status, ne.created_at, re.event_hash, re.raw_data "
            "FROM normalized_events ne "
            "JOIN raw_events re ON ne.raw_event_id = re.id "
            f"WHERE {where} "
            "ORDER BY ne.id DESC LIMIT %s",
            tuple(params) + (limit,),
        )

    def list_failed(self, limit: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "SELECT id, raw_event_id, event_hash, raw_data, error_message, error_type, failed_at "
            "FROM failed_events ORDER BY id DESC LIMIT %s",
            (limit,),
        )

    def count_rows(self) -> Dict[str, int]:
        row = self._fetch_one(
            "SELECT "
            "(SELECT COUNT(*) FROM normalized_events) AS total_processed, "
            "(SELECT COUNT(*) FROM failed_events) AS total_failed, "
            "(SELECT COUNT(*) FROM raw_events) AS total_raw, "
            "(SELECT COUNT(*) FROM processing_log WHERE status = 'duplicate') AS duplicates_detected"
        )
        return {key: int(value or 0) for key, value in row.items()}

    def count_by(self, column: str) -> List[Dict[str, Any]]:
        if column not in {"client_id", "metric"}:
            raise ValueError(f"Cannot group by {column}")
        return self._fetch_all(
            f"SELECT {column}, COUNT(*) AS count FROM normalized_events "
            f"GROUP BY {column} ORDER BY count DESC, {column}"
        )

    def summary(self, filters: Optional[EventFilters]) -> Dict[str, Any]:
        where, params = self._where(filters, processed_only=True)
        return self._fetch_one(
            "SELECT COUNT(*) AS total_events, SUM(ne.amount) AS total_amount, "
            "AVG(ne.amount) AS avg_amount, MIN(ne.amount) AS min_amount, "
            "MAX(ne.amount) AS max_amount, "
            "COUNT(DISTINCT ne.client_id) AS unique_clients, "
            "COUNT(DISTINCT ne.metric) AS unique_metrics "
            f"FROM normalized_events ne WHERE {where}",
            tuple(params),
        )

    def rollup(self, groups: List[Tuple[str, str]], filters: Optional[EventFilters],
               order_by: str = "total_amount DESC", limit: int | None = None,
               with_range: bool = False) -> List[Dict[str, Any]]:
        """Grouped totals over processed rows.

        `groups` is a list of `(sql_expression, label)` pairs and, like
        `order_by`, comes from the aggregation service, never from user
        input.
        """

        where, params = self._where(filters, processed_only=True)
        selected = ", ".join(f"{expr} AS {label}" for expr, label in groups)
        grouped = ", ".join(expr for expr, _ in groups)
        columns = f"{selected}, COUNT(*) AS event_count, " \
                  "SUM(ne.amount) AS total_amount, AVG(ne.amount) AS avg_amount"
        if with_range:
            columns += ", MIN(ne.timestamp) AS first_event, MAX(ne.timestamp) AS last_event"
        query = (
            f"SELECT {columns} FROM normalized_events ne WHERE {where} "
            f"GROUP BY {grouped} ORDER BY {order_by}"
        )
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        return self._fetch_all(query, tuple(params))

    def time_range(self, filters: Optional[EventFilters]) -> Dict[str, Any]:
        client = EventFilters(client_id=filters.client_id) if filters else None
        where, params = self._where(client, processed_only=True)
        return self._fetch_one(
            "SELECT MIN(ne.timestamp) AS earliest_event, MAX(ne.timestamp) AS latest_event "
            f"FROM normalized_events ne WHERE {where}",
            tuple(params),
        )
