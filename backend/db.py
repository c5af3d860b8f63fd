"""
Database connection helper.

This module centralizes how connections are created. Each call to
`get_conn()` opens a fresh connection and closes it on exit, so every
repository operation observes only committed state.

Two backends are supported, selected by the URL scheme:
- `postgresql://...` — psycopg 3, the production store.
- `sqlite:///path/to/file.db` — sqlite3, used for local runs and tests.

Both connections run in autocommit mode: a standalone statement commits
on its own, and a multi-statement atomic unit must be wrapped in
`transaction(conn)`.

Usage:
    from db import get_conn, transaction
    with get_conn() as conn:
        with transaction(conn):
            conn.execute(...)
            conn.execute(...)
"""

import sqlite3
from contextlib import contextmanager

import psycopg
from settings import settings

SQLITE_PREFIX = "sqlite:///"


def is_sqlite(db_url: str) -> bool:
    return db_url.startswith(SQLITE_PREFIX)


def sqlite_path(db_url: str) -> str:
    return db_url[len(SQLITE_PREFIX):] or ":memory:"


@contextmanager
def get_conn(db_url: str | None = None):
    """Yield a new connection for `db_url` (defaults to `settings.db_url`).

    We pass a short connect/busy timeout so HTTP requests don't hang
    indefinitely if the database is unreachable or a writer holds the
    lock. The connection is always closed on exit.
    """

    db_url = db_url or settings.db_url
    timeout = settings.db_connect_timeout

    if is_sqlite(db_url):
        conn = sqlite3.connect(
            sqlite_path(db_url), timeout=timeout, isolation_level=None
        )
        conn.execute("PRAGMA foreign_keys = ON")
    else:
        conn = psycopg.connect(db_url, connect_timeout=timeout, autocommit=True)

    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn):
    """Run the enclosed statements as one atomic unit.

    Commits when the block exits normally and rolls back on any
    exception, which is then re-raised. SQLite takes the write lock up
    front (`BEGIN IMMEDIATE`) so write units never interleave.
    """

    if isinstance(conn, sqlite3.Connection):
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    else:
        with conn.transaction():
            yield conn
