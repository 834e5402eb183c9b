# hotelwatch/storage/table_client.py

"""Tabular storage clients shared by the price pipeline.

Every component talks to storage through the small :class:`TableClient`
surface (``select`` / ``insert`` / ``upsert`` / ``update``).  Production
uses the hosted PostgREST API (see ``supabase_client``); development and
tests use :class:`SQLiteTableClient`, which enforces the same unique
constraints locally.
"""

import logging
import re
import sqlite3
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from hotelwatch.config.settings import Settings

logger = logging.getLogger("hotelwatch.storage")

Row = dict[str, Any]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Server-side UTC timestamp with millisecond precision
_NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))"


class StorageError(Exception):
    """A read or write against the storage backend failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TableClient(Protocol):
    """The storage operations the pipeline relies on."""

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def insert(self, table: str, rows: list[Row]) -> list[Row]: ...

    def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> list[Row]: ...

    def update(
        self,
        table: str,
        values: Row,
        filters: Mapping[str, Any],
    ) -> list[Row]: ...

    def get_user_email(self, user_id: str) -> str | None: ...


def is_membership(value: object) -> bool:
    """Filter values given as a collection mean ``IN`` rather than ``=``."""
    return isinstance(value, (list, tuple, set, frozenset))


# Comparison operators accepted by Range, with their SQL spelling
RANGE_OPERATORS = {"lt": "<", "lte": "<=", "gt": ">", "gte": ">="}


@dataclass(frozen=True)
class Range:
    """A comparison filter value, e.g. ``{"price": Range("gt", 0)}``."""

    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in RANGE_OPERATORS:
            msg = f"Unsupported range operator: {self.op!r}"
            raise ValueError(msg)


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way the storage layer writes them.

    UTC with millisecond precision, so stored timestamps compare
    correctly as text.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _schema() -> str:
    s = Settings
    return f"""\
CREATE TABLE IF NOT EXISTS {s.PRICE_HISTORY_TABLE} (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    hotel_id   TEXT    NOT NULL,
    price      REAL    NOT NULL CHECK (price > 0),
    currency   TEXT    NOT NULL DEFAULT '{s.DEFAULT_CURRENCY}',
    source     TEXT    NOT NULL,
    created_at TEXT    NOT NULL DEFAULT {_NOW_SQL}
);

CREATE INDEX IF NOT EXISTS idx_price_history_hotel_date
    ON {s.PRICE_HISTORY_TABLE}(hotel_id, created_at);

CREATE TABLE IF NOT EXISTS {s.DROP_EVENTS_TABLE} (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    hotel_id       TEXT    NOT NULL,
    previous_price REAL    NOT NULL,
    new_price      REAL    NOT NULL,
    drop_percent   INTEGER NOT NULL,
    created_at     TEXT    NOT NULL DEFAULT {_NOW_SQL},
    UNIQUE (hotel_id, previous_price, new_price)
);

CREATE TABLE IF NOT EXISTS {s.SAVED_HOTELS_TABLE} (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT    NOT NULL,
    hotel_id   TEXT    NOT NULL,
    created_at TEXT    NOT NULL DEFAULT {_NOW_SQL},
    UNIQUE (user_id, hotel_id)
);

CREATE TABLE IF NOT EXISTS {s.NOTIFICATION_SETTINGS_TABLE} (
    user_id               TEXT    PRIMARY KEY,
    price_drop_alerts     INTEGER NOT NULL DEFAULT 0,
    price_alert_frequency TEXT    NOT NULL DEFAULT 'weekly'
);

CREATE TABLE IF NOT EXISTS {s.ALERT_QUEUE_TABLE} (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    hotel_id        TEXT    NOT NULL,
    previous_price  REAL    NOT NULL,
    new_price       REAL    NOT NULL,
    drop_percent    INTEGER NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'pending',
    digest_group    TEXT,
    scheduled_for   TEXT    NOT NULL DEFAULT {_NOW_SQL},
    retry_count     INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT,
    created_at      TEXT    NOT NULL DEFAULT {_NOW_SQL},
    UNIQUE (user_id, hotel_id, new_price)
);

CREATE TABLE IF NOT EXISTS {s.EMAIL_SEND_LOG_TABLE} (
    user_id    TEXT    NOT NULL,
    sent_date  TEXT    NOT NULL,
    count      INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT,
    PRIMARY KEY (user_id, sent_date)
);

CREATE TABLE IF NOT EXISTS {s.JOB_RUNS_TABLE} (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    status          TEXT    NOT NULL,
    started_at      TEXT    NOT NULL DEFAULT {_NOW_SQL},
    finished_at     TEXT,
    processed_count INTEGER NOT NULL DEFAULT 0,
    success_count   INTEGER NOT NULL DEFAULT 0,
    failure_count   INTEGER NOT NULL DEFAULT 0,
    dead_count      INTEGER NOT NULL DEFAULT 0,
    skipped_count   INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT
);

CREATE TABLE IF NOT EXISTS users (
    id    TEXT PRIMARY KEY,
    email TEXT
);
"""


def _ident(name: str) -> str:
    """Validate a table or column name before it is formatted into SQL."""
    if not _IDENTIFIER_RE.match(name):
        msg = f"Invalid identifier: {name!r}"
        raise ValueError(msg)
    return name


def _column_list(columns: str) -> str:
    if columns.strip() == "*":
        return "*"
    return ", ".join(_ident(c.strip()) for c in columns.split(","))


class SQLiteTableClient:
    """SQLite-backed :class:`TableClient` for local runs and tests."""

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.PRICE_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_schema())
        logger.debug("SQLiteTableClient opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Helpers ──────────────────────────────────────────

    @staticmethod
    def _where(
        filters: Mapping[str, Any] | None,
    ) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            col = _ident(column)
            if is_membership(value):
                values = list(value)
                if not values:
                    # Empty IN matches nothing
                    clauses.append("0")
                    continue
                marks = ", ".join("?" for _ in values)
                clauses.append(f"{col} IN ({marks})")
                params.extend(values)
            elif isinstance(value, Range):
                clauses.append(f"{col} {RANGE_OPERATORS[value.op]} ?")
                params.append(value.value)
            elif value is None:
                clauses.append(f"{col} IS NULL")
            else:
                clauses.append(f"{col} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def _run(self, sql: str, params: Iterable[Any]) -> list[Row]:
        try:
            with self._lock:
                rows = self._conn.execute(sql, list(params)).fetchall()
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite error: {exc}") from exc
        return [dict(r) for r in rows]

    # ── TableClient ──────────────────────────────────────

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Return matching rows as plain dicts."""
        sql = f"SELECT {_column_list(columns)} FROM {_ident(table)}"
        where, params = self._where(filters)
        sql += where
        if order_by is not None:
            direction = "DESC" if descending else "ASC"
            # rowid keeps insertion order for equal timestamps
            sql += (
                f" ORDER BY {_ident(order_by)} {direction},"
                f" rowid {direction}"
            )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._run(sql, params)

    def insert(self, table: str, rows: list[Row]) -> list[Row]:
        """Insert rows and return them as stored."""
        stored: list[Row] = []
        for row in rows:
            cols = [_ident(c) for c in row]
            marks = ", ".join("?" for _ in cols)
            sql = (
                f"INSERT INTO {_ident(table)} ({', '.join(cols)}) "
                f"VALUES ({marks}) RETURNING *"
            )
            stored.extend(self._run(sql, row.values()))
        return stored

    def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> list[Row]:
        """Insert rows, resolving unique-key conflicts.

        With ``ignore_duplicates`` a conflicting row is left untouched
        and is absent from the returned list; otherwise the existing
        row is updated with the new values.
        """
        conflict_cols = [
            _ident(c.strip()) for c in on_conflict.split(",")
        ]
        written: list[Row] = []
        for row in rows:
            cols = [_ident(c) for c in row]
            marks = ", ".join("?" for _ in cols)
            updates = [c for c in cols if c not in conflict_cols]
            if ignore_duplicates or not updates:
                action = "DO NOTHING"
            else:
                action = "DO UPDATE SET " + ", ".join(
                    f"{c} = excluded.{c}" for c in updates
                )
            sql = (
                f"INSERT INTO {_ident(table)} ({', '.join(cols)}) "
                f"VALUES ({marks}) "
                f"ON CONFLICT({', '.join(conflict_cols)}) {action} "
                "RETURNING *"
            )
            written.extend(self._run(sql, row.values()))
        return written

    def update(
        self,
        table: str,
        values: Row,
        filters: Mapping[str, Any],
    ) -> list[Row]:
        """Update matching rows and return them."""
        if not filters:
            msg = "update() requires at least one filter"
            raise ValueError(msg)
        assignments = ", ".join(f"{_ident(c)} = ?" for c in values)
        where, params = self._where(filters)
        sql = (
            f"UPDATE {_ident(table)} SET {assignments}{where} "
            "RETURNING *"
        )
        return self._run(sql, [*values.values(), *params])

    def get_user_email(self, user_id: str) -> str | None:
        """Look up a user's email in the local ``users`` table."""
        rows = self.select(
            "users", columns="email", filters={"id": user_id}, limit=1,
        )
        if not rows:
            return None
        email = rows[0]["email"]
        return str(email) if email else None


def create_table_client() -> TableClient:
    """Build the configured client: hosted API if credentials exist."""
    if Settings.SUPABASE_URL and Settings.SUPABASE_SERVICE_ROLE_KEY:
        from hotelwatch.storage.supabase_client import SupabaseTableClient

        logger.info("Using hosted storage at %s", Settings.SUPABASE_URL)
        return SupabaseTableClient(
            Settings.SUPABASE_URL, Settings.SUPABASE_SERVICE_ROLE_KEY,
        )
    logger.info("Using local SQLite storage at %s", Settings.PRICE_DB_PATH)
    return SQLiteTableClient()
