"""SQLite-backed incident store: schema init, CRUD, and change publication.

All statements use parameterized values; table and column names are checked
against the live schema before being interpolated. One connection is held per
store instance (so ":memory:" databases survive across calls). Every committed
write is published to the store's ChangeFeed after the commit.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from warroom.errors import StoreError, StoreMutationError
from warroom.store.changes import ChangeFeed, Subscription
from warroom.store.models import TABLES, Row

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS services (
    id             TEXT PRIMARY KEY,
    name           TEXT NOT NULL UNIQUE,
    status         TEXT NOT NULL DEFAULT 'healthy',
    latency_ms     REAL DEFAULT 0,
    uptime_percent REAL DEFAULT 100,
    created_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS incidents (
    id           TEXT PRIMARY KEY,
    service_id   TEXT,
    type         TEXT NOT NULL DEFAULT 'unknown',
    severity     TEXT NOT NULL DEFAULT 'medium',
    status       TEXT NOT NULL DEFAULT 'active',
    description  TEXT NOT NULL DEFAULT '',
    started_at   TEXT NOT NULL,
    resolved_at  TEXT,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_incidents_status ON incidents(status, started_at);
CREATE INDEX IF NOT EXISTS idx_incidents_service ON incidents(service_id);

CREATE TABLE IF NOT EXISTS incident_events (
    id           TEXT PRIMARY KEY,
    incident_id  TEXT NOT NULL REFERENCES incidents(id) ON DELETE CASCADE,
    event_type   TEXT NOT NULL,
    description  TEXT NOT NULL,
    user_id      TEXT NOT NULL,
    metadata     TEXT,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_incident ON incident_events(incident_id);

CREATE TABLE IF NOT EXISTS metrics (
    id           TEXT PRIMARY KEY,
    service_id   TEXT NOT NULL REFERENCES services(id) ON DELETE CASCADE,
    metric_type  TEXT NOT NULL,
    value        REAL NOT NULL,
    timestamp    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_metrics_service ON metrics(service_id, timestamp);

CREATE TABLE IF NOT EXISTS error_logs (
    id           TEXT PRIMARY KEY,
    service_id   TEXT NOT NULL REFERENCES services(id) ON DELETE CASCADE,
    incident_id  TEXT REFERENCES incidents(id) ON DELETE SET NULL,
    severity     TEXT NOT NULL DEFAULT 'error',
    message      TEXT NOT NULL,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_logs_created ON error_logs(created_at);
"""

# Columns filled in on insert when the caller leaves them out
_TIMESTAMP_DEFAULTS: dict[str, tuple[str, ...]] = {
    "services": ("created_at",),
    "incidents": ("started_at", "created_at"),
    "incident_events": ("created_at",),
    "metrics": ("timestamp",),
    "error_logs": ("created_at",),
}

_JSON_COLUMNS = {"metadata"}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection with foreign keys enforced.

    Args:
        db_path: Path to the database file, or ":memory:" for tests.

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def _row_to_dict(row: sqlite3.Row) -> Row:
    data: Row = dict(row)
    for column in _JSON_COLUMNS & data.keys():
        raw = data[column]
        if isinstance(raw, str):
            try:
                data[column] = json.loads(raw)
            except json.JSONDecodeError:
                data[column] = None
    return data


class SqliteIncidentStore:
    """Incident store over a local SQLite database."""

    name = "sqlite"

    def __init__(self, db_path: str, feed: ChangeFeed | None = None) -> None:
        self.db_path = db_path
        self.feed = feed or ChangeFeed()
        self._conn = get_connection(db_path)
        init_schema(self._conn)
        self._columns: dict[str, set[str]] = {
            table: {r["name"] for r in self._conn.execute(f"PRAGMA table_info({table})")} for table in TABLES
        }

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_table(self, table: str) -> set[str]:
        columns = self._columns.get(table)
        if columns is None:
            msg = f"Unknown table '{table}'"
            raise StoreError(msg)
        return columns

    def _check_columns(self, table: str, names: Any) -> None:
        columns = self._check_table(table)
        unknown = set(names) - columns
        if unknown:
            msg = f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}"
            raise StoreMutationError(msg)

    def _where(self, table: str, filters: dict[str, object] | None) -> tuple[str, list[object]]:
        if not filters:
            return "", []
        self._check_columns(table, filters.keys())
        conditions: list[str] = []
        params: list[object] = []
        for column, value in filters.items():
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = ?")
                params.append(value)
        return f" WHERE {' AND '.join(conditions)}", params

    def _prepare(self, table: str, row: Row) -> Row:
        self._check_columns(table, row.keys())
        prepared = dict(row)
        prepared.setdefault("id", str(uuid4()))
        now = _now()
        for column in _TIMESTAMP_DEFAULTS.get(table, ()):
            if not prepared.get(column):
                prepared[column] = now
        for column in _JSON_COLUMNS & prepared.keys():
            if prepared[column] is not None:
                prepared[column] = json.dumps(prepared[column])
        return prepared

    def _select_ids(self, table: str, ids: list[str]) -> list[Row]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self._conn.execute(f"SELECT * FROM {table} WHERE id IN ({placeholders})", ids).fetchall()
        by_id = {r["id"]: _row_to_dict(r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def insert(self, table: str, row: Row) -> Row:
        inserted = await self.insert_many(table, [row])
        return inserted[0]

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        """Insert rows atomically. Returns them as stored (ids and timestamps filled in)."""
        prepared = [self._prepare(table, row) for row in rows]
        try:
            for row in prepared:
                columns = ", ".join(row.keys())
                placeholders = ", ".join("?" for _ in row)
                self._conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(row.values()))
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreMutationError(str(e)) from e

        stored = self._select_ids(table, [row["id"] for row in prepared])
        for row in stored:
            self.feed.publish(table, "insert", new=row)
        return stored

    async def update(self, table: str, filters: dict[str, object], patch: Row) -> list[Row]:
        """Apply a patch to every row matching the filters. Returns the updated rows."""
        self._check_columns(table, patch.keys())
        where, params = self._where(table, filters)
        if not patch:
            return []
        try:
            old_rows = [_row_to_dict(r) for r in self._conn.execute(f"SELECT * FROM {table}{where}", params)]
            if not old_rows:
                return []
            ids = [r["id"] for r in old_rows]
            values = [json.dumps(v) if k in _JSON_COLUMNS and v is not None else v for k, v in patch.items()]
            assignments = ", ".join(f"{column} = ?" for column in patch)
            placeholders = ", ".join("?" for _ in ids)
            self._conn.execute(f"UPDATE {table} SET {assignments} WHERE id IN ({placeholders})", [*values, *ids])
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreMutationError(str(e)) from e

        new_rows = self._select_ids(table, ids)
        old_by_id = {r["id"]: r for r in old_rows}
        for row in new_rows:
            self.feed.publish(table, "update", old=old_by_id.get(row["id"]), new=row)
        return new_rows

    async def delete(self, table: str, filters: dict[str, object]) -> int:
        """Delete matching rows (all rows when filters is empty). Returns the number removed."""
        where, params = self._where(table, filters)
        try:
            old_rows = [_row_to_dict(r) for r in self._conn.execute(f"SELECT * FROM {table}{where}", params)]
            self._conn.execute(f"DELETE FROM {table}{where}", params)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreMutationError(str(e)) from e

        for row in old_rows:
            self.feed.publish(table, "delete", old=row)
        return len(old_rows)

    async def query(
        self,
        table: str,
        filters: dict[str, object] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        """Select rows matching the filters, optionally ordered and limited."""
        where, params = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where}"
        if order_by:
            self._check_columns(table, [order_by])
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        return [_row_to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def subscribe_changes(self, table: str, filters: dict[str, object] | None = None) -> Subscription:
        self._check_table(table)
        return self.feed.subscribe(table, filters)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.feed.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Server-side procedures
    # ------------------------------------------------------------------

    async def resolve_incident(self, incident_id: str) -> None:
        """Mark an incident resolved, log the recovery, and return its service to healthy."""
        rows = await self.update(
            "incidents",
            {"id": incident_id},
            {"status": "resolved", "resolved_at": _now()},
        )
        if not rows:
            msg = f"Incident {incident_id} not found"
            raise StoreMutationError(msg)
        await self.insert(
            "incident_events",
            {
                "incident_id": incident_id,
                "event_type": "resolved",
                "description": "Incident resolved via rollback.",
                "user_id": "system-monitor",
            },
        )
        service_id = rows[0].get("service_id")
        if service_id:
            await self.update("services", {"id": service_id}, {"status": "healthy"})

    async def simulate_payment_incident(self) -> str:
        """Seed a critical payment API failure with logs and metrics. Returns the incident id."""
        existing = await self.query("services", {"name": "payment-service"}, limit=1)
        if existing:
            service_id = existing[0]["id"]
        else:
            service_id = (await self.insert("services", {"name": "payment-service", "status": "healthy"}))["id"]

        incident = await self.insert(
            "incidents",
            {
                "service_id": service_id,
                "type": "api_failure",
                "severity": "critical",
                "status": "active",
                "description": "Payment API returning 500 errors on checkout",
            },
        )
        await self.insert(
            "incident_events",
            {
                "incident_id": incident["id"],
                "event_type": "detected",
                "description": "Error rate on payment-service exceeded 50%",
                "user_id": "system-monitor",
            },
        )
        await self.insert_many(
            "error_logs",
            [
                {
                    "service_id": service_id,
                    "incident_id": incident["id"],
                    "severity": "error",
                    "message": "POST /api/checkout 500 Internal Server Error",
                },
                {
                    "service_id": service_id,
                    "incident_id": incident["id"],
                    "severity": "error",
                    "message": "Stripe webhook handler timed out after 30s",
                },
            ],
        )
        await self.update("services", {"id": service_id}, {"status": "down"})
        return incident["id"]

    async def ping(self) -> bool:
        try:
            self._conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    async def close(self) -> None:
        self.feed.close()
        self._conn.close()
