"""Hosted incident store over the Supabase PostgREST API.

Talks to ``/rest/v1/<table>`` and ``/rest/v1/rpc/<function>`` with httpx.
Change notifications are published for writes made through this client;
rows written by other processes reach the dashboard through its pollers.
"""

import logging
from typing import Any

import httpx

from warroom.errors import StoreError, StoreMutationError
from warroom.store.changes import ChangeFeed, Subscription
from warroom.store.models import TABLES, Row

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15


def _eq(value: object) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _error_message(resp: httpx.Response) -> str:
    """Extract PostgREST's error message, falling back to the raw body."""
    try:
        body: Any = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code} - {resp.text[:500]}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {resp.status_code} - {resp.text[:500]}"


class SupabaseIncidentStore:
    """Incident store backed by a hosted Postgres behind PostgREST."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        feed: ChangeFeed | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.feed = feed or ChangeFeed()
        self._client = client or httpx.AsyncClient(
            base_url=f"{self.url}/rest/v1",
            headers={
                "apikey": anon_key,
                "Authorization": f"Bearer {anon_key}",
                "Content-Type": "application/json",
            },
            timeout=DEFAULT_TIMEOUT_SECONDS,
        )

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLES:
            msg = f"Unknown table '{table}'"
            raise StoreError(msg)

    @staticmethod
    def _filter_params(filters: dict[str, object] | None) -> dict[str, str]:
        return {column: _eq(value) for column, value in (filters or {}).items()}

    async def _write(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> list[Row]:
        try:
            resp = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as e:
            raise StoreMutationError(f"Cannot reach incident store at {self.url}: {e}") from e
        if resp.is_error:
            raise StoreMutationError(_error_message(resp))
        body: Any = resp.json() if resp.content else []
        return body if isinstance(body, list) else [body]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def insert(self, table: str, row: Row) -> Row:
        rows = await self.insert_many(table, [row])
        if not rows:
            msg = f"Insert into {table} returned no rows"
            raise StoreMutationError(msg)
        return rows[0]

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        self._check_table(table)
        stored = await self._write("POST", f"/{table}", json=rows)
        for row in stored:
            self.feed.publish(table, "insert", new=row)
        return stored

    async def update(self, table: str, filters: dict[str, object], patch: Row) -> list[Row]:
        self._check_table(table)
        stored = await self._write("PATCH", f"/{table}", params=self._filter_params(filters), json=patch)
        for row in stored:
            self.feed.publish(table, "update", new=row)
        return stored

    async def delete(self, table: str, filters: dict[str, object]) -> int:
        self._check_table(table)
        # PostgREST refuses unfiltered deletes; match every row explicitly
        params = self._filter_params(filters) or {"id": "not.is.null"}
        removed = await self._write("DELETE", f"/{table}", params=params)
        for row in removed:
            self.feed.publish(table, "delete", old=row)
        return len(removed)

    async def query(
        self,
        table: str,
        filters: dict[str, object] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        self._check_table(table)
        params = {"select": "*", **self._filter_params(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        try:
            resp = await self._client.get(f"/{table}", params=params)
            _ = resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(_error_message(e.response)) from e
        except httpx.HTTPError as e:
            raise StoreError(f"Cannot reach incident store at {self.url}: {e}") from e
        body: Any = resp.json()
        return body if isinstance(body, list) else []

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def subscribe_changes(self, table: str, filters: dict[str, object] | None = None) -> Subscription:
        self._check_table(table)
        return self.feed.subscribe(table, filters)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.feed.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Remote procedures
    # ------------------------------------------------------------------

    async def _rpc(self, function: str, payload: Row) -> Any:
        try:
            resp = await self._client.post(f"/rpc/{function}", json=payload)
        except httpx.HTTPError as e:
            raise StoreMutationError(f"Cannot reach incident store at {self.url}: {e}") from e
        if resp.is_error:
            raise StoreMutationError(_error_message(resp))
        return resp.json() if resp.content else None

    async def resolve_incident(self, incident_id: str) -> None:
        await self._rpc("resolve_incident", {"incident_uuid": incident_id})
        rows = await self.query("incidents", {"id": incident_id}, limit=1)
        if rows:
            self.feed.publish("incidents", "update", new=rows[0])

    async def simulate_payment_incident(self) -> str:
        incident_id = await self._rpc("simulate_payment_incident", {})
        rows = await self.query("incidents", {"id": incident_id}, limit=1)
        if rows:
            self.feed.publish("incidents", "insert", new=rows[0])
        return str(incident_id)

    async def ping(self) -> bool:
        try:
            resp = await self._client.get("/services", params={"select": "id", "limit": "1"})
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    async def close(self) -> None:
        self.feed.close()
        await self._client.aclose()
