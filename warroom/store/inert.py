"""Stand-in store used when no backend is configured.

Reads return empty results and writes raise ConfigurationMissingError, so
the dashboard stays up (HEALTHY, no services) instead of crashing.
"""

from warroom.errors import ConfigurationMissingError
from warroom.store.changes import ChangeFeed, Subscription
from warroom.store.models import Row

_NOT_CONFIGURED = "Incident store not configured (set SUPABASE_URL/SUPABASE_ANON_KEY or STORE_DB_PATH)"


class InertIncidentStore:
    name = "inert"

    def __init__(self) -> None:
        self.feed = ChangeFeed()

    async def insert(self, table: str, row: Row) -> Row:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def update(self, table: str, filters: dict[str, object], patch: Row) -> list[Row]:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def delete(self, table: str, filters: dict[str, object]) -> int:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def query(
        self,
        table: str,
        filters: dict[str, object] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        return []

    def subscribe_changes(self, table: str, filters: dict[str, object] | None = None) -> Subscription:
        return self.feed.subscribe(table, filters)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.feed.unsubscribe(subscription)

    async def resolve_incident(self, incident_id: str) -> None:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def simulate_payment_incident(self) -> str:
        raise ConfigurationMissingError(_NOT_CONFIGURED)

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        self.feed.close()
