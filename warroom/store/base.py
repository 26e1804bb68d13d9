"""The incident store surface the rest of the app programs against."""

from typing import Protocol

from warroom.store.changes import Subscription
from warroom.store.models import Row


class IncidentStore(Protocol):
    """CRUD plus change notifications over services, incidents, and their observations.

    Filters are column-equality mappings. An empty filter mapping on ``delete``
    targets every row in the table. Writes raise StoreMutationError, reads
    raise StoreError.
    """

    name: str

    async def insert(self, table: str, row: Row) -> Row: ...

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]: ...

    async def update(self, table: str, filters: dict[str, object], patch: Row) -> list[Row]: ...

    async def delete(self, table: str, filters: dict[str, object]) -> int: ...

    async def query(
        self,
        table: str,
        filters: dict[str, object] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Row]: ...

    def subscribe_changes(self, table: str, filters: dict[str, object] | None = None) -> Subscription: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...

    async def resolve_incident(self, incident_id: str) -> None: ...

    async def simulate_payment_incident(self) -> str: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
