"""Unit tests for the in-process change feed and per-session subscription manager."""

import asyncio

import pytest

from warroom.dashboard.subscriptions import SubscriptionManager
from warroom.store.changes import ChangeFeed
from warroom.store.models import ChangeEvent, Service, parse_record, parse_records
from warroom.store.sqlite import SqliteIncidentStore


class TestChangeFeed:
    def test_publish_in_order(self) -> None:
        feed = ChangeFeed()
        sub = feed.subscribe("incidents")
        feed.publish("incidents", "insert", new={"id": "a"})
        feed.publish("incidents", "update", new={"id": "a", "status": "resolved"})

        first = sub.queue.get_nowait()
        second = sub.queue.get_nowait()
        assert first["event_type"] == "insert"
        assert second["event_type"] == "update"

    def test_other_tables_ignored(self) -> None:
        feed = ChangeFeed()
        sub = feed.subscribe("incidents")
        feed.publish("error_logs", "insert", new={"id": "l"})
        assert sub.queue.empty()

    def test_filter_matches_old_for_deletes(self) -> None:
        feed = ChangeFeed()
        sub = feed.subscribe("incidents", {"service_id": "s1"})
        feed.publish("incidents", "delete", old={"id": "a", "service_id": "s1"})
        feed.publish("incidents", "delete", old={"id": "b", "service_id": "s2"})
        assert sub.queue.qsize() == 1

    def test_close_unsubscribes_all(self) -> None:
        feed = ChangeFeed()
        subs = [feed.subscribe("incidents"), feed.subscribe("metrics")]
        feed.close()
        assert feed.subscriber_count == 0
        assert all(s.closed for s in subs)


class TestParseRecord:
    def test_valid(self) -> None:
        service = parse_record(Service, {"id": "s1", "name": "api", "status": "down", "extra": 1})
        assert service is not None
        assert service.status == "down"

    def test_malformed_skipped(self) -> None:
        assert parse_record(Service, {"id": "s1", "status": "exploded"}) is None

    def test_none(self) -> None:
        assert parse_record(Service, None) is None

    def test_parse_records_drops_bad_rows(self) -> None:
        rows = [{"id": "s1", "name": "a"}, {"name": "no id"}, {"id": "s3", "name": "c"}]
        assert [s.id for s in parse_records(Service, rows)] == ["s1", "s3"]


class TestSubscriptionManager:
    @pytest.mark.asyncio
    async def test_delivers_to_sync_and_async_callbacks(self, store: SqliteIncidentStore) -> None:
        received: list[str] = []
        sync_done = asyncio.Event()
        done = asyncio.Event()

        def on_sync(event: ChangeEvent) -> None:
            received.append(f"sync:{event['event_type']}")
            sync_done.set()

        async def on_async(event: ChangeEvent) -> None:
            received.append(f"async:{event['event_type']}")
            done.set()

        manager = SubscriptionManager(store)
        manager.open("services", on_sync)
        manager.open("services", on_async)
        await store.insert("services", {"name": "api"})
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.wait_for(sync_done.wait(), 1)

        assert sorted(received) == ["async:insert", "sync:insert"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_kill_channel(self, store: SqliteIncidentStore) -> None:
        seen: list[str] = []
        second = asyncio.Event()

        def flaky(event: ChangeEvent) -> None:
            seen.append(event["new"]["name"])
            if len(seen) == 1:
                raise RuntimeError("boom")
            second.set()

        manager = SubscriptionManager(store)
        manager.open("services", flaky)
        await store.insert("services", {"name": "first"})
        await store.insert("services", {"name": "second"})
        await asyncio.wait_for(second.wait(), 1)

        assert seen == ["first", "second"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_close_all_releases_everything(self, store: SqliteIncidentStore) -> None:
        manager = SubscriptionManager(store)
        handles = [manager.open(table, lambda e: None) for table in ("incidents", "error_logs", "metrics")]
        assert manager.open_channels == 3
        assert store.feed.subscriber_count == 3

        await manager.close_all()

        assert manager.open_channels == 0
        assert store.feed.subscriber_count == 0
        assert all(h.task.done() for h in handles)

    @pytest.mark.asyncio
    async def test_managers_are_independent(self, store: SqliteIncidentStore) -> None:
        first = SubscriptionManager(store)
        second = SubscriptionManager(store)
        first.open("incidents", lambda e: None)
        second.open("incidents", lambda e: None)

        await first.close_all()

        assert second.open_channels == 1
        assert store.feed.subscriber_count == 1
        await second.close_all()
