"""Tests for event store adapters."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
import orjson
from redis.exceptions import ConnectionError as RedisConnectionError
from eventanalytics.adapters.memory import InMemoryEventStore
from eventanalytics.adapters.redis_store import RedisEventStore
from eventanalytics.config import Settings
from eventanalytics.errors import StoreError
from eventanalytics.main import create_store
from eventanalytics.models import Event, PeriodKind, Summary

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Dict-backed stand-in for the handful of hash commands the adapter uses."""

    def __init__(self):
        self.hashes: dict[str, dict[bytes, bytes]] = {}

    def hset(self, key, mapping):
        table = self.hashes.setdefault(key, {})
        for field, value in mapping.items():
            table[field.encode() if isinstance(field, str) else field] = value
        return len(mapping)

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hdel(self, key, *fields):
        table = self.hashes.get(key, {})
        removed = 0
        for field in fields:
            if table.pop(field.encode(), None) is not None:
                removed += 1
        return removed

    def hlen(self, key):
        return len(self.hashes.get(key, {}))

    def ping(self):
        return True

    def close(self):
        pass


def sample_events():
    return [
        Event(id="a", entity_id="e1", actor_id="u1", event_kind="register",
              timestamp=NOW - timedelta(hours=1), created_at=NOW - timedelta(days=400)),
        Event(id="b", entity_id="e1", actor_id="u2", event_kind="view",
              timestamp=NOW - timedelta(hours=2), created_at=NOW - timedelta(days=2)),
        Event(id="c", entity_id="e2", actor_id="u1", event_kind="register",
              timestamp=NOW - timedelta(days=3), created_at=NOW - timedelta(hours=1)),
    ]


@pytest.fixture
def memory_store():
    return InMemoryEventStore()


@pytest.fixture
def redis_store():
    fake = FakeRedis()
    with patch("eventanalytics.adapters.redis_store.Redis") as mock_redis_class:
        mock_redis_class.from_url.return_value = fake
        yield RedisEventStore(redis_url="redis://localhost:6379", key_prefix="test")


@pytest.fixture(params=["memory", "redis"])
def store(request, memory_store, redis_store):
    return memory_store if request.param == "memory" else redis_store


async def seed(store):
    for event in sample_events():
        await store.insert_event(event)


@pytest.mark.asyncio
async def test_find_by_window_filters(store):
    """Test window, entity, kind and processed filters."""
    await seed(store)
    start, end = NOW - timedelta(hours=24), NOW

    assert [e.id for e in await store.find_by_window(start, end)] == ["b", "a"]
    assert [e.id for e in await store.find_by_window(start, end, entity_id="e2")] == []
    assert [e.id for e in await store.find_by_window(start, end, kinds=["register"])] == ["a"]

    await store.bulk_mark_processed(["a"])
    unprocessed = await store.find_by_window(start, end, only_unprocessed=True)
    assert [e.id for e in unprocessed] == ["b"]


@pytest.mark.asyncio
async def test_window_is_inclusive(store):
    """Test that both window ends are inclusive."""
    await seed(store)
    ts = NOW - timedelta(hours=1)
    assert [e.id for e in await store.find_by_window(ts, ts)] == ["a"]


@pytest.mark.asyncio
async def test_find_by_entity_spans_all_time(store):
    """Test entity reads ignore windows, order newest first and honour the limit."""
    await seed(store)
    old = NOW - timedelta(days=90)
    await store.insert_event(Event(id="d", entity_id="e1", event_kind="view", timestamp=old))

    assert [e.id for e in await store.find_by_entity("e1")] == ["a", "b", "d"]
    assert [e.id for e in await store.find_by_entity("e1", limit=2)] == ["a", "b"]
    assert await store.find_by_entity("missing") == []


@pytest.mark.asyncio
async def test_count_by_window_accepts_single_kind_or_many(store):
    """Test counting by one kind or a set of kinds."""
    await seed(store)
    start = NOW - timedelta(days=7)

    assert await store.count_by_window("e1", "register", start, NOW) == 1
    assert await store.count_by_window("e1", ["register", "view"], start, NOW) == 2
    assert await store.count_by_window("e2", "register", start, NOW) == 1


@pytest.mark.asyncio
async def test_delete_older_than_uses_created_at(store):
    """Test that retention deletion is driven by created_at, strictly older."""
    await seed(store)
    cutoff = NOW - timedelta(days=2)

    assert await store.count_older_than("event_analytics", cutoff) == 1
    assert await store.bulk_delete_older_than("event_analytics", cutoff) == 1
    assert await store.count_records("event_analytics") == 2
    # "b" sits exactly at the cutoff and is kept
    remaining = await store.find_by_window(NOW - timedelta(days=30), NOW)
    assert sorted(e.id for e in remaining) == ["b", "c"]


@pytest.mark.asyncio
async def test_unknown_record_type_is_rejected(store):
    """Test that adapters refuse record types they do not store."""
    with pytest.raises(ValueError):
        await store.bulk_delete_older_than("reports", NOW)


@pytest.mark.asyncio
async def test_anonymize_actor_and_distinct_queries(store):
    """Test actor anonymization and distinct id queries."""
    await seed(store)

    assert await store.distinct_actor_count() == 2
    assert await store.bulk_anonymize_actor("u1") == 2
    assert await store.find_by_actor("u1") == []
    assert await store.distinct_actor_count() == 1
    assert await store.distinct_entity_ids(NOW - timedelta(days=7)) == ["e1", "e2"]
    assert await store.distinct_entity_ids(NOW - timedelta(days=1)) == ["e2"]


@pytest.mark.asyncio
async def test_save_summary_upserts_on_unique_key(store):
    """Test that a second summary for the same key replaces the first."""
    start = datetime(2026, 5, 20, tzinfo=timezone.utc)
    first = Summary(metric_type="daily", period=PeriodKind.DAILY, period_start=start,
                    period_end=start + timedelta(days=1), summary_data={"total_events": 1},
                    created_at=NOW - timedelta(hours=2))
    second = Summary(metric_type="daily", period=PeriodKind.DAILY, period_start=start,
                     period_end=start + timedelta(days=1), summary_data={"total_events": 5})

    saved_first = await store.save_summary(first)
    saved_second = await store.save_summary(second)

    assert saved_second.id == saved_first.id
    assert saved_second.created_at == first.created_at
    summaries = await store.find_summaries()
    assert len(summaries) == 1
    assert summaries[0].summary_data == {"total_events": 5}


@pytest.mark.asyncio
async def test_find_latest_summary_orders_by_created_at(store):
    """Test latest-summary lookup and filters."""
    for days_ago, anomalous in ((3, True), (1, False)):
        start = NOW - timedelta(days=days_ago)
        await store.save_summary(Summary(
            metric_type="daily", period="daily", period_start=start, period_end=start,
            entity_id="e1", entity_type="entity", anomaly_detected=anomalous,
            summary_data={"anomalies": [{"metric_name": "x"}]} if anomalous else {},
            created_at=start,
        ))

    latest = await store.find_latest_summary("e1", "entity")
    assert latest.created_at == NOW - timedelta(days=1)

    anomalous = await store.find_latest_summary("e1", "entity", anomalous_only=True)
    assert anomalous.created_at == NOW - timedelta(days=3)

    assert await store.find_latest_summary("e1", "entity", anomalous_only=True,
                                           since=NOW - timedelta(days=2)) is None
    assert await store.find_latest_summary("e1", "user") is None


@pytest.mark.asyncio
async def test_health_check(store):
    """Test adapter health check."""
    assert await store.health_check() is True


@pytest.mark.asyncio
async def test_redis_store_writes_orjson_documents():
    """Test that the Redis adapter stores events as orjson documents."""
    with patch("eventanalytics.adapters.redis_store.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis

        store = RedisEventStore(redis_url="redis://localhost:6379", key_prefix="ea")
        await store.insert_event(Event(id="evt-1", event_kind="view", entity_id="e1"))

        key = mock_redis.hset.call_args[0][0]
        mapping = mock_redis.hset.call_args[1]["mapping"]
        assert key == "ea:events"
        doc = orjson.loads(mapping["evt-1"])
        assert doc["event_kind"] == "view"
        assert doc["entity_id"] == "e1"


@pytest.mark.asyncio
async def test_redis_store_propagates_failures():
    """Test that Redis errors reach the caller."""
    with patch("eventanalytics.adapters.redis_store.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.hgetall.side_effect = RedisConnectionError("Connection refused")

        store = RedisEventStore(redis_url="redis://localhost:6379")
        with pytest.raises(RedisConnectionError):
            await store.find_by_window(NOW - timedelta(days=1), NOW)


@pytest.mark.asyncio
async def test_redis_store_rejects_malformed_documents():
    """Test that undecodable documents raise StoreError."""
    with patch("eventanalytics.adapters.redis_store.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.hgetall.return_value = {b"evt-1": b"{not json"}

        store = RedisEventStore(redis_url="redis://localhost:6379")
        with pytest.raises(StoreError):
            await store.find_by_window(NOW - timedelta(days=1), NOW)


@pytest.mark.asyncio
async def test_redis_health_check_failure():
    """Test Redis adapter health check when Redis is unavailable."""
    with patch("eventanalytics.adapters.redis_store.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.ping.side_effect = Exception("Connection refused")

        store = RedisEventStore(redis_url="redis://localhost:6379")
        assert await store.health_check() is False


def test_adapter_selection():
    """Test adapter selection and fallback."""
    assert isinstance(create_store(Settings(STORE_ADAPTER="memory")), InMemoryEventStore)
    assert isinstance(create_store(Settings(STORE_ADAPTER="redis", REDIS_URL=None)), InMemoryEventStore)
    assert isinstance(
        create_store(Settings(STORE_ADAPTER="redis", REDIS_URL="redis://localhost:6379/0")),
        RedisEventStore,
    )
