"""Redis-backed event store adapter."""
from datetime import datetime
from typing import Iterable
import structlog
import orjson
from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError
from .base import EventStore
from .query import check_record_type, in_window, merge_upsert, normalize_kinds, summary_matches
from ..config import get_settings
from ..errors import StoreError
from ..models import Event, RecordType, Summary, ensure_utc, utcnow

log = structlog.get_logger()


class RedisEventStore(EventStore):
    """Redis implementation of the event store.

    Events and summaries are stored as orjson documents in two Redis hashes
    keyed by record id. Filtering happens client side, so this adapter suits
    modest event volumes. Redis failures are logged and re-raised.
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str | None = None):
        """
        Initialize Redis store adapter.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            key_prefix: Prefix for the hash keys (defaults to settings.REDIS_KEY_PREFIX)
        """
        settings = get_settings()
        self.redis_url = redis_url or str(settings.REDIS_URL)
        prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self._client: Redis | None = None
        self._events_key = f"{prefix}:events"
        self._summaries_key = f"{prefix}:summaries"

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # documents are orjson bytes
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._client

    # -- document helpers -------------------------------------------------

    def _load(self, key: str, model: type) -> list:
        try:
            raw = self._get_client().hgetall(key)
        except RedisError as e:
            log.error("redis.read_failed", key=key, error=str(e))
            raise
        records = []
        for record_id, doc in raw.items():
            try:
                records.append(model.model_validate(orjson.loads(doc)))
            except (orjson.JSONDecodeError, ValidationError) as e:
                raise StoreError(f"Malformed document {record_id!r} in {key}: {e}") from e
        return records

    def _write(self, key: str, records: list) -> None:
        if not records:
            return
        mapping = {r.id: orjson.dumps(r.model_dump()) for r in records}
        try:
            self._get_client().hset(key, mapping=mapping)
        except RedisError as e:
            log.error("redis.write_failed", key=key, count=len(records), error=str(e))
            raise

    def _delete(self, key: str, ids: list[str]) -> None:
        if not ids:
            return
        try:
            self._get_client().hdel(key, *ids)
        except RedisError as e:
            log.error("redis.delete_failed", key=key, count=len(ids), error=str(e))
            raise

    def _events(self) -> list[Event]:
        return self._load(self._events_key, Event)

    def _summaries(self) -> list[Summary]:
        return self._load(self._summaries_key, Summary)

    def _key_for(self, record_type: str) -> tuple[str, type]:
        if check_record_type(record_type) == RecordType.EVENT_ANALYTICS:
            return self._events_key, Event
        return self._summaries_key, Summary

    # -- EventStore -------------------------------------------------------

    async def insert_event(self, event: Event) -> Event:
        self._write(self._events_key, [event])
        log.info("event.inserted", id=event.id, kind=event.event_kind, adapter="redis")
        return event

    async def find_by_window(
        self,
        start: datetime,
        end: datetime,
        entity_id: str | None = None,
        kinds: Iterable[str] | None = None,
        only_unprocessed: bool = False,
    ) -> list[Event]:
        kind_set = normalize_kinds(kinds)
        matched = [
            e for e in self._events()
            if in_window(e, start, end, entity_id, kind_set, only_unprocessed)
        ]
        return sorted(matched, key=lambda e: e.timestamp)

    async def count_by_window(
        self,
        entity_id: str,
        kinds: str | Iterable[str],
        start: datetime,
        end: datetime,
    ) -> int:
        kind_set = normalize_kinds(kinds)
        return sum(1 for e in self._events() if in_window(e, start, end, entity_id, kind_set))

    async def find_by_actor(self, actor_id: str, limit: int | None = None) -> list[Event]:
        matched = sorted(
            (e for e in self._events() if e.actor_id == actor_id),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return matched[:limit] if limit is not None else matched

    async def find_by_entity(self, entity_id: str, limit: int | None = None) -> list[Event]:
        matched = sorted(
            (e for e in self._events() if e.entity_id == entity_id),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return matched[:limit] if limit is not None else matched

    async def bulk_mark_processed(self, ids: Iterable[str]) -> None:
        wanted = set(ids)
        updated = [
            e.model_copy(update={"processed": True})
            for e in self._events() if e.id in wanted
        ]
        self._write(self._events_key, updated)

    async def bulk_delete_older_than(self, record_type: str, cutoff: datetime) -> int:
        key, model = self._key_for(record_type)
        cutoff = ensure_utc(cutoff)
        doomed = [r.id for r in self._load(key, model) if r.created_at < cutoff]
        self._delete(key, doomed)
        log.info("records.deleted", record_type=record_type, count=len(doomed), adapter="redis")
        return len(doomed)

    async def count_older_than(self, record_type: str, cutoff: datetime) -> int:
        key, model = self._key_for(record_type)
        cutoff = ensure_utc(cutoff)
        return sum(1 for r in self._load(key, model) if r.created_at < cutoff)

    async def count_records(self, record_type: str, since: datetime | None = None) -> int:
        key, model = self._key_for(record_type)
        if since is None:
            try:
                return int(self._get_client().hlen(key))
            except RedisError as e:
                log.error("redis.read_failed", key=key, error=str(e))
                raise
        since = ensure_utc(since)
        return sum(1 for r in self._load(key, model) if r.created_at >= since)

    async def bulk_anonymize_actor(self, actor_id: str) -> int:
        updated = [
            e.model_copy(update={"actor_id": None})
            for e in self._events() if e.actor_id == actor_id
        ]
        self._write(self._events_key, updated)
        return len(updated)

    async def anonymize_summary_entity(self, entity_id: str, entity_type: str) -> int:
        now = utcnow()
        updated = [
            s.model_copy(update={"entity_id": None, "updated_at": now})
            for s in self._summaries()
            if s.entity_id == entity_id and s.entity_type == entity_type
        ]
        self._write(self._summaries_key, updated)
        return len(updated)

    async def distinct_entity_ids(self, since: datetime) -> list[str]:
        since = ensure_utc(since)
        return sorted({
            e.entity_id for e in self._events()
            if e.entity_id is not None and e.created_at > since
        })

    async def distinct_actor_count(self) -> int:
        return len({e.actor_id for e in self._events() if e.actor_id is not None})

    async def find_latest_summary(
        self,
        entity_id: str,
        entity_type: str,
        anomalous_only: bool = False,
        since: datetime | None = None,
    ) -> Summary | None:
        matched = await self.find_summaries(entity_id, entity_type, anomalous_only, since)
        return matched[0] if matched else None

    async def find_summaries(
        self,
        entity_id: str | None = None,
        entity_type: str | None = None,
        anomalous_only: bool = False,
        since: datetime | None = None,
    ) -> list[Summary]:
        matched = [
            s for s in self._summaries()
            if summary_matches(s, entity_id, entity_type, anomalous_only, since)
        ]
        return sorted(matched, key=lambda s: s.created_at, reverse=True)

    async def find_summary_by_key(self, key: tuple) -> Summary | None:
        for summary in self._summaries():
            if summary.unique_key == key:
                return summary
        return None

    async def save_summary(self, summary: Summary) -> Summary:
        summaries = self._summaries()
        existing = next((s for s in summaries if s.id == summary.id), None)
        if existing is None:
            existing = next((s for s in summaries if s.unique_key == summary.unique_key), None)
        stored = merge_upsert(existing, summary, utcnow())
        self._write(self._summaries_key, [stored])
        log.info("summary.saved", id=stored.id, period=stored.period, adapter="redis")
        return stored

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            return bool(self._get_client().ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None
