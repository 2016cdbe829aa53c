"""In-memory event store adapter."""
from datetime import datetime
from typing import Iterable
import structlog
from .base import EventStore
from .query import check_record_type, in_window, merge_upsert, normalize_kinds, summary_matches
from ..models import Event, RecordType, Summary, ensure_utc, utcnow

log = structlog.get_logger()


class InMemoryEventStore(EventStore):
    """In-memory implementation of the event store.

    Records are immutable models; updates replace them with copies.
    """

    def __init__(self):
        self._events: dict[str, Event] = {}
        self._summaries: dict[str, Summary] = {}

    async def insert_event(self, event: Event) -> Event:
        """Insert event into the in-memory log."""
        self._events[event.id] = event
        log.debug("event.inserted", id=event.id, kind=event.event_kind, adapter="memory")
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
            e for e in self._events.values()
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
        return sum(1 for e in self._events.values() if in_window(e, start, end, entity_id, kind_set))

    async def find_by_actor(self, actor_id: str, limit: int | None = None) -> list[Event]:
        matched = sorted(
            (e for e in self._events.values() if e.actor_id == actor_id),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return matched[:limit] if limit is not None else matched

    async def find_by_entity(self, entity_id: str, limit: int | None = None) -> list[Event]:
        matched = sorted(
            (e for e in self._events.values() if e.entity_id == entity_id),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return matched[:limit] if limit is not None else matched

    async def bulk_mark_processed(self, ids: Iterable[str]) -> None:
        for event_id in ids:
            event = self._events.get(event_id)
            if event is not None:
                self._events[event_id] = event.model_copy(update={"processed": True})

    async def bulk_delete_older_than(self, record_type: str, cutoff: datetime) -> int:
        table = self._table(record_type)
        cutoff = ensure_utc(cutoff)
        doomed = [key for key, record in table.items() if record.created_at < cutoff]
        for key in doomed:
            del table[key]
        log.debug("records.deleted", record_type=record_type, count=len(doomed), adapter="memory")
        return len(doomed)

    async def count_older_than(self, record_type: str, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        return sum(1 for r in self._table(record_type).values() if r.created_at < cutoff)

    async def count_records(self, record_type: str, since: datetime | None = None) -> int:
        records = self._table(record_type).values()
        if since is None:
            return len(records)
        since = ensure_utc(since)
        return sum(1 for r in records if r.created_at >= since)

    async def bulk_anonymize_actor(self, actor_id: str) -> int:
        affected = [e for e in self._events.values() if e.actor_id == actor_id]
        for event in affected:
            self._events[event.id] = event.model_copy(update={"actor_id": None})
        return len(affected)

    async def anonymize_summary_entity(self, entity_id: str, entity_type: str) -> int:
        affected = [
            s for s in self._summaries.values()
            if s.entity_id == entity_id and s.entity_type == entity_type
        ]
        now = utcnow()
        for summary in affected:
            self._summaries[summary.id] = summary.model_copy(
                update={"entity_id": None, "updated_at": now}
            )
        return len(affected)

    async def distinct_entity_ids(self, since: datetime) -> list[str]:
        since = ensure_utc(since)
        ids = {
            e.entity_id for e in self._events.values()
            if e.entity_id is not None and e.created_at > since
        }
        return sorted(ids)

    async def distinct_actor_count(self) -> int:
        return len({e.actor_id for e in self._events.values() if e.actor_id is not None})

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
            s for s in self._summaries.values()
            if summary_matches(s, entity_id, entity_type, anomalous_only, since)
        ]
        return sorted(matched, key=lambda s: s.created_at, reverse=True)

    async def find_summary_by_key(self, key: tuple) -> Summary | None:
        for summary in self._summaries.values():
            if summary.unique_key == key:
                return summary
        return None

    async def save_summary(self, summary: Summary) -> Summary:
        existing = self._summaries.get(summary.id)
        if existing is None:
            existing = await self.find_summary_by_key(summary.unique_key)
        stored = merge_upsert(existing, summary, utcnow())
        self._summaries[stored.id] = stored
        log.debug("summary.saved", id=stored.id, period=stored.period, adapter="memory")
        return stored

    async def health_check(self) -> bool:
        """In-memory adapter is always healthy."""
        return True

    def _table(self, record_type: str) -> dict:
        if check_record_type(record_type) == RecordType.EVENT_ANALYTICS:
            return self._events
        return self._summaries
