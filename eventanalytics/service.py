"""Event tracking and aggregate queries."""
from datetime import datetime
from typing import Any
import structlog
from .adapters.base import EventStore
from .aggregator import aggregate
from .metrics import Metrics
from .models import AccessLevel, AggregateResult, Event, EventIn, ensure_utc, utcnow
from .periods import DEFAULT_TIME_PERIOD, WeekStart, resolve_time_period
from .privacy import PrivacyOptions, PrivacyTransform

log = structlog.get_logger()

ACTOR_READ_LIMIT = 1000
ENTITY_READ_LIMIT = 10000


class AnalyticsService:
    """Tracks events and answers aggregate and privacy-scoped read queries."""

    def __init__(
        self,
        store: EventStore,
        privacy: PrivacyTransform | None = None,
        metrics: Metrics | None = None,
        week_start: WeekStart = "sunday",
    ):
        self._store = store
        self._privacy = privacy or PrivacyTransform()
        self._metrics = metrics or Metrics()
        self._week_start = week_start

    async def track_event(self, evt: EventIn, now: datetime | None = None) -> Event:
        """
        Record an inbound event.

        The event timestamp defaults to ingestion time when absent.
        """
        event = Event.from_inbound(evt, ensure_utc(now or utcnow()))
        stored = await self._store.insert_event(event)
        self._metrics.record_event_tracked(stored.event_kind)
        log.info(
            "event.tracked",
            id=stored.id,
            kind=stored.event_kind,
            entity_id=stored.entity_id,
            source=stored.source,
        )
        return stored

    async def query(
        self,
        entity_id: str | None = None,
        actor_id: str | None = None,
        event_kind: str | None = None,
        time_period: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Filtered event page with aggregates over that page.

        An explicit start/end pair wins over `time_period`.

        Returns:
            {"data": events, "aggregates": AggregateResult, "total": page size}
        """
        if start is None or end is None:
            start, end = resolve_time_period(time_period, ensure_utc(now or utcnow()), self._week_start)

        events = await self._store.find_by_window(
            start,
            end,
            entity_id=entity_id,
            kinds=[event_kind] if event_kind else None,
        )
        if actor_id is not None:
            events = [e for e in events if e.actor_id == actor_id]
        page = events[offset:offset + limit]

        return {
            "data": page,
            "aggregates": aggregate(page),
            "total": len(page),
        }

    async def get_dashboard_metrics(
        self,
        time_period: str = DEFAULT_TIME_PERIOD,
        now: datetime | None = None,
    ) -> AggregateResult:
        """Aggregate over every event in a named period."""
        start, end = resolve_time_period(time_period, ensure_utc(now or utcnow()), self._week_start)
        return aggregate(await self._store.find_by_window(start, end))

    async def get_entity_metrics(
        self,
        entity_id: str,
        time_period: str = DEFAULT_TIME_PERIOD,
        now: datetime | None = None,
    ) -> AggregateResult:
        """Aggregate over one entity's events in a named period."""
        start, end = resolve_time_period(time_period, ensure_utc(now or utcnow()), self._week_start)
        return aggregate(await self._store.find_by_window(start, end, entity_id=entity_id))

    async def get_actor_analytics(
        self,
        actor_id: str,
        access_level: AccessLevel | str,
        options: PrivacyOptions | None = None,
    ) -> list[dict[str, Any]]:
        """An actor's most recent events, privacy filtered."""
        events = await self._store.find_by_actor(actor_id, limit=ACTOR_READ_LIMIT)
        return self._privacy.apply(events, access_level, requester_id=actor_id, options=options)

    async def get_entity_analytics(
        self,
        entity_id: str,
        requester_id: str | None,
        access_level: AccessLevel | str,
        options: PrivacyOptions | None = None,
    ) -> list[dict[str, Any]]:
        """An entity's most recent events over all time, privacy filtered for the requester."""
        events = await self._store.find_by_entity(entity_id, limit=ENTITY_READ_LIMIT)
        return self._privacy.apply(
            events,
            access_level,
            requester_id=requester_id,
            entity_id=entity_id,
            options=options,
        )
