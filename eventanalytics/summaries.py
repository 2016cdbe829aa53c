"""Periodic summary writer."""
from datetime import datetime
import structlog
from .adapters.base import EventStore
from .aggregator import aggregate
from .metrics import Metrics
from .models import PeriodKind, Summary, ensure_utc
from .periods import WeekStart, period_window

log = structlog.get_logger()


class SummaryWriter:
    """
    Writes one Summary per calendar period from the events in that period.

    Daily runs consider unprocessed events only and flag them processed
    afterwards. Weekly and monthly runs reconsider every in-window event, so
    an event is counted once per scope (daily, weekly, monthly).
    """

    def __init__(
        self,
        store: EventStore,
        metrics: Metrics | None = None,
        week_start: WeekStart = "sunday",
    ):
        self._store = store
        self._metrics = metrics or Metrics()
        self._week_start = week_start

    async def run_period(self, period_kind: PeriodKind | str, now: datetime) -> Summary | None:
        """
        Summarize the calendar period containing `now`.

        Args:
            period_kind: daily, weekly or monthly
            now: Reference time for the period

        Returns:
            The persisted Summary, or None when no events matched
        """
        kind = PeriodKind(period_kind)
        now = ensure_utc(now)
        start, end = period_window(kind, now, self._week_start)
        daily = kind == PeriodKind.DAILY

        events = await self._store.find_by_window(start, end, only_unprocessed=daily)
        if not events:
            log.info("summary.skipped", period=kind.value, period_start=start.isoformat(), reason="no_events")
            return None

        summary = Summary(
            metric_type=kind.value,
            period=kind,
            period_start=start,
            period_end=end,
            anomaly_detected=False,
            created_at=now,
            updated_at=now,
        )

        source = events
        if daily:
            # A later daily run replaces the earlier row for the same day,
            # so it must cover the events that row already counted.
            existing = await self._store.find_summary_by_key(summary.unique_key)
            if existing is not None:
                source = await self._store.find_by_window(start, end)

        result = aggregate(source)
        summary = summary.model_copy(update={"summary_data": result.model_dump()})
        saved = await self._store.save_summary(summary)

        if daily:
            await self._store.bulk_mark_processed([e.id for e in events])

        self._metrics.record_summary_written(kind.value)
        log.info(
            "summary.written",
            summary_id=saved.id,
            period=kind.value,
            period_start=start.isoformat(),
            events=result.total_events,
            newly_processed=len(events) if daily else 0,
        )
        return saved
