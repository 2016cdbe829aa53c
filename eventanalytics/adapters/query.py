"""Predicate helpers shared by adapters that filter records client side."""
from datetime import datetime
from typing import Iterable
from ..models import Event, RecordType, Summary, ensure_utc


def normalize_kinds(kinds: str | Iterable[str] | None) -> set[str] | None:
    if kinds is None:
        return None
    if isinstance(kinds, str):
        return {kinds}
    return set(kinds)


def in_window(
    event: Event,
    start: datetime,
    end: datetime,
    entity_id: str | None = None,
    kinds: set[str] | None = None,
    only_unprocessed: bool = False,
) -> bool:
    """Check an event against the find_by_window filters."""
    if not ensure_utc(start) <= event.timestamp <= ensure_utc(end):
        return False
    if entity_id is not None and event.entity_id != entity_id:
        return False
    if kinds is not None and event.event_kind not in kinds:
        return False
    if only_unprocessed and event.processed:
        return False
    return True


def summary_matches(
    summary: Summary,
    entity_id: str | None = None,
    entity_type: str | None = None,
    anomalous_only: bool = False,
    since: datetime | None = None,
) -> bool:
    """Check a summary against the find_summaries filters."""
    if entity_id is not None and summary.entity_id != entity_id:
        return False
    if entity_type is not None and summary.entity_type != entity_type:
        return False
    if anomalous_only and not summary.anomaly_detected:
        return False
    if since is not None and summary.created_at <= ensure_utc(since):
        return False
    return True


def merge_upsert(existing: Summary | None, summary: Summary, now: datetime) -> Summary:
    """Resolve a save against the row already holding the summary's key."""
    if existing is None:
        return summary
    return summary.model_copy(
        update={"id": existing.id, "created_at": existing.created_at, "updated_at": now}
    )


def check_record_type(record_type: str) -> RecordType:
    """
    Resolve a record type name.

    Raises:
        ValueError: If the record type is not stored by adapters
    """
    return RecordType(record_type)
