"""Base adapter interface for event store backends."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable
from ..models import Event, Summary


class EventStore(ABC):
    """Abstract interface for the queryable event log and summary table.

    Time windows are inclusive at both ends. `since` filters are strict
    (`created_at > since`). Implementations surface failures by raising;
    the engine never retries them.
    """

    @abstractmethod
    async def insert_event(self, event: Event) -> Event:
        """Persist a new event and return it."""
        pass

    @abstractmethod
    async def find_by_window(
        self,
        start: datetime,
        end: datetime,
        entity_id: str | None = None,
        kinds: Iterable[str] | None = None,
        only_unprocessed: bool = False,
    ) -> list[Event]:
        """
        Find events whose timestamp falls within [start, end].

        Args:
            start: Window start (inclusive)
            end: Window end (inclusive)
            entity_id: Restrict to one entity
            kinds: Restrict to these event kinds
            only_unprocessed: Skip events already claimed by a daily summary

        Returns:
            Matching events ordered by timestamp
        """
        pass

    @abstractmethod
    async def count_by_window(
        self,
        entity_id: str,
        kinds: str | Iterable[str],
        start: datetime,
        end: datetime,
    ) -> int:
        """Count an entity's events of the given kind(s) within [start, end]."""
        pass

    @abstractmethod
    async def find_by_actor(self, actor_id: str, limit: int | None = None) -> list[Event]:
        """Find events performed by an actor, newest first."""
        pass

    @abstractmethod
    async def find_by_entity(self, entity_id: str, limit: int | None = None) -> list[Event]:
        """Find events about an entity over all time, newest first."""
        pass

    @abstractmethod
    async def bulk_mark_processed(self, ids: Iterable[str]) -> None:
        """Flag events as processed."""
        pass

    @abstractmethod
    async def bulk_delete_older_than(self, record_type: str, cutoff: datetime) -> int:
        """Hard delete records of a type with created_at < cutoff; return count."""
        pass

    @abstractmethod
    async def count_older_than(self, record_type: str, cutoff: datetime) -> int:
        """Count records of a type with created_at < cutoff."""
        pass

    @abstractmethod
    async def count_records(self, record_type: str, since: datetime | None = None) -> int:
        """Count records of a type, optionally only those created at or after `since`."""
        pass

    @abstractmethod
    async def bulk_anonymize_actor(self, actor_id: str) -> int:
        """Null the actor id on every event performed by an actor; return count."""
        pass

    @abstractmethod
    async def anonymize_summary_entity(self, entity_id: str, entity_type: str) -> int:
        """Null the entity id on summaries of the given entity; return count."""
        pass

    @abstractmethod
    async def distinct_entity_ids(self, since: datetime) -> list[str]:
        """Distinct non-null entity ids of events created after `since`."""
        pass

    @abstractmethod
    async def distinct_actor_count(self) -> int:
        """Number of distinct non-null actor ids across all events."""
        pass

    @abstractmethod
    async def find_latest_summary(
        self,
        entity_id: str,
        entity_type: str,
        anomalous_only: bool = False,
        since: datetime | None = None,
    ) -> Summary | None:
        """Most recently created summary for an entity, if any."""
        pass

    @abstractmethod
    async def find_summaries(
        self,
        entity_id: str | None = None,
        entity_type: str | None = None,
        anomalous_only: bool = False,
        since: datetime | None = None,
    ) -> list[Summary]:
        """Summaries matching the filters, newest first."""
        pass

    @abstractmethod
    async def find_summary_by_key(self, key: tuple) -> Summary | None:
        """Summary with the given (entity_type, entity_id, period, period_start) key."""
        pass

    @abstractmethod
    async def save_summary(self, summary: Summary) -> Summary:
        """
        Insert or update a summary.

        Saving a summary whose uniqueness key already exists replaces the
        stored payload while keeping the original id and created_at.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    def close(self):
        """Release backend connections. Nothing to release by default."""
        pass
