"""Age-based retention enforcement."""
from datetime import datetime, timedelta
from typing import Any, Iterable
import threading
import structlog
from .adapters.base import EventStore
from .config import Settings
from .errors import PolicyNotFoundError
from .metrics import Metrics
from .models import RecordType, RetentionPolicy, ensure_utc, utcnow

log = structlog.get_logger()

# Age buckets reported by get_retention_stats
STATS_AGE_BUCKETS = {
    "older_than_30_days": 30,
    "older_than_90_days": 90,
    "older_than_1_year": 365,
}


def default_policies(settings: Settings | None = None) -> list[RetentionPolicy]:
    """Default policies: events kept for a year, summaries for two."""
    event_days = settings.RETENTION_EVENT_DAYS if settings else 365
    summary_days = settings.RETENTION_SUMMARY_DAYS if settings else 730
    return [
        RetentionPolicy(
            id="event-analytics-policy",
            record_type=RecordType.EVENT_ANALYTICS.value,
            retention_period_days=event_days,
        ),
        RetentionPolicy(
            id="summary-analytics-policy",
            record_type=RecordType.ANALYTICS_SUMMARY.value,
            retention_period_days=summary_days,
        ),
    ]


class RetentionPolicySet:
    """
    Owned retention policy configuration.

    Policies are immutable; every change swaps in a new value under a lock,
    so readers always see whole policies.
    """

    def __init__(self, policies: Iterable[RetentionPolicy] | None = None):
        self._lock = threading.RLock()
        self._policies: dict[str, RetentionPolicy] = {}
        for policy in policies if policies is not None else default_policies():
            self._policies[policy.id] = policy

    def list(self) -> list[RetentionPolicy]:
        with self._lock:
            return list(self._policies.values())

    def get(self, policy_id: str) -> RetentionPolicy | None:
        with self._lock:
            return self._policies.get(policy_id)

    def get_by_type(self, record_type: str) -> RetentionPolicy | None:
        with self._lock:
            for policy in self._policies.values():
                if policy.record_type == record_type:
                    return policy
        return None

    def replace(self, policy: RetentionPolicy) -> RetentionPolicy:
        """Install `policy`, replacing any policy with the same id."""
        with self._lock:
            self._policies[policy.id] = policy
        log.info(
            "retention.policy_replaced",
            policy_id=policy.id,
            record_type=policy.record_type,
            retention_period_days=policy.retention_period_days,
            enabled=policy.enabled,
        )
        return policy

    def update(self, record_type: str, retention_period_days: int, enabled: bool) -> RetentionPolicy:
        """
        Change the period and enabled flag of the policy for a record type.

        Raises:
            PolicyNotFoundError: If no policy covers the record type
        """
        with self._lock:
            current = self.get_by_type(record_type)
            if current is None:
                raise PolicyNotFoundError(record_type)
            updated = RetentionPolicy.model_validate(
                {
                    **current.model_dump(),
                    "retention_period_days": retention_period_days,
                    "enabled": enabled,
                }
            )
            return self.replace(updated)

    def mark_run(self, policy_id: str, ran_at: datetime) -> None:
        with self._lock:
            current = self._policies.get(policy_id)
            if current is not None:
                self._policies[policy_id] = current.model_copy(update={"last_run_at": ran_at})


class RetentionEnforcer:
    """Deletes records older than their policy's retention period."""

    def __init__(
        self,
        store: EventStore,
        policies: RetentionPolicySet | None = None,
        metrics: Metrics | None = None,
    ):
        self._store = store
        self.policies = policies or RetentionPolicySet()
        self._metrics = metrics or Metrics()

    async def execute_policy(self, policy: RetentionPolicy, now: datetime | None = None) -> int:
        """
        Execute a single retention policy.

        Records are deleted when `created_at < now - retention_period_days`;
        a record exactly at the cutoff is kept.

        Args:
            policy: Policy to execute
            now: Reference time (defaults to the current time)

        Returns:
            Number of deleted records (0 for disabled or unknown policies)
        """
        if not policy.enabled:
            log.debug("retention.policy_disabled", policy_id=policy.id)
            return 0

        now = ensure_utc(now or utcnow())
        cutoff = now - timedelta(days=policy.retention_period_days)

        try:
            try:
                record_type = RecordType(policy.record_type)
            except ValueError:
                log.warning(
                    "retention.unknown_policy_type",
                    policy_id=policy.id,
                    record_type=policy.record_type,
                )
                return 0

            log.info(
                "retention.policy_started",
                policy_id=policy.id,
                record_type=record_type.value,
                cutoff=cutoff.isoformat(),
            )
            deleted = await self._store.bulk_delete_older_than(record_type.value, cutoff)
        finally:
            self.policies.mark_run(policy.id, now)

        self._metrics.record_retention_deleted(record_type.value, deleted)
        log.info(
            "retention.policy_executed",
            policy_id=policy.id,
            record_type=record_type.value,
            deleted=deleted,
        )
        return deleted

    async def execute_all_policies(self, now: datetime | None = None) -> dict[str, int]:
        """
        Execute every configured policy.

        Disabled policies contribute 0. The first store failure aborts the run.

        Returns:
            Mapping of policy id to deleted count
        """
        now = ensure_utc(now or utcnow())
        results = {}
        for policy in self.policies.list():
            results[policy.id] = await self.execute_policy(policy, now)
        log.info("retention.completed", deleted_total=sum(results.values()), policies=len(results))
        return results

    async def manual_cleanup(self, record_type: str, now: datetime | None = None) -> int:
        """
        Execute the policy for one record type on demand.

        Raises:
            PolicyNotFoundError: If no policy covers the record type
        """
        policy = self.policies.get_by_type(record_type)
        if policy is None:
            raise PolicyNotFoundError(record_type)
        return await self.execute_policy(policy, now)

    async def get_retention_stats(self, now: datetime | None = None) -> dict[str, dict[str, Any]]:
        """
        Count records by age for each record type. Read only.

        Returns:
            {record_type: {total, older_than_30_days, older_than_90_days, older_than_1_year}}
        """
        now = ensure_utc(now or utcnow())
        stats = {}
        for record_type in RecordType:
            counts = {"total": await self._store.count_records(record_type.value)}
            for bucket, days in STATS_AGE_BUCKETS.items():
                counts[bucket] = await self._store.count_older_than(
                    record_type.value, now - timedelta(days=days)
                )
            stats[record_type.value] = counts
        return stats
