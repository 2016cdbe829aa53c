"""Tests for retention policies and enforcement."""
from datetime import datetime, timedelta, timezone
import pytest
from eventanalytics.adapters.memory import InMemoryEventStore
from eventanalytics.config import Settings
from eventanalytics.errors import PolicyNotFoundError
from eventanalytics.metrics import Metrics
from eventanalytics.models import Event, RetentionPolicy, Summary
from eventanalytics.retention import RetentionEnforcer, RetentionPolicySet, default_policies

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


def event_created(delta: timedelta) -> Event:
    return Event(event_kind="view", timestamp=NOW - delta, created_at=NOW - delta)


def summary_created(delta: timedelta) -> Summary:
    created = NOW - delta
    return Summary(
        metric_type="daily",
        period="daily",
        period_start=created,
        period_end=created,
        created_at=created,
    )


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def enforcer(store, metrics):
    return RetentionEnforcer(store, RetentionPolicySet(default_policies()), metrics)


def test_default_policies():
    """Test the default policy set."""
    policies = {p.record_type: p for p in default_policies()}
    assert policies["event_analytics"].retention_period_days == 365
    assert policies["analytics_summary"].retention_period_days == 730
    assert all(p.enabled for p in policies.values())


def test_default_policies_from_settings():
    """Test retention periods come from configuration."""
    settings = Settings(RETENTION_EVENT_DAYS=30, RETENTION_SUMMARY_DAYS=90)
    policies = {p.record_type: p for p in default_policies(settings)}
    assert policies["event_analytics"].retention_period_days == 30
    assert policies["analytics_summary"].retention_period_days == 90


@pytest.mark.asyncio
async def test_cutoff_boundary(store, enforcer, metrics):
    """Test that records exactly at the cutoff are kept."""
    year = timedelta(days=365)
    for delta in (year + timedelta(seconds=1), year, year - timedelta(seconds=1)):
        await store.insert_event(event_created(delta))

    policy = enforcer.policies.get("event-analytics-policy")
    assert await enforcer.execute_policy(policy, NOW) == 1
    assert await store.count_records("event_analytics") == 2
    assert metrics.sample(
        "eventanalytics_retention_deleted_total", {"record_type": "event_analytics"}
    ) == 1


@pytest.mark.asyncio
async def test_execute_policy_records_last_run(enforcer):
    """Test that executing a policy stamps last_run_at."""
    policy = enforcer.policies.get("event-analytics-policy")
    assert policy.last_run_at is None

    await enforcer.execute_policy(policy, NOW)
    assert enforcer.policies.get("event-analytics-policy").last_run_at == NOW
    # The policy value passed in is untouched
    assert policy.last_run_at is None


@pytest.mark.asyncio
async def test_disabled_policy_deletes_nothing(store, enforcer):
    """Test that a disabled policy is a no-op."""
    await store.insert_event(event_created(timedelta(days=1000)))
    policy = RetentionPolicy(
        id="off", record_type="event_analytics", retention_period_days=1, enabled=False
    )

    assert await enforcer.execute_policy(policy, NOW) == 0
    assert await store.count_records("event_analytics") == 1


@pytest.mark.asyncio
async def test_unknown_record_type(store):
    """Test that an unknown policy type deletes nothing but still records the run."""
    policies = RetentionPolicySet([
        RetentionPolicy(id="reports", record_type="reports", retention_period_days=1),
    ])
    enforcer = RetentionEnforcer(store, policies)

    assert await enforcer.execute_policy(policies.get("reports"), NOW) == 0
    assert policies.get("reports").last_run_at == NOW


@pytest.mark.asyncio
async def test_execute_all_policies(store, enforcer):
    """Test that every policy runs against its own record type."""
    await store.insert_event(event_created(timedelta(days=400)))
    await store.insert_event(event_created(timedelta(days=10)))
    await store.save_summary(summary_created(timedelta(days=800)))
    await store.save_summary(summary_created(timedelta(days=400)))

    results = await enforcer.execute_all_policies(NOW)

    assert results == {"event-analytics-policy": 1, "summary-analytics-policy": 1}
    assert await store.count_records("event_analytics") == 1
    assert await store.count_records("analytics_summary") == 1
    assert all(p.last_run_at == NOW for p in enforcer.policies.list())


@pytest.mark.asyncio
async def test_manual_cleanup(store, enforcer):
    """Test on-demand cleanup for one record type."""
    await store.insert_event(event_created(timedelta(days=400)))
    await store.save_summary(summary_created(timedelta(days=800)))

    assert await enforcer.manual_cleanup("event_analytics", NOW) == 1
    assert await store.count_records("analytics_summary") == 1


@pytest.mark.asyncio
async def test_manual_cleanup_unknown_type(enforcer):
    """Test that cleanup for a type without a policy raises."""
    with pytest.raises(PolicyNotFoundError) as exc_info:
        await enforcer.manual_cleanup("reports", NOW)
    assert str(exc_info.value) == "Policy not found for type: reports"


def test_update_policy():
    """Test whole-value policy updates."""
    policies = RetentionPolicySet()
    updated = policies.update("event_analytics", 30, enabled=False)

    assert updated.retention_period_days == 30
    assert updated.enabled is False
    assert policies.get("event-analytics-policy") == updated

    with pytest.raises(PolicyNotFoundError):
        policies.update("reports", 30, enabled=True)


def test_policy_values_are_immutable():
    """Test that policies cannot be changed in place."""
    policy = RetentionPolicySet().get("event-analytics-policy")
    with pytest.raises(Exception):
        policy.retention_period_days = 1


@pytest.mark.asyncio
async def test_retention_stats(store, enforcer):
    """Test age bucket counts without deleting anything."""
    for days in (10, 45, 100, 400):
        await store.insert_event(event_created(timedelta(days=days)))
    await store.save_summary(summary_created(timedelta(days=5)))

    stats = await enforcer.get_retention_stats(NOW)

    assert stats["event_analytics"] == {
        "total": 4,
        "older_than_30_days": 3,
        "older_than_90_days": 2,
        "older_than_1_year": 1,
    }
    assert stats["analytics_summary"]["total"] == 1
    assert stats["analytics_summary"]["older_than_30_days"] == 0
    assert await store.count_records("event_analytics") == 4
