"""Tests for event tracking and read queries."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
import pytest
from eventanalytics.adapters.memory import InMemoryEventStore
from eventanalytics.metrics import Metrics
from eventanalytics.models import EventIn
from eventanalytics.privacy import PrivacyOptions, PrivacyTransform, Pseudonymizer
from eventanalytics.service import AnalyticsService

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def service(store, metrics):
    return AnalyticsService(store, PrivacyTransform(Pseudonymizer(key="k")), metrics)


async def track(service, kind, hours_ago, **kwargs):
    return await service.track_event(
        EventIn(event_kind=kind, timestamp=NOW - timedelta(hours=hours_ago), **kwargs),
        now=NOW,
    )


@pytest.mark.asyncio
async def test_track_event_defaults_timestamp(service, store, metrics):
    """Test that a missing timestamp becomes the ingestion time."""
    event = await service.track_event(EventIn(event_kind="view", entity_id="e1"), now=NOW)

    assert event.timestamp == NOW
    assert event.created_at == NOW
    assert event.processed is False
    assert len(await store.find_by_window(NOW, NOW)) == 1
    assert metrics.sample("eventanalytics_events_tracked_total", {"event_kind": "view"}) == 1


@pytest.mark.asyncio
async def test_track_event_keeps_client_timestamp(service):
    """Test that a supplied timestamp is preserved."""
    ts = datetime(2026, 5, 19, 8, 0)
    event = await service.track_event(EventIn(event_kind="view", timestamp=ts), now=NOW)
    assert event.timestamp == ts.replace(tzinfo=timezone.utc)
    assert event.created_at == NOW


@pytest.mark.asyncio
async def test_query_filters_and_aggregates(service):
    """Test a filtered query page with aggregates."""
    await track(service, "register", 1, entity_id="e1", actor_id="u1", metrics={"amount": 10})
    await track(service, "register", 2, entity_id="e1", actor_id="u2", metrics={"amount": 30})
    await track(service, "view", 3, entity_id="e1", actor_id="u1")
    await track(service, "register", 4, entity_id="e2", actor_id="u1")
    await track(service, "register", 24 * 10, entity_id="e1", actor_id="u1")

    result = await service.query(entity_id="e1", event_kind="register", now=NOW)

    assert result["total"] == 2
    assert [e.actor_id for e in result["data"]] == ["u2", "u1"]
    assert result["aggregates"].total_events == 2
    assert result["aggregates"].metrics["amount"].avg == 20

    by_actor = await service.query(actor_id="u1", now=NOW)
    assert by_actor["total"] == 3


@pytest.mark.asyncio
async def test_query_explicit_window_and_paging(service):
    """Test explicit bounds and offset/limit."""
    for hours_ago in range(5):
        await track(service, "view", hours_ago)

    result = await service.query(
        start=NOW - timedelta(hours=3),
        end=NOW,
        time_period="last_30_days",
        limit=2,
        offset=1,
        now=NOW,
    )
    assert result["total"] == 2
    assert result["aggregates"].total_events == 2
    assert [e.timestamp for e in result["data"]] == [NOW - timedelta(hours=2), NOW - timedelta(hours=1)]


@pytest.mark.asyncio
async def test_dashboard_and_entity_metrics(service):
    """Test period aggregates across all entities and for one entity."""
    await track(service, "view", 1, entity_id="e1", actor_id="u1")
    await track(service, "share", 2, entity_id="e2", actor_id="u2")
    await track(service, "view", 24 * 20, entity_id="e1", actor_id="u3")

    dashboard = await service.get_dashboard_metrics(now=NOW)
    assert dashboard.total_events == 2
    assert dashboard.unique_entities == 2

    monthly = await service.get_dashboard_metrics("last_30_days", now=NOW)
    assert monthly.total_events == 3

    entity = await service.get_entity_metrics("e1", "last_30_days", now=NOW)
    assert entity.total_events == 2
    assert entity.unique_actors == 2


@pytest.mark.asyncio
async def test_actor_analytics_keeps_own_data(service):
    """Test that an actor reading their own history sees it unredacted."""
    await track(service, "view", 1, actor_id="u1", event_data={"email": "jane@example.com"})
    await track(service, "view", 2, actor_id="u2")

    views = await service.get_actor_analytics(
        "u1", "user", PrivacyOptions(anonymize_user_data=True, mask_sensitive_fields=True)
    )
    assert len(views) == 1
    assert views[0]["actor_id"] == "u1"
    assert views[0]["event_data"]["email"] == "j***@e***"


@pytest.mark.asyncio
async def test_entity_analytics_privacy_scoped(service):
    """Test an organizer read of one entity's events."""
    await track(service, "view", 1, entity_id="e1", actor_id="u1")
    await track(service, "view", 2, entity_id="e1", actor_id="u2")
    await track(service, "view", 3, entity_id="e2", actor_id="u3")

    views = await service.get_entity_analytics(
        "e1",
        requester_id="org-1",
        access_level="organizer",
        options=PrivacyOptions(anonymize_user_data=True),
    )
    assert len(views) == 2
    assert all(v["actor_id"].startswith("anon_") for v in views)
    # Newest first
    assert views[0]["timestamp"] > views[1]["timestamp"]


@pytest.mark.asyncio
async def test_entity_analytics_has_no_time_window(service):
    """Test that old events are part of the entity read."""
    await track(service, "register", 24 * 40, entity_id="e1", actor_id="u1")
    await track(service, "view", 24 * 400, entity_id="e1", actor_id="u2")
    await track(service, "view", 1, entity_id="e1", actor_id="u3")

    views = await service.get_entity_analytics("e1", None, "admin")

    assert [v["actor_id"] for v in views] == ["u3", "u1", "u2"]


@pytest.mark.asyncio
async def test_entity_analytics_limit(service):
    """Test that the entity read keeps only the newest events."""
    with patch("eventanalytics.service.ENTITY_READ_LIMIT", 2):
        for hours_ago in (1, 2, 3):
            await track(service, "view", hours_ago, entity_id="e1", actor_id=f"u{hours_ago}")
        views = await service.get_entity_analytics("e1", None, "admin")

    assert [v["actor_id"] for v in views] == ["u1", "u2"]
