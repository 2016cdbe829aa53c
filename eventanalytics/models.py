"""Analytics data models."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import math
import uuid


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


class PeriodKind(str, Enum):
    """Calendar-aligned summary periods."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecordType(str, Enum):
    """Record types covered by retention policies."""
    EVENT_ANALYTICS = "event_analytics"
    ANALYTICS_SUMMARY = "analytics_summary"


class AccessLevel(str, Enum):
    """Privacy transform tiers."""
    PUBLIC = "public"
    USER = "user"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class SubjectRequestType(str, Enum):
    """Data subject rights request types."""
    ACCESS = "access"
    DELETION = "deletion"
    RECTIFICATION = "rectification"


# Summary.entity_type values
ENTITY_TYPE_ENTITY = "entity"
ENTITY_TYPE_USER = "user"


class EventIn(BaseModel):
    """Inbound behavioural event as received from a tracking call."""
    entity_id: str | None = Field(default=None, description="Subject the event is about")
    actor_id: str | None = Field(default=None, description="User or session performing the action")
    event_kind: str = Field(..., description="Event kind discriminator, e.g. register")
    metrics: dict[str, Any] = Field(default_factory=dict)
    event_data: dict[str, Any] = Field(default_factory=dict)
    actor_properties: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None
    session_id: str | None = None
    timestamp: datetime | None = None


class Event(BaseModel):
    """Stored event. Updates produce copies; only `processed` and `actor_id` ever change."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    entity_id: str | None = None
    actor_id: str | None = None
    event_kind: str
    metrics: dict[str, Any] = Field(default_factory=dict)
    event_data: dict[str, Any] = Field(default_factory=dict)
    actor_properties: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    processed: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp", "created_at")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @classmethod
    def from_inbound(cls, evt: EventIn, now: datetime) -> "Event":
        """Build a stored event, defaulting the timestamp to ingestion time."""
        data = evt.model_dump(exclude={"timestamp"})
        return cls(**data, timestamp=evt.timestamp or now, created_at=now)


class MetricStats(BaseModel):
    """Folded statistics for one metric name.

    `min`/`max` stay at +inf/-inf when no numeric sample was seen.
    """
    sum: float = 0.0
    count: int = 0
    avg: float = 0.0
    min: float = math.inf
    max: float = -math.inf

    @property
    def has_samples(self) -> bool:
        return self.count > 0


class TimeBounds(BaseModel):
    earliest: datetime | None = None
    latest: datetime | None = None


class AggregateResult(BaseModel):
    """Point-in-time aggregate over a set of events."""
    total_events: int = 0
    event_kind_counts: dict[str, int] = Field(default_factory=dict)
    unique_actors: int = 0
    unique_entities: int = 0
    time_bounds: TimeBounds = Field(default_factory=TimeBounds)
    metrics: dict[str, MetricStats] = Field(default_factory=dict)


class AnomalyFinding(BaseModel):
    """Result of one anomaly rule. Persisted only inside a Summary payload."""
    is_anomaly: bool = True
    confidence: float = Field(..., description="Confidence clamped to [0, 1]")
    metric_name: str
    current_value: float
    baseline_value: float
    threshold: float
    message: str

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


class Summary(BaseModel):
    """Periodic summary record.

    One summary per (entity_type, entity_id, period, period_start); stores
    upsert on that key.
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=_new_id)
    metric_type: str
    period: PeriodKind
    period_start: datetime
    period_end: datetime
    summary_data: dict[str, Any] = Field(default_factory=dict)
    entity_id: str | None = None
    entity_type: str | None = None
    anomaly_detected: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("period_start", "period_end", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def unique_key(self) -> tuple:
        return (self.entity_type, self.entity_id, self.period, self.period_start)

    @property
    def anomalies(self) -> list[dict[str, Any]]:
        return list(self.summary_data.get("anomalies") or [])

    def with_anomalies(self, findings: list[AnomalyFinding], now: datetime) -> "Summary":
        """Return a copy with findings appended and the anomaly flag set."""
        if not findings:
            return self
        anomalies = self.anomalies + [f.model_dump() for f in findings]
        return self.model_copy(
            update={
                "summary_data": {**self.summary_data, "anomalies": anomalies},
                "anomaly_detected": True,
                "updated_at": now,
            }
        )


class RetentionPolicy(BaseModel):
    """Age cutoff for one record type. Changed only by whole-value replacement."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique policy identifier")
    record_type: str = Field(..., description="Record type the policy prunes")
    retention_period_days: int = Field(..., ge=0)
    enabled: bool = True
    last_run_at: datetime | None = None
