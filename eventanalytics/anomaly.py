"""Anomaly detection against historical baselines."""
from datetime import datetime, timedelta
from typing import Any, Iterable
import math
import statistics
import structlog
from pydantic import BaseModel
from .adapters.base import EventStore
from .aggregator import as_finite_float
from .config import Settings
from .metrics import Metrics
from .models import ENTITY_TYPE_ENTITY, AnomalyFinding, Event, ensure_utc, utcnow

log = structlog.get_logger()

REGISTER_KINDS = ("register",)
ATTENDANCE_KINDS = ("attend", "check_in")
ENGAGEMENT_KINDS = ("view", "interact", "share", "feedback")


class AnomalyThresholds(BaseModel):
    """Thresholds for the baseline comparison rules."""
    min_events: int = 3
    baseline_days: int = 7
    rate_threshold_pct: float = 50.0
    engagement_threshold_pct: float = 60.0
    attendance_baseline_ratio: float = 0.7
    attendance_threshold: float = 0.3
    # Ratio deviation that maps to full confidence
    attendance_confidence_span: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnomalyThresholds":
        return cls(
            min_events=settings.ANOMALY_MIN_EVENTS,
            baseline_days=settings.ANOMALY_BASELINE_DAYS,
            rate_threshold_pct=settings.ANOMALY_RATE_THRESHOLD_PCT,
            engagement_threshold_pct=settings.ANOMALY_ENGAGEMENT_THRESHOLD_PCT,
            attendance_baseline_ratio=settings.ANOMALY_ATTENDANCE_BASELINE_RATIO,
            attendance_threshold=settings.ANOMALY_ATTENDANCE_THRESHOLD,
        )


def detect_statistical(values: Iterable[float], sigma: float = 2) -> list[float]:
    """
    Find values more than `sigma` population standard deviations from the mean.

    Args:
        values: Numeric series
        sigma: Distance threshold in standard deviations

    Returns:
        Outlying values in input order; empty for fewer than 3 values or a
        zero standard deviation. NaN, infinities and integers too large for
        a float are left out of the series.
    """
    data = [
        (value, number)
        for value, number in ((v, as_finite_float(v)) for v in values)
        if number is not None
    ]
    if len(data) < 3:
        return []

    # Work at a power-of-two scale near 1 so sums of huge values cannot overflow
    exponent = math.frexp(max(abs(number) for _, number in data))[1]
    scaled = [math.ldexp(number, -exponent) for _, number in data]

    mean = statistics.fmean(scaled)
    std_dev = statistics.pstdev(scaled, mu=mean)
    if std_dev == 0:
        return []

    lower = mean - sigma * std_dev
    upper = mean + sigma * std_dev
    return [value for (value, _), s in zip(data, scaled) if s < lower or s > upper]


def _count_kinds(events: list[Event], kinds: tuple[str, ...]) -> int:
    return sum(1 for e in events if e.event_kind in kinds)


class AnomalyDetector:
    """
    Compares an entity's recent activity with its historical baseline.

    Rules run independently and are reported in a fixed order: registration
    rate, attendance ratio, engagement.
    """

    def __init__(
        self,
        store: EventStore,
        thresholds: AnomalyThresholds | None = None,
        metrics: Metrics | None = None,
    ):
        self._store = store
        self.thresholds = thresholds or AnomalyThresholds()
        self._metrics = metrics or Metrics()

    async def detect_for_entity(
        self,
        entity_id: str,
        window_hours: int = 24,
        now: datetime | None = None,
    ) -> list[AnomalyFinding]:
        """
        Run every rule for one entity over the trailing window.

        Args:
            entity_id: Entity to inspect
            window_hours: Size of the current window
            now: End of the window (defaults to the current time)

        Returns:
            Findings in rule order; empty when the window holds too few events
        """
        now = ensure_utc(now or utcnow())
        start = now - timedelta(hours=window_hours)
        events = await self._store.find_by_window(start, now, entity_id=entity_id)

        if len(events) < self.thresholds.min_events:
            log.debug(
                "anomaly.insufficient_data",
                entity_id=entity_id,
                events=len(events),
                required=self.thresholds.min_events,
            )
            return []

        findings = []
        for finding in (
            await self._registration_rate(events, entity_id, now),
            self._attendance_ratio(events),
            await self._engagement(events, entity_id, now),
        ):
            if finding is not None:
                findings.append(finding)
                self._metrics.record_anomaly(finding.metric_name)
                log.info(
                    "anomaly.detected",
                    entity_id=entity_id,
                    metric=finding.metric_name,
                    confidence=finding.confidence,
                )
        return findings

    async def _historical_average(
        self,
        entity_id: str,
        kinds: tuple[str, ...],
        now: datetime,
    ) -> float:
        """Per-day average count of the given kinds over the baseline period."""
        days = self.thresholds.baseline_days
        count = await self._store.count_by_window(entity_id, kinds, now - timedelta(days=days), now)
        return count / days

    def _rate_change(
        self,
        metric_name: str,
        label: str,
        current: int,
        baseline: float,
        threshold: float,
        entity_id: str,
    ) -> AnomalyFinding | None:
        if baseline == 0:
            log.debug("anomaly.no_baseline", entity_id=entity_id, metric=metric_name)
            return None

        change = (current - baseline) / baseline * 100
        if abs(change) <= threshold:
            return None

        return AnomalyFinding(
            confidence=min(abs(change) / 100, 1),
            metric_name=metric_name,
            current_value=current,
            baseline_value=baseline,
            threshold=threshold,
            message=f"{label} changed by {change:.2f}% compared to historical average",
        )

    async def _registration_rate(
        self,
        events: list[Event],
        entity_id: str,
        now: datetime,
    ) -> AnomalyFinding | None:
        baseline = await self._historical_average(entity_id, REGISTER_KINDS, now)
        return self._rate_change(
            "registration_rate",
            "Registration rate",
            _count_kinds(events, REGISTER_KINDS),
            baseline,
            self.thresholds.rate_threshold_pct,
            entity_id,
        )

    def _attendance_ratio(self, events: list[Event]) -> AnomalyFinding | None:
        registrations = _count_kinds(events, REGISTER_KINDS)
        if registrations == 0:
            # Without registrations there is no expected attendance
            return None

        attendance = _count_kinds(events, ATTENDANCE_KINDS)
        ratio = attendance / max(registrations, 1)
        baseline = self.thresholds.attendance_baseline_ratio
        threshold = self.thresholds.attendance_threshold
        deviation = abs(ratio - baseline)
        if deviation <= threshold:
            return None

        return AnomalyFinding(
            confidence=min(deviation / self.thresholds.attendance_confidence_span, 1),
            metric_name="attendance_rate",
            current_value=ratio,
            baseline_value=baseline,
            threshold=threshold,
            message=(
                f"Attendance rate of {ratio * 100:.2f}% deviates from "
                f"expected {baseline * 100:g}%"
            ),
        )

    async def _engagement(
        self,
        events: list[Event],
        entity_id: str,
        now: datetime,
    ) -> AnomalyFinding | None:
        baseline = await self._historical_average(entity_id, ENGAGEMENT_KINDS, now)
        return self._rate_change(
            "engagement_score",
            "Engagement score",
            _count_kinds(events, ENGAGEMENT_KINDS),
            baseline,
            self.thresholds.engagement_threshold_pct,
            entity_id,
        )

    def detect_statistical(self, values: Iterable[float], sigma: float = 2) -> list[float]:
        """Statistical outliers in an arbitrary series (see module function)."""
        return detect_statistical(values, sigma)

    async def scan_all(
        self,
        lookback_days: int = 7,
        now: datetime | None = None,
        window_hours: int = 24,
    ) -> dict[str, list[AnomalyFinding]]:
        """
        Run detection for every entity seen in the lookback period.

        Findings are appended to the entity's latest summary. A failure for
        one entity is logged and the scan moves on.

        Args:
            lookback_days: How far back to look for active entities
            now: Reference time (defaults to the current time)
            window_hours: Window passed to detect_for_entity

        Returns:
            Mapping of entity id to findings, for entities with findings
        """
        now = ensure_utc(now or utcnow())
        entity_ids = await self._store.distinct_entity_ids(now - timedelta(days=lookback_days))
        log.info("anomaly.scan_started", entities=len(entity_ids), lookback_days=lookback_days)

        flagged: dict[str, list[AnomalyFinding]] = {}
        failures = 0
        for entity_id in entity_ids:
            try:
                findings = await self.detect_for_entity(entity_id, window_hours, now)
                if not findings:
                    continue
                flagged[entity_id] = findings
                log.warning(
                    "anomaly.entity_flagged",
                    entity_id=entity_id,
                    metrics=[f.metric_name for f in findings],
                )
                await self._mark_anomalies_in_summary(entity_id, findings, now)
            except Exception as e:
                failures += 1
                self._metrics.record_scan_failure()
                log.error(
                    "anomaly.entity_scan_failed",
                    entity_id=entity_id,
                    error=str(e),
                    error_type=e.__class__.__name__,
                    exc_info=True,
                )

        log.info(
            "anomaly.scan_completed",
            entities=len(entity_ids),
            flagged=len(flagged),
            failures=failures,
        )
        return flagged

    async def _mark_anomalies_in_summary(
        self,
        entity_id: str,
        findings: list[AnomalyFinding],
        now: datetime,
    ) -> bool:
        summary = await self._store.find_latest_summary(entity_id, ENTITY_TYPE_ENTITY)
        if summary is None:
            # Nothing to attach the findings to
            log.info("anomaly.no_summary", entity_id=entity_id, findings=len(findings))
            return False

        await self._store.save_summary(summary.with_anomalies(findings, now))
        return True

    async def get_entity_anomalies(
        self,
        entity_id: str,
        days_back: int = 30,
        now: datetime | None = None,
    ) -> list[AnomalyFinding]:
        """Findings stored on the entity's latest anomalous summary within `days_back`."""
        now = ensure_utc(now or utcnow())
        summary = await self._store.find_latest_summary(
            entity_id,
            ENTITY_TYPE_ENTITY,
            anomalous_only=True,
            since=now - timedelta(days=days_back),
        )
        if summary is None:
            return []
        return [AnomalyFinding.model_validate(a) for a in summary.anomalies]

    async def get_system_anomalies(
        self,
        days_back: int = 7,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Every anomalous summary created within `days_back`, newest first."""
        now = ensure_utc(now or utcnow())
        summaries = await self._store.find_summaries(
            anomalous_only=True,
            since=now - timedelta(days=days_back),
        )
        return [
            {
                "id": s.id,
                "entity_type": s.entity_type,
                "entity_id": s.entity_id,
                "anomalies": s.anomalies,
                "detected_at": s.updated_at,
            }
            for s in summaries
        ]
