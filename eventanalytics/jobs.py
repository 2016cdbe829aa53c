"""Callable entry points for an external scheduler.

The engine carries no knowledge of cadence: a timer, cron or queue invokes
these coroutines. Each run gets a run id bound into the structlog context.
"""
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Awaitable, Callable
import time
import uuid
import structlog
from .anomaly import AnomalyDetector
from .metrics import Metrics
from .models import PeriodKind, utcnow
from .retention import RetentionEnforcer
from .summaries import SummaryWriter

log = structlog.get_logger()

# Context variable holding the current run id across the async call chain
run_id_var: ContextVar[str] = ContextVar("run_id", default="")

# CLI job name -> AnalyticsJobs method
JOBS = {
    "daily-summary": "run_daily_summary",
    "weekly-summary": "run_weekly_summary",
    "monthly-summary": "run_monthly_summary",
    "anomaly-scan": "scan_all_for_anomalies",
    "retention": "run_retention",
}


def get_run_id() -> str:
    """Get the current run id from context."""
    return run_id_var.get()


class AnalyticsJobs:
    """Scheduler-facing wrappers around the engine components."""

    def __init__(
        self,
        summaries: SummaryWriter,
        detector: AnomalyDetector,
        retention: RetentionEnforcer,
        metrics: Metrics | None = None,
        clock: Callable[[], datetime] = utcnow,
        scan_lookback_days: int = 7,
        window_hours: int = 24,
    ):
        self._summaries = summaries
        self._detector = detector
        self._retention = retention
        self._metrics = metrics or Metrics()
        self._clock = clock
        self._scan_lookback_days = scan_lookback_days
        self._window_hours = window_hours

    async def run_daily_summary(self):
        return await self._run("daily_summary", lambda now: self._summaries.run_period(PeriodKind.DAILY, now))

    async def run_weekly_summary(self):
        return await self._run("weekly_summary", lambda now: self._summaries.run_period(PeriodKind.WEEKLY, now))

    async def run_monthly_summary(self):
        return await self._run("monthly_summary", lambda now: self._summaries.run_period(PeriodKind.MONTHLY, now))

    async def scan_all_for_anomalies(self):
        return await self._run(
            "anomaly_scan",
            lambda now: self._detector.scan_all(self._scan_lookback_days, now, self._window_hours),
        )

    async def run_retention(self):
        return await self._run("retention", self._retention.execute_all_policies)

    async def run(self, name: str):
        """Run a job by its CLI name (see JOBS)."""
        if name not in JOBS:
            raise ValueError(f"Unknown job: {name}")
        return await getattr(self, JOBS[name])()

    async def _run(self, job: str, fn: Callable[[datetime], Awaitable[Any]]):
        run_id = str(uuid.uuid4())
        token = run_id_var.set(run_id)
        structlog.contextvars.bind_contextvars(run_id=run_id, job=job)

        now = self._clock()
        started = time.perf_counter()
        log.info("job.started", now=now.isoformat())
        try:
            result = await fn(now)
        except Exception as e:
            self._metrics.observe_job(job, "failed", time.perf_counter() - started)
            log.error(
                "job.failed",
                error=str(e),
                error_type=e.__class__.__name__,
                exc_info=True,
            )
            raise
        else:
            duration = time.perf_counter() - started
            self._metrics.observe_job(job, "ok", duration)
            log.info("job.completed", duration_ms=round(duration * 1000, 2))
            return result
        finally:
            structlog.contextvars.unbind_contextvars("run_id", "job")
            run_id_var.reset(token)
