"""
EventAnalytics - engine wiring and job runner.

Usage:
    python -m eventanalytics.main daily-summary
    python -m eventanalytics.main anomaly-scan
    python -m eventanalytics.main retention
"""
import argparse
import asyncio
import structlog
from . import __version__
from .adapters.base import EventStore
from .adapters.memory import InMemoryEventStore
from .adapters.redis_store import RedisEventStore
from .anomaly import AnomalyDetector, AnomalyThresholds
from .config import Settings, get_settings
from .jobs import JOBS, AnalyticsJobs
from .logging import setup_logging
from .metrics import Metrics
from .privacy import PrivacyTransform, Pseudonymizer, SubjectRightsService
from .retention import RetentionEnforcer, RetentionPolicySet, default_policies
from .service import AnalyticsService
from .summaries import SummaryWriter

log = structlog.get_logger()


def create_store(settings: Settings) -> EventStore:
    """
    Create the store adapter based on configuration.

    Returns:
        EventStore instance based on the STORE_ADAPTER setting
    """
    if settings.STORE_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "adapter.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured",
            )
            return InMemoryEventStore()

        log.info("adapter.selected", type="redis")
        return RedisEventStore(str(settings.REDIS_URL), settings.REDIS_KEY_PREFIX)

    log.info("adapter.selected", type="memory")
    return InMemoryEventStore()


class Engine:
    """All engine components wired to one store and one metrics registry."""

    def __init__(self, settings: Settings, store: EventStore | None = None, metrics: Metrics | None = None):
        self.settings = settings
        self.store = store or create_store(settings)
        self.metrics = metrics or Metrics(service_name="eventanalytics", version=__version__)

        pseudonymizer = Pseudonymizer(settings.PRIVACY_PSEUDONYM_KEY)
        self.privacy = PrivacyTransform(pseudonymizer)
        self.subject_rights = SubjectRightsService(self.store, pseudonymizer)
        self.service = AnalyticsService(self.store, self.privacy, self.metrics, settings.WEEK_START)
        self.summaries = SummaryWriter(self.store, self.metrics, settings.WEEK_START)
        self.detector = AnomalyDetector(self.store, AnomalyThresholds.from_settings(settings), self.metrics)
        self.retention = RetentionEnforcer(
            self.store,
            RetentionPolicySet(default_policies(settings)),
            self.metrics,
        )
        self.jobs = AnalyticsJobs(
            self.summaries,
            self.detector,
            self.retention,
            self.metrics,
            scan_lookback_days=settings.ANOMALY_SCAN_LOOKBACK_DAYS,
            window_hours=settings.ANOMALY_WINDOW_HOURS,
        )


def build_engine(settings: Settings | None = None, store: EventStore | None = None) -> Engine:
    return Engine(settings or get_settings(), store=store)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="eventanalytics",
        description="Run one analytics engine job and exit.",
    )
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(json_output=settings.LOG_JSON, level=settings.LOG_LEVEL)
    log.info("service_starting", version=__version__, env=settings.ENV, job=args.job)

    engine = build_engine(settings)
    try:
        asyncio.run(engine.jobs.run(args.job))
    except Exception:
        # job.failed has already been logged with the traceback
        return 1
    finally:
        engine.store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
