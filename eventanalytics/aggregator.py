"""Point-in-time aggregation over event sets."""
from collections import Counter
from numbers import Real
from typing import Any, Iterable
import math
from .models import AggregateResult, Event, MetricStats, TimeBounds


# Scales samples far below the float range so their sum cannot overflow
_OVERFLOW_SCALE = 2.0 ** -600


def as_finite_float(value: Any) -> float | None:
    """
    Convert a metric sample to a finite float.

    Returns None for booleans, non-numbers, NaN, infinities and integers
    too large for a float; such samples are skipped like non-numeric ones.
    """
    if not isinstance(value, Real) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number


def exact_sum(samples: list[float]) -> float:
    """Correctly rounded sum; saturates to +/-inf instead of raising on overflow."""
    try:
        # fsum is exactly rounded, so the sum does not depend on input order
        return math.fsum(samples)
    except OverflowError:
        # Scaling by a power of two is exact and keeps the sign of the true sum
        return math.copysign(math.inf, math.fsum(v * _OVERFLOW_SCALE for v in samples))


def _fold(samples: list[float]) -> MetricStats:
    if not samples:
        return MetricStats()
    total = exact_sum(samples)
    count = len(samples)
    avg = total / count
    if not math.isfinite(avg):
        # The mean of finite samples is finite even when their sum is not
        avg = math.fsum(v / count for v in samples)
    return MetricStats(
        sum=total,
        count=count,
        avg=avg,
        min=min(samples),
        max=max(samples),
    )


def aggregate(events: Iterable[Event]) -> AggregateResult:
    """
    Aggregate a set of events.

    Pure function: no I/O, input order does not affect the result.

    Args:
        events: Events to fold

    Returns:
        AggregateResult with counts, distinct actors/entities, time bounds
        and per-metric sum/count/avg/min/max
    """
    total = 0
    kind_counts: Counter[str] = Counter()
    actors: set[str] = set()
    entities: set[str] = set()
    earliest = None
    latest = None
    samples: dict[str, list[float]] = {}

    for event in events:
        total += 1
        kind_counts[event.event_kind] += 1
        if event.actor_id is not None:
            actors.add(event.actor_id)
        if event.entity_id is not None:
            entities.add(event.entity_id)

        if earliest is None or event.timestamp < earliest:
            earliest = event.timestamp
        if latest is None or event.timestamp > latest:
            latest = event.timestamp

        for name, value in (event.metrics or {}).items():
            bucket = samples.setdefault(name, [])
            # Non-numeric samples are skipped for this record only
            number = as_finite_float(value)
            if number is not None:
                bucket.append(number)

    return AggregateResult(
        total_events=total,
        event_kind_counts=dict(sorted(kind_counts.items())),
        unique_actors=len(actors),
        unique_entities=len(entities),
        time_bounds=TimeBounds(earliest=earliest, latest=latest),
        metrics={name: _fold(values) for name, values in sorted(samples.items())},
    )
