"""Prometheus metrics helpers for analytics export."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter

_events_dispatched = Counter(
    "analytics_events_dispatched_total",
    "Analytics events handed to the dispatcher by event type and delivery mode.",
    ["event_type", "mode"],
)
_dispatch_failures = Counter(
    "analytics_dispatch_failures_total",
    "Analytics dispatch attempts that raised, by delivery mode.",
    ["mode"],
)
_backfill_batches_scheduled = Counter(
    "analytics_backfill_batches_scheduled_total",
    "Backfill batches enqueued per entity.",
    ["entity"],
)
_backfill_batches_processed = Counter(
    "analytics_backfill_batches_processed_total",
    "Backfill batches processed by workers per entity.",
    ["entity"],
)

DispatchMode = Literal["async", "inline"]


def record_events_dispatched(event_type: str, mode: DispatchMode, count: int = 1) -> None:
    _events_dispatched.labels(event_type=event_type, mode=mode).inc(count)


def record_dispatch_failure(mode: DispatchMode) -> None:
    _dispatch_failures.labels(mode=mode).inc()


def record_backfill_scheduled(entity: str, batches: int) -> None:
    if batches:
        _backfill_batches_scheduled.labels(entity=entity).inc(batches)


def record_backfill_processed(entity: str) -> None:
    _backfill_batches_processed.labels(entity=entity).inc()
