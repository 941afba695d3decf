"""
Paginated backfill of an entity's records into the analytics sink.

``run_backfill`` snapshots the row count, splits it into primary-key ordered
windows and enqueues one ``analytics.load_entity_batch`` task per window
without waiting for them. Each task calls ``process_entity_batch``, which
re-reads its window, dispatches one ``import_entity`` event per record and,
for the final window, an ``import_completed`` marker.

Windows are computed from a count taken before any worker runs. Inserts or
deletes while a backfill is in flight can shift records across window
boundaries, so a record may be exported twice or skipped; consumers must
also tolerate duplicates because Celery delivers at least once.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Tuple

from flask import current_app

from .celery_app import enqueue_task
from .errors import UnknownEntityError
from .event import Event, EventType
from .metrics import record_backfill_processed, record_backfill_scheduled
from .state import get_analytics_config, get_dispatcher, get_entity_store, get_event_builder, get_field_registry

LOAD_ENTITY_BATCH_TASK = "analytics.load_entity_batch"


@dataclass(frozen=True)
class BatchWindow:
    entity_name: str
    batch_index: int
    offset: int
    limit: int
    total_batches: int

    @property
    def is_last(self) -> bool:
        return self.batch_index == self.total_batches - 1

    def as_task_kwargs(self) -> dict[str, object]:
        return {
            "entity_name": self.entity_name,
            "batch_index": self.batch_index,
            "offset": self.offset,
            "limit": self.limit,
            "total_batches": self.total_batches,
        }


@dataclass
class BackfillSummary:
    entity_name: str
    total_records: int
    batch_size: int
    batches_scheduled: int = 0
    task_ids: List[str] = field(default_factory=list)


@dataclass
class BatchSummary:
    entity_name: str
    batch_index: int
    total_batches: int
    records_processed: int
    events_dispatched: int
    completed_marker_sent: bool


def plan_batches(entity_name: str, total_records: int, batch_size: int) -> Tuple[BatchWindow, ...]:
    """
    Partition ``[0, total_records)`` into contiguous windows of ``batch_size``.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be a positive integer.")
    if total_records <= 0:
        return ()
    total_batches = math.ceil(total_records / batch_size)
    return tuple(
        BatchWindow(
            entity_name=entity_name,
            batch_index=index,
            offset=index * batch_size,
            limit=min(batch_size, total_records - index * batch_size),
            total_batches=total_batches,
        )
        for index in range(total_batches)
    )


def _ensure_exported(entity_name: str) -> None:
    registry = get_field_registry()
    registry.ensure_checked()
    if entity_name not in registry.exported_entities():
        raise UnknownEntityError(entity_name)


def run_backfill(entity_name: str, batch_size: int | None = None) -> BackfillSummary:
    """
    Schedule a full export of ``entity_name`` in batches; returns once every
    batch is enqueued.
    """
    _ensure_exported(entity_name)
    config = get_analytics_config()
    batch_size = config.batch_size if batch_size is None else batch_size

    total_records = get_entity_store().count(entity_name)
    windows = plan_batches(entity_name, total_records, batch_size)
    summary = BackfillSummary(entity_name=entity_name, total_records=total_records, batch_size=batch_size)

    current_app.logger.info(
        "Scheduling analytics backfill for %s: %d record(s) in %d batch(es)",
        entity_name,
        total_records,
        len(windows),
        extra={
            "analytics_entity": entity_name,
            "analytics_total_records": total_records,
            "analytics_batch_size": batch_size,
            "analytics_total_batches": len(windows),
        },
    )

    app = current_app._get_current_object()  # type: ignore[attr-defined]
    for window in windows:
        result = enqueue_task(app, LOAD_ENTITY_BATCH_TASK, kwargs=window.as_task_kwargs(), queue=config.queue)
        summary.batches_scheduled += 1
        summary.task_ids.append(result.id)

    record_backfill_scheduled(entity_name, summary.batches_scheduled)
    return summary


def build_batch_events(entity_name: str, offset: int, limit: int) -> List[Event]:
    """Re-read a window and build one ``import_entity`` event per record."""
    builder = get_event_builder()
    records = get_entity_store().fetch_window(entity_name, offset, limit)
    return [builder.build(entity_name, EventType.IMPORT_ENTITY, record) for record in records]


def process_entity_batch(
    entity_name: str,
    batch_index: int,
    offset: int,
    limit: int,
    total_batches: int,
) -> BatchSummary:
    """
    Export one backfill window. Safe to repeat: the same window yields the
    same event content on every run.
    """
    _ensure_exported(entity_name)
    window = BatchWindow(entity_name, batch_index, offset, limit, total_batches)
    dispatcher = get_dispatcher()

    events = build_batch_events(entity_name, window.offset, window.limit)
    if events:
        dispatcher.send(events)
    dispatched = len(events)

    if window.is_last:
        # Sent after the page's data so the marker never precedes it.
        dispatcher.send([get_event_builder().build_marker(entity_name)])
        dispatched += 1

    record_backfill_processed(entity_name)
    current_app.logger.info(
        "Processed analytics batch %d/%d for %s",
        batch_index + 1,
        total_batches,
        entity_name,
        extra={
            "analytics_entity": entity_name,
            "analytics_batch_index": batch_index,
            "analytics_total_batches": total_batches,
            "analytics_records_processed": len(events),
            "analytics_import_completed": window.is_last,
        },
    )
    return BatchSummary(
        entity_name=entity_name,
        batch_index=batch_index,
        total_batches=total_batches,
        records_processed=len(events),
        events_dispatched=dispatched,
        completed_marker_sent=window.is_last,
    )
