"""
Analytics Celery tasks.

Every task runs inside the Flask application context (see
``celery_app.FlaskContextTask``). Tasks are acknowledged late, so a task may
run more than once; both delivery and batch processing are safe to repeat.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from .backfill import process_entity_batch
from .dispatcher import deliver_events
from .errors import SinkTransientError
from .state import get_analytics_config, get_sink_client

SEND_EVENTS_MAX_RETRIES = 5


@shared_task(name="analytics.healthcheck", bind=True)
def analytics_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(
    name="analytics.send_events",
    bind=True,
    autoretry_for=(SinkTransientError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    max_retries=SEND_EVENTS_MAX_RETRIES,
)
def send_events(self, *, events: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Deliver a batch of serialised events to the sink (or the log in log-only mode).
    """
    config = get_analytics_config()
    delivered = deliver_events(
        events,
        config=config,
        sink_factory=get_sink_client,
        logger=current_app.logger,
    )
    return {
        "received": len(events),
        "delivered": delivered,
        "log_only": config.log_only,
        "attempt": self.request.retries,
    }


@shared_task(name="analytics.load_entity_batch", bind=True)
def load_entity_batch(
    self,
    *,
    entity_name: str,
    batch_index: int,
    offset: int,
    limit: int,
    total_batches: int,
) -> dict[str, Any]:
    """
    Export one backfill window for ``entity_name``.
    """
    try:
        summary = process_entity_batch(entity_name, batch_index, offset, limit, total_batches)
    except Exception as exc:
        current_app.logger.exception(
            "Analytics batch failed",
            extra={
                "analytics_entity": entity_name,
                "analytics_batch_index": batch_index,
                "analytics_error": str(exc),
            },
        )
        raise
    return asdict(summary)
