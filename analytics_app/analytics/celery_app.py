"""
Celery wiring for the analytics worker.

One Celery app is built per Flask app and cached in the analytics extension
state. Without ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` the broker and
result backend share a SQLite file, so backfills run locally without Redis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from celery.result import AsyncResult
from flask import Flask
from kombu import Queue

from .config import DEFAULT_QUEUE_NAME

DEFAULT_SQLITE_FILENAME = "celery.sqlite"
EXTENSION_KEY = "analytics"
TASK_MODULES = ("analytics_app.analytics.tasks",)


def _sqlite_transport_urls(app: Flask) -> tuple[str, str]:
    path = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    location = path.as_posix()
    return f"sqla+sqlite:///{location}", f"db+sqlite:///{location}"


def _extra_celery_config(app: Flask) -> Mapping[str, Any]:
    """``CELERY_CONFIG`` as a mapping; accepts a dict or a JSON object string."""
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
        return {}
    if not isinstance(parsed, Mapping):
        app.logger.warning("CELERY_CONFIG must be a JSON object; ignoring value.")
        return {}
    return parsed


def create_celery_app(app: Flask) -> Celery:
    """Create a Celery app whose tasks run inside ``app``'s application context."""
    default_broker, default_backend = _sqlite_transport_urls(app)
    broker_url = app.config.get("CELERY_BROKER_URL") or default_broker
    result_backend = app.config.get("CELERY_RESULT_BACKEND") or default_backend
    queue_name = app.config.get("ANALYTICS_QUEUE") or DEFAULT_QUEUE_NAME

    celery_app = Celery(app.import_name, broker=broker_url, backend=result_backend, include=TASK_MODULES)
    celery_app.conf.update(
        task_default_queue=queue_name,
        task_queues=[Queue(queue_name)],
        # At-least-once: a task is acknowledged only after it finishes.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        worker_hijack_root_logger=False,
    )
    extra = _extra_celery_config(app)
    if extra:
        celery_app.conf.update(extra)

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # One line per received task drowns out backfill progress.
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()

    app.logger.info(
        "Analytics Celery app ready on queue %s",
        queue_name,
        extra={"analytics_queue": queue_name, "analytics_celery_broker_url": broker_url},
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return the cached Celery app from ``state``, creating it on first use."""
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """The Celery app for ``app``, or ``None`` while analytics is disabled."""
    state = app.extensions.get(EXTENSION_KEY)
    if not state or not (state.get("enabled") or state.get("celery_app")):
        return None
    return ensure_celery_app(app, state)


def enqueue_task(app: Flask, task_name: str, *, kwargs: Mapping[str, Any], queue: str | None = None) -> AsyncResult:
    """
    Enqueue a registered analytics task for asynchronous, at-least-once execution.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise RuntimeError("Analytics Celery app is unavailable; is ANALYTICS_ENABLED set?")
    task = celery_app.tasks.get(task_name)
    if task is None:
        raise RuntimeError(f"Analytics task '{task_name}' is not registered.")
    options: dict[str, Any] = {}
    if queue:
        options["queue"] = queue
    return task.apply_async(kwargs=dict(kwargs), **options)
