"""
Analytics blueprint endpoints for health and worker heartbeat checks.
"""

from __future__ import annotations

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request

from .celery_app import EXTENSION_KEY, get_celery_app
from .config import DEFAULT_QUEUE_NAME

analytics_blueprint = Blueprint("analytics", __name__, url_prefix="/analytics")


@analytics_blueprint.get("/health")
def analytics_healthcheck():
    """
    Report whether analytics is enabled and how events leave the process.
    """
    state = current_app.extensions.get(EXTENSION_KEY, {})
    config = state.get("config")
    registry = state.get("registry")
    payload = {
        "status": "ok",
        "enabled": state.get("enabled", False),
        "checked": registry.checked if registry is not None else False,
        "entities": list(registry.exported_entities()) if registry is not None else [],
    }
    if config is not None:
        payload.update(
            {
                "environment": config.environment,
                "log_only": config.log_only,
                "async": config.async_dispatch,
                "queue": config.queue,
            }
        )
    return jsonify(payload), 200


@analytics_blueprint.get("/worker_health")
def analytics_worker_health():
    """
    Validate analytics worker availability via the heartbeat task.
    """
    state = current_app.extensions.get(EXTENSION_KEY, {})
    enabled = state.get("enabled", False)
    config = state.get("config")
    timeout_seconds = float(request.args.get("timeout", 5))

    payload = {
        "analytics_enabled": enabled,
        "queue": config.queue if config is not None else DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not enabled:
        payload["status"] = "disabled"
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get("analytics.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["status"] = "ok"
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        return jsonify(payload), 200
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    except Exception as exc:  # pragma: no cover - surfaced to the caller
        current_app.logger.exception("Analytics worker health check failed.", exc_info=exc)
        payload["status"] = "error"
        payload["error"] = str(exc)
        return jsonify(payload), 500
