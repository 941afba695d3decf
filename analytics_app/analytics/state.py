"""
Accessors for analytics components stored on the Flask extension state.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import Flask, current_app

from .celery_app import EXTENSION_KEY
from .config import AnalyticsConfig
from .dispatcher import Dispatcher
from .errors import ConfigurationError
from .event import EventBuilder
from .fields import FieldRegistry
from .sink import AnalyticsSinkClient, build_sink_client
from .store import EntityStore


def _resolve_app(app: Flask | None) -> Flask:
    if app is not None:
        return app
    return current_app._get_current_object()  # type: ignore[attr-defined]


def get_analytics_state(app: Flask | None = None) -> Dict[str, Any]:
    state = _resolve_app(app).extensions.get(EXTENSION_KEY)
    if not state:
        raise ConfigurationError("Analytics has not been initialised; call init_analytics(app) first.")
    return state


def _component(name: str, app: Flask | None) -> Any:
    state = get_analytics_state(app)
    component = state.get(name)
    if component is None:
        raise ConfigurationError(f"Analytics component '{name}' is unavailable; is ANALYTICS_ENABLED set?")
    return component


def get_analytics_config(app: Flask | None = None) -> AnalyticsConfig:
    return _component("config", app)


def get_field_registry(app: Flask | None = None) -> FieldRegistry:
    return _component("registry", app)


def get_event_builder(app: Flask | None = None) -> EventBuilder:
    return _component("builder", app)


def get_dispatcher(app: Flask | None = None) -> Dispatcher:
    return _component("dispatcher", app)


def get_entity_store(app: Flask | None = None) -> EntityStore:
    return _component("store", app)


def get_sink_client(app: Flask | None = None) -> AnalyticsSinkClient:
    """Return the cached sink client, building it on first use."""
    app = _resolve_app(app)
    state = get_analytics_state(app)
    client = state.get("sink_client")
    if client is None:
        client = build_sink_client(_component("config", app), logger=app.logger)
        state["sink_client"] = client
    return client
