"""
Governed analytics export.

``init_analytics`` resolves configuration, validates field governance against
the live schema and wires dispatch, change capture, Celery, CLI and the
health blueprint. Governance failures abort startup.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Dict

from flask import Flask

from analytics_app.models import db

from .celery_app import EXTENSION_KEY, enqueue_task, ensure_celery_app, get_celery_app
from .cli import analytics_cli, get_disabled_analytics_group
from .config import AnalyticsConfig
from .dispatcher import Dispatcher
from .entities import register_entity_observers
from .errors import (
    ClassificationGap,
    ConfigurationError,
    ConflictingClassification,
    DispatchFailure,
    StaleClassification,
)
from .event import Event, EventBuilder, EventContext, EventType, anonymise
from .fields import FieldClassification, FieldRegistry
from .state import (
    get_analytics_config,
    get_analytics_state,
    get_dispatcher,
    get_entity_store,
    get_event_builder,
    get_field_registry,
    get_sink_client,
)
from .store import SQLAlchemyEntityStore
from .views import analytics_blueprint

__all__ = [
    "init_analytics",
    "EXTENSION_KEY",
    "AnalyticsConfig",
    "ClassificationGap",
    "ConfigurationError",
    "ConflictingClassification",
    "DispatchFailure",
    "Event",
    "EventBuilder",
    "EventContext",
    "EventType",
    "FieldClassification",
    "FieldRegistry",
    "StaleClassification",
    "anonymise",
    "get_analytics_config",
    "get_analytics_state",
    "get_celery_app",
    "get_dispatcher",
    "get_entity_store",
    "get_event_builder",
    "get_field_registry",
    "get_sink_client",
]


def _ensure_extension_state(app: Flask) -> Dict[str, Any]:
    return app.extensions.setdefault(
        EXTENSION_KEY,
        {
            "enabled": False,
            "config": None,
            "registry": None,
            "builder": None,
            "dispatcher": None,
            "store": None,
            "sink_client": None,
            "celery_app": None,
            "observed_models": (),
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = analytics_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(analytics_cli)
    else:
        app.cli.add_command(get_disabled_analytics_group())


def init_analytics(app: Flask) -> None:
    """
    Initialise analytics export for ``app``.

    Must run inside an application context once the database schema exists,
    because the field governance check introspects the live tables.
    """
    config = AnalyticsConfig.from_mapping(app.config)
    state = _ensure_extension_state(app)
    state.update({"enabled": False, "config": config, "sink_client": None})

    if not config.enabled:
        state.update({"registry": None, "builder": None, "dispatcher": None, "store": None})
        _set_cli(app, enabled=False)
        app.logger.info("Analytics disabled via ANALYTICS_ENABLED flag; skipping registration.")
        return

    config.validate()

    store = SQLAlchemyEntityStore(db)
    registry = FieldRegistry.from_paths(
        allowlist_path=config.allowlist_path,
        allowlist_pii_path=config.allowlist_pii_path,
        blocklist_path=config.blocklist_path,
        schema_provider=store,
    )
    try:
        registry.check()
    except ConfigurationError:
        app.logger.error("Analytics field governance check failed; refusing to start.", exc_info=True)
        raise

    state.update(
        {
            "store": store,
            "registry": registry,
            "builder": EventBuilder(registry, config),
            "dispatcher": Dispatcher(
                config,
                sink_factory=partial(get_sink_client, app),
                enqueue=partial(enqueue_task, app),
                logger=app.logger,
            ),
        }
    )
    ensure_celery_app(app, state)
    state["observed_models"] = tuple(register_entity_observers(db, registry.exported_entities()))

    if analytics_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(analytics_blueprint)
    state["enabled"] = True
    _set_cli(app, enabled=True)

    app.logger.info(
        "Analytics enabled for entities: %s",
        ", ".join(registry.exported_entities()) or "none",
        extra={
            "analytics_environment": config.environment,
            "analytics_log_only": config.log_only,
            "analytics_async": config.async_dispatch,
            "analytics_queue": config.queue,
        },
    )
