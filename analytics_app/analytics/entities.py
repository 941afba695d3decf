"""
Entity change capture.

Governed models are registered explicitly at startup. Change events are
built during flush (delete events just before the DELETE statement), parked
on the session and dispatched only once the transaction commits. A rollback
discards them.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from flask import current_app, has_app_context
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from .celery_app import EXTENSION_KEY
from .event import Event, EventContext, EventType

PENDING_EVENTS_KEY = "analytics_pending_events"


def entity_model_mapping(db) -> Dict[str, type]:
    """Map table names (entities) to their mapped model classes."""
    mapping: Dict[str, type] = {}
    for mapper in db.Model.registry.mappers:
        model = mapper.class_
        table = getattr(mapper, "local_table", None)
        if table is None:
            continue
        mapping.setdefault(table.name, model)
    return mapping


def _active_state() -> Dict[str, Any] | None:
    if not has_app_context():
        return None
    state = current_app.extensions.get(EXTENSION_KEY)
    if not state or not state.get("enabled") or state.get("registry") is None:
        return None
    if not state["registry"].checked:
        return None
    return state


def _column_values(target: Any) -> Dict[str, Any]:
    mapper = inspect(target).mapper
    return {column.name: getattr(target, key) for key, column in mapper.columns.items()}


def _exported_change(target: Any, exported: Iterable[str]) -> bool:
    exported = set(exported)
    instance_state = inspect(target)
    for key, column in instance_state.mapper.columns.items():
        if column.name in exported and instance_state.attrs[key].history.has_changes():
            return True
    return False


def _queue_event(target: Any, event_type: EventType) -> None:
    state = _active_state()
    if state is None:
        return
    table_name = inspect(target).mapper.local_table.name
    registry = state["registry"]
    if table_name not in registry.exported_entities():
        return
    if event_type is EventType.UPDATE_ENTITY and not _exported_change(target, registry.exportable_attributes(table_name)):
        return

    built = state["builder"].build(table_name, event_type, _column_values(target), EventContext.current())
    session = object_session(target)
    if session is None:
        state["dispatcher"].send([built])
        return
    session.info.setdefault(PENDING_EVENTS_KEY, []).append(built)


def _after_insert(mapper, connection, target) -> None:
    _queue_event(target, EventType.CREATE_ENTITY)


def _after_update(mapper, connection, target) -> None:
    _queue_event(target, EventType.UPDATE_ENTITY)


def _before_delete(mapper, connection, target) -> None:
    _queue_event(target, EventType.DELETE_ENTITY)


def _after_commit(session: Session) -> None:
    pending: List[Event] = session.info.pop(PENDING_EVENTS_KEY, [])
    if not pending:
        return
    state = _active_state()
    if state is None:
        return
    state["dispatcher"].send(pending)


def _after_rollback(session: Session) -> None:
    session.info.pop(PENDING_EVENTS_KEY, None)


_MAPPER_LISTENERS = (
    ("after_insert", _after_insert),
    ("after_update", _after_update),
    ("before_delete", _before_delete),
)


def register_entity_observers(db, entities: Iterable[str]) -> List[type]:
    """
    Attach change-capture listeners to the models backing ``entities``.

    Listeners are process-wide, so registration is idempotent; whether a
    listener acts is decided per application at flush time.
    """
    models = entity_model_mapping(db)
    registered: List[type] = []
    for entity in entities:
        model = models.get(entity)
        if model is None:
            continue
        for identifier, listener in _MAPPER_LISTENERS:
            if not event.contains(model, identifier, listener):
                event.listen(model, identifier, listener)
        registered.append(model)

    if not event.contains(db.session, "after_commit", _after_commit):
        event.listen(db.session, "after_commit", _after_commit)
        event.listen(db.session, "after_rollback", _after_rollback)
    return registered
