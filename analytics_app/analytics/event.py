"""
Analytics event model and construction.

Events are built from raw attribute maps by filtering through the field
registry: only allowlisted attributes survive, PII attributes are anonymised
and every value is wrapped in a list to match the sink schema.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Tuple
from uuid import UUID

from flask import g, has_request_context

from .config import AnalyticsConfig
from .fields import FieldClassification, FieldRegistry

Scalar = str | int | float | bool


class EventType(str, enum.Enum):
    CREATE_ENTITY = "create_entity"
    UPDATE_ENTITY = "update_entity"
    DELETE_ENTITY = "delete_entity"
    IMPORT_ENTITY = "import_entity"
    IMPORT_COMPLETED = "import_completed"


def anonymise(value: Any) -> str:
    """One-way, deterministic pseudonym for a PII value (SHA-256 of its text form)."""
    text = "" if value is None else str(value)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _serialize_scalar(value: Any) -> Scalar:
    if isinstance(value, bool) or isinstance(value, (int, float, str)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat(timespec="microseconds")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return _serialize_scalar(value.value)
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return json.dumps(value, default=str, sort_keys=True, separators=(",", ":"))
    return str(value)


def _wrap_value(value: Any) -> Tuple[Scalar, ...]:
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return tuple(_serialize_scalar(item) for item in items if item is not None)
    return (_serialize_scalar(value),)


@dataclass(frozen=True)
class DataItem:
    key: str
    value: Tuple[Scalar, ...]

    def as_json(self) -> Dict[str, Any]:
        return {"key": self.key, "value": list(self.value)}


@dataclass(frozen=True)
class Event:
    """A single privacy-safe analytics event, immutable once built."""

    environment: str
    entity_name: str
    event_type: EventType
    occurred_at: datetime
    user_id: str | None = None
    request_uuid: str | None = None
    data: Tuple[DataItem, ...] = field(default_factory=tuple)

    def as_json(self) -> Dict[str, Any]:
        """Serialise to the sink wire shape."""
        return {
            "environment": self.environment,
            "entity_table_name": self.entity_name,
            "event_type": self.event_type.value,
            "occurred_at": self.occurred_at.isoformat(timespec="microseconds"),
            "user_id": self.user_id,
            "request_uuid": self.request_uuid,
            "data": [item.as_json() for item in self.data],
        }

    def content(self) -> Dict[str, Any]:
        """Wire payload without capture-time fields, for content comparisons."""
        payload = self.as_json()
        payload.pop("occurred_at")
        return payload


@dataclass(frozen=True)
class EventContext:
    """Ambient request information attached to every event."""

    user: Any = None
    request_uuid: str | None = None

    @classmethod
    def current(cls) -> "EventContext":
        """Capture the user and request uuid of the active request, if any."""
        if not has_request_context():
            return cls()

        from flask_login import current_user

        user = current_user if getattr(current_user, "is_authenticated", False) else None
        return cls(user=user, request_uuid=getattr(g, "request_uuid", None))


class EventBuilder:
    """Turns raw attribute maps into governed events."""

    def __init__(self, registry: FieldRegistry, config: AnalyticsConfig) -> None:
        self._registry = registry
        self._config = config

    def extract_attributes(self, entity_name: str, attributes: Mapping[str, Any]) -> List[DataItem]:
        """
        Keep only exported attributes, anonymising PII, in the order of the source map.
        """
        exported = self._registry.exportable_attributes(entity_name)
        items: List[DataItem] = []
        for key, value in attributes.items():
            if key not in exported or value is None:
                continue
            if self._registry.classify(entity_name, key) is FieldClassification.EXPORT_PII:
                if isinstance(value, (list, tuple, set, frozenset)):
                    value = [anonymise(item) for item in _wrap_value(value)]
                else:
                    value = anonymise(value)
            wrapped = _wrap_value(value)
            if wrapped:
                items.append(DataItem(key=key, value=wrapped))
        return items

    def build(
        self,
        entity_name: str,
        event_type: EventType,
        attributes: Mapping[str, Any],
        context: EventContext | None = None,
        occurred_at: datetime | None = None,
    ) -> Event:
        self._registry.ensure_checked()
        return self._event(
            entity_name,
            EventType(event_type),
            self.extract_attributes(entity_name, attributes),
            context,
            occurred_at,
        )

    def build_marker(
        self,
        entity_name: str,
        context: EventContext | None = None,
        occurred_at: datetime | None = None,
    ) -> Event:
        """Build the ``import_completed`` marker signalling a finished backfill pass."""
        self._registry.ensure_checked()
        return self._event(entity_name, EventType.IMPORT_COMPLETED, (), context, occurred_at)

    def _event(
        self,
        entity_name: str,
        event_type: EventType,
        data: Iterable[DataItem],
        context: EventContext | None,
        occurred_at: datetime | None,
    ) -> Event:
        context = context or EventContext()
        user_id = self._config.user_identifier(context.user) if context.user is not None else None
        return Event(
            environment=self._config.environment,
            entity_name=entity_name,
            event_type=event_type,
            occurred_at=occurred_at or datetime.now(timezone.utc),
            user_id=str(user_id) if user_id is not None else None,
            request_uuid=context.request_uuid,
            data=tuple(data),
        )
