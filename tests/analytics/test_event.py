from __future__ import annotations

import hashlib
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from analytics_app.analytics.config import AnalyticsConfig
from analytics_app.analytics.errors import ConfigurationError
from analytics_app.analytics.event import EventBuilder, EventContext, EventType, anonymise
from analytics_app.analytics.fields import FieldRegistry


class FakeSchema:
    tables = {
        "candidates": {"id", "email_address", "first_name", "last_name", "tags", "date_of_birth"},
    }

    def entity_names(self):
        return set(self.tables)

    def attribute_names(self, entity_name):
        return set(self.tables.get(entity_name, ()))


@pytest.fixture
def registry():
    registry = FieldRegistry(
        {"candidates": ["id", "email_address", "first_name", "tags", "date_of_birth"]},
        {"candidates": ["email_address", "tags"]},
        {"candidates": ["last_name"]},
        FakeSchema(),
    )
    registry.check()
    return registry


@pytest.fixture
def builder(registry):
    return EventBuilder(registry, AnalyticsConfig(enabled=True, environment="test"))


def _data(event):
    return {item.key: list(item.value) for item in event.data}


def test_anonymise_is_sha256_of_text_form():
    assert anonymise("ada@example.com") == hashlib.sha256(b"ada@example.com").hexdigest()
    assert anonymise(42) == anonymise("42")
    assert anonymise(None) == hashlib.sha256(b"").hexdigest()
    assert anonymise("ada@example.com") == anonymise("ada@example.com")
    assert anonymise("ada@example.com") != anonymise("grace@example.com")
    assert anonymise(1) != anonymise(2)


def test_build_keeps_only_allowlisted_attributes(builder):
    event = builder.build(
        "candidates",
        EventType.CREATE_ENTITY,
        {"id": 7, "first_name": "Ada", "last_name": "Lovelace", "not_a_column": "x"},
    )

    assert _data(event) == {"id": [7], "first_name": ["Ada"]}


def test_build_anonymises_pii(builder):
    event = builder.build("candidates", EventType.CREATE_ENTITY, {"email_address": "ada@example.com"})

    assert _data(event) == {"email_address": [anonymise("ada@example.com")]}
    assert "ada@example.com" not in str(event.as_json())


def test_distinct_pii_values_get_distinct_tokens(builder):
    ada = builder.build("candidates", EventType.CREATE_ENTITY, {"id": 1, "email_address": "ada@example.com"})
    grace = builder.build("candidates", EventType.CREATE_ENTITY, {"id": 2, "email_address": "grace@example.com"})

    ada_token = _data(ada)["email_address"]
    grace_token = _data(grace)["email_address"]
    assert ada_token != grace_token
    assert grace_token == [anonymise("grace@example.com")]


def test_build_anonymises_each_list_element(builder):
    event = builder.build("candidates", EventType.UPDATE_ENTITY, {"tags": ["maths", "physics"]})

    assert _data(event) == {"tags": [anonymise("maths"), anonymise("physics")]}


def test_build_omits_missing_values(builder):
    event = builder.build("candidates", EventType.CREATE_ENTITY, {"id": 1, "first_name": None})

    assert _data(event) == {"id": [1]}


def test_build_serialises_dates(builder):
    event = builder.build("candidates", EventType.CREATE_ENTITY, {"date_of_birth": date(1990, 1, 2)})

    assert _data(event) == {"date_of_birth": ["1990-01-02"]}


def test_as_json_has_sink_wire_shape(builder):
    occurred_at = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    event = builder.build(
        "candidates",
        EventType.CREATE_ENTITY,
        {"id": 3},
        context=EventContext(user=SimpleNamespace(id=99), request_uuid="req-1"),
        occurred_at=occurred_at,
    )

    assert event.as_json() == {
        "environment": "test",
        "entity_table_name": "candidates",
        "event_type": "create_entity",
        "occurred_at": "2024-05-01T12:30:00.000000+00:00",
        "user_id": "99",
        "request_uuid": "req-1",
        "data": [{"key": "id", "value": [3]}],
    }


def test_content_ignores_capture_time(builder):
    first = builder.build("candidates", EventType.IMPORT_ENTITY, {"id": 3})
    second = builder.build("candidates", EventType.IMPORT_ENTITY, {"id": 3})

    assert first.content() == second.content()
    assert "occurred_at" not in first.content()


def test_marker_has_no_data(builder):
    marker = builder.build_marker("candidates")

    assert marker.event_type is EventType.IMPORT_COMPLETED
    assert marker.data == ()


def test_user_identifier_is_configurable(registry):
    config = AnalyticsConfig(enabled=True, user_identifier=lambda user: f"user-{user.id}")
    event = EventBuilder(registry, config).build(
        "candidates",
        EventType.DELETE_ENTITY,
        {"id": 1},
        context=EventContext(user=SimpleNamespace(id=5)),
    )

    assert event.user_id == "user-5"


def test_build_refuses_unchecked_registry():
    registry = FieldRegistry({"candidates": ["id"]}, {}, {}, FakeSchema())
    builder = EventBuilder(registry, AnalyticsConfig(enabled=True))

    with pytest.raises(ConfigurationError):
        builder.build("candidates", EventType.CREATE_ENTITY, {"id": 1})


def test_context_outside_request_is_empty(app):
    assert EventContext.current() == EventContext()


def test_context_captures_request_uuid(app):
    with app.test_request_context("/", headers={"X-Request-Id": "abc-123"}):
        app.preprocess_request()
        context = EventContext.current()

    assert context.request_uuid == "abc-123"
    assert context.user is None
