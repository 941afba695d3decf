from __future__ import annotations

import pytest

from analytics_app.analytics import (
    ClassificationGap,
    ConfigurationError,
    get_analytics_config,
    get_dispatcher,
    get_field_registry,
    init_analytics,
)
from analytics_app.analytics.config import AnalyticsConfig


def test_init_wires_components(analytics_app):
    state = analytics_app.extensions["analytics"]

    assert state["enabled"] is True
    assert get_field_registry(analytics_app).checked is True
    assert get_analytics_config(analytics_app).environment == "test"
    assert get_dispatcher(analytics_app).mode == "async"
    assert state["celery_app"] is not None
    assert "analytics" in analytics_app.blueprints


def test_disabled_app_has_no_components(app):
    state = app.extensions["analytics"]

    assert state["enabled"] is False
    with pytest.raises(ConfigurationError):
        get_dispatcher(app)


def test_schema_drift_aborts_startup_before_any_event(app, tmp_path, field_list_writer, analytics_settings):
    drift_dir = tmp_path / "drift"
    drift_dir.mkdir()
    # ``first_name`` is in neither list
    lists = field_list_writer(
        drift_dir,
        allowlist={"candidates": ["id", "email_address"]},
        blocklist={"candidates": ["last_name", "date_of_birth", "created_at", "updated_at"]},
    )
    app.config.update({**analytics_settings, **lists})

    with pytest.raises(ClassificationGap) as excinfo:
        init_analytics(app)

    assert excinfo.value.fields == {"candidates": ["first_name"]}
    state = app.extensions["analytics"]
    assert state["builder"] is None
    assert state["dispatcher"] is None


def test_sink_settings_required_when_not_log_only(app, analytics_settings):
    app.config.update({**analytics_settings, "ANALYTICS_LOG_ONLY": False})

    with pytest.raises(ConfigurationError) as excinfo:
        init_analytics(app)

    assert "Analytics: missing required config values" in str(excinfo.value)
    assert "ANALYTICS_SINK_URL" in str(excinfo.value)


def test_config_from_mapping_defaults():
    config = AnalyticsConfig.from_mapping({})

    assert config.enabled is False
    assert config.log_only is True
    assert config.async_dispatch is True
    assert config.queue == "analytics"
    assert config.batch_size == 200


def test_config_rejects_non_callable_user_identifier():
    with pytest.raises(ConfigurationError):
        AnalyticsConfig.from_mapping({"ANALYTICS_USER_IDENTIFIER": "id"})


def test_config_rejects_non_positive_batch_size():
    with pytest.raises(ConfigurationError):
        AnalyticsConfig(enabled=True, batch_size=0).validate()


@pytest.mark.parametrize("environment", ["", "   ", None])
def test_config_rejects_blank_environment(environment):
    config = AnalyticsConfig.from_mapping({"ANALYTICS_ENABLED": True, "ANALYTICS_ENVIRONMENT": environment})

    with pytest.raises(ConfigurationError) as excinfo:
        config.validate()
    assert "ANALYTICS_ENVIRONMENT" in str(excinfo.value)


def test_blank_environment_aborts_startup(app, analytics_settings):
    app.config.update({**analytics_settings, "ANALYTICS_ENVIRONMENT": " "})

    with pytest.raises(ConfigurationError):
        init_analytics(app)
    assert app.extensions["analytics"]["enabled"] is False
