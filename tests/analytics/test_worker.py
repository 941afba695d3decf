import json
from dataclasses import replace
from typing import Any, Dict

import pytest

from analytics_app.analytics import get_celery_app, init_analytics
from analytics_app.analytics.config import DEFAULT_QUEUE_NAME
from analytics_app.analytics.errors import SinkTransientError
from analytics_app.analytics.tasks import SEND_EVENTS_MAX_RETRIES


def test_celery_defaults_to_sqlite_transport(app, analytics_settings, tmp_path):
    sqlite_path = tmp_path / "custom.sqlite"
    app.config.update({**analytics_settings, "CELERY_SQLITE_PATH": str(sqlite_path)})
    init_analytics(app)

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_acks_late is True


def test_queue_name_is_configurable(app, analytics_settings):
    app.config.update({**analytics_settings, "ANALYTICS_QUEUE": "analytics-bulk"})
    init_analytics(app)

    assert get_celery_app(app).conf.task_default_queue == "analytics-bulk"


def test_celery_config_json_string_is_applied(app, analytics_settings):
    app.config.update({**analytics_settings, "CELERY_CONFIG": json.dumps({"task_always_eager": True, "task_soft_time_limit": 30})})
    init_analytics(app)

    conf = get_celery_app(app).conf
    assert conf.task_always_eager is True
    assert conf.task_soft_time_limit == 30
    assert conf.task_acks_late is True


@pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
def test_malformed_celery_config_is_ignored(app, analytics_settings, raw):
    app.config.update({**analytics_settings, "CELERY_CONFIG": raw})
    init_analytics(app)

    conf = get_celery_app(app).conf
    assert conf.task_always_eager is False
    assert conf.task_default_queue == DEFAULT_QUEUE_NAME


def test_explicit_broker_url_overrides_sqlite_default(app, analytics_settings):
    app.config.update({**analytics_settings, "CELERY_BROKER_URL": "memory://", "CELERY_RESULT_BACKEND": "cache+memory://"})
    init_analytics(app)

    conf = get_celery_app(app).conf
    assert conf.broker_url == "memory://"
    assert conf.result_backend == "cache+memory://"


def test_celery_unavailable_when_disabled(app):
    assert get_celery_app(app) is None


def test_tasks_are_registered(analytics_app):
    celery_app = get_celery_app(analytics_app)

    for name in ("analytics.healthcheck", "analytics.send_events", "analytics.load_entity_batch"):
        assert name in celery_app.tasks


def test_send_events_task_retries_transient_failures(analytics_app):
    task = get_celery_app(analytics_app).tasks["analytics.send_events"]

    assert SinkTransientError in task.autoretry_for
    assert task.max_retries == SEND_EVENTS_MAX_RETRIES


def test_send_events_task_in_log_only_mode(analytics_app):
    task = get_celery_app(analytics_app).tasks["analytics.send_events"]

    result = task.apply_async(kwargs={"events": [{"event_type": "create_entity"}]})

    assert result.get() == {"received": 1, "delivered": 0, "log_only": True, "attempt": 0}


def test_send_events_task_delivers_to_sink(analytics_app):
    state = analytics_app.extensions["analytics"]
    inserted = []

    class FakeSink:
        def insert(self, rows):
            inserted.append(list(rows))

    state["config"] = replace(state["config"], log_only=False)
    state["sink_client"] = FakeSink()
    task = get_celery_app(analytics_app).tasks["analytics.send_events"]

    result = task.apply_async(kwargs={"events": [{"event_type": "create_entity"}]})

    assert result.get()["delivered"] == 1
    assert inserted == [[{"event_type": "create_entity"}]]


def test_worker_ping_cli(analytics_app):
    runner = analytics_app.test_cli_runner()
    result = runner.invoke(args=["analytics", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(analytics_app, monkeypatch):
    celery_app = get_celery_app(analytics_app)
    assert celery_app is not None

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    runner = analytics_app.test_cli_runner()
    result = runner.invoke(
        args=[
            "analytics",
            "worker",
            "run",
            "--loglevel",
            "debug",
            "--concurrency",
            "2",
            "--pool",
            "solo",
            "--queues",
            "analytics-bulk",
        ]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        "analytics-bulk",
        "--concurrency",
        "2",
        "--pool",
        "solo",
    ]


@pytest.mark.parametrize("path", ["/analytics/worker_health", "/analytics/health"])
def test_endpoints_are_not_mounted_when_disabled(client, path):
    assert client.get(path).status_code == 404


def test_health_endpoint_reports_configuration(analytics_app):
    response = analytics_app.test_client().get("/analytics/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["enabled"] is True
    assert payload["entities"] == ["candidates"]
    assert payload["log_only"] is True
    assert payload["queue"] == DEFAULT_QUEUE_NAME


def test_worker_health_endpoint(analytics_app):
    response = analytics_app.test_client().get("/analytics/worker_health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["heartbeat"]["status"] == "ok"
