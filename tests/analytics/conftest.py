from __future__ import annotations

from typing import Any, Dict, List

import pytest
import yaml

from analytics_app.analytics import get_dispatcher, init_analytics

EAGER_CELERY = {"task_always_eager": True, "task_eager_propagates": True}

CANDIDATE_ALLOWLIST = ["id", "email_address", "first_name", "date_of_birth", "created_at"]
CANDIDATE_PII = ["email_address", "date_of_birth"]
CANDIDATE_BLOCKLIST = ["last_name", "updated_at"]


def write_lists(directory, *, allowlist=None, pii=None, blocklist=None) -> Dict[str, str]:
    """Write the three governance lists into ``directory`` and return their config keys."""
    lists = {
        "ANALYTICS_ALLOWLIST_PATH": ("analytics.yml", allowlist),
        "ANALYTICS_PII_PATH": ("analytics_pii.yml", pii),
        "ANALYTICS_BLOCKLIST_PATH": ("analytics_blocklist.yml", blocklist),
    }
    paths: Dict[str, str] = {}
    for key, (filename, content) in lists.items():
        path = directory / filename
        if content is not None:
            path.write_text(yaml.safe_dump(content), encoding="utf-8")
        paths[key] = str(path)
    return paths


@pytest.fixture
def field_list_writer():
    return write_lists


@pytest.fixture
def field_lists(tmp_path) -> Dict[str, str]:
    list_dir = tmp_path / "lists"
    list_dir.mkdir()
    return write_lists(
        list_dir,
        allowlist={"candidates": CANDIDATE_ALLOWLIST},
        pii={"candidates": CANDIDATE_PII},
        blocklist={"candidates": CANDIDATE_BLOCKLIST},
    )


@pytest.fixture
def analytics_settings(field_lists) -> Dict[str, Any]:
    """Config overrides for an analytics-enabled app; tests may adjust before use."""
    settings: Dict[str, Any] = {
        "ANALYTICS_ENABLED": True,
        "ANALYTICS_LOG_ONLY": True,
        "ANALYTICS_ASYNC": True,
        "ANALYTICS_ENVIRONMENT": "test",
        "ANALYTICS_BATCH_SIZE": 200,
        "CELERY_CONFIG": dict(EAGER_CELERY),
    }
    settings.update(field_lists)
    return settings


@pytest.fixture
def analytics_app(app, analytics_settings):
    app.config.update(analytics_settings)
    init_analytics(app)
    yield app


@pytest.fixture
def sent_batches(analytics_app, monkeypatch) -> List[List[Any]]:
    """Record every ``Dispatcher.send`` call instead of delivering it."""
    batches: List[List[Any]] = []
    dispatcher = get_dispatcher(analytics_app)
    monkeypatch.setattr(dispatcher, "send", lambda events: batches.append(list(events)))
    return batches
