"""
HTTP client for the analytics sink.

Rows are posted as JSON batches. Failures are classified so the Celery
delivery task can retry transient ones and surface permanent ones.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import AnalyticsConfig
from .errors import ConfigurationError, SinkPermanentError, SinkTransientError

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class AnalyticsSinkClient:
    """Inserts event rows into the configured sink table."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        table: str,
        timeout: float = 120.0,
        retries: int = 3,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = url
        self.table = table
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._session = session or self._build_session(retries)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _build_session(retries: int) -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=retries,
            connect=retries,
            read=0,
            status=0,
            backoff_factor=0.5,
            allowed_methods=None,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def insert(self, rows: Sequence[Mapping[str, Any]]) -> None:
        """Insert ``rows`` or raise ``SinkTransientError`` / ``SinkPermanentError``."""
        if not rows:
            return

        body = {"table": self.table, "rows": list(rows)}
        try:
            response = self._session.post(self.url, headers=self._headers, json=body, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise SinkTransientError(f"Analytics sink unreachable: {exc}") from exc
        except requests.RequestException as exc:
            raise SinkPermanentError(f"Analytics sink request failed: {exc}") from exc

        status = response.status_code
        if status in TRANSIENT_STATUS_CODES:
            raise SinkTransientError(
                f"Analytics sink returned {status}: {response.text[:500]}",
                status_code=status,
            )
        if status >= 400:
            raise SinkPermanentError(
                f"Analytics sink rejected {len(rows)} row(s) with {status}: {response.text[:500]}",
                status_code=status,
            )

        self.logger.debug(
            "Analytics sink accepted rows",
            extra={"analytics_sink_table": self.table, "analytics_row_count": len(rows)},
        )


def build_sink_client(config: AnalyticsConfig, *, logger: logging.Logger | None = None) -> AnalyticsSinkClient:
    """Create a sink client, refusing to start with blank connection settings."""
    missing = config.missing_sink_settings()
    if missing:
        raise ConfigurationError("Analytics: missing required config values: " + ", ".join(missing))
    return AnalyticsSinkClient(
        url=config.sink_url,
        api_key=config.sink_api_key,
        table=config.sink_table,
        timeout=config.sink_timeout,
        retries=config.sink_retries,
        logger=logger,
    )
