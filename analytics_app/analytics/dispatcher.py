"""
Event dispatch: hand batches of events to the job queue or the sink.
"""

from __future__ import annotations

import json
import logging
from collections import Counter as TallyCounter
from typing import Any, Callable, Dict, List, Mapping, Sequence

from .config import AnalyticsConfig
from .errors import DispatchFailure
from .event import Event
from .metrics import record_dispatch_failure, record_events_dispatched
from .sink import AnalyticsSinkClient

SEND_EVENTS_TASK = "analytics.send_events"

SinkFactory = Callable[[], AnalyticsSinkClient]
Enqueue = Callable[..., Any]


def deliver_events(
    payload: Sequence[Mapping[str, Any]],
    *,
    config: AnalyticsConfig,
    sink_factory: SinkFactory,
    logger: logging.Logger,
) -> int:
    """
    Deliver serialised events, or only log them in log-only mode.

    Returns the number of rows handed to the sink (zero in log-only mode).
    Sink failures propagate to the caller.
    """
    if not payload:
        return 0
    if config.log_only:
        logger.info(
            "Analytics log-only mode; %d event(s) not sent: %s",
            len(payload),
            json.dumps(list(payload), default=str),
            extra={"analytics_event_count": len(payload), "analytics_log_only": True},
        )
        return 0

    sink_factory().insert(payload)
    return len(payload)


class Dispatcher:
    """Sends events synchronously or through the asynchronous job queue."""

    def __init__(
        self,
        config: AnalyticsConfig,
        *,
        sink_factory: SinkFactory,
        enqueue: Enqueue,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._sink_factory = sink_factory
        self._enqueue = enqueue
        self._logger = logger or logging.getLogger(__name__)

    @property
    def mode(self) -> str:
        return "async" if self._config.async_dispatch else "inline"

    def send(self, events: Sequence[Event]) -> None:
        if not events:
            return
        if not self._config.enabled:
            self._logger.debug("Analytics disabled; dropping %d event(s).", len(events))
            return

        payload: List[Dict[str, Any]] = [event.as_json() for event in events]
        mode = self.mode
        try:
            if self._config.async_dispatch:
                self._enqueue(SEND_EVENTS_TASK, kwargs={"events": payload}, queue=self._config.queue)
            else:
                deliver_events(
                    payload,
                    config=self._config,
                    sink_factory=self._sink_factory,
                    logger=self._logger,
                )
        except DispatchFailure:
            record_dispatch_failure(mode)
            raise
        except Exception as exc:
            record_dispatch_failure(mode)
            raise DispatchFailure(f"Failed to dispatch {len(payload)} analytics event(s): {exc}") from exc

        for event_type, count in TallyCounter(event.event_type.value for event in events).items():
            record_events_dispatched(event_type, mode, count)
