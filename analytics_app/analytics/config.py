"""
Immutable analytics configuration resolved once from the Flask config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Tuple

from .errors import ConfigurationError

DEFAULT_QUEUE_NAME = "analytics"
DEFAULT_BATCH_SIZE = 200

REQUIRED_SINK_SETTINGS: Tuple[str, ...] = (
    "ANALYTICS_SINK_URL",
    "ANALYTICS_SINK_API_KEY",
    "ANALYTICS_SINK_TABLE",
)


def default_user_identifier(user: Any) -> Any:
    """Return ``user.id`` when a user is present."""
    if user is None:
        return None
    return getattr(user, "id", None)


@dataclass(frozen=True)
class AnalyticsConfig:
    enabled: bool = False
    log_only: bool = True
    async_dispatch: bool = True
    queue: str = DEFAULT_QUEUE_NAME
    environment: str = "development"
    user_identifier: Callable[[Any], Any] = default_user_identifier
    batch_size: int = DEFAULT_BATCH_SIZE
    allowlist_path: str | None = None
    allowlist_pii_path: str | None = None
    blocklist_path: str | None = None
    sink_url: str | None = None
    sink_api_key: str | None = None
    sink_table: str | None = None
    sink_timeout: float = 120.0
    sink_retries: int = 3

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "AnalyticsConfig":
        """Build the configuration from a Flask ``app.config`` style mapping."""
        user_identifier = config.get("ANALYTICS_USER_IDENTIFIER") or default_user_identifier
        if not callable(user_identifier):
            raise ConfigurationError("ANALYTICS_USER_IDENTIFIER must be callable.")

        return cls(
            enabled=bool(config.get("ANALYTICS_ENABLED", False)),
            log_only=bool(config.get("ANALYTICS_LOG_ONLY", True)),
            async_dispatch=bool(config.get("ANALYTICS_ASYNC", True)),
            queue=config.get("ANALYTICS_QUEUE") or DEFAULT_QUEUE_NAME,
            environment=config.get("ANALYTICS_ENVIRONMENT", "development"),
            user_identifier=user_identifier,
            batch_size=int(config.get("ANALYTICS_BATCH_SIZE") or DEFAULT_BATCH_SIZE),
            allowlist_path=config.get("ANALYTICS_ALLOWLIST_PATH"),
            allowlist_pii_path=config.get("ANALYTICS_PII_PATH"),
            blocklist_path=config.get("ANALYTICS_BLOCKLIST_PATH"),
            sink_url=config.get("ANALYTICS_SINK_URL"),
            sink_api_key=config.get("ANALYTICS_SINK_API_KEY"),
            sink_table=config.get("ANALYTICS_SINK_TABLE"),
            sink_timeout=float(config.get("ANALYTICS_SINK_TIMEOUT", 120)),
            sink_retries=int(config.get("ANALYTICS_SINK_RETRIES", 3)),
        )

    def missing_sink_settings(self) -> Tuple[str, ...]:
        values = {
            "ANALYTICS_SINK_URL": self.sink_url,
            "ANALYTICS_SINK_API_KEY": self.sink_api_key,
            "ANALYTICS_SINK_TABLE": self.sink_table,
        }
        return tuple(name for name in REQUIRED_SINK_SETTINGS if not str(values[name] or "").strip())

    def validate(self) -> None:
        """
        Raise ``ConfigurationError`` for settings that would make export unsafe.

        Sink parameters are only required once events can actually leave the
        process, i.e. when log-only mode is switched off.
        """
        if self.batch_size < 1:
            raise ConfigurationError("ANALYTICS_BATCH_SIZE must be a positive integer.")
        if not str(self.environment or "").strip():
            raise ConfigurationError("ANALYTICS_ENVIRONMENT must not be blank.")
        if not self.log_only:
            missing = self.missing_sink_settings()
            if missing:
                raise ConfigurationError(
                    "Analytics: missing required config values: " + ", ".join(missing)
                )
