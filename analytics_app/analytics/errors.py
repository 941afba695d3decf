"""
Exception hierarchy for analytics governance and dispatch.
"""

from __future__ import annotations

from typing import Mapping, Sequence


def _format_fields(fields: Mapping[str, Sequence[str]]) -> str:
    lines = []
    for entity, attributes in sorted(fields.items()):
        if attributes:
            lines.append(f"  {entity}: {', '.join(sorted(attributes))}")
        else:
            lines.append(f"  {entity}")
    return "\n".join(lines)


class ConfigurationError(RuntimeError):
    """Raised when analytics cannot start safely with the supplied configuration."""


class FieldListLoadError(ConfigurationError):
    """Raised when a field classification list cannot be loaded or validated."""


class _FieldGovernanceError(ConfigurationError):
    headline = "Field governance check failed"

    def __init__(self, fields: Mapping[str, Sequence[str]], hint: str) -> None:
        self.fields = {entity: sorted(attributes) for entity, attributes in fields.items()}
        super().__init__(f"{self.headline}:\n{_format_fields(self.fields)}\n{hint}")


class ClassificationGap(_FieldGovernanceError):
    """Live attributes of a governed entity that no classification list mentions."""

    headline = "Fields present in the database are missing from the allowlist and blocklist"

    def __init__(self, fields: Mapping[str, Sequence[str]]) -> None:
        super().__init__(
            fields,
            "Add each field to the allowlist (optionally also the PII list) or regenerate "
            "the blocklist with `flask analytics generate-blocklist`.",
        )


class StaleClassification(_FieldGovernanceError):
    """Classification lists name entities or attributes that no longer exist."""

    headline = "Classification lists reference entities or fields missing from the database"

    def __init__(self, fields: Mapping[str, Sequence[str]]) -> None:
        super().__init__(fields, "Remove these entries from the classification lists.")


class ConflictingClassification(_FieldGovernanceError):
    """Attributes listed as both exported and blocked."""

    headline = "Fields appear in both the allowlist and the blocklist"

    def __init__(self, fields: Mapping[str, Sequence[str]]) -> None:
        super().__init__(fields, "Each field must be either exported or blocked, not both.")


class UnknownEntityError(ValueError):
    """Raised when an export is requested for an entity that is not exported."""

    def __init__(self, entity_name: str) -> None:
        super().__init__(f"Entity '{entity_name}' is not configured for analytics export.")
        self.entity_name = entity_name


class DispatchFailure(RuntimeError):
    """Raised when events cannot be enqueued or transmitted."""


class SinkError(DispatchFailure):
    """Base class for analytics sink failures."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SinkTransientError(SinkError):
    """Sink failure that may succeed on retry (timeouts, 429, 5xx)."""


class SinkPermanentError(SinkError):
    """Sink failure that will not succeed on retry (rejected payload, bad credentials)."""
