"""
Field governance: declarative classification of every exported entity attribute.

Three YAML lists drive governance, each mapping an entity (table) name to a
list of attribute (column) names:

- the allowlist names attributes that may be exported;
- the PII list marks exported attributes whose values must be anonymised;
- the blocklist names every remaining attribute. It is generated from the
  live schema (``flask analytics generate-blocklist``) rather than edited.

``FieldRegistry.check`` compares the lists with the live schema once at
startup and refuses to continue on drift, stale entries or conflicts.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Mapping, Tuple

import yaml

from .errors import (
    ClassificationGap,
    ConfigurationError,
    ConflictingClassification,
    FieldListLoadError,
    StaleClassification,
)
from .store import SchemaProvider

FieldList = Dict[str, Tuple[str, ...]]


class FieldClassification(str, enum.Enum):
    """Export decision for a single entity attribute."""

    EXPORT_PLAIN = "export_plain"
    EXPORT_PII = "export_pii"
    BLOCKED = "blocked"


def load_field_list(path: str | Path | None) -> FieldList:
    """
    Load an entity -> attributes YAML list.

    A missing path or file yields an empty list so optional lists (typically
    the PII list) can be omitted.
    """
    if not path:
        return {}
    path = Path(path)
    if not path.exists():
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise FieldListLoadError(f"Failed to parse field list YAML at {path}: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise FieldListLoadError(f"Field list at {path} must map entity names to attribute lists.")

    fields: FieldList = {}
    for entity, attributes in raw.items():
        entity_name = str(entity).strip()
        if not entity_name:
            raise FieldListLoadError(f"Field list at {path} contains an empty entity name.")
        if attributes is None:
            attributes = []
        if isinstance(attributes, (str, bytes)) or not isinstance(attributes, Iterable):
            raise FieldListLoadError(f"Attributes for '{entity_name}' in {path} must be a list, got {attributes!r}")
        names = []
        for attribute in attributes:
            name = str(attribute).strip()
            if not name:
                raise FieldListLoadError(f"Entity '{entity_name}' in {path} lists an empty attribute name.")
            if name not in names:
                names.append(name)
        fields[entity_name] = tuple(names)
    return fields


def write_field_list(path: str | Path, fields: Mapping[str, Iterable[str]], *, header: str | None = None) -> Path:
    """
    Write an entity -> attributes mapping as sorted YAML.

    ``header`` lines are written first as YAML comments.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {entity: sorted(attributes) for entity, attributes in sorted(fields.items())}
    text = yaml.safe_dump(payload, default_flow_style=False, sort_keys=True)
    if header:
        comment = "".join(f"# {line}\n" if line else "#\n" for line in header.splitlines())
        text = comment + text
    path.write_text(text, encoding="utf-8")
    return path


def _freeze(fields: Mapping[str, Iterable[str]] | None) -> Dict[str, FrozenSet[str]]:
    return {entity: frozenset(attributes or ()) for entity, attributes in (fields or {}).items()}


class FieldRegistry:
    """Classifies entity attributes and validates the lists against the live schema."""

    def __init__(
        self,
        allowlist: Mapping[str, Iterable[str]],
        allowlist_pii: Mapping[str, Iterable[str]] | None,
        blocklist: Mapping[str, Iterable[str]] | None,
        schema_provider: SchemaProvider,
    ) -> None:
        self._allowlist = _freeze(allowlist)
        self._allowlist_pii = _freeze(allowlist_pii)
        self._blocklist = _freeze(blocklist)
        self._schema_provider = schema_provider
        self._checked = False

    @classmethod
    def from_paths(
        cls,
        *,
        allowlist_path: str | Path | None,
        allowlist_pii_path: str | Path | None,
        blocklist_path: str | Path | None,
        schema_provider: SchemaProvider,
    ) -> "FieldRegistry":
        return cls(
            load_field_list(allowlist_path),
            load_field_list(allowlist_pii_path),
            load_field_list(blocklist_path),
            schema_provider,
        )

    @property
    def checked(self) -> bool:
        return self._checked

    def governed_entities(self) -> FrozenSet[str]:
        return frozenset(self._allowlist) | frozenset(self._allowlist_pii) | frozenset(self._blocklist)

    def exported_entities(self) -> Tuple[str, ...]:
        return tuple(sorted(entity for entity, attributes in self._allowlist.items() if attributes))

    def exportable_attributes(self, entity_name: str) -> FrozenSet[str]:
        return self._allowlist.get(entity_name, frozenset())

    def pii_attributes(self, entity_name: str) -> FrozenSet[str]:
        """PII attributes that are also exported, and therefore anonymised."""
        return self._allowlist_pii.get(entity_name, frozenset()) & self.exportable_attributes(entity_name)

    def classify(self, entity_name: str, attribute: str) -> FieldClassification:
        exported = self._allowlist.get(entity_name, frozenset())
        if attribute in exported:
            if attribute in self._allowlist_pii.get(entity_name, frozenset()):
                return FieldClassification.EXPORT_PII
            return FieldClassification.EXPORT_PLAIN
        if attribute in self._blocklist.get(entity_name, frozenset()):
            return FieldClassification.BLOCKED
        raise ClassificationGap({entity_name: [attribute]})

    def generate_blocklist(self) -> Dict[str, list[str]]:
        """
        Compute the blocklist from the live schema: every attribute of a
        governed entity that the allowlist does not export.
        """
        live_entities = self._schema_provider.entity_names()
        blocklist: Dict[str, list[str]] = {}
        for entity in sorted(self.governed_entities()):
            if entity not in live_entities:
                continue
            live = self._schema_provider.attribute_names(entity)
            blocklist[entity] = sorted(live - self.exportable_attributes(entity))
        return blocklist

    def check(self) -> None:
        """
        Validate every governed entity against its live schema.

        Raises ``ClassificationGap`` for unlisted live attributes,
        ``StaleClassification`` for entries naming missing entities or
        attributes and ``ConflictingClassification`` for attributes that are
        both exported and blocked. Gaps are reported first because they are
        the failure that risks leaking data.
        """
        self._checked = False
        live_entities = self._schema_provider.entity_names()

        gaps: Dict[str, list[str]] = {}
        stale: Dict[str, list[str]] = {}
        conflicts: Dict[str, list[str]] = {}

        for entity in sorted(self.governed_entities()):
            if entity not in live_entities:
                stale[entity] = []
                continue

            live = self._schema_provider.attribute_names(entity)
            exported = self._allowlist.get(entity, frozenset())
            blocked = self._blocklist.get(entity, frozenset())
            pii = self._allowlist_pii.get(entity, frozenset())

            unlisted = live - exported - blocked
            if unlisted:
                gaps[entity] = sorted(unlisted)

            missing = (exported | blocked | pii) - live
            if missing:
                stale[entity] = sorted(missing)

            overlap = exported & blocked
            if overlap:
                conflicts[entity] = sorted(overlap)

        if gaps:
            raise ClassificationGap(gaps)
        if stale:
            raise StaleClassification(stale)
        if conflicts:
            raise ConflictingClassification(conflicts)
        self._checked = True

    def ensure_checked(self) -> None:
        if not self._checked:
            raise ConfigurationError(
                "Field governance has not been checked; call FieldRegistry.check() before exporting."
            )
