"""
Data-store capabilities used by field governance and backfill.

``SchemaProvider`` reports the live attribute set of each entity; the
``EntityStore`` adds counting and ordered windowed reads. The SQLAlchemy
implementation maps entities to table names and introspects the connected
database rather than the declared models, so columns added by a migration are
visible to governance checks even before a model declares them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, Set

from sqlalchemy import MetaData, Table, func, inspect, select
from sqlalchemy.exc import NoSuchTableError


class SchemaProvider(Protocol):
    def entity_names(self) -> Set[str]: ...

    def attribute_names(self, entity_name: str) -> Set[str]: ...


class EntityStore(SchemaProvider, Protocol):
    def count(self, entity_name: str) -> int: ...

    def fetch_window(self, entity_name: str, offset: int, limit: int) -> List[Dict[str, Any]]: ...


class SQLAlchemyEntityStore:
    """Entity store backed by the Flask-SQLAlchemy engine and session."""

    def __init__(self, db) -> None:
        self._db = db
        self._tables: Dict[str, Table] = {}

    def entity_names(self) -> Set[str]:
        return set(inspect(self._db.engine).get_table_names())

    def attribute_names(self, entity_name: str) -> Set[str]:
        inspector = inspect(self._db.engine)
        if not inspector.has_table(entity_name):
            return set()
        return {column["name"] for column in inspector.get_columns(entity_name)}

    def count(self, entity_name: str) -> int:
        table = self._table(entity_name)
        statement = select(func.count()).select_from(table)
        return int(self._db.session.execute(statement).scalar_one())

    def fetch_window(self, entity_name: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        if offset < 0 or limit < 1:
            raise ValueError(f"Invalid window offset={offset} limit={limit}")
        table = self._table(entity_name)
        primary_key = list(table.primary_key.columns)
        if not primary_key:
            raise ValueError(f"Entity '{entity_name}' has no primary key; cannot paginate in a stable order.")
        statement = select(table).order_by(*primary_key).offset(offset).limit(limit)
        return [dict(row) for row in self._db.session.execute(statement).mappings()]

    def reset(self) -> None:
        """Forget reflected tables so the next read sees schema changes."""
        self._tables.clear()

    def _table(self, entity_name: str) -> Table:
        table = self._tables.get(entity_name)
        if table is None:
            try:
                table = Table(entity_name, MetaData(), autoload_with=self._db.engine)
            except NoSuchTableError as exc:
                raise ValueError(f"Entity '{entity_name}' does not exist in the database.") from exc
            self._tables[entity_name] = table
        return table
