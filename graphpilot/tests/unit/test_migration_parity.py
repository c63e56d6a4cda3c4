from __future__ import annotations

import importlib

import sqlalchemy as sa

from graphpilot.domain.models import Base


class _RecordingOps:
    # Stand-in for alembic.op that records DDL instead of executing it.
    def __init__(self) -> None:
        self.tables: dict[str, set[str]] = {}
        self.indexes: dict[str, tuple[str, tuple[str, ...]]] = {}
        self.dropped_tables: list[str] = []
        self.dropped_indexes: list[str] = []

    def create_table(self, name: str, *elements, **_kwargs) -> None:
        self.tables[name] = {el.name for el in elements if isinstance(el, sa.Column)}

    def create_index(self, name: str, table: str, columns: list[str], **_kwargs) -> None:
        self.indexes[name] = (table, tuple(columns))

    def drop_table(self, name: str, **_kwargs) -> None:
        self.dropped_tables.append(name)

    def drop_index(self, name: str, **_kwargs) -> None:
        self.dropped_indexes.append(name)


def _migration():
    return importlib.import_module("graphpilot.persistence.alembic.versions.0001_copilot_core")


def test_migration_matches_orm_schema(monkeypatch) -> None:
    migration = _migration()
    recorder = _RecordingOps()
    monkeypatch.setattr(migration, "op", recorder)
    migration.upgrade()

    expected = {name: {column.name for column in table.columns} for name, table in Base.metadata.tables.items()}
    assert recorder.tables == expected

    orm_indexes = {
        index.name: (table.name, tuple(column.name for column in index.columns))
        for table in Base.metadata.tables.values()
        for index in table.indexes
    }
    assert recorder.indexes == orm_indexes


def test_downgrade_drops_everything_upgrade_creates(monkeypatch) -> None:
    migration = _migration()
    recorder = _RecordingOps()
    monkeypatch.setattr(migration, "op", recorder)
    migration.upgrade()
    migration.downgrade()

    assert set(recorder.dropped_tables) == set(recorder.tables)
    assert set(recorder.dropped_indexes) == set(recorder.indexes)
