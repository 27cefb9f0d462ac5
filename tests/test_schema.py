"""
tests/test_schema.py
Integration tests for admingen.schema against in-memory SQLite.

Tests cover:
- Table synthesis (column types, foreign key indexes, server defaults)
- Idempotent ensure_schema
- Additive updates of existing tables, position backfill
- Position uniqueness modes and operator repair
- Table-backed uniqueness checks
"""

from __future__ import annotations

from typing import List

import pytest
from sqlalchemy import Numeric, String, inspect, text
from sqlalchemy.engine import Engine

from admingen.exceptions import ConfigurationError
from admingen.loader import MetadataSet
from admingen.schema import (
    MigrationAction,
    SchemaManager,
    TableUniquenessChecker,
)


def _positions(engine: Engine) -> List[tuple]:
    with engine.connect() as conn:
        return [tuple(r) for r in conn.execute(text("SELECT id, position FROM tasks ORDER BY id"))]


class TestBuildTable:
    def test_columns_and_types(self, engine: Engine, metadata: MetadataSet) -> None:
        table = SchemaManager(engine).build_table(metadata.require_model("deal"))
        assert [c.name for c in table.columns] == [
            "id", "title", "stage", "value", "company_id", "created_at", "updated_at",
        ]
        assert isinstance(table.c.title.type, String)
        assert table.c.title.type.length == 255
        assert isinstance(table.c.value.type, Numeric)
        assert (table.c.value.type.precision, table.c.value.type.scale) == (12, 2)
        assert table.c.company_id.nullable is False
        assert [i.name for i in table.indexes] == ["ix_deals_company_id"]

    def test_positioned_table(self, engine: Engine, metadata: MetadataSet) -> None:
        manager = SchemaManager(engine)
        model = metadata.require_model("task")
        table = manager.build_table(model)
        assert table.c.position.nullable is False
        index = manager.position_index(model, table)
        assert index is not None
        assert index.name == "ux_tasks_project_id_position"
        assert index.unique

    def test_invalid_uniqueness_mode(self, engine: Engine) -> None:
        with pytest.raises(ConfigurationError, match="enforce_position_uniqueness"):
            SchemaManager(engine, "sometimes")


class TestEnsureSchema:
    def test_plan_for_missing_table(self, engine: Engine, metadata: MetadataSet) -> None:
        plan = SchemaManager(engine).plan(metadata.require_model("deal"))
        assert plan.actions() == [MigrationAction.CREATE_TABLE, MigrationAction.ADD_INDEX]
        assert plan.steps[0].sql is not None
        assert plan.steps[0].sql.startswith("CREATE TABLE deals")

    def test_second_run_is_a_no_op(self, engine: Engine, metadata: MetadataSet) -> None:
        manager = SchemaManager(engine)
        model = metadata.require_model("deal")
        first = manager.ensure_schema(model)
        assert not first.is_empty
        assert manager.plan(model).is_empty
        assert manager.ensure_schema(model).steps == []

    def test_ensure_all(self, engine: Engine, metadata: MetadataSet) -> None:
        plans = SchemaManager(engine).ensure_all(metadata.models.values())
        assert len(plans) == 6
        tables = set(inspect(engine).get_table_names())
        assert {"companies", "contacts", "deals", "comments", "projects", "tasks"} <= tables

    def test_literal_default_is_a_server_default(self, engine: Engine, metadata: MetadataSet) -> None:
        SchemaManager(engine).ensure_schema(metadata.require_model("deal"))
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO deals (title, company_id) VALUES ('Renewal', 1)"))
            stage = conn.execute(text("SELECT stage FROM deals")).scalar_one()
        assert stage == "lead"

    def test_missing_column_is_added(self, engine: Engine, metadata: MetadataSet) -> None:
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE companies (id INTEGER PRIMARY KEY, name VARCHAR(100))"))
        manager = SchemaManager(engine)
        plan = manager.plan(metadata.require_model("company"))
        assert [s.column for s in plan.steps] == ["website", "created_at", "updated_at"]
        manager.ensure_schema(metadata.require_model("company"))
        columns = {c["name"] for c in inspect(engine).get_columns("companies")}
        assert {"website", "created_at", "updated_at"} <= columns


class TestPositions:
    def test_sqlite_auto_mode_warns_every_plan(self, engine: Engine, metadata: MetadataSet) -> None:
        manager = SchemaManager(engine)
        model = metadata.require_model("task")
        executed = manager.ensure_schema(model)
        assert len(executed.warnings) == 1
        assert "not enforced" in str(executed.warnings[0])
        assert "admingen repair-positions task" in str(executed.warnings[0])
        again = manager.plan(model)
        assert again.is_empty
        assert len(again.warnings) == 1

    def test_always_mode_creates_unique_index(self, engine: Engine, metadata: MetadataSet) -> None:
        manager = SchemaManager(engine, "always")
        model = metadata.require_model("task")
        executed = manager.ensure_schema(model)
        assert executed.warnings == []
        names = {i["name"] for i in inspect(engine).get_indexes("tasks")}
        assert "ux_tasks_project_id_position" in names
        assert manager.plan(model).is_empty

    def test_backfill_on_existing_rows(self, engine: Engine, metadata: MetadataSet) -> None:
        with engine.begin() as conn:
            conn.execute(
                text("CREATE TABLE tasks (id INTEGER PRIMARY KEY, title VARCHAR(255), project_id BIGINT)")
            )
            conn.execute(
                text("INSERT INTO tasks (id, title, project_id) VALUES (1, 'a', 1), (2, 'b', 1), (3, 'c', 2)")
            )
        manager = SchemaManager(engine, "never")
        model = metadata.require_model("task")
        plan = manager.plan(model)
        assert MigrationAction.BACKFILL_POSITIONS in plan.actions()
        backfill = [s for s in plan.steps if s.action == MigrationAction.BACKFILL_POSITIONS][0]
        assert backfill.details["rows"] == 3
        position_step = [s for s in plan.steps if s.column == "position"][0]
        assert position_step.details["nullable"] is True
        # SQLite cannot add NOT NULL in place
        assert any("NOT NULL" in str(w) for w in plan.warnings)

        manager.ensure_schema(model)
        assert _positions(engine) == [(1, 1), (2, 2), (3, 1)]

    def test_repair_renumbers_and_indexes(self, engine: Engine, metadata: MetadataSet) -> None:
        manager = SchemaManager(engine, "never")
        model = metadata.require_model("task")
        manager.ensure_schema(model)
        with engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO tasks (id, title, project_id, position) "
                    "VALUES (1, 'a', 1, 2), (2, 'b', 1, 2), (3, 'c', 1, 7)"
                )
            )
        assert manager.repair_positions(model) == 2
        assert _positions(engine) == [(1, 1), (2, 2), (3, 3)]
        names = {i["name"] for i in inspect(engine).get_indexes("tasks")}
        assert "ux_tasks_project_id_position" in names
        assert manager.repair_positions(model) == 0

    def test_repair_requires_positioning(self, engine: Engine, metadata: MetadataSet) -> None:
        with pytest.raises(ConfigurationError, match="has no positioning"):
            SchemaManager(engine).repair_positions(metadata.require_model("deal"))


class TestTableUniquenessChecker:
    def test_exists(self, engine: Engine, metadata: MetadataSet) -> None:
        SchemaManager(engine).ensure_schema(metadata.require_model("company"))
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO companies (id, name) VALUES (1, 'Acme')"))
        checker = TableUniquenessChecker(engine, metadata.models)
        assert checker.exists("company", "name", "Acme", {}, None)
        assert not checker.exists("company", "name", "Acme", {}, 1)
        assert not checker.exists("company", "name", "Globex", {}, None)

    def test_scope(self, engine: Engine, metadata: MetadataSet) -> None:
        SchemaManager(engine).ensure_schema(metadata.require_model("contact"))
        with engine.begin() as conn:
            conn.execute(
                text("INSERT INTO contacts (id, first_name, company_id) VALUES (1, 'Ann', 1)")
            )
        checker = TableUniquenessChecker(engine, metadata.models)
        assert checker.exists("contact", "first_name", "Ann", {"company_id": 1}, None)
        assert not checker.exists("contact", "first_name", "Ann", {"company_id": 2}, None)
