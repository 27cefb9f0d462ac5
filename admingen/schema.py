# File: admingen/schema.py
"""
AdminGen - Schema Manager
==========================
Synchronizes storage with model definitions through additive-only DDL:
missing tables, columns and indexes are created, nothing is ever altered
or dropped (apart from enforcing NOT NULL on a position column).

Planning and execution are separate. ``plan`` inspects the database and
returns a ``MigrationPlan``; ``ensure_schema`` executes it. Running
``ensure_schema`` twice issues no DDL the second time.

Positioned models additionally get null positions backfilled, NOT NULL
enforced where the dialect allows it, and a unique index over
``(scope..., position)``. The unique index is optional: when it cannot be
created a ``SchemaDriftWarning`` is recorded and logged with a
remediation hint, and boot continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    false,
    func,
    inspect,
    select,
    text,
    true,
    update,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.schema import CreateColumn, CreateIndex, CreateTable
from sqlalchemy.types import TypeEngine

from admingen.exceptions import ConfigurationError, SchemaDriftWarning
from admingen.models import AssociationType, FieldDefinition, FieldType, ModelDefinition
from admingen.utils import is_template

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.schema")

UNIQUENESS_MODES: Tuple[str, ...] = ("auto", "always", "never")

# Dialects with SELECT ... FOR UPDATE, so concurrent reorders can be serialized
ROW_LOCKING_DIALECTS: frozenset = frozenset(
    {"postgresql", "mysql", "mariadb", "oracle", "mssql"}
)

_NOT_NULL_SQL: Dict[str, str] = {
    "postgresql": "ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL",
    "mysql": "ALTER TABLE {table} MODIFY {column} {type} NOT NULL",
    "mariadb": "ALTER TABLE {table} MODIFY {column} {type} NOT NULL",
    "mssql": "ALTER TABLE {table} ALTER COLUMN {column} {type} NOT NULL",
    "oracle": "ALTER TABLE {table} MODIFY ({column} NOT NULL)",
}

DEFAULT_STRING_LIMIT: int = 255
CUSTOM_DATA_COLUMN: str = "custom_data"


def repair_hint(model_name: str) -> str:
    return f'run "admingen repair-positions {model_name}"'


# ---------------------------------------------------------------------------
# Plan types
# ---------------------------------------------------------------------------


class MigrationAction(str, Enum):
    """Kinds of migration steps."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ADD_INDEX = "add_index"
    BACKFILL_POSITIONS = "backfill_positions"
    SET_NOT_NULL = "set_not_null"


@dataclass
class MigrationStep:
    """
    A single migration step.

    ``optional`` steps may fail; the failure becomes a warning.
    """

    action: MigrationAction
    table: str
    column: Optional[str] = None
    sql: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    optional: bool = False
    element: Any = field(default=None, repr=False, compare=False)

    def describe(self) -> str:
        target: str = f"{self.table}.{self.column}" if self.column else self.table
        return f"{self.action.value} {target}"


@dataclass
class MigrationPlan:
    """Steps and warnings for one model."""

    model: str
    table: str
    steps: List[MigrationStep] = field(default_factory=list)
    warnings: List[SchemaDriftWarning] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.steps) == 0

    def actions(self) -> List[MigrationAction]:
        return [s.action for s in self.steps]

    def warn(self, message: str, hint: str = "") -> SchemaDriftWarning:
        warning: SchemaDriftWarning = SchemaDriftWarning(message, hint)
        self.warnings.append(warning)
        logger.warning("%s", warning)
        return warning


# ---------------------------------------------------------------------------
# Column synthesis
# ---------------------------------------------------------------------------


def column_type_for(fdef: FieldDefinition, dialect_name: str) -> TypeEngine:
    """SQLAlchemy type for a stored field; column options applied."""
    options = fdef.effective_column_options
    kind: Optional[str] = fdef.column_type
    if kind == FieldType.STRING.value:
        return String(options.limit or DEFAULT_STRING_LIMIT)
    if kind == FieldType.TEXT.value:
        return Text()
    if kind == FieldType.INTEGER.value:
        return BigInteger() if (options.limit or 0) > 4 else Integer()
    if kind == FieldType.FLOAT.value:
        return Float()
    if kind == FieldType.DECIMAL.value:
        return Numeric(precision=options.precision, scale=options.scale)
    if kind == FieldType.BOOLEAN.value:
        return Boolean()
    if kind == FieldType.DATE.value:
        return Date()
    if kind == FieldType.DATETIME.value:
        return DateTime()
    if kind == FieldType.JSON.value:
        return _json_type(dialect_name)
    raise ConfigurationError(f"Field '{fdef.name}' has no storage mapping for type '{kind}'")


def _json_type(dialect_name: str) -> TypeEngine:
    return postgresql.JSONB() if dialect_name == "postgresql" else JSON()


def _server_default(value: Any) -> Any:
    """Literal defaults become server defaults; templates and services do not."""
    if value is None or isinstance(value, (dict, list)) or is_template(value):
        return None
    if isinstance(value, bool):
        return true() if value else false()
    if isinstance(value, (int, float, Decimal)):
        return text(str(value))
    if isinstance(value, str):
        return value
    return None


def _index_name(table: str, columns: Sequence[str], unique: bool = False) -> str:
    prefix: str = "ux" if unique else "ix"
    return f"{prefix}_{table}_{'_'.join(columns)}"


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SchemaManager:
    """
    Plans and applies additive schema changes for model definitions.

    Args:
        engine: SQLAlchemy engine of the target database.
        enforce_position_uniqueness: ``auto`` (only on dialects with
            row-level locking), ``always`` or ``never``.
    """

    def __init__(self, engine: Engine, enforce_position_uniqueness: str = "auto") -> None:
        if enforce_position_uniqueness not in UNIQUENESS_MODES:
            raise ConfigurationError(
                f"enforce_position_uniqueness must be one of {list(UNIQUENESS_MODES)}, "
                f"got '{enforce_position_uniqueness}'"
            )
        self.engine: Engine = engine
        self.enforce_position_uniqueness: str = enforce_position_uniqueness

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    # -- Desired state ------------------------------------------------------

    def build_table(self, model: ModelDefinition, metadata: Optional[MetaData] = None) -> Table:
        """
        The table *model* should have, with its required indexes.

        The optional position uniqueness index is not included; see
        ``position_index``.
        """
        dialect: str = self.dialect_name
        metadata = metadata if metadata is not None else MetaData()
        columns: List[Column] = [
            Column("id", BigInteger().with_variant(Integer(), "sqlite"), primary_key=True)
        ]
        names: Set[str] = {"id"}
        indexes: List[Tuple[Tuple[str, ...], Dict[str, Any]]] = []

        for fdef in model.stored_fields:
            if fdef.name in names:
                continue
            nullable: Optional[bool] = fdef.effective_column_options.null
            columns.append(
                Column(
                    fdef.name,
                    column_type_for(fdef, dialect),
                    nullable=True if nullable is None else nullable,
                    server_default=_server_default(fdef.default),
                )
            )
            names.add(fdef.name)

        for assoc in model.associations:
            if assoc.type != AssociationType.BELONGS_TO.value or not assoc.foreign_key:
                continue
            if assoc.foreign_key not in names:
                columns.append(Column(assoc.foreign_key, BigInteger(), nullable=not assoc.required))
                names.add(assoc.foreign_key)
                indexes.append(((assoc.foreign_key,), {}))
            type_column: Optional[str] = assoc.polymorphic_type_column
            if type_column and type_column not in names:
                columns.append(Column(type_column, String(DEFAULT_STRING_LIMIT)))
                names.add(type_column)
                indexes.append(((assoc.foreign_key, type_column), {}))

        position: Optional[str] = model.positioning_field if model.is_positioned else None
        if position and position not in names:
            columns.append(Column(position, Integer(), nullable=False))
            names.add(position)
        elif position:
            for column in columns:
                if column.name == position:
                    column.nullable = False

        if model.custom_fields_enabled and CUSTOM_DATA_COLUMN not in names:
            columns.append(Column(CUSTOM_DATA_COLUMN, _json_type(dialect)))
            names.add(CUSTOM_DATA_COLUMN)
            if dialect == "postgresql":
                indexes.append(((CUSTOM_DATA_COLUMN,), {"postgresql_using": "gin"}))

        if model.timestamps:
            for name in ("created_at", "updated_at"):
                if name not in names:
                    columns.append(Column(name, DateTime()))
                    names.add(name)

        table: Table = Table(str(model.table_name), metadata, *columns)
        for index_columns, kwargs in indexes:
            Index(
                _index_name(table.name, index_columns),
                *(table.c[c] for c in index_columns),
                **kwargs,
            )
        return table

    def position_index(self, model: ModelDefinition, table: Table) -> Optional[Index]:
        if not model.is_positioned:
            return None
        index_columns: List[str] = list(model.positioning_scope) + [str(model.positioning_field)]
        missing: List[str] = [c for c in index_columns if c not in table.c]
        if missing:
            raise ConfigurationError(
                f"Positioning of '{model.name}' names unknown column(s): {', '.join(missing)}"
            )
        return Index(
            _index_name(table.name, index_columns, unique=True),
            *(table.c[c] for c in index_columns),
            unique=True,
        )

    def _uniqueness_allowed(self) -> bool:
        mode: str = self.enforce_position_uniqueness
        if mode == "always":
            return True
        if mode == "never":
            return False
        return self.dialect_name in ROW_LOCKING_DIALECTS

    # -- Planning -----------------------------------------------------------

    def plan(self, model: ModelDefinition) -> MigrationPlan:
        """Inspect storage and list what ``ensure_schema`` would do."""
        table: Table = self.build_table(model)
        plan: MigrationPlan = MigrationPlan(model=model.name, table=table.name)
        with self.engine.connect() as conn:
            inspector = inspect(conn)
            if not inspector.has_table(table.name):
                self._plan_create(model, table, plan)
            else:
                self._plan_update(model, table, plan, conn)
        return plan

    def _plan_create(self, model: ModelDefinition, table: Table, plan: MigrationPlan) -> None:
        dialect = self.engine.dialect
        plan.steps.append(
            MigrationStep(
                action=MigrationAction.CREATE_TABLE,
                table=table.name,
                sql=str(CreateTable(table).compile(dialect=dialect)).strip(),
                details={"columns": [c.name for c in table.columns]},
                element=CreateTable(table),
            )
        )
        for index in sorted(table.indexes, key=lambda i: str(i.name)):
            plan.steps.append(self._index_step(table, index))
        self._plan_position_index(model, table, plan, existing=set())

    def _plan_update(
        self,
        model: ModelDefinition,
        table: Table,
        plan: MigrationPlan,
        conn: Connection,
    ) -> None:
        inspector = inspect(conn)
        reflected: Dict[str, Dict[str, Any]] = {
            c["name"]: c for c in inspector.get_columns(table.name)
        }
        position: Optional[str] = model.positioning_field if model.is_positioned else None

        for column in table.columns:
            if column.name in reflected:
                continue
            if not column.nullable and column.server_default is None:
                # Existing rows would violate NOT NULL; add nullable first
                column.nullable = True
                if column.name != position:
                    plan.warn(
                        f"Column {table.name}.{column.name} added as nullable: "
                        f"existing rows have no value",
                        f"backfill {table.name}.{column.name} and add NOT NULL manually",
                    )
            plan.steps.append(self._add_column_step(table, column))

        existing: Set[Any] = self._existing_index_keys(inspector, table.name)
        for index in sorted(table.indexes, key=lambda i: str(i.name)):
            key: Tuple[str, ...] = tuple(c.name for c in index.columns)
            if str(index.name) in existing or key in existing:
                continue
            plan.steps.append(self._index_step(table, index))

        if position is not None:
            self._plan_positions(model, table, plan, conn, reflected.get(position))
            self._plan_position_index(model, table, plan, existing)

    def _plan_positions(
        self,
        model: ModelDefinition,
        table: Table,
        plan: MigrationPlan,
        conn: Connection,
        reflected: Optional[Dict[str, Any]],
    ) -> None:
        position: str = str(model.positioning_field)
        current: Table = self._reflect(conn, table.name)
        query = select(func.count()).select_from(current)
        if reflected is not None:
            query = query.where(current.c[position].is_(None))
        pending: int = conn.execute(query).scalar_one()
        if pending:
            plan.steps.append(
                MigrationStep(
                    action=MigrationAction.BACKFILL_POSITIONS,
                    table=table.name,
                    column=position,
                    details={"rows": int(pending), "scope": list(model.positioning_scope)},
                )
            )

        if reflected is not None and not reflected.get("nullable", True):
            return
        template: Optional[str] = _NOT_NULL_SQL.get(self.dialect_name)
        if template is None:
            plan.warn(
                f"NOT NULL on {table.name}.{position} not enforced: "
                f"{self.dialect_name} cannot change nullability in place",
                repair_hint(model.name),
            )
            return
        column_type: str = str(table.c[position].type.compile(dialect=self.engine.dialect))
        plan.steps.append(
            MigrationStep(
                action=MigrationAction.SET_NOT_NULL,
                table=table.name,
                column=position,
                sql=template.format(
                    table=self._quote(table.name),
                    column=self._quote(position),
                    type=column_type,
                ),
            )
        )

    def _plan_position_index(
        self,
        model: ModelDefinition,
        table: Table,
        plan: MigrationPlan,
        existing: Set[Any],
    ) -> None:
        index: Optional[Index] = self.position_index(model, table)
        if index is None:
            return
        key: Tuple[str, ...] = tuple(c.name for c in index.columns)
        if str(index.name) in existing or key in existing:
            return
        if not self._uniqueness_allowed():
            plan.warn(
                f"Position uniqueness on {table.name}({', '.join(key)}) not enforced: "
                f"{self.dialect_name} has no row-level locking for concurrent reorders",
                repair_hint(model.name),
            )
            return
        step: MigrationStep = self._index_step(table, index)
        step.optional = True
        plan.steps.append(step)

    @staticmethod
    def _existing_index_keys(inspector: Any, table_name: str) -> Set[Any]:
        """Names and column tuples of reflected indexes (mixed in one set)."""
        keys: Set[Any] = set()
        for index in inspector.get_indexes(table_name):
            keys.add(tuple(c for c in index.get("column_names") or [] if c))
            if index.get("name"):
                keys.add(index["name"])
        for constraint in inspector.get_unique_constraints(table_name):
            keys.add(tuple(constraint.get("column_names") or []))
        return keys

    def _add_column_step(self, table: Table, column: Column) -> MigrationStep:
        keyword: str = "ADD" if self.dialect_name == "mssql" else "ADD COLUMN"
        ddl: str = str(CreateColumn(column).compile(dialect=self.engine.dialect)).strip()
        return MigrationStep(
            action=MigrationAction.ADD_COLUMN,
            table=table.name,
            column=column.name,
            sql=f"ALTER TABLE {self._quote(table.name)} {keyword} {ddl}",
            details={"nullable": column.nullable},
        )

    def _index_step(self, table: Table, index: Index) -> MigrationStep:
        return MigrationStep(
            action=MigrationAction.ADD_INDEX,
            table=table.name,
            column=",".join(c.name for c in index.columns),
            sql=str(CreateIndex(index).compile(dialect=self.engine.dialect)).strip(),
            details={"name": index.name, "unique": bool(index.unique)},
            element=CreateIndex(index),
        )

    # -- Execution ----------------------------------------------------------

    def ensure_schema(self, model: ModelDefinition) -> MigrationPlan:
        """
        Apply the plan for *model*; returns the executed steps and warnings.

        Required steps run in one transaction. Each optional step runs in
        its own; its failure is recorded as a warning.
        """
        planned: MigrationPlan = self.plan(model)
        executed: MigrationPlan = MigrationPlan(
            model=planned.model, table=planned.table, warnings=list(planned.warnings)
        )
        required: List[MigrationStep] = [s for s in planned.steps if not s.optional]
        optional: List[MigrationStep] = [s for s in planned.steps if s.optional]

        if required:
            with self.engine.begin() as conn:
                for step in required:
                    self._execute(conn, model, step)
                    executed.steps.append(step)

        for step in optional:
            try:
                with self.engine.begin() as conn:
                    self._execute(conn, model, step)
            except (IntegrityError, OperationalError, ProgrammingError) as exc:
                executed.warn(
                    f"Could not create {step.details.get('name')} on {step.table}: "
                    f"{exc.orig if exc.orig is not None else exc}",
                    repair_hint(model.name),
                )
                continue
            executed.steps.append(step)
        return executed

    def ensure_all(self, models: Iterable[ModelDefinition]) -> List[MigrationPlan]:
        return [self.ensure_schema(model) for model in models]

    def _execute(self, conn: Connection, model: ModelDefinition, step: MigrationStep) -> None:
        logger.info("%s", step.describe())
        if step.action == MigrationAction.BACKFILL_POSITIONS:
            count: int = self._backfill_positions(conn, model)
            logger.info("Backfilled %d position(s) in %s", count, step.table)
        elif step.element is not None:
            conn.execute(step.element)
        else:
            conn.execute(text(str(step.sql)))

    def _reflect(self, conn: Connection, table_name: str) -> Table:
        return Table(table_name, MetaData(), autoload_with=conn)

    def _backfill_positions(self, conn: Connection, model: ModelDefinition) -> int:
        """Null positions get ``max + 1`` within their scope, in id order."""
        table: Table = self._reflect(conn, str(model.table_name))
        position: Column = table.c[str(model.positioning_field)]
        scope: List[Column] = [table.c[s] for s in model.positioning_scope]
        rows = conn.execute(select(table.c.id, position, *scope).order_by(table.c.id)).all()

        highest: Dict[Tuple[Any, ...], int] = {}
        for row in rows:
            key: Tuple[Any, ...] = tuple(row[2:])
            if row[1] is not None:
                highest[key] = max(highest.get(key, 0), int(row[1]))
        filled: int = 0
        for row in rows:
            if row[1] is not None:
                continue
            key = tuple(row[2:])
            highest[key] = highest.get(key, 0) + 1
            conn.execute(update(table).where(table.c.id == row[0]).values({position: highest[key]}))
            filled += 1
        return filled

    # -- Operator repair ----------------------------------------------------

    def repair_positions(self, model: ModelDefinition) -> int:
        """
        Renumber positions ``1..n`` per scope, ordered by (position, id),
        then create the unique position index.

        Errors propagate. Returns how many rows changed.

        Raises:
            ConfigurationError: if *model* is not positioned.
        """
        if not model.is_positioned:
            raise ConfigurationError(f"Model '{model.name}' has no positioning", model.name)
        changed: int = 0
        with self.engine.begin() as conn:
            table: Table = self._reflect(conn, str(model.table_name))
            position: Column = table.c[str(model.positioning_field)]
            scope: List[Column] = [table.c[s] for s in model.positioning_scope]
            rows = conn.execute(select(table.c.id, position, *scope)).all()

            groups: Dict[Tuple[Any, ...], List[Any]] = {}
            for row in rows:
                groups.setdefault(tuple(row[2:]), []).append(row)
            for members in groups.values():
                members.sort(key=lambda r: (r[1] is None, r[1] or 0, r[0]))
                for number, row in enumerate(members, start=1):
                    if row[1] != number:
                        conn.execute(
                            update(table).where(table.c.id == row[0]).values({position: number})
                        )
                        changed += 1

            index: Optional[Index] = self.position_index(model, table)
            existing: Set[Any] = self._existing_index_keys(inspect(conn), table.name)
            if index is not None:
                key: Tuple[str, ...] = tuple(c.name for c in index.columns)
                if str(index.name) not in existing and key not in existing:
                    conn.execute(CreateIndex(index))
        logger.info("Repaired %d position(s) in %s", changed, model.table_name)
        return changed


# ---------------------------------------------------------------------------
# Uniqueness lookups
# ---------------------------------------------------------------------------


class TableUniquenessChecker:
    """
    Answers uniqueness validations with a ``SELECT`` against the model's
    table. Tables are reflected lazily and cached.
    """

    def __init__(self, engine: Engine, models: Mapping[str, ModelDefinition]) -> None:
        self.engine: Engine = engine
        self._models: Mapping[str, ModelDefinition] = models
        self._metadata: MetaData = MetaData()

    def _table(self, conn: Connection, model: str) -> Table:
        table_name: str = str(self._models[model].table_name)
        if table_name in self._metadata.tables:
            return self._metadata.tables[table_name]
        return Table(table_name, self._metadata, autoload_with=conn)

    def exists(
        self,
        model: str,
        field: str,
        value: Any,
        scope: Mapping[str, Any],
        exclude_id: Any,
    ) -> bool:
        with self.engine.connect() as conn:
            table: Table = self._table(conn, model)
            query = select(func.count()).select_from(table).where(table.c[field] == value)
            for column, scope_value in scope.items():
                query = query.where(table.c[column] == scope_value)
            if exclude_id is not None:
                query = query.where(table.c.id != exclude_id)
            return bool(conn.execute(query).scalar())


__all__: List[str] = [
    "MigrationAction",
    "MigrationPlan",
    "MigrationStep",
    "ROW_LOCKING_DIALECTS",
    "SchemaManager",
    "TableUniquenessChecker",
    "UNIQUENESS_MODES",
    "column_type_for",
    "repair_hint",
]
