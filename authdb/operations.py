"""Declarative schema operations and the executor that applies them.

A migration unit is plain data: two lists of the operation objects defined
here (``UP`` and ``DOWN``). ``SchemaExecutor`` turns each operation into DDL
for the dialect of the connection it runs on, so the same unit works on
PostgreSQL and SQLite. Operations that only make sense on one backend
(extensions, PL/pgSQL functions) are skipped elsewhere.
"""
import enum
import re
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy import schema as ddl

from .logger import log

__all__ = [
    "NOW", "GENERATED_ID", "Column", "CreateExtension", "CreateTable", "DropTable", "CreateIndex",
    "DropIndex", "AddColumn", "DropColumn", "CreateUpdatedAtFunction", "DropUpdatedAtFunction",
    "CreateUpdatedAtTrigger", "DropUpdatedAtTrigger", "Execute", "SchemaExecutor",
]

UPDATED_AT_FUNCTION = "update_updated_at_column"


class Default(enum.Enum):
    NOW = "now"
    GENERATED_ID = "generated_id"


NOW = Default.NOW
GENERATED_ID = Default.GENERATED_ID

_VARCHAR = re.compile(r"varchar\((\d+)\)$")


def sql_type(name):
    """Map a semantic column type to a SQLAlchemy type."""
    if name == "uuid":
        return sa.Uuid()
    if name == "text":
        return sa.Text()
    if name == "boolean":
        return sa.Boolean()
    if name == "integer":
        return sa.Integer()
    if name == "timestamp":
        return sa.DateTime(timezone=True)
    match = _VARCHAR.match(name)
    if match:
        return sa.String(int(match.group(1)))
    raise ValueError(f"Unknown column type: {name!r}")


# --- OPERATIONS ---

@dataclass(frozen=True)
class Column:
    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: object = None
    references: str | None = None  # "table.column"
    on_delete: str | None = None

    def __post_init__(self):
        sql_type(self.type)


@dataclass(frozen=True)
class CreateExtension:
    name: str


@dataclass(frozen=True)
class CreateTable:
    name: str
    columns: tuple
    unique: tuple = ()  # composite unique constraints, tuples of column names
    if_not_exists: bool = False


@dataclass(frozen=True)
class DropTable:
    name: str
    if_exists: bool = True


@dataclass(frozen=True)
class CreateIndex:
    name: str
    table: str
    columns: tuple
    unique: bool = False


@dataclass(frozen=True)
class DropIndex:
    name: str
    if_exists: bool = True


@dataclass(frozen=True)
class AddColumn:
    table: str
    column: Column
    if_not_exists: bool = False

    def __post_init__(self):
        if self.column.references:
            raise ValueError("AddColumn cannot add a foreign key; create the table with it instead")


@dataclass(frozen=True)
class DropColumn:
    table: str
    name: str


@dataclass(frozen=True)
class CreateUpdatedAtFunction:
    """Shared trigger function that stamps updated_at (PostgreSQL only)."""


@dataclass(frozen=True)
class DropUpdatedAtFunction:
    pass


@dataclass(frozen=True)
class CreateUpdatedAtTrigger:
    table: str


@dataclass(frozen=True)
class DropUpdatedAtTrigger:
    table: str


@dataclass(frozen=True)
class Execute:
    """Raw SQL; limited to one dialect when ``dialect`` is set."""
    sql: str
    dialect: str | None = None


# --- EXECUTOR ---

_HANDLERS = {}


def _handles(op_type):
    def decorator(func):
        _HANDLERS[op_type] = func
        return func
    return decorator


def trigger_name(table):
    return f"update_{table}_updated_at"


class SchemaExecutor:
    """Applies operations on one connection.

    Tables created during the run are remembered so later operations
    (foreign keys, indexes) can refer to them without reflection. Tables
    from earlier runs are reflected on first use.
    """

    def __init__(self, conn):
        self.conn = conn
        self.dialect = conn.dialect.name
        self.metadata = sa.MetaData()

    def run(self, operations):
        for op in operations:
            self.apply(op)

    def apply(self, op):
        handler = _HANDLERS.get(type(op))
        if handler is None:
            raise TypeError(f"Not a schema operation: {op!r}")
        handler(self, op)

    def skip(self, op):
        log.debug(f"Skipping {type(op).__name__} on {self.dialect}")

    def execute(self, statement):
        if isinstance(statement, str):
            statement = sa.text(statement)
        self.conn.execute(statement)

    def table(self, name):
        if name in self.metadata.tables:
            return self.metadata.tables[name]
        return sa.Table(name, self.metadata, autoload_with=self.conn)

    def forget(self, name):
        table = self.metadata.tables.get(name)
        if table is not None:
            self.metadata.remove(table)

    def quote(self, name):
        return self.conn.dialect.identifier_preparer.quote(name)

    def server_default(self, default):
        if default is None:
            return None
        if default is NOW:
            return sa.text("CURRENT_TIMESTAMP")
        if default is GENERATED_ID:
            if self.dialect == "postgresql":
                return sa.text("uuid_generate_v4()")
            if self.dialect == "sqlite":
                return sa.text("(lower(hex(randomblob(16))))")
            return None
        if isinstance(default, bool):
            return sa.true() if default else sa.false()
        if isinstance(default, int):
            return sa.text(str(default))
        return default

    def build_column(self, spec, owner=None):
        args = [spec.name, sql_type(spec.type)]
        if spec.references:
            ref_table = spec.references.split(".", 1)[0]
            if ref_table != owner:
                # make the referenced table resolvable in this metadata
                self.table(ref_table)
            args.append(sa.ForeignKey(spec.references, ondelete=spec.on_delete))
        kwargs = {
            "primary_key": spec.primary_key,
            "nullable": spec.nullable and not spec.primary_key,
            "unique": spec.unique,
        }
        server_default = self.server_default(spec.default)
        if server_default is not None:
            kwargs["server_default"] = server_default
        return sa.Column(*args, **kwargs)


@_handles(CreateExtension)
def _create_extension(ex, op):
    if ex.dialect != "postgresql":
        return ex.skip(op)
    ex.execute(f'CREATE EXTENSION IF NOT EXISTS "{op.name}"')


@_handles(CreateTable)
def _create_table(ex, op):
    ex.forget(op.name)
    columns = [ex.build_column(spec, owner=op.name) for spec in op.columns]
    constraints = [sa.UniqueConstraint(*names) for names in op.unique]
    table = sa.Table(op.name, ex.metadata, *columns, *constraints)
    ex.execute(ddl.CreateTable(table, if_not_exists=op.if_not_exists))


@_handles(DropTable)
def _drop_table(ex, op):
    ex.forget(op.name)
    ex.execute(ddl.DropTable(sa.Table(op.name, sa.MetaData()), if_exists=op.if_exists))


@_handles(CreateIndex)
def _create_index(ex, op):
    table = ex.table(op.table)
    index = sa.Index(op.name, *[table.c[name] for name in op.columns], unique=op.unique)
    ex.execute(ddl.CreateIndex(index))


@_handles(DropIndex)
def _drop_index(ex, op):
    ex.execute(ddl.DropIndex(sa.Index(op.name), if_exists=op.if_exists))


@_handles(AddColumn)
def _add_column(ex, op):
    if op.if_not_exists:
        existing = {col["name"] for col in sa.inspect(ex.conn).get_columns(op.table)}
        if op.column.name in existing:
            log.info(f"Column '{op.column.name}' already exists in '{op.table}'")
            return
    table = ex.table(op.table)
    column = ex.build_column(op.column)
    table.append_column(column)
    spec = ddl.CreateColumn(column).compile(dialect=ex.conn.dialect)
    ex.execute(f"ALTER TABLE {ex.quote(op.table)} ADD COLUMN {spec}")
    ex.forget(op.table)


@_handles(DropColumn)
def _drop_column(ex, op):
    ex.execute(f"ALTER TABLE {ex.quote(op.table)} DROP COLUMN {ex.quote(op.name)}")
    ex.forget(op.table)


@_handles(CreateUpdatedAtFunction)
def _create_updated_at_function(ex, op):
    if ex.dialect != "postgresql":
        return ex.skip(op)
    ex.execute(f"""
        CREATE OR REPLACE FUNCTION {UPDATED_AT_FUNCTION}()
        RETURNS TRIGGER AS $$
        BEGIN
          NEW.updated_at = CURRENT_TIMESTAMP;
          RETURN NEW;
        END;
        $$ language 'plpgsql'
    """)


@_handles(DropUpdatedAtFunction)
def _drop_updated_at_function(ex, op):
    if ex.dialect != "postgresql":
        return ex.skip(op)
    ex.execute(f"DROP FUNCTION IF EXISTS {UPDATED_AT_FUNCTION} CASCADE")


@_handles(CreateUpdatedAtTrigger)
def _create_updated_at_trigger(ex, op):
    name = trigger_name(op.table)
    table = ex.quote(op.table)
    if ex.dialect == "postgresql":
        ex.execute(f"""
            CREATE TRIGGER {name}
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION {UPDATED_AT_FUNCTION}()
        """)
    elif ex.dialect == "sqlite":
        # SQLite cannot assign NEW.*; stamp the row after the update instead.
        # Recursive triggers are off by default, so the inner UPDATE does not refire.
        ex.execute(f"""
            CREATE TRIGGER {name}
            AFTER UPDATE ON {table}
            FOR EACH ROW
            BEGIN
              UPDATE {table} SET updated_at = CURRENT_TIMESTAMP WHERE rowid = NEW.rowid;
            END
        """)
    else:
        ex.skip(op)


@_handles(DropUpdatedAtTrigger)
def _drop_updated_at_trigger(ex, op):
    name = trigger_name(op.table)
    if ex.dialect == "postgresql":
        ex.execute(f"DROP TRIGGER IF EXISTS {name} ON {ex.quote(op.table)}")
    elif ex.dialect == "sqlite":
        ex.execute(f"DROP TRIGGER IF EXISTS {name}")
    else:
        ex.skip(op)


@_handles(Execute)
def _execute(ex, op):
    if op.dialect and op.dialect != ex.dialect:
        return ex.skip(op)
    ex.execute(op.sql)
