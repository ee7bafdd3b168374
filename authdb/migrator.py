"""Migration runner.

Migration units are ``<timestamp>_<name>.py`` files in one directory. Each
defines ``UP`` and ``DOWN`` (sequences of ``authdb.operations`` objects)
and may set ``TRANSACTIONAL = False`` for statements that cannot run in a
transaction. Applied units are recorded in the ``schema_migration`` table.
"""
import enum
import importlib.util
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import sqlalchemy as sa

from .config import migrations_dir as migrations_dir_from_config
from .errors import InvalidMigrationError, MigrationError, MigrationStateError, MigrationUsageError
from .logger import log
from .operations import SchemaExecutor

MIGRATION_TABLE = "schema_migration"

# Key for pg_advisory_lock; any runner using this package shares it
LOCK_KEY = 7_246_011_759

migration_table = sa.Table(
    MIGRATION_TABLE,
    sa.MetaData(),
    sa.Column("name", sa.String(255), primary_key=True),
    sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False),
)

TEMPLATE = '''from authdb.operations import *  # noqa: F401,F403

UP = [
    # Write your migration here
]

DOWN = [
    # Write your rollback here
]
'''


class MigrationStatus(str, enum.Enum):
    SUCCESS = "Success"
    ERROR = "Error"
    NOT_EXECUTED = "NotExecuted"


@dataclass(frozen=True)
class Migration:
    name: str
    path: Path
    up: tuple
    down: tuple
    transactional: bool = True


@dataclass(frozen=True)
class MigrationResult:
    name: str
    direction: str
    status: MigrationStatus


@dataclass
class MigrationResultSet:
    results: list = field(default_factory=list)
    error: MigrationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def executed(self):
        return [r for r in self.results if r.status is MigrationStatus.SUCCESS]


@dataclass(frozen=True)
class MigrationInfo:
    name: str
    executed_at: datetime | None = None

    @property
    def applied(self) -> bool:
        return self.executed_at is not None


# --- DISCOVERY ---

def load_migration(path: Path) -> Migration:
    spec = importlib.util.spec_from_file_location(f"authdb_migration_{path.stem}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for attr in ("UP", "DOWN"):
        if not isinstance(getattr(module, attr, None), (list, tuple)):
            raise InvalidMigrationError(f'Migration "{path.stem}" must define {attr} as a list of operations')

    return Migration(
        name=path.stem,
        path=path,
        up=tuple(module.UP),
        down=tuple(module.DOWN),
        transactional=getattr(module, "TRANSACTIONAL", True),
    )


def load_migrations(directory) -> list:
    """All migration units in ``directory``, in execution (name) order."""
    directory = Path(directory)
    if not directory.is_dir():
        log.warning(f"Migrations directory not found: {directory}")
        return []
    paths = sorted(p for p in directory.glob("*.py") if not p.name.startswith("_"))
    return [load_migration(p) for p in paths]


def create_migration(directory, name) -> Path:
    """Write an empty migration unit. Never touches the database."""
    slug = re.sub(r"\W+", "_", (name or "").strip()).strip("_").lower()
    if not slug:
        raise MigrationUsageError("Please provide a migration name")

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{int(time.time() * 1000)}_{slug}.py"
    if path.exists():
        raise MigrationUsageError(f"Migration already exists: {path.name}")

    path.write_text(TEMPLATE, encoding="utf-8")
    log.info(f"Created migration: {path.name}")
    return path


# --- RUNNER ---

class Migrator:
    def __init__(self, database, migrations_dir=None):
        self.database = database
        self.migrations_dir = Path(migrations_dir) if migrations_dir else migrations_dir_from_config()

    def migrations(self):
        return load_migrations(self.migrations_dir)

    def create(self, name) -> Path:
        return create_migration(self.migrations_dir, name)

    def status(self):
        """Every known unit with its execution time (None while pending)."""
        migrations = self.migrations()
        with self.database.connection() as conn:
            executed = self._executed(conn)
        return [MigrationInfo(m.name, executed.get(m.name)) for m in migrations]

    def up(self) -> MigrationResultSet:
        """Apply all pending units, stopping at the first failure."""
        migrations = self.migrations()
        with self._locked() as conn:
            executed = self._executed(conn)
            self._check(migrations, executed)
            pending = [m for m in migrations if m.name not in executed]
            if not pending:
                log.info("No pending migrations")
            return self._run(conn, pending, "up")

    def down(self) -> MigrationResultSet:
        """Undo the most recently applied unit only."""
        migrations = self.migrations()
        with self._locked() as conn:
            executed = self._executed(conn)
            self._check(migrations, executed)
            if not executed:
                log.info("No applied migrations to roll back")
                return MigrationResultSet()
            by_name = {m.name: m for m in migrations}
            return self._run(conn, [by_name[max(executed)]], "down")

    # --- internals ---

    @contextmanager
    def _locked(self):
        """One connection for the whole run, holding the runner lock."""
        with self.database.connection() as conn:
            postgres = conn.dialect.name == "postgresql"
            if postgres:
                conn.execute(sa.text("SELECT pg_advisory_lock(:key)"), {"key": LOCK_KEY})
            migration_table.create(conn, checkfirst=True)
            conn.commit()
            try:
                yield conn
            finally:
                if postgres:
                    conn.rollback()
                    conn.execute(sa.text("SELECT pg_advisory_unlock(:key)"), {"key": LOCK_KEY})
                    conn.commit()

    def _executed(self, conn):
        if not sa.inspect(conn).has_table(MIGRATION_TABLE):
            conn.rollback()
            return {}
        rows = conn.execute(sa.select(migration_table.c.name, migration_table.c.executed_at)).all()
        conn.rollback()
        return {name: executed_at for name, executed_at in rows}

    def _check(self, migrations, executed):
        names = {m.name for m in migrations}
        missing = sorted(set(executed) - names)
        if missing:
            raise MigrationStateError(f'Previously executed migration "{missing[0]}" is missing')

        if executed:
            last = max(executed)
            for m in migrations:
                if m.name not in executed and m.name < last:
                    raise MigrationStateError(
                        f'Pending migration "{m.name}" sorts before executed migration "{last}"'
                    )

    def _run(self, conn, migrations, direction):
        results = []
        for i, migration in enumerate(migrations):
            try:
                self._apply(conn, migration, direction)
            except Exception as e:
                log.error(f'❌ Migration "{migration.name}" failed ({direction}): {e}')
                results.append(MigrationResult(migration.name, direction, MigrationStatus.ERROR))
                results.extend(
                    MigrationResult(m.name, direction, MigrationStatus.NOT_EXECUTED) for m in migrations[i + 1:]
                )
                error = MigrationError(migration.name, direction, e)
                error.__cause__ = e
                return MigrationResultSet(results, error)

            log.info(f'✅ Migration "{migration.name}" {direction} done')
            results.append(MigrationResult(migration.name, direction, MigrationStatus.SUCCESS))
        return MigrationResultSet(results)

    def _apply(self, conn, migration, direction):
        operations = migration.up if direction == "up" else migration.down

        if migration.transactional:
            with conn.begin():
                SchemaExecutor(conn).run(operations)
                self._record(conn, migration.name, direction)
            return

        with self.database.engine.connect() as autocommit:
            autocommit = autocommit.execution_options(isolation_level="AUTOCOMMIT")
            SchemaExecutor(autocommit).run(operations)
        with conn.begin():
            self._record(conn, migration.name, direction)

    def _record(self, conn, name, direction):
        if direction == "up":
            conn.execute(migration_table.insert().values(name=name, executed_at=datetime.now(timezone.utc)))
        else:
            conn.execute(migration_table.delete().where(migration_table.c.name == name))
