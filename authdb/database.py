from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from .config import DatabaseConfig
from .errors import DatabaseNotInitializedError
from .logger import log

SMOKE_QUERY = "SELECT 1"


def _sqlite_connect(dbapi_connection, connection_record):
    # pysqlite only opens a transaction before DML, so DDL would commit
    # statement by statement; take over BEGIN in _sqlite_begin instead
    dbapi_connection.isolation_level = None
    # SQLite ignores FOREIGN KEY / ON DELETE CASCADE unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_begin(conn):
    if conn.get_execution_options().get("isolation_level") == "AUTOCOMMIT":
        return
    # IMMEDIATE takes the write lock up front, so writers queue behind each other
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns the connection pool for one database.

    Lifecycle is explicit: construct, ``connect()`` (which verifies the
    connection), use ``engine`` / ``session()``, then ``close()``.
    Used as a context manager it connects on enter and always closes on exit::

        with Database.from_config(DatabaseConfig.from_env()) as db:
            with db.session() as s:
                ...
    """

    def __init__(self, url, **engine_options):
        self.url = url
        self.engine_options = engine_options
        self._engine = None
        self._session_factory = None

    @classmethod
    def from_config(cls, config: DatabaseConfig):
        return cls(config.url, **config.engine_options())

    # --- LIFECYCLE ---

    def connect(self):
        """Create the pool and run the smoke query. Failures propagate."""
        if self._engine is not None:
            return self

        # pool_pre_ping drops connections that died while idle in the pool
        engine = create_engine(self.url, echo=False, pool_pre_ping=True, **self.engine_options)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _sqlite_connect)
            event.listen(engine, "begin", _sqlite_begin)

        try:
            with engine.connect() as conn:
                conn.execute(text(SMOKE_QUERY))
        except Exception as e:
            log.error(f"❌ Database connection failed: {e}")
            engine.dispose()
            raise

        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        log.info(f"✅ Database connected successfully ({engine.url.render_as_string(hide_password=True)})")
        return self

    def close(self):
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        log.info("🔌 Database connection closed")

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # --- ACCESS ---

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self):
        if self._engine is None:
            raise DatabaseNotInitializedError()
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self):
        """ORM session, closed on exit. Commit is up to the caller."""
        if self._session_factory is None:
            raise DatabaseNotInitializedError()
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def connection(self):
        with self.engine.connect() as conn:
            yield conn
