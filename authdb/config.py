import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url

from .errors import ConfigError

# Read .env from the working directory; real environment variables win
load_dotenv()

# === CONNECTION DEFAULTS ===
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
DEFAULT_NAME = "auth_db"
DEFAULT_USER = "postgres"
DEFAULT_PASSWORD = "password"
DRIVER = "postgresql+psycopg2"

# === POOL DEFAULTS ===
DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10
DEFAULT_POOL_TIMEOUT = 30

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def _int_env(environ, key, default):
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database: str = DEFAULT_NAME
    user: str = DEFAULT_USER
    password: str = field(default=DEFAULT_PASSWORD, repr=False)
    pool_size: int = DEFAULT_POOL_SIZE
    max_overflow: int = DEFAULT_MAX_OVERFLOW
    pool_timeout: int = DEFAULT_POOL_TIMEOUT
    # DATABASE_URL, when set, replaces the individual connection fields
    database_url: str | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls, environ=None):
        """Build a config from DB_* variables (os.environ by default)."""
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("DB_HOST") or DEFAULT_HOST,
            port=_int_env(env, "DB_PORT", DEFAULT_PORT),
            database=env.get("DB_NAME") or DEFAULT_NAME,
            user=env.get("DB_USER") or DEFAULT_USER,
            password=env.get("DB_PASSWORD") or DEFAULT_PASSWORD,
            pool_size=_int_env(env, "DB_POOL_SIZE", DEFAULT_POOL_SIZE),
            max_overflow=_int_env(env, "DB_MAX_OVERFLOW", DEFAULT_MAX_OVERFLOW),
            pool_timeout=_int_env(env, "DB_POOL_TIMEOUT", DEFAULT_POOL_TIMEOUT),
            database_url=env.get("DATABASE_URL") or None,
        )

    @property
    def url(self) -> URL:
        if self.database_url:
            return make_url(self.database_url)
        return URL.create(
            DRIVER,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def engine_options(self) -> dict:
        """Pool options for server backends (SQLite uses its own pools)."""
        if self.url.get_backend_name() == "sqlite":
            return {}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
        }


def migrations_dir(environ=None) -> Path:
    env = os.environ if environ is None else environ
    value = env.get("MIGRATIONS_DIR")
    return Path(value) if value else MIGRATIONS_DIR
