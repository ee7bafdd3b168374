"""Database layer for the auth service: models, connection lifecycle and migrations."""

from .config import DatabaseConfig
from .database import Database
from .migrator import Migrator

__all__ = ["Database", "DatabaseConfig", "Migrator"]
