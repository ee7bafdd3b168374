"""Shared fixtures: a throwaway SQLite database per test and migration helpers."""

from pathlib import Path

import pytest

from authdb.database import Database
from authdb.migrator import Migrator


def write_migration(directory: Path, name: str, up: str = "", down: str = "", extra: str = "") -> Path:
    """Write a migration unit whose UP/DOWN bodies are given as source text."""
    path = directory / f"{name}.py"
    path.write_text(
        "from authdb.operations import *\n"
        f"{extra}\n"
        f"UP = [{up}]\n"
        f"DOWN = [{down}]\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def database(db_url):
    with Database(db_url) as db:
        yield db


@pytest.fixture
def migrator(database, monkeypatch) -> Migrator:
    monkeypatch.delenv("MIGRATIONS_DIR", raising=False)
    return Migrator(database)


@pytest.fixture
def migrated(database, migrator):
    """Database with the bundled schema applied."""
    result_set = migrator.up()
    assert result_set.ok, result_set.error
    return database


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    path = tmp_path / "migrations"
    path.mkdir()
    return path
