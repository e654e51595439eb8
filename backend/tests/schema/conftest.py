"""Pytest fixtures for schema tests.

Applies the Alembic revisions under backend/migrations/versions to a fresh
in-memory database, without an alembic.ini or a running server.
"""

import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Generator, List

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

VERSIONS_DIR = Path(__file__).parent.parent.parent / "migrations" / "versions"


def load_revisions() -> List[ModuleType]:
    """Revision modules in file order (001, 002, ...)."""
    revisions = []
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        spec = importlib.util.spec_from_file_location(f"revision_{path.stem}", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        revisions.append(module)
    return revisions


def run_migrations(engine: Engine, revisions: List[ModuleType], direction: str = "upgrade") -> None:
    steps = revisions if direction == "upgrade" else list(reversed(revisions))
    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            for revision in steps:
                getattr(revision, direction)()


@pytest.fixture
def revisions() -> List[ModuleType]:
    return load_revisions()


@pytest.fixture
def migrate(revisions):
    """Run every revision against an engine in the given direction."""
    def _run(engine: Engine, direction: str = "upgrade") -> None:
        run_migrations(engine, revisions, direction)
    return _run


@pytest.fixture
def migrated_engine(revisions) -> Generator[Engine, None, None]:
    """Database built by the migrations instead of metadata.create_all()."""
    migrated = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    run_migrations(migrated, revisions)
    yield migrated
    migrated.dispose()
