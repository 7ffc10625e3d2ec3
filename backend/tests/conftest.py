"""Shared fixtures: throwaway SQLite databases and an engine services container."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from job_tracker.config import AppConfig
from job_tracker.database import create_db_engine
from job_tracker.models import Base


@pytest.fixture
def session_factory() -> Iterator[sessionmaker[Session]]:
    """In-memory SQLite shared by every session (single-threaded tests only)."""
    engine = create_db_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path: Path) -> Iterator[sessionmaker[Session]]:
    """File-backed SQLite, for tests where job or worker threads touch the database."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'tracker.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        _env_file=None,
        database_url="sqlite:///:memory:",
        credential_secret_key="test-secret",
        enrichment_standard_delay_sec=0.0,
        enrichment_backoff_delay_sec=0.2,
        enrichment_requests_per_minute=1000,
    )
