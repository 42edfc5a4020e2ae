"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from typing import Any

import psycopg
import pytest

from orderdesk.database import PsycopgDatabase
from orderdesk.ledger import BalanceLedger
from orderdesk.token_guard import TokenRotationGuard
from tests.utils.memory_db import MemoryBackend, MemoryDatabase, MutableClock


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def db(backend: MemoryBackend) -> MemoryDatabase:
    return backend.session()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def ledger(db: MemoryDatabase, clock: MutableClock) -> BalanceLedger:
    return BalanceLedger(db, clock=clock)


@pytest.fixture
def guard(db: MemoryDatabase, clock: MutableClock) -> TokenRotationGuard:
    return TokenRotationGuard(db, clock=clock)


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_* to run against PostgreSQL")

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def pg_db(pg_conn: Any) -> PsycopgDatabase:
    """Order-desk DB adapter over the integration connection."""
    return PsycopgDatabase(pg_conn)
