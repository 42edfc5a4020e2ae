"""Database protocol, psycopg adapter and transaction boundary for order-desk services."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import re
from typing import Any, Iterator, Mapping, Optional, Protocol, Sequence

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    """Convert :named params to psycopg %(named)s format."""
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


class OrderDeskDatabase(Protocol):
    """Minimal transactional DB protocol used by order-desk services.

    One instance maps to one connection and must not be shared between threads.
    """

    @property
    def in_transaction(self) -> bool:
        """True while an explicit transaction is open."""

    def begin(self) -> None:
        """Open a transaction."""

    def commit(self) -> None:
        """Commit the open transaction."""

    def rollback(self) -> None:
        """Roll back the open transaction."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch all rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> int:
        """Execute a mutation statement and return the affected row count."""


class PsycopgDatabase:
    """Adapter implementing the order-desk DB protocol on a psycopg 3 connection.

    The connection runs in autocommit mode; ``begin`` issues an explicit BEGIN so that
    reads outside ``transaction`` never leave the session idle in a transaction.
    """

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn
        self._tx_started = False

    @property
    def in_transaction(self) -> bool:
        return self._tx_started

    def begin(self) -> None:
        if self._tx_started:
            return
        with self.conn.cursor() as cur:
            cur.execute("BEGIN")
        self._tx_started = True

    def commit(self) -> None:
        # PostgreSQL ends the transaction even when COMMIT fails.
        try:
            with self.conn.cursor() as cur:
                cur.execute("COMMIT")
        finally:
            self._tx_started = False

    def rollback(self) -> None:
        try:
            with self.conn.cursor() as cur:
                cur.execute("ROLLBACK")
        finally:
            self._tx_started = False

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> int:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))
            return cur.rowcount

    def close(self) -> None:
        self.conn.close()


def connect_database(dsn: str) -> PsycopgDatabase:
    """Open a dedicated connection for one request, worker or CLI invocation."""
    return PsycopgDatabase(psycopg.connect(dsn, autocommit=True))


@contextmanager
def transaction(db: OrderDeskDatabase) -> Iterator[OrderDeskDatabase]:
    """Run the block atomically; joins the caller's transaction when one is already open."""
    if db.in_transaction:
        yield db
        return
    db.begin()
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
    try:
        db.commit()
    except BaseException:
        db.rollback()
        raise
