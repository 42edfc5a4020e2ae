"""Declarative base for the order-desk schema contract.

Constraint names follow the ``pk_``/``uq_``/``ck_``/``fk_``/``ix_`` prefixes used in the
Alembic DDL so autogenerated diffs line up with the hand-written migration.
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

NAMING_CONVENTION: dict[str, str] = {
    "pk": "pk_%(table_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class OrderDeskBase(DeclarativeBase):
    """Base class for all order-desk ORM models."""

    metadata = metadata


Base = OrderDeskBase
