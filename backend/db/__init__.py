"""Order-desk schema contract: ORM models and Alembic migrations."""

from __future__ import annotations

import logging

from backend.db.base import Base, metadata
from backend.db import models

logger = logging.getLogger(__name__)

__all__ = ["Base", "metadata", "models"]
