"""Dialect-aware INSERT ... ON CONFLICT builder."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: Any) -> Any:
    """Return an INSERT for ``model`` that supports ``on_conflict_do_*`` on the session's backend."""
    if db.bind is not None and db.bind.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
