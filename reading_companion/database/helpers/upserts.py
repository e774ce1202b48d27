"""
Dialect-aware INSERT .. ON CONFLICT helpers.

PostgreSQL runs in production and SQLite in tests; both dialects ship an
``insert`` construct exposing ``on_conflict_do_update`` / ``on_conflict_do_nothing``
with the same signature, so DAOs pick the right one from the session's bind.
"""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


def dialect_insert(session: AsyncSession, entity):
    """Return ``insert(entity)`` from the dialect of `session` (raises for unsupported backends)."""
    name = dialect_name(session)
    try:
        return _INSERTS[name](entity)
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on the '{name}' dialect") from None
