"""
Dialect-aware INSERT constructs for unique-constraint upserts.

PostgreSQL and SQLite both support INSERT ... ON CONFLICT, but SQLAlchemy
exposes it through dialect-specific insert() functions.
"""

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(db: AsyncSession, table: Table):
    """
    Return an insert() for `table` that supports on_conflict_do_* on the session's dialect.

    Raises:
        NotImplementedError: for databases without ON CONFLICT support
    """
    dialect_name = db.bind.dialect.name
    try:
        insert = _INSERTS[dialect_name]
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on {dialect_name}")
    return insert(table)
