import enum
import logging
from typing import Iterable, Sequence, Tuple

import aiosqlite

from ..utils import chunked

logger = logging.getLogger("storage")


class InsertResult(enum.Enum):
    """Outcome of a natural-key insert."""

    OK = "ok"
    ALREADY_EXISTS = "already_exists"


def is_duplicate(exc: aiosqlite.IntegrityError) -> bool:
    """Unique/primary key conflict, as opposed to NOT NULL or CHECK failures."""
    return "UNIQUE constraint failed" in str(exc)


async def insert_one(db: aiosqlite.Connection, sql: str, params: Sequence) -> InsertResult:
    """Insert a single row; a unique-key conflict is reported, not raised."""
    try:
        await db.execute(sql, params)
    except aiosqlite.IntegrityError as exc:
        await db.rollback()
        if not is_duplicate(exc):
            raise
        return InsertResult.ALREADY_EXISTS
    await db.commit()
    return InsertResult.OK


async def insert_many(
    db: aiosqlite.Connection,
    sql: str,
    rows: Sequence[Sequence],
    chunk_size: int = 100,
) -> Tuple[int, int]:
    """Bulk insert in chunks, degrading to per-row inserts on conflicts.

    Returns (inserted, duplicates).
    """
    inserted = 0
    duplicates = 0
    for chunk in chunked(rows, chunk_size):
        try:
            await db.executemany(sql, chunk)
            await db.commit()
            inserted += len(chunk)
        except aiosqlite.IntegrityError:
            await db.rollback()
            logger.debug("Bulk insert conflict, retrying %d rows one by one", len(chunk))
            ok, dup = await _insert_separately(db, sql, chunk)
            inserted += ok
            duplicates += dup
    return inserted, duplicates


async def _insert_separately(
    db: aiosqlite.Connection, sql: str, rows: Iterable[Sequence]
) -> Tuple[int, int]:
    inserted = 0
    duplicates = 0
    for row in rows:
        if await insert_one(db, sql, row) is InsertResult.OK:
            inserted += 1
        else:
            duplicates += 1
    return inserted, duplicates
