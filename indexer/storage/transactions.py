import json
from typing import List, Optional, Tuple

import aiosqlite

from ._insert import insert_many

_INSERT_SQL = (
    "INSERT INTO transactions (id, idx, block_id, block_num, block_time, status, doc) "
    "VALUES (?, ?, ?, ?, ?, ?, ?)"
)


class TransactionRepo:
    """Transaction documents, unique on transaction id."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert_many(self, docs: List[dict], chunk_size: int = 100) -> Tuple[int, int]:
        rows = [
            (
                doc["id"],
                doc["index"],
                doc["blockId"],
                doc["blockNum"],
                doc["blockTime"],
                doc["status"],
                json.dumps(doc),
            )
            for doc in docs
        ]
        return await insert_many(self._db, _INSERT_SQL, rows, chunk_size=chunk_size)

    async def get(self, trx_id: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT doc FROM transactions WHERE id = ?", (trx_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def list_for_block(self, block_id: str) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT doc FROM transactions WHERE block_id = ? ORDER BY idx", (block_id,)
        ) as cursor:
            async for row in cursor:
                results.append(json.loads(row[0]))
        return results

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT doc FROM transactions ORDER BY block_num, idx"
        ) as cursor:
            async for row in cursor:
                results.append(json.loads(row[0]))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM transactions") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute(
            "DELETE FROM transactions WHERE block_num > ?", (block_num,)
        )
        await self._db.commit()
        return cursor.rowcount
