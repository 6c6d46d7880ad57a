import json
from typing import Dict, List, Optional, Tuple

import aiosqlite

from ._insert import InsertResult, insert_one


class BlockRepo:
    """Block documents, unique on block id."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, doc: dict) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO blocks (id, parent_id, block_num, block_time, producer, doc) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                doc["id"],
                doc["parentId"],
                doc["blockNum"],
                doc["blockTime"],
                doc["producer"],
                json.dumps(doc),
            ),
        )

    async def get(self, block_id: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT doc FROM blocks WHERE id = ?", (block_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def get_total_counters(self, block_id: str) -> Optional[dict]:
        block = await self.get(block_id)
        if block is None:
            return None
        return block.get("counters", {}).get("total")

    async def list_by_num(self, block_num: int) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT doc FROM blocks WHERE block_num = ?", (block_num,)
        ) as cursor:
            async for row in cursor:
                results.append(json.loads(row[0]))
        return results

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute("SELECT doc FROM blocks ORDER BY block_num") as cursor:
            async for row in cursor:
                results.append(json.loads(row[0]))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM blocks") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_by_producer(self, producers: List[str]) -> Dict[str, dict]:
        """Produced blocks per producer with the latest block time."""
        if not producers:
            return {}
        marks = ", ".join("?" for _ in producers)
        result = {}
        async with self._db.execute(
            f"SELECT producer, COUNT(*), MAX(block_time) FROM blocks "
            f"WHERE producer IN ({marks}) GROUP BY producer",
            tuple(producers),
        ) as cursor:
            async for row in cursor:
                result[row[0]] = {"count": row[1], "latest": row[2]}
        return result

    async def list_producers_above(self, block_num: int) -> List[Tuple[str, str]]:
        """(block_time, producer) of every block above `block_num`."""
        results = []
        async with self._db.execute(
            "SELECT block_time, producer FROM blocks WHERE block_num > ? ORDER BY block_num",
            (block_num,),
        ) as cursor:
            async for row in cursor:
                results.append((row[0], row[1]))
        return results

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute("DELETE FROM blocks WHERE block_num > ?", (block_num,))
        await self._db.commit()
        return cursor.rowcount
