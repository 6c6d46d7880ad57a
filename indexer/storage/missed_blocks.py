from typing import Dict, List

import aiosqlite

from ._insert import InsertResult, insert_one


class MissedBlockRepo:
    """Inferred missed production slots, unique on the synthesized block time."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(self, block_time: str, block_num: int, producer: str) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO missed_blocks (block_time, block_num, producer) VALUES (?, ?, ?)",
            (block_time, block_num, producer),
        )

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT block_time, block_num, producer FROM missed_blocks ORDER BY block_time"
        ) as cursor:
            async for row in cursor:
                results.append({"blockTime": row[0], "blockNum": row[1], "producer": row[2]})
        return results

    async def count_by_producer(self, producers: List[str]) -> Dict[str, int]:
        if not producers:
            return {}
        result = {}
        async with self._db.execute(
            "SELECT producer, COUNT(*) FROM missed_blocks "
            f"WHERE producer IN ({', '.join('?' for _ in producers)}) GROUP BY producer",
            tuple(producers),
        ) as cursor:
            async for row in cursor:
                result[row[0]] = row[1]
        return result

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM missed_blocks") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
