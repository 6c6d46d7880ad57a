import time
from typing import List, Optional

import aiosqlite


class LogRepo:
    """Append-only diagnostic trail."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def append(self, block_num: int, module: str, text: str):
        await self._db.execute(
            "INSERT INTO logs (block_num, module, text, created_at) VALUES (?, ?, ?, ?)",
            (block_num or 0, module, text, time.time()),
        )
        await self._db.commit()

    async def list_all(self, module: Optional[str] = None) -> List[dict]:
        query = "SELECT block_num, module, text, created_at FROM logs"
        params: tuple = ()
        if module is not None:
            query += " WHERE module = ?"
            params = (module,)
        query += " ORDER BY id"
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append({
                    "blockNum": row[0],
                    "module": row[1],
                    "text": row[2],
                    "createdAt": row[3],
                })
        return results
