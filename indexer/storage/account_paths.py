import json
from typing import List, Optional

import aiosqlite

from ._insert import InsertResult, insert_one


class AccountPathRepo:
    """Account paths learned from setabi, newest block_num wins."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(
        self, account: str, action: str, block_num: int, paths: List[str]
    ) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO account_paths (account, action, block_num, paths_json) VALUES (?, ?, ?, ?)",
            (account, action, block_num, json.dumps(list(paths))),
        )

    async def find_latest(self, account: str, action: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT account, action, block_num, paths_json FROM account_paths "
            "WHERE account = ? AND action = ? ORDER BY block_num DESC LIMIT 1",
            (account, action),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "account": row[0],
            "action": row[1],
            "blockNum": row[2],
            "accountPaths": json.loads(row[3]),
        }

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM account_paths") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute(
            "DELETE FROM account_paths WHERE block_num > ?", (block_num,)
        )
        await self._db.commit()
        return cursor.rowcount
