import json
from typing import List, Optional

import aiosqlite

from ._insert import InsertResult, insert_one


class AccountRepo:
    """Accounts created on chain, unique on (id, block_id)."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(
        self,
        account_id: str,
        block_id: str,
        block_num: int,
        block_time: str,
        creator: str = "",
        keys: Optional[dict] = None,
        username: Optional[str] = None,
    ) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO accounts (id, block_id, block_num, block_time, creator, username, keys_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (account_id, block_id, block_num, block_time, creator or "", username,
             json.dumps(keys or {})),
        )

    async def get(self, account_id: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT id, block_id, block_num, block_time, creator, username, keys_json "
            "FROM accounts WHERE id = ? ORDER BY block_num DESC LIMIT 1",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_dict(row)

    async def list_all(self) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT id, block_id, block_num, block_time, creator, username, keys_json "
            "FROM accounts ORDER BY block_num"
        ) as cursor:
            async for row in cursor:
                results.append(self._row_to_dict(row))
        return results

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute("DELETE FROM accounts WHERE block_num > ?", (block_num,))
        await self._db.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_dict(row) -> dict:
        return {
            "id": row[0],
            "blockId": row[1],
            "blockNum": row[2],
            "blockTime": row[3],
            "registrationTime": row[3],
            "creator": row[4],
            "username": row[5],
            "keys": json.loads(row[6]),
        }
