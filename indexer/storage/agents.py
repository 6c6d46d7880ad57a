from typing import Optional

import aiosqlite

from ._insert import InsertResult, insert_one


class StakeAgentRepo:
    """Stake agent parameter changes, unique on (account, symbol, block_num)."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(
        self,
        account: str,
        symbol: str,
        block_num: int,
        fee: Optional[int] = None,
        proxy_level: Optional[int] = None,
        min_stake: Optional[int] = None,
    ) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO stake_agents (account, symbol, block_num, fee, proxy_level, min_stake) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (account, symbol, block_num, fee, proxy_level, min_stake),
        )

    async def get_latest(self, account: str, symbol: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT account, symbol, block_num, fee, proxy_level, min_stake FROM stake_agents "
            "WHERE account = ? AND symbol = ? ORDER BY block_num DESC LIMIT 1",
            (account, symbol),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "account": row[0],
            "symbol": row[1],
            "blockNum": row[2],
            "fee": row[3],
            "proxyLevel": row[4],
            "minStake": row[5],
        }

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM stake_agents") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute(
            "DELETE FROM stake_agents WHERE block_num > ?", (block_num,)
        )
        await self._db.commit()
        return cursor.rowcount
