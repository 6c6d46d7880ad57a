from typing import List, Optional

import aiosqlite

from ._insert import InsertResult, insert_one


class TokenBalanceRepo:
    """Token balance snapshots, unique on (account, symbol, block_num)."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def insert(
        self,
        account: str,
        symbol: str,
        block_num: int,
        balance: str,
        payments: Optional[str] = None,
    ) -> InsertResult:
        return await insert_one(
            self._db,
            "INSERT INTO token_balances (account, symbol, block_num, balance, payments) "
            "VALUES (?, ?, ?, ?, ?)",
            (account, symbol, block_num, balance, payments),
        )

    async def get_latest(self, account: str, symbol: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT account, symbol, block_num, balance, payments FROM token_balances "
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
            "balance": row[3],
            "payments": row[4],
        }

    async def list_for_account(self, account: str) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT account, symbol, block_num, balance, payments FROM token_balances "
            "WHERE account = ? ORDER BY block_num DESC",
            (account,),
        ) as cursor:
            async for row in cursor:
                results.append({
                    "account": row[0],
                    "symbol": row[1],
                    "blockNum": row[2],
                    "balance": row[3],
                    "payments": row[4],
                })
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM token_balances") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_above(self, block_num: int) -> int:
        cursor = await self._db.execute(
            "DELETE FROM token_balances WHERE block_num > ?", (block_num,)
        )
        await self._db.commit()
        return cursor.rowcount
