from typing import Dict, List, Optional

import aiosqlite


class AccountBucketRepo:
    """Per-month per-account produced/missed block accumulators."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def increment(self, bucket: str, account: str, blocks: int = 0, misses: int = 0):
        await self._db.execute(
            "INSERT INTO account_buckets (bucket, account, blocks_count, misses_count) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(bucket, account) DO UPDATE SET "
            "blocks_count = blocks_count + excluded.blocks_count, "
            "misses_count = misses_count + excluded.misses_count",
            (bucket, account, blocks, misses),
        )
        await self._db.commit()

    async def get(self, bucket: str, account: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT bucket, account, blocks_count, misses_count FROM account_buckets "
            "WHERE bucket = ? AND account = ?",
            (bucket, account),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "bucket": row[0],
            "account": row[1],
            "blocksCount": row[2],
            "missesCount": row[3],
        }

    async def list_for(self, accounts: List[str], buckets: Optional[List[str]] = None) -> List[dict]:
        if not accounts:
            return []
        query = (
            "SELECT bucket, account, blocks_count, misses_count FROM account_buckets "
            f"WHERE account IN ({', '.join('?' for _ in accounts)})"
        )
        params = tuple(accounts)
        if buckets is not None:
            if not buckets:
                return []
            query += f" AND bucket IN ({', '.join('?' for _ in buckets)})"
            params += tuple(buckets)
        query += " ORDER BY account, bucket"
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append({
                    "bucket": row[0],
                    "account": row[1],
                    "blocksCount": row[2],
                    "missesCount": row[3],
                })
        return results

    async def totals(self, accounts: List[str]) -> Dict[str, dict]:
        if not accounts:
            return {}
        result = {}
        async with self._db.execute(
            "SELECT account, SUM(blocks_count), SUM(misses_count) FROM account_buckets "
            f"WHERE account IN ({', '.join('?' for _ in accounts)}) GROUP BY account",
            tuple(accounts),
        ) as cursor:
            async for row in cursor:
                result[row[0]] = {"blocksCount": row[1], "missesCount": row[2]}
        return result
