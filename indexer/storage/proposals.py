import json
from typing import List, Optional

import aiosqlite

from ._insert import InsertResult, insert_one


class ProposalRepo:
    """Multisig proposals, unique on (proposer, name, block_num).

    At most one active (final_status IS NULL) per (proposer, name).
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def find_active(self, proposer: str, name: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT id, doc FROM proposals "
            "WHERE proposer = ? AND name = ? AND final_status IS NULL "
            "ORDER BY id DESC LIMIT 1",
            (proposer, name),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        doc = json.loads(row[1])
        doc["_rowid"] = row[0]
        return doc

    async def exists(self, proposer: str, name: str, block_num: int) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM proposals WHERE proposer = ? AND name = ? AND block_num = ?",
            (proposer, name, block_num),
        ) as cursor:
            row = await cursor.fetchone()
        return row is not None

    async def upsert_active(self, proposal: dict, block_num: int) -> InsertResult:
        """Merge `proposal` into the active proposal, creating it when absent."""
        current = await self.find_active(proposal["proposer"], proposal["name"])
        if current is None:
            doc = dict(proposal)
            doc.setdefault("blockNum", block_num)
            return await insert_one(
                self._db,
                "INSERT INTO proposals (proposer, name, block_num, final_status, doc) "
                "VALUES (?, ?, ?, ?, ?)",
                (doc["proposer"], doc["name"], doc["blockNum"],
                 doc.get("finalStatus"), json.dumps(doc)),
            )

        rowid = current.pop("_rowid")
        merged = {**current, **proposal}
        await self._db.execute(
            "UPDATE proposals SET doc = ?, final_status = ? WHERE id = ?",
            (json.dumps(merged), merged.get("finalStatus"), rowid),
        )
        await self._db.commit()
        return InsertResult.OK

    async def list_for(self, proposer: str, name: str) -> List[dict]:
        results = []
        async with self._db.execute(
            "SELECT doc FROM proposals WHERE proposer = ? AND name = ? ORDER BY id",
            (proposer, name),
        ) as cursor:
            async for row in cursor:
                results.append(json.loads(row[0]))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM proposals") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
