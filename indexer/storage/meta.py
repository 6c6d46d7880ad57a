import time

import aiosqlite


class ServiceMetaRepo:
    """Singleton ingestion checkpoint."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self) -> dict:
        async with self._db.execute(
            "SELECT last_processed_block_num, last_processed_sequence, irreversible_block_num "
            "FROM service_meta WHERE id = 1"
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            await self._db.execute(
                "INSERT OR IGNORE INTO service_meta (id, updated_at) VALUES (1, ?)",
                (time.time(),),
            )
            await self._db.commit()
            row = (None, None, None)
        return {
            "lastProcessedBlockNum": row[0],
            "lastProcessedSequence": row[1],
            "irreversibleBlockNum": row[2],
        }

    async def set_last_processed(self, block_num: int, sequence: int):
        await self.get()
        await self._db.execute(
            "UPDATE service_meta SET last_processed_block_num = ?, last_processed_sequence = ?, "
            "updated_at = ? WHERE id = 1",
            (block_num, sequence, time.time()),
        )
        await self._db.commit()

    async def set_irreversible(self, block_num: int):
        await self.get()
        await self._db.execute(
            "UPDATE service_meta SET irreversible_block_num = ?, updated_at = ? WHERE id = 1",
            (block_num, time.time()),
        )
        await self._db.commit()
