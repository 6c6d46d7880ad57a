import json
import time
from typing import Optional

import aiosqlite


class ScheduleStateRepo:
    """Singleton recovery state of the producer schedule tracker."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def load(self) -> Optional[dict]:
        async with self._db.execute("SELECT doc FROM schedule_state WHERE id = 1") as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def save(self, state: dict):
        await self._db.execute(
            "INSERT INTO schedule_state (id, doc, updated_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET doc = excluded.doc, updated_at = excluded.updated_at",
            (json.dumps(state), time.time()),
        )
        await self._db.commit()
