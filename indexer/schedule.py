"""
schedule.py - Producer schedule tracker.

The chain never says "producer X skipped its slot". Missed slots are
inferred from the time elapsed between consecutive irreversible blocks and
the round-robin order of the active schedule:

    missed = round(elapsed / block_interval) - 1

The tracker is either synced (the queue holds the producers still expected
in this round) or syncing (a schedule changed at a boundary with misses and
the skip list is resolved when the next block shows who is really next).
Every call persists the state so a restart continues where it stopped.
Desync never raises: it is written to the Log collection and the tracker
resynchronizes on the following block.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

from indexer.storage import InsertResult
from indexer.utils import bucket_id, from_iso, to_iso

if TYPE_CHECKING:
    from indexer.storage import (
        AccountBucketRepo,
        BlockRepo,
        LogRepo,
        MissedBlockRepo,
        ScheduleStateRepo,
    )

logger = logging.getLogger("schedule")

BLOCK_INTERVAL_MS = 3000
MAX_MISSED = 21
FIRST_PRODUCED_BLOCK_NUM = 2
LOG_MODULE = "Schedule"


def _index(items: List[str], value: str) -> int:
    try:
        return items.index(value)
    except ValueError:
        return -1


class ScheduleTracker:
    """Infers missed production slots from irreversible blocks."""

    def __init__(
        self,
        state_repo: "ScheduleStateRepo",
        missed_repo: "MissedBlockRepo",
        bucket_repo: "AccountBucketRepo",
        log_repo: "LogRepo",
        block_repo: Optional["BlockRepo"] = None,
        block_interval_ms: int = BLOCK_INTERVAL_MS,
    ):
        self._states = state_repo
        self._missed = missed_repo
        self._buckets = bucket_repo
        self._logs = log_repo
        self._blocks = block_repo
        self._interval = timedelta(milliseconds=block_interval_ms)
        self._loaded = False

        self.queue: List[str] = []
        self.schedule: List[str] = []
        self.block_num = 0
        self.block_time: Optional[datetime] = None
        self.must_sync = True
        self.sync_state: dict = {}

    # -- state ---------------------------------------------------------------

    async def load(self):
        state = await self._states.load()
        self._loaded = True
        if state is None:
            return
        self.queue = list(state.get("queue") or [])
        self.schedule = list(state.get("schedule") or [])
        self.block_num = state.get("blockNum") or 0
        self.block_time = from_iso(state.get("blockTime"))
        self.must_sync = bool(state.get("mustSync", True))
        sync_state = state.get("syncState") or {}
        if sync_state:
            sync_state = dict(sync_state, prevTime=from_iso(sync_state.get("prevTime")))
        self.sync_state = sync_state
        logger.info(
            "Schedule state restored at block %d (mustSync=%s, queue=%s)",
            self.block_num, self.must_sync, self.queue,
        )

    def to_doc(self) -> dict:
        sync_state = {}
        if self.sync_state:
            sync_state = dict(self.sync_state)
            if sync_state.get("prevTime") is not None:
                sync_state["prevTime"] = to_iso(sync_state["prevTime"])
            sync_state["queue"] = list(sync_state.get("queue") or [])
        return {
            "queue": list(self.queue),
            "schedule": list(self.schedule),
            "blockNum": self.block_num,
            "blockTime": to_iso(self.block_time) if self.block_time else None,
            "mustSync": self.must_sync,
            "syncState": sync_state,
        }

    async def save(self):
        await self._states.save(self.to_doc())

    # -- processing ------------------------------------------------------------

    async def process_block(
        self, producer: str, schedule: List[str], block_num: int, block_time: datetime
    ):
        if not self._loaded:
            await self.load()

        if self.block_num and block_num <= self.block_num:
            await self._note(
                block_num, f"Got already processed block {block_num} (tracked {self.block_num})"
            )
            return

        if self.block_num and block_num != self.block_num + 1:
            self.block_time = None
            self.sync_state = {}
            await self._fatality(block_num, f"blockNum gap: {self.block_num}-{block_num}")

        prev_time = self.block_time or block_time
        missed = 0
        if self.block_time is not None:
            elapsed = (block_time - self.block_time) / self._interval
            missed = math.floor(elapsed + 0.5) - 1
        self.block_time = block_time
        self.block_num = block_num

        if missed > MAX_MISSED or missed < 0:
            self.sync_state = {}
            await self._fatality(block_num, f"Chain stop or bad block time, missed: {missed}")
            missed = 0

        if self.must_sync and self.sync_state.get("queue") is not None:
            await self._resolve_sync(producer, missed, block_num)

        if self.must_sync:
            self._init(producer, schedule, block_num)
        elif schedule == self.schedule:
            await self._advance(producer, missed, block_num, prev_time)
        else:
            await self._change_schedule(producer, schedule, missed, block_num, prev_time)

        await self.save()

    async def _resolve_sync(self, producer: str, missed: int, block_num: int):
        prev_queue = list(self.sync_state["queue"])
        prev_missed = self.sync_state["missed"]
        idx = _index(self.schedule, producer)
        count_in_prev = prev_missed - (idx - missed) + 1

        # A one-producer schedule changing early looks like two changes in a row
        two_changes = (
            count_in_prev == len(prev_queue) + 1
            and idx == missed
            and len(prev_queue) == prev_missed
        )
        if two_changes:
            await self._note(block_num, f"2 schedule changes: {idx},{len(prev_queue)}")

        if count_in_prev <= len(prev_queue) or two_changes:
            skippers = []
            while count_in_prev > 0 and prev_missed > 0 and prev_queue:
                skippers.append(prev_queue.pop(0))
                count_in_prev -= 1
                prev_missed -= 1
            while prev_missed > 0 and self.queue:
                skippers.append(self.queue.pop(0))
                prev_missed -= 1
            if count_in_prev == 0 and not two_changes and self.queue:
                # producer of the boundary block opened the new round
                self.queue.pop(0)
            await self._store_skippers(skippers, block_num - 1, self.sync_state["prevTime"])
            self.must_sync = False
        else:
            await self._fatality(
                block_num,
                f"Unexpected sync: {idx},{missed},{prev_missed},{len(prev_queue)}",
            )
        self.sync_state = {}

    def _init(self, producer: str, schedule: List[str], block_num: int):
        self.schedule = list(schedule)
        idx = _index(schedule, producer)
        queue = list(schedule)
        # Ambiguous on the first produced block: it is kept unrotated
        if idx != len(schedule) - 1 and block_num != FIRST_PRODUCED_BLOCK_NUM:
            queue = queue[idx + 1:]
        self.queue = queue
        self.must_sync = False
        logger.info("Schedule synced at block %d by %s, queue=%s", block_num, producer, queue)

    async def _advance(self, producer: str, missed: int, block_num: int, prev_time: datetime):
        pos = _index(self.queue, producer)
        if pos < 0:
            if len(self.schedule) > 1:
                await self._fatality(block_num, f"Rare: same schedule, {producer} not in queue")
            return

        skippers = []
        for _ in range(missed):
            skippers.append(self.queue.pop(0))
            pos -= 1
            if not self.queue or pos < 0:
                await self._fatality(block_num, f"Pos/queue unsync: {producer} pos {pos}")
                return
        if pos != 0:
            await self._fatality(block_num, f"Pos mismatch: {producer} pos {pos}")
            return

        self.queue.pop(0)
        await self._store_skippers(skippers, block_num, prev_time)

    async def _change_schedule(
        self,
        producer: str,
        schedule: List[str],
        missed: int,
        block_num: int,
        prev_time: datetime,
    ):
        if missed == 0:
            last = self.queue.pop(0) if self.queue else None
            self.schedule = list(schedule)
            self.queue = list(schedule)
            if last != producer:
                await self._fatality(
                    block_num, f"Unsynced last producer: expected {last}, got {producer}"
                )
            return

        self.must_sync = True
        self.sync_state = {
            "queue": self.queue,
            "missed": missed,
            "blockNum": block_num,
            "prevTime": prev_time,
        }
        self.schedule = list(schedule)
        self.queue = list(schedule)
        logger.info("Schedule changed with %d missed at block %d, syncing", missed, block_num)

    async def _store_skippers(self, skippers: List[str], block_num: int, prev_time: datetime):
        block_time = prev_time
        for producer in skippers:
            block_time = block_time + self._interval
            result = await self._missed.insert(to_iso(block_time), block_num, producer)
            if result is InsertResult.OK:
                await self._buckets.increment(bucket_id(block_time), producer, misses=1)
                logger.info("Missed block: %s at %s (block %d)", producer, to_iso(block_time), block_num)

    async def _fatality(self, block_num: int, text: str):
        logger.warning("Schedule desync at block %d: %s", block_num, text)
        await self._logs.append(block_num, LOG_MODULE, text)
        self.must_sync = True
        await self.save()

    async def _note(self, block_num: int, text: str):
        logger.info("Block %d: %s", block_num, text)
        await self._logs.append(block_num, LOG_MODULE, text)

    # -- read helpers ----------------------------------------------------------

    async def count_misses(self, producers: List[str]) -> Dict[str, int]:
        return await self._missed.count_by_producer(producers)

    async def count_blocks(self, producers: List[str]) -> Dict[str, dict]:
        if self._blocks is None:
            raise RuntimeError("ScheduleTracker was built without a BlockRepo")
        return await self._blocks.count_by_producer(producers)

    async def bucket_totals(self, accounts: List[str]) -> Dict[str, dict]:
        return await self._buckets.totals(accounts)

    async def get_buckets(self, accounts: List[str], buckets: Optional[List[str]] = None) -> List[dict]:
        return await self._buckets.list_for(accounts, buckets)
