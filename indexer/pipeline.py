"""
pipeline.py - Block event ingestion.

Dispatches BLOCK / IRREVERSIBLE_BLOCK / FORK events from the block source:

    BLOCK              -> block + transaction documents, counters rollup,
                          producer bucket, learned account paths, storables,
                          checkpoint
    IRREVERSIBLE_BLOCK -> schedule tracker, msig proposals, finality mark
    FORK               -> ForkHandler rollback

Events are handled one at a time. Every write tolerates redelivery: natural
key conflicts are reported as InsertResult.ALREADY_EXISTS and skipped, any
other storage error propagates and stops ingestion.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Union

from indexer.models import BlockData, BlockEvent, EventType, TransactionData
from indexer.storables import (
    Storables,
    collect_block_storables,
    collect_irreversible_storables,
    save_block_storables,
    save_irreversible_storables,
)
from indexer.storage import InsertResult
from indexer.utils import bucket_id, merge_counters, to_iso

if TYPE_CHECKING:
    from indexer.account_paths import AccountPathResolver
    from indexer.fork import ForkHandler
    from indexer.schedule import ScheduleTracker
    from indexer.storage import StorageManager

logger = logging.getLogger("pipeline")

TRANSACTIONS_CHUNK_SIZE = 100

TRX_INDEXES = ["codes", "actions", "codeActions", "actors", "actorsPerm", "accounts", "eventNames"]
BLOCK_INDEXES = ["codes", "actions", "codeActions", "actors", "actorsPerm", "eventNames"]


class IngestionPipeline:
    """Turns block events into indexed documents."""

    def __init__(
        self,
        storage: "StorageManager",
        resolver: "AccountPathResolver",
        tracker: "ScheduleTracker",
        fork_handler: "ForkHandler",
        trx_chunk_size: int = TRANSACTIONS_CHUNK_SIZE,
    ):
        self._storage = storage
        self._resolver = resolver
        self._tracker = tracker
        self._fork = fork_handler
        self._trx_chunk_size = trx_chunk_size

    async def handle(self, event: Union[BlockEvent, dict]):
        if isinstance(event, dict):
            event = BlockEvent.from_dict(event)

        if event.type is EventType.BLOCK:
            await self.handle_block(event.data)
        elif event.type is EventType.IRREVERSIBLE_BLOCK:
            await self.handle_irreversible_block(event.data)
        elif event.type is EventType.FORK:
            await self.handle_fork(event.data.base_block_num)

    # -- BLOCK -------------------------------------------------------------------

    async def handle_block(self, block: BlockData):
        parent_total = await self._storage.blocks.get_total_counters(block.parent_id)

        trx_docs = await asyncio.gather(*(
            self.extract_transaction(block, index, trx)
            for index, trx in enumerate(block.transactions)
        ))

        block_indexes: Dict[str, Dict[str, bool]] = {k: {} for k in BLOCK_INDEXES}
        for doc in trx_docs:
            for key in BLOCK_INDEXES:
                block_indexes[key].update(dict.fromkeys(doc["actionsIndexes"][key], True))

        storables = collect_block_storables(block)
        current = self.compute_counters(block, storables)

        doc = {
            "id": block.id,
            "parentId": block.parent_id,
            "blockNum": block.block_num,
            "blockTime": to_iso(block.block_time),
            "producer": block.producer,
            "schedule": list(block.schedule),
            "transactionIds": [trx.id for trx in block.transactions],
            "counters": {
                "current": current,
                "total": merge_counters(parent_total, current),
            },
        }
        if block.next_schedule and block.next_schedule != block.schedule:
            doc["nextSchedule"] = list(block.next_schedule)
        for key in BLOCK_INDEXES:
            doc[key] = list(block_indexes[key])

        result = await self._storage.blocks.insert(doc)
        if result is InsertResult.OK:
            await self._storage.buckets.increment(
                bucket_id(block.block_time), block.producer, blocks=1
            )
        else:
            logger.info("Block %d (%s) already stored", block.block_num, block.id)

        if trx_docs:
            inserted, duplicates = await self._storage.transactions.insert_many(
                list(trx_docs), chunk_size=self._trx_chunk_size
            )
            if duplicates:
                logger.info(
                    "Block %d: %d transactions stored, %d already present",
                    block.block_num, inserted, duplicates,
                )

        await self._resolver.learn_from_block(block)
        await save_block_storables(self._storage, storables)
        await self._storage.meta.set_last_processed(block.block_num, block.sequence)

        logger.debug(
            "Block %d processed: %d transactions, %d actions",
            block.block_num, len(block.transactions), current["actions"]["count"],
        )

    async def extract_transaction(self, block: BlockData, index: int, trx: TransactionData) -> dict:
        doc = trx.to_doc()
        indexes: Dict[str, Dict[str, bool]] = {k: {} for k in TRX_INDEXES}

        for action, action_doc in zip(trx.actions, doc.get("actions", [])):
            indexes["codes"][action.code] = True
            indexes["actions"][action.action] = True
            indexes["codeActions"][f"{action.code}::{action.action}"] = True

            actors = {}
            for auth in action.auth:
                indexes["actors"][auth.actor] = True
                indexes["actorsPerm"][f"{auth.actor}@{auth.permission}"] = True
                actors[auth.actor] = True

            if action.args:
                # actors already have their own facet
                accounts = [
                    a for a in await self._resolver.extract_accounts(action.code, action.action, action.args)
                    if a not in actors
                ]
                indexes["accounts"].update(dict.fromkeys(accounts, True))
                action_doc["accounts"] = accounts

            if action_doc.get("data") == "":
                del action_doc["data"]

            for event, event_doc in zip(action.events, action_doc.get("events", [])):
                indexes["eventNames"][event.event] = True
                if event_doc.get("data") == "":
                    del event_doc["data"]

        doc.update({
            "index": index,
            "blockId": block.id,
            "blockNum": block.block_num,
            "blockTime": to_iso(block.block_time),
            "actionsCount": len(trx.actions),
            "actionsIndexes": {k: list(v) for k, v in indexes.items()},
        })
        return doc

    @staticmethod
    def compute_counters(block: BlockData, storables: Storables) -> dict:
        transactions = {"executed": 0, "total": len(block.transactions)}
        actions_count = 0
        for trx in block.transactions:
            transactions[trx.status] = transactions.get(trx.status, 0) + 1
            actions_count += len(trx.actions)
        return {
            "accounts": {"created": len(storables.accounts)},
            "transactions": transactions,
            "actions": {"count": actions_count},
        }

    # -- IRREVERSIBLE_BLOCK ------------------------------------------------------

    async def handle_irreversible_block(self, block: BlockData):
        # misses are only tracked on final blocks, they are never rolled back
        await self._tracker.process_block(
            block.producer, list(block.schedule), block.block_num, block.block_time
        )

        storables = collect_irreversible_storables(block)
        await save_irreversible_storables(self._storage, storables)

        # finality checkpoint goes last
        await self._storage.meta.set_irreversible(block.block_num)

        swept = self._resolver.cache.sweep()
        if swept:
            logger.debug("Account path cache: %d expired entries swept", swept)

    # -- FORK --------------------------------------------------------------------

    async def handle_fork(self, base_block_num: int) -> Dict[str, int]:
        return await self._fork.rollback(base_block_num)
