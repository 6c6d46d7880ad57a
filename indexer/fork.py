"""
fork.py - Fork rollback.

Deletes every reversible record above the fork base so the new branch can
be ingested from base + 1 without duplicate-key conflicts, and takes the
orphaned blocks back out of the producer block counts. Proposals, the
schedule tracker state and missed blocks are written only for irreversible
blocks and are left alone.
"""

import logging
from collections import Counter
from typing import TYPE_CHECKING, Dict

from indexer.utils import bucket_id, from_iso

if TYPE_CHECKING:
    from indexer.account_paths import AccountPathResolver
    from indexer.storage import StorageManager

logger = logging.getLogger("fork")


class ForkHandler:
    """Rolls derived state back to a common ancestor block."""

    def __init__(self, storage: "StorageManager", resolver: "AccountPathResolver"):
        self._storage = storage
        self._resolver = resolver

    async def rollback(self, base_block_num: int) -> Dict[str, int]:
        logger.warning("Fork detected, rolling back to block %d", base_block_num)

        s = self._storage
        orphaned = Counter(
            (bucket_id(from_iso(block_time)), producer)
            for block_time, producer in await s.blocks.list_producers_above(base_block_num)
        )
        for (bucket, producer), count in orphaned.items():
            await s.buckets.increment(bucket, producer, blocks=-count)

        removed = {
            "blocks": await s.blocks.delete_above(base_block_num),
            "transactions": await s.transactions.delete_above(base_block_num),
            "accounts": await s.accounts.delete_above(base_block_num),
            "accountPaths": await s.account_paths.delete_above(base_block_num),
            "balances": await s.balances.delete_above(base_block_num),
            "agents": await s.agents.delete_above(base_block_num),
        }
        purged = self._resolver.purge_newer_than(base_block_num)

        logger.info(
            "Fork rollback done: %s, %d cached contracts purged",
            ", ".join(f"{k}={v}" for k, v in removed.items()),
            purged,
        )
        return removed
