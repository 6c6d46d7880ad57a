"""
Shared fixtures for the indexer integration tests.

Provides a fully wired ingestion stack over in-memory storage and helpers
to build chains of block events.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

import pytest_asyncio

from indexer.account_paths import AccountPathResolver
from indexer.fork import ForkHandler
from indexer.pipeline import IngestionPipeline
from indexer.schedule import ScheduleTracker
from indexer.storage import StorageManager

from tests.conftest import make_block


@dataclass
class IndexerStack:
    storage: StorageManager
    resolver: AccountPathResolver
    tracker: ScheduleTracker
    pipeline: IngestionPipeline


def build_stack(storage: StorageManager, trx_chunk_size: int = 100) -> IndexerStack:
    resolver = AccountPathResolver(storage.account_paths)
    tracker = ScheduleTracker(
        storage.schedule_state,
        storage.missed_blocks,
        storage.buckets,
        storage.logs,
        block_repo=storage.blocks,
    )
    pipeline = IngestionPipeline(
        storage, resolver, tracker, ForkHandler(storage, resolver), trx_chunk_size=trx_chunk_size
    )
    return IndexerStack(storage, resolver, tracker, pipeline)


def make_chain(first: int,
               last: int,
               transactions: Optional[Callable[[int], List[dict]]] = None,
               suffix: str = "",
               fork_base: Optional[int] = None,
               producer: str = "prod.a") -> List[dict]:
    """Blocks first..last linked by parentId.

    With `suffix`, block ids get the suffix and the first block hangs off
    `fork_base` of the main chain.
    """
    blocks = []
    for num in range(first, last + 1):
        if num == first and fork_base is not None:
            parent_id = f"block-{fork_base}"
        else:
            parent_id = f"block-{num - 1}{suffix}"
        blocks.append(make_block(
            num,
            producer=producer,
            block_id=f"block-{num}{suffix}",
            parent_id=parent_id,
            transactions=transactions(num) if transactions else [],
            sequence=num * 10 + (1 if suffix else 0),
        ))
    return blocks


@pytest_asyncio.fixture
async def stack(storage):
    return build_stack(storage)
