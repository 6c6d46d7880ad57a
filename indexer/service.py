"""
service.py - Indexer service entry point.

Wires storage, account path resolver, schedule tracker, fork handler and
ingestion pipeline to a block source, then runs the source until it is
exhausted or stopped.

Usage:
    chain-indexer --events data/events.jsonl [--db-path data/indexer.db]
    python -m indexer --events data/events.jsonl
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from indexer.account_paths import AccountPathResolver
from indexer.fork import ForkHandler
from indexer.pipeline import TRANSACTIONS_CHUNK_SIZE, IngestionPipeline
from indexer.schedule import BLOCK_INTERVAL_MS, ScheduleTracker
from indexer.source import BlockSource, ReplaySource
from indexer.storage import StorageManager

logger = logging.getLogger("service")


class IndexerService:
    """Owns the storage connection and the ingestion components."""

    def __init__(
        self,
        source: BlockSource,
        db_path: str = "data/indexer.db",
        block_interval_ms: int = BLOCK_INTERVAL_MS,
        trx_chunk_size: int = TRANSACTIONS_CHUNK_SIZE,
    ):
        self.source = source
        self.db_path = db_path
        self.block_interval_ms = block_interval_ms
        self.trx_chunk_size = trx_chunk_size

        self.storage: Optional[StorageManager] = None
        self.resolver: Optional[AccountPathResolver] = None
        self.tracker: Optional[ScheduleTracker] = None
        self.pipeline: Optional[IngestionPipeline] = None

    async def setup(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()

        s = self.storage
        self.resolver = AccountPathResolver(s.account_paths)
        self.tracker = ScheduleTracker(
            s.schedule_state,
            s.missed_blocks,
            s.buckets,
            s.logs,
            block_repo=s.blocks,
            block_interval_ms=self.block_interval_ms,
        )
        await self.tracker.load()
        self.pipeline = IngestionPipeline(
            s,
            self.resolver,
            self.tracker,
            ForkHandler(s, self.resolver),
            trx_chunk_size=self.trx_chunk_size,
        )

        meta = await s.meta.get()
        await self.source.set_last_block_meta(
            meta["lastProcessedBlockNum"],
            meta["lastProcessedSequence"],
            irreversible_block_num=meta["irreversibleBlockNum"],
        )
        self.source.subscribe(self.pipeline.handle)

    async def start(self):
        await self.setup()
        try:
            await self.source.start()
        finally:
            await self.stop()

    async def stop(self):
        await self.source.stop()
        if self.storage:
            await self.storage.close()
            self.storage = None


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def main():
    """CLI entry point for the indexer."""
    parser = argparse.ArgumentParser(description="Fork-aware block indexer")
    parser.add_argument(
        "--db-path", default=os.environ.get("INDEXER_DB_PATH", "data/indexer.db"),
        help="SQLite database path (default: data/indexer.db)",
    )
    parser.add_argument(
        "--events", default=os.environ.get("INDEXER_EVENTS_PATH"),
        help="JSON-lines file of block events to ingest",
    )
    parser.add_argument(
        "--block-interval-ms", type=int,
        default=_env_int("INDEXER_BLOCK_INTERVAL_MS", BLOCK_INTERVAL_MS),
        help="Block production interval (default: 3000)",
    )
    parser.add_argument(
        "--trx-chunk-size", type=int,
        default=_env_int("INDEXER_TRX_CHUNK_SIZE", TRANSACTIONS_CHUNK_SIZE),
        help="Transactions per bulk insert (default: 100)",
    )
    parser.add_argument(
        "--log-level", default=os.environ.get("INDEXER_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.events:
        parser.error("--events is required (or set INDEXER_EVENTS_PATH)")

    service = IndexerService(
        ReplaySource(path=args.events),
        db_path=args.db_path,
        block_interval_ms=args.block_interval_ms,
        trx_chunk_size=args.trx_chunk_size,
    )

    logger.info("=" * 60)
    logger.info("  Block indexer")
    logger.info("  Events:   %s", args.events)
    logger.info("  Database: %s", args.db_path)
    logger.info("=" * 60)

    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception:
        logger.exception("Ingestion halted, restart to resume from the last checkpoint")
        sys.exit(1)


if __name__ == "__main__":
    main()
