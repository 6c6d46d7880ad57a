import logging
from typing import Optional

import aiosqlite

from ._migrate import run_migrations
from .account_paths import AccountPathRepo
from .accounts import AccountRepo
from .agents import StakeAgentRepo
from .balances import TokenBalanceRepo
from .blocks import BlockRepo
from .buckets import AccountBucketRepo
from .logs import LogRepo
from .meta import ServiceMetaRepo
from .missed_blocks import MissedBlockRepo
from .proposals import ProposalRepo
from .schedule_state import ScheduleStateRepo
from .transactions import TransactionRepo

logger = logging.getLogger("storage")


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos."""

    def __init__(self, db_path: str = "indexer.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self.blocks: Optional[BlockRepo] = None
        self.transactions: Optional[TransactionRepo] = None
        self.accounts: Optional[AccountRepo] = None
        self.account_paths: Optional[AccountPathRepo] = None
        self.balances: Optional[TokenBalanceRepo] = None
        self.agents: Optional[StakeAgentRepo] = None
        self.proposals: Optional[ProposalRepo] = None
        self.buckets: Optional[AccountBucketRepo] = None
        self.missed_blocks: Optional[MissedBlockRepo] = None
        self.schedule_state: Optional[ScheduleStateRepo] = None
        self.meta: Optional[ServiceMetaRepo] = None
        self.logs: Optional[LogRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await run_migrations(self._db, logger)

        self.blocks = BlockRepo(self._db)
        self.transactions = TransactionRepo(self._db)
        self.accounts = AccountRepo(self._db)
        self.account_paths = AccountPathRepo(self._db)
        self.balances = TokenBalanceRepo(self._db)
        self.agents = StakeAgentRepo(self._db)
        self.proposals = ProposalRepo(self._db)
        self.buckets = AccountBucketRepo(self._db)
        self.missed_blocks = MissedBlockRepo(self._db)
        self.schedule_state = ScheduleStateRepo(self._db)
        self.meta = ServiceMetaRepo(self._db)
        self.logs = LogRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
