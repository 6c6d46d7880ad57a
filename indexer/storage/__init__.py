from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from ._insert import InsertResult
from .blocks import BlockRepo
from .transactions import TransactionRepo
from .accounts import AccountRepo
from .account_paths import AccountPathRepo
from .balances import TokenBalanceRepo
from .agents import StakeAgentRepo
from .proposals import ProposalRepo
from .buckets import AccountBucketRepo
from .missed_blocks import MissedBlockRepo
from .schedule_state import ScheduleStateRepo
from .meta import ServiceMetaRepo
from .logs import LogRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "InsertResult",
    "BlockRepo",
    "TransactionRepo",
    "AccountRepo",
    "AccountPathRepo",
    "TokenBalanceRepo",
    "StakeAgentRepo",
    "ProposalRepo",
    "AccountBucketRepo",
    "MissedBlockRepo",
    "ScheduleStateRepo",
    "ServiceMetaRepo",
    "LogRepo",
    "StorageManager",
]
