"""
account_paths.py - Where do account names live inside action arguments?

Two tiers answer (contract, action) -> list of argument paths:
 - a curated table for system and application contracts whose ABIs are stable
 - paths learned from `setabi` actions, persisted via AccountPathRepo and
   cached in memory per contract

Transfers carry an extra account in their free-text memo for a few
recipients; those are recovered with per-recipient regular expressions.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from indexer.abi import AbiDecodeError, AbiDecoder, JsonAbiDecoder
from indexer.utils import extract_by_path

if TYPE_CHECKING:
    from indexer.models import ActionData, BlockData
    from indexer.storage import AccountPathRepo

logger = logging.getLogger("account_paths")

NAME_RE = r"([a-z0-5][a-z0-5.]{0,11})"

# Transfer recipients that encode a beneficiary account in the memo
MEMO_PATTERNS: Dict[str, "re.Pattern"] = {
    "gls.vesting": re.compile(rf"^send to: {NAME_RE};"),
    "cyber.stake": re.compile(rf"^{NAME_RE}( |$)"),
}

# Contracts whose actions are only ever sent internally
INTERNAL_CONTRACTS = {"cyber.govern"}

ACCOUNT_FIELD_TYPES = {"name", "name?", "name[]"}

SETABI_CONTRACT = "cyber"
SETABI_ACTION = "setabi"

CURATED_PATHS: Dict[str, Dict[str, List[str]]] = {
    "cyber": {
        "newaccount": [
            "creator",
            "name",
            "owner/accounts/permission/actor",
            "active/accounts/permission/actor",
        ],
        "updateauth": ["account", "auth/accounts/permission/actor"],
        "deleteauth": ["account"],
        "linkauth": ["account", "code"],
        "unlinkauth": ["account", "code"],
        "setcode": ["account"],
        "setabi": ["account"],
        "reqauth": ["from"],
        "bidname": ["bidder", "newname"],
        "bidrefund": ["bidder"],
        "providebw": ["provider", "account"],
        "checkwin": [],
    },
    "cyber.domain": {
        "newusername": ["creator", "owner"],
        "newdomain": ["creator"],
        "passdomain": ["from", "to"],
        "linkdomain": ["owner", "to"],
        "unlinkdomain": ["owner"],
        "biddomain": ["bidder"],
        "biddmrefund": ["bidder"],
        "checkwin": [],
    },
    "cyber.msig": {
        "propose": ["proposer", "requested/actor"],
        "approve": ["proposer", "level/actor"],
        "unapprove": ["proposer", "level/actor"],
        "cancel": ["proposer", "canceler"],
        "exec": ["proposer", "executer"],
        "invalidate": ["account"],
    },
    "gls.vesting": {
        "setparams": ["params/provider/actor"],
        "open": ["owner", "ram_payer"],
        "withdraw": ["from", "to"],
        "retire": ["user"],
        "stopwithdraw": ["owner"],
        "unlocklimit": ["owner"],
        "close": ["owner"],
        "delegate": ["delegator", "delegatee"],
        "undelegate": ["delegator", "delegatee"],
        "create": ["notify_acc"],
        "procwaiting": ["payer"],
    },
    "cyber.token": {
        "open": ["owner", "ram_payer"],
        "claim": ["owner"],
        "close": ["owner"],
        "create": ["issuer"],
        "issue": ["to"],
        "retire": [],
        "transfer": ["from", "to"],
        "payment": ["from", "to"],
        "bulkpayment": ["from", "recipients/to"],
    },
    "cyber.stake": {
        "create": [],
        "enable": [],
        "open": ["owner", "ram_payer"],
        "delegatevote": ["grantor_name", "recipient_name"],
        "recallvote": ["grantor_name", "recipient_name"],
        "setgrntterms": ["grantor_name", "recipient_name"],
        "delegateuse": ["grantor_name", "recipient_name"],
        "recalluse": ["grantor_name", "recipient_name"],
        "claim": ["grantor_name", "recipient_name"],
        "withdraw": ["account"],
        "setkey": ["account"],
        "setminstaked": ["account"],
        "setproxyfee": ["account"],
        "setproxylvl": ["account"],
        "updatefunds": ["account"],
        "pick": ["accounts"],
    },
    "gls.emit": {
        "setparams": ["params/pools/name", "params/provider/actor"],
        "emit": [],
        "start": [],
        "stop": [],
    },
    "gls.publish": {
        "createmssg": ["message_id/author", "parent_id/author", "beneficiaries/account"],
        "updatemssg": ["message_id/author"],
        "deletemssg": ["message_id/author"],
        "setcurprcnt": ["message_id/author"],
        "setmaxpayout": ["message_id/author"],
        "paymssgrwrd": ["message_id/author"],
        "upvote": ["voter", "message_id/author"],
        "unvote": ["voter", "message_id/author"],
        "downvote": ["voter", "message_id/author"],
        "reblog": ["rebloger", "message_id/author"],
        "erasereblog": ["rebloger", "message_id/author"],
        "setrules": [],
        "setlimits": [],
        "setparams": ["params/value", "params/actor"],
        "calcrwrdwt": ["account"],
        "deletevotes": ["account"],
        "closemssgs": ["payer"],
        "addpermlink": ["msg/author", "parent/author"],
        "addpermlinks": ["permlinks/msg/author", "permlinks/parent/author"],
        "delpermlink": ["msg/author"],
        "delpermlinks": ["permlinks/author"],
    },
    "gls.ctrl": {
        "setparams": ["params/name", "params/provider/actor"],
        "regwitness": ["witness"],
        "unregwitness": ["witness"],
        "stopwitness": ["witness"],
        "startwitness": ["witness"],
        "votewitness": ["voter", "witness"],
        "unvotewitn": ["voter", "witness"],
        "changevest": ["who"],
    },
    "gls.charge": {
        "use": ["user"],
        "usenotifygt": ["user"],
        "usenotifylt": ["user"],
        "setrestorer": [],
    },
    "gls.social": {
        "pin": ["pinner", "pinning"],
        "addpin": ["pinner", "pinning"],
        "unpin": ["pinner", "pinning"],
        "block": ["blocker", "blocking"],
        "addblock": ["blocker", "blocking"],
        "unblock": ["blocker", "blocking"],
        "updatemeta": ["account"],
        "deletemeta": ["account"],
    },
    "gls.referral": {
        "setparams": [],
        "closeoldref": [],
        "addreferral": ["referrer", "referral"],
    },
}

STATIC_ACCOUNT_PATHS: Dict[Tuple[str, str], List[str]] = {
    (contract, action): paths
    for contract, actions in CURATED_PATHS.items()
    for action, paths in actions.items()
}


def is_setabi(action: "ActionData") -> bool:
    return (
        action.code == SETABI_CONTRACT
        and action.receiver == SETABI_CONTRACT
        and action.action == SETABI_ACTION
    )


# ---------------------------------------------------------------------------
# Indirect (memo) extraction
# ---------------------------------------------------------------------------


def _account_from_memo(to: Optional[str], memo: Optional[str], accounts: Dict[str, bool]):
    pattern = MEMO_PATTERNS.get(to or "")
    if pattern is not None and memo:
        match = pattern.match(memo)
        if match:
            accounts[match.group(1)] = True
    if to:
        accounts[to] = True


def _transfer(args: dict, accounts: Dict[str, bool]):
    _account_from_memo(args.get("to"), args.get("memo"), accounts)


def _bulktransfer(args: dict, accounts: Dict[str, bool]):
    for recipient in args.get("recipients") or []:
        if isinstance(recipient, dict):
            _account_from_memo(recipient.get("to"), recipient.get("memo"), accounts)


INDIRECT_EXTRACTORS: Dict[Tuple[str, str], Callable[[dict, Dict[str, bool]], None]] = {
    ("cyber.token", "transfer"): _transfer,
    ("cyber.token", "bulktransfer"): _bulktransfer,
}


# ---------------------------------------------------------------------------
# Learned paths cache
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    record: Optional[dict]  # None caches a miss
    cached_at: float


@dataclass
class AccountPathsCache:
    """Per-contract cache of learned path records.

    With a ttl, entries expire lazily on read and on sweep().
    """

    ttl: Optional[float] = None
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, Dict[str, CacheEntry]] = field(default_factory=dict)

    def get(self, contract: str, action: str) -> Optional[CacheEntry]:
        entry = self._entries.get(contract, {}).get(action)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[contract][action]
            return None
        return entry

    def put(self, contract: str, action: str, record: Optional[dict]):
        self._entries.setdefault(contract, {})[action] = CacheEntry(record, self.clock())

    def invalidate(self, contract: str):
        self._entries.pop(contract, None)

    def purge_newer_than(self, block_num: int) -> int:
        """Drop contracts holding any record learned above `block_num`."""
        stale = [
            contract
            for contract, actions in self._entries.items()
            if any(e.record and e.record["blockNum"] > block_num for e in actions.values())
        ]
        for contract in stale:
            del self._entries[contract]
        return len(stale)

    def sweep(self) -> int:
        if self.ttl is None:
            return 0
        removed = 0
        for contract in list(self._entries):
            actions = self._entries[contract]
            for action in [a for a, e in actions.items() if self._expired(e)]:
                del actions[action]
                removed += 1
            if not actions:
                del self._entries[contract]
        return removed

    def contracts(self) -> List[str]:
        return list(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl is not None and self.clock() - entry.cached_at > self.ttl


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class AccountPathResolver:
    """Resolves and learns account paths for (contract, action) pairs."""

    def __init__(
        self,
        repo: "AccountPathRepo",
        decoder: Optional[AbiDecoder] = None,
        cache: Optional[AccountPathsCache] = None,
    ):
        self._repo = repo
        self._decoder = decoder or JsonAbiDecoder()
        self.cache = cache or AccountPathsCache()

    async def get(self, contract: str, action: str) -> Optional[List[str]]:
        static = STATIC_ACCOUNT_PATHS.get((contract, action))
        if static is not None:
            return list(static)

        if contract in INTERNAL_CONTRACTS:
            logger.warning("Unexpected: %s::%s", contract, action)

        entry = self.cache.get(contract, action)
        if entry is not None:
            record = entry.record
        else:
            record = await self._repo.find_latest(contract, action)
            if record is None:
                logger.warning("AccountPath not found for action: %s::%s", contract, action)
            self.cache.put(contract, action, record)

        if record is None:
            return None
        return list(record["accountPaths"])

    def extract_indirect(self, code: str, action: str, args) -> Optional[Dict[str, bool]]:
        """Accounts for actions with a dedicated extractor, None when there is none."""
        extractor = INDIRECT_EXTRACTORS.get((code, action))
        if extractor is None or not isinstance(args, dict):
            return None
        accounts: Dict[str, bool] = {}
        extractor(args, accounts)
        if args.get("from"):
            accounts[args["from"]] = True
        return accounts

    async def extract_accounts(self, code: str, action: str, args) -> List[str]:
        accounts = self.extract_indirect(code, action, args)
        if accounts is None:
            accounts = {}
            for path in await self.get(code, action) or []:
                for value in extract_by_path(args, path.split("/")):
                    if isinstance(value, str):
                        accounts[value] = True
        # "" stands for "nobody" in several contracts
        accounts.pop("", None)
        return list(accounts)

    # -- learning ----------------------------------------------------------

    def account_paths_from_setabi(self, action: "ActionData", block_num: int) -> Tuple[str, List[dict]]:
        args = action.args or {}
        account = args["account"]
        hex_abi = args.get("abi") or ""
        entries: List[dict] = []
        if not hex_abi:
            return account, entries

        abi = self._decoder.decode(bytes.fromhex(hex_abi))
        structs = {s["name"]: s for s in abi["structs"]}

        for declared in abi["actions"]:
            struct = structs.get(declared["type"])
            if struct is None:
                logger.warning(
                    "ABI of %s declares %s with unknown type %s",
                    account, declared["name"], declared["type"],
                )
                continue
            if struct.get("base"):
                logger.error("Unsupported case, structure with base: %s", struct["name"])

            entries.append({
                "account": account,
                "blockNum": block_num,
                "action": declared["name"],
                "accountPaths": [
                    f["name"] for f in struct["fields"] if f["type"] in ACCOUNT_FIELD_TYPES
                ],
            })
        return account, entries

    async def learn_from_block(self, block: "BlockData") -> int:
        """Persist paths from every setabi in the block. Returns entries stored."""
        learned: Dict[str, List[dict]] = {}
        for trx in block.transactions:
            for action in trx.actions:
                if not is_setabi(action):
                    continue
                try:
                    account, entries = self.account_paths_from_setabi(action, block.block_num)
                except (AbiDecodeError, ValueError, KeyError, TypeError):
                    logger.exception("Can't process contract abi (block %d)", block.block_num)
                    continue
                learned[account] = entries

        stored = 0
        for account, entries in learned.items():
            for entry in entries:
                await self._repo.insert(
                    entry["account"], entry["action"], entry["blockNum"], entry["accountPaths"]
                )
                stored += 1
            self.cache.invalidate(account)
            logger.info(
                "Learned account paths for %s (%d actions, block %d)",
                account, len(entries), block.block_num,
            )
        return stored

    def purge_newer_than(self, block_num: int) -> int:
        return self.cache.purge_newer_than(block_num)
