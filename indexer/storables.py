"""
storables.py - Contract-specific records derived from block contents.

Handlers are looked up by (code, action) for actions and (code, event) for
events. Block handlers run for every applied block; irreversible handlers
(multisig lifecycle) only once a block is final, since proposals are not
rolled back on fork.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from indexer.storage import InsertResult
from indexer.utils import level_str, to_iso

if TYPE_CHECKING:
    from indexer.models import ActionData, BlockData, TransactionData
    from indexer.storage import StorageManager

logger = logging.getLogger("storables")

LOG_MODULE = "Storables"
MSIG_LOG_MODULE = "Msig"

# keys of a proposal record carrying approval changes only
_APPROVAL_KEYS = {"proposer", "name", "approvals", "updateTime"}


@dataclass
class Storables:
    """Records collected from one block before they are written."""

    block: "BlockData"
    accounts: Dict[str, dict] = field(default_factory=dict)
    balances: Dict[str, dict] = field(default_factory=dict)
    agents: Dict[Tuple[str, str], dict] = field(default_factory=dict)
    proposals: Dict[str, dict] = field(default_factory=dict)
    logs: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def block_time(self) -> str:
        return to_iso(self.block.block_time)

    def log(self, module: str, text: str):
        logger.info("Block %d: %s", self.block.block_num, text)
        self.logs.append((module, text))


Handler = Callable[[Storables, dict, "TransactionData", "ActionData"], None]


# ---------------------------------------------------------------------------
# Block handlers
# ---------------------------------------------------------------------------


def _new_account(st: Storables, args: dict, trx, action):
    name = args["name"]
    st.accounts[name] = {
        "id": name,
        "creator": args.get("creator", ""),
        "keys": {"owner": args.get("owner"), "active": args.get("active")},
    }


def _new_username(st: Storables, args: dict, trx, action):
    owner = args.get("owner")
    account = st.accounts.get(owner)
    if account is None:
        st.log(LOG_MODULE, f"username {args.get('name')} for {owner} created outside of newaccount block")
        return
    account["username"] = args.get("name")


def _balance(st: Storables, args: dict, trx, action):
    account = args["account"]
    balance = args["balance"]
    symbol = balance.split(" ")[-1]
    # last change within the block wins
    st.balances[f"{account} {symbol}"] = {
        "account": account,
        "symbol": symbol,
        "balance": balance,
        "payments": args.get("payments"),
    }


def _stake_agent(attr: str, arg: str) -> Handler:
    def handler(st: Storables, args: dict, trx, action):
        key = (args["account"], args["token_code"])
        agent = st.agents.setdefault(key, {"account": key[0], "symbol": key[1]})
        agent[attr] = args.get(arg)
    return handler


ACTION_HANDLERS: Dict[Tuple[str, str], Handler] = {
    ("cyber", "newaccount"): _new_account,
    ("cyber.domain", "newusername"): _new_username,
    ("cyber.stake", "setproxyfee"): _stake_agent("fee", "fee"),
    ("cyber.stake", "setproxylvl"): _stake_agent("proxyLevel", "level"),
    ("cyber.stake", "setminstaked"): _stake_agent("minStake", "min_own_staked"),
}

EVENT_HANDLERS: Dict[Tuple[str, str], Handler] = {
    ("cyber.token", "balance"): _balance,
}


# ---------------------------------------------------------------------------
# Irreversible handlers (cyber.msig)
# ---------------------------------------------------------------------------


def _proposal_key(proposer: str, name: str) -> str:
    return f"{proposer}/{name}"


def _partial_proposal(st: Storables, args: dict) -> dict:
    proposer, name = args["proposer"], args["proposal_name"]
    return st.proposals.setdefault(
        _proposal_key(proposer, name), {"proposer": proposer, "name": name}
    )


def _propose(st: Storables, args: dict, trx, action):
    proposer, name = args["proposer"], args["proposal_name"]
    key = _proposal_key(proposer, name)
    if key in st.proposals:
        st.log(MSIG_LOG_MODULE, f"proposal {key} overridden in the same block")

    expiration = (args.get("trx") or {}).get("expiration")
    if expiration and not expiration.endswith("Z"):
        expiration += "Z"
    st.proposals[key] = {
        "proposer": proposer,
        "name": name,
        "trx": args.get("trx"),
        "blockNum": st.block.block_num,
        "approvals": [{"level": level_str(r)} for r in args.get("requested") or []],
        "expires": expiration,
    }


def _approval(st: Storables, args: dict, trx, action):
    proposal = _partial_proposal(st, args)
    level = level_str(args.get("level") or {})
    status = action.action
    if action.action == "approve" and args.get("proposal_hash"):
        status = "approve+"

    approvals = proposal.setdefault("approvals", [])
    approval = {"level": level, "status": status, "time": st.block_time}
    for i, existing in enumerate(approvals):
        if existing["level"] == level:
            approvals[i] = approval
            break
    else:
        approvals.append(approval)
    proposal["updateTime"] = st.block_time


def _finalize(actor_arg: str) -> Handler:
    def handler(st: Storables, args: dict, trx, action):
        proposal = _partial_proposal(st, args)
        proposal["finalStatus"] = action.action
        proposal["finalActor"] = args.get(actor_arg)
        proposal["updateTime"] = st.block_time
        if action.action == "exec":
            proposal["execTrxId"] = trx.id
    return handler


def _invalidate(st: Storables, args: dict, trx, action):
    st.log(MSIG_LOG_MODULE, f"msig invalidation: {args.get('account')}")


IRREVERSIBLE_ACTION_HANDLERS: Dict[Tuple[str, str], Handler] = {
    ("cyber.msig", "propose"): _propose,
    ("cyber.msig", "approve"): _approval,
    ("cyber.msig", "unapprove"): _approval,
    ("cyber.msig", "cancel"): _finalize("canceler"),
    ("cyber.msig", "exec"): _finalize("executer"),
    ("cyber.msig", "invalidate"): _invalidate,
}


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


def _collect(
    block: "BlockData",
    actions: Dict[Tuple[str, str], Handler],
    events: Optional[Dict[Tuple[str, str], Handler]] = None,
) -> Storables:
    st = Storables(block)
    for trx in block.transactions:
        for action in trx.actions:
            handler = actions.get((action.code, action.action))
            if handler is not None and isinstance(action.args, dict):
                handler(st, action.args, trx, action)
            if not events:
                continue
            for event in action.events:
                if event.code != action.code:
                    continue
                handler = events.get((event.code, event.event))
                if handler is not None and isinstance(event.args, dict):
                    handler(st, event.args, trx, action)
    return st


def collect_block_storables(block: "BlockData") -> Storables:
    return _collect(block, ACTION_HANDLERS, EVENT_HANDLERS)


def collect_irreversible_storables(block: "BlockData") -> Storables:
    return _collect(block, IRREVERSIBLE_ACTION_HANDLERS)


# ---------------------------------------------------------------------------
# Saving
# ---------------------------------------------------------------------------


async def save_block_storables(storage: "StorageManager", st: Storables):
    block = st.block
    for account in st.accounts.values():
        result = await storage.accounts.insert(
            account["id"],
            block.id,
            block.block_num,
            st.block_time,
            creator=account["creator"],
            keys=account["keys"],
            username=account.get("username"),
        )
        if result is InsertResult.ALREADY_EXISTS:
            logger.debug("Account %s already stored for block %s", account["id"], block.id)

    for balance in st.balances.values():
        await storage.balances.insert(
            balance["account"],
            balance["symbol"],
            block.block_num,
            balance["balance"],
            payments=balance["payments"],
        )

    for agent in st.agents.values():
        await storage.agents.insert(
            agent["account"],
            agent["symbol"],
            block.block_num,
            fee=agent.get("fee"),
            proxy_level=agent.get("proxyLevel"),
            min_stake=agent.get("minStake"),
        )

    await _save_logs(storage, st)


async def save_irreversible_storables(storage: "StorageManager", st: Storables):
    block_num = st.block.block_num
    for key, proposal in st.proposals.items():
        if "blockNum" in proposal and await storage.proposals.exists(
            proposal["proposer"], proposal["name"], proposal["blockNum"]
        ):
            logger.info("Proposal %s from block %d already stored", key, proposal["blockNum"])
            continue

        found = await storage.proposals.find_active(proposal["proposer"], proposal["name"])
        if found is None and "blockNum" not in proposal:
            st.log(MSIG_LOG_MODULE, f"no active proposal {key}")
            continue

        if found is not None and "approvals" in proposal:
            approvals = list(found.get("approvals") or [])
            applied = 0
            for approval in proposal["approvals"]:
                for i, existing in enumerate(approvals):
                    if existing["level"] != approval["level"]:
                        continue
                    if not _is_newer(approval, existing):
                        break
                    approvals[i] = {**existing, **approval}
                    applied += 1
                    break
                else:
                    st.log(MSIG_LOG_MODULE, f"missing {approval['level']} approval in {key}")
                    approvals.append(approval)
                    applied += 1
            if not applied and set(proposal) <= _APPROVAL_KEYS:
                logger.info("Approvals for %s in block %d already stored", key, block_num)
                continue
            proposal = dict(proposal, approvals=approvals)

        await storage.proposals.upsert_active(proposal, block_num)

    await _save_logs(storage, st)


def _is_newer(approval: dict, existing: dict) -> bool:
    if not existing.get("time") or not approval.get("time"):
        return True
    return approval["time"] > existing["time"]


async def _save_logs(storage: "StorageManager", st: Storables):
    for module, text in st.logs:
        await storage.logs.append(st.block.block_num, module, text)
