"""
Shared fixtures for the indexer test suite.

Provides:
 - an in-memory StorageManager
 - factories for block event payloads in the wire (camelCase) format
 - slot-based block times (one slot = one block interval)
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest_asyncio

from indexer.schedule import BLOCK_INTERVAL_MS
from indexer.storage import StorageManager
from indexer.utils import to_iso

T0 = datetime(2019, 8, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ─────────────────────────────────────────────────────────────────

def slot_time(slot: float) -> datetime:
    """Block time of the given production slot counted from T0."""
    return T0 + timedelta(milliseconds=BLOCK_INTERVAL_MS * slot)


def abi_hex(actions: Dict[str, Dict[str, str]]) -> str:
    """Hex-encoded JSON ABI declaring `actions` as {action: {field: type}}."""
    abi = {
        "actions": [{"name": name, "type": name} for name in actions],
        "structs": [
            {"name": name, "base": "", "fields": [{"name": f, "type": t} for f, t in fields.items()]}
            for name, fields in actions.items()
        ],
    }
    return json.dumps(abi).encode("utf-8").hex()


# ── Payload factories ───────────────────────────────────────────────────────

def make_action(code: str,
                action: str,
                args: Optional[dict] = None,
                actor: Optional[str] = None,
                permission: str = "active",
                receiver: Optional[str] = None,
                events: Optional[List[dict]] = None,
                data: Optional[str] = None) -> dict:
    msg = {
        "code": code,
        "action": action,
        "receiver": receiver or code,
        "auth": [{"actor": actor, "permission": permission}] if actor else [],
        "args": args if args is not None else {},
        "events": events or [],
    }
    if data is not None:
        msg["data"] = data
    return msg


def make_event(code: str, event: str, args: dict, data: Optional[str] = None) -> dict:
    msg = {"code": code, "event": event, "args": args}
    if data is not None:
        msg["data"] = data
    return msg


def make_trx(trx_id: str, actions: List[dict], status: str = "executed") -> dict:
    return {"id": trx_id, "status": status, "actions": actions}


def make_block(block_num: int,
               producer: str = "prod.a",
               transactions: Optional[List[dict]] = None,
               block_id: Optional[str] = None,
               parent_id: Optional[str] = None,
               slot: Optional[float] = None,
               schedule: Optional[List[str]] = None,
               next_schedule: Optional[List[str]] = None,
               sequence: Optional[int] = None) -> dict:
    schedule = schedule if schedule is not None else [producer]
    return {
        "id": block_id or f"block-{block_num}",
        "parentId": parent_id or f"block-{block_num - 1}",
        "blockNum": block_num,
        "blockTime": to_iso(slot_time(slot if slot is not None else block_num)),
        "producer": producer,
        "schedule": schedule,
        "nextSchedule": next_schedule if next_schedule is not None else schedule,
        "sequence": sequence if sequence is not None else block_num,
        "transactions": transactions or [],
    }


def block_event(block: dict) -> dict:
    return {"type": "BLOCK", "data": block}


def irreversible_event(block: dict) -> dict:
    return {"type": "IRREVERSIBLE_BLOCK", "data": block}


def fork_event(base_block_num: int) -> dict:
    return {"type": "FORK", "data": {"baseBlockNum": base_block_num}}


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def storage():
    manager = StorageManager(":memory:")
    await manager.initialize()
    yield manager
    await manager.close()
