"""
test_account_paths.py - Unit tests for AccountPathResolver and its cache.

Tests the curated table, memo-based indirect extraction, learning from
setabi actions, negative caching with invalidation, fork purge and TTL
expiry.
"""

import logging

import pytest

from indexer.account_paths import AccountPathResolver, AccountPathsCache, is_setabi
from indexer.models import ActionData, BlockData

from tests.conftest import abi_hex, make_action, make_block, make_trx

pytestmark = pytest.mark.asyncio


@pytest.fixture
def resolver(storage):
    return AccountPathResolver(storage.account_paths)


def _setabi_block(block_num: int, account: str, abi: str, receiver: str = "cyber") -> BlockData:
    action = make_action(
        "cyber", "setabi", {"account": account, "abi": abi}, actor=account, receiver=receiver
    )
    return BlockData.model_validate(
        make_block(block_num, transactions=[make_trx(f"trx-abi-{block_num}", [action])])
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCuratedTable:

    async def test_system_contract(self, resolver):
        assert await resolver.get("cyber.token", "transfer") == ["from", "to"]

    async def test_action_without_accounts(self, resolver):
        assert await resolver.get("cyber.token", "retire") == []

    async def test_returned_list_is_a_copy(self, resolver):
        paths = await resolver.get("cyber", "setabi")
        paths.append("junk")
        assert await resolver.get("cyber", "setabi") == ["account"]

    async def test_nested_paths(self, resolver):
        args = {
            "creator": "cyber",
            "name": "alice",
            "owner": {"accounts": [{"permission": {"actor": "bob", "permission": "active"}}]},
            "active": {"accounts": []},
        }
        accounts = await resolver.extract_accounts("cyber", "newaccount", args)
        assert accounts == ["cyber", "alice", "bob"]

    async def test_empty_account_is_dropped(self, resolver):
        args = {
            "message_id": {"author": "alice", "permlink": "post"},
            "parent_id": {"author": "", "permlink": ""},
            "beneficiaries": [],
        }
        assert await resolver.extract_accounts("gls.publish", "createmssg", args) == ["alice"]


class TestIndirectExtraction:

    async def test_vesting_memo(self, resolver):
        args = {"from": "alice", "to": "gls.vesting", "quantity": "1.000 GOLOS", "memo": "send to: bob;"}
        accounts = await resolver.extract_accounts("cyber.token", "transfer", args)
        assert set(accounts) == {"alice", "gls.vesting", "bob"}

    async def test_stake_memo(self, resolver):
        args = {"from": "alice", "to": "cyber.stake", "quantity": "1.000 CYBER", "memo": "carol"}
        accounts = await resolver.extract_accounts("cyber.token", "transfer", args)
        assert set(accounts) == {"alice", "cyber.stake", "carol"}

    async def test_memo_ignored_for_other_recipients(self, resolver):
        args = {"from": "alice", "to": "dave", "quantity": "1.000 GOLOS", "memo": "send to: bob;"}
        accounts = await resolver.extract_accounts("cyber.token", "transfer", args)
        assert set(accounts) == {"alice", "dave"}

    async def test_memo_not_matching(self, resolver):
        args = {"from": "alice", "to": "gls.vesting", "memo": "for bob"}
        accounts = await resolver.extract_accounts("cyber.token", "transfer", args)
        assert set(accounts) == {"alice", "gls.vesting"}

    async def test_bulktransfer(self, resolver):
        args = {
            "from": "alice",
            "recipients": [
                {"to": "gls.vesting", "quantity": "1.000 GOLOS", "memo": "send to: bob;"},
                {"to": "carol", "quantity": "1.000 GOLOS", "memo": ""},
            ],
        }
        accounts = await resolver.extract_accounts("cyber.token", "bulktransfer", args)
        assert set(accounts) == {"alice", "gls.vesting", "bob", "carol"}

    async def test_no_rule(self, resolver):
        assert resolver.extract_indirect("cyber.token", "issue", {"to": "bob"}) is None


class TestLearnedPaths:

    async def test_unknown_action_warns_and_returns_none(self, resolver, caplog):
        with caplog.at_level(logging.WARNING, logger="account_paths"):
            assert await resolver.get("my.contract", "foo") is None
        assert "AccountPath not found for action: my.contract::foo" in caplog.text

    async def test_unknown_action_still_extracts_nothing(self, resolver):
        assert await resolver.extract_accounts("my.contract", "foo", {"to": "alice"}) == []

    async def test_learn_from_setabi(self, resolver, storage):
        abi = abi_hex({"foo": {"to": "name", "memo": "string"}, "bar": {"who": "name[]"}})
        stored = await resolver.learn_from_block(_setabi_block(10, "my.contract", abi))
        assert stored == 2
        assert await storage.account_paths.count() == 2
        assert await resolver.get("my.contract", "foo") == ["to"]
        assert await resolver.get("my.contract", "bar") == ["who"]
        accounts = await resolver.extract_accounts("my.contract", "foo", {"to": "alice", "memo": "hi"})
        assert accounts == ["alice"]

    async def test_learning_invalidates_negative_cache(self, resolver):
        assert await resolver.get("my.contract", "foo") is None
        await resolver.learn_from_block(_setabi_block(10, "my.contract", abi_hex({"foo": {"to": "name"}})))
        assert await resolver.get("my.contract", "foo") == ["to"]

    async def test_negative_result_is_cached(self, resolver, storage):
        assert await resolver.get("my.contract", "foo") is None
        await storage.account_paths.insert("my.contract", "foo", 5, ["to"])
        assert await resolver.get("my.contract", "foo") is None
        resolver.cache.invalidate("my.contract")
        assert await resolver.get("my.contract", "foo") == ["to"]

    async def test_relearning_same_block_is_idempotent(self, resolver, storage):
        block = _setabi_block(10, "my.contract", abi_hex({"foo": {"to": "name"}}))
        await resolver.learn_from_block(block)
        await resolver.learn_from_block(block)
        assert await storage.account_paths.count() == 1

    async def test_setabi_from_other_receiver_is_ignored(self, resolver, storage):
        block = _setabi_block(10, "my.contract", abi_hex({"foo": {"to": "name"}}), receiver="other")
        assert await resolver.learn_from_block(block) == 0
        assert await storage.account_paths.count() == 0

    async def test_undecodable_abi_is_skipped(self, resolver, caplog):
        with caplog.at_level(logging.ERROR, logger="account_paths"):
            stored = await resolver.learn_from_block(_setabi_block(10, "my.contract", "zz-not-hex"))
        assert stored == 0
        assert "Can't process contract abi" in caplog.text

    async def test_non_json_abi_is_skipped(self, resolver):
        block = _setabi_block(10, "my.contract", b"\x00\x01binary".hex())
        assert await resolver.learn_from_block(block) == 0

    async def test_struct_with_base_is_reported(self, resolver, caplog):
        abi = (
            '{"actions": [{"name": "foo", "type": "foo"}],'
            ' "structs": [{"name": "foo", "base": "parent", "fields": [{"name": "to", "type": "name"}]}]}'
        ).encode("utf-8").hex()
        with caplog.at_level(logging.ERROR, logger="account_paths"):
            await resolver.learn_from_block(_setabi_block(10, "my.contract", abi))
        assert "Unsupported case, structure with base: foo" in caplog.text
        assert await resolver.get("my.contract", "foo") == ["to"]

    async def test_empty_abi_stores_nothing(self, resolver):
        assert await resolver.learn_from_block(_setabi_block(10, "my.contract", "")) == 0

    async def test_internal_contract_warns(self, resolver, caplog):
        with caplog.at_level(logging.WARNING, logger="account_paths"):
            await resolver.get("cyber.govern", "onblock")
        assert "Unexpected: cyber.govern::onblock" in caplog.text

    async def test_purge_newer_than(self, resolver):
        await resolver.learn_from_block(_setabi_block(20, "my.contract", abi_hex({"foo": {"to": "name"}})))
        await resolver.get("my.contract", "foo")
        assert resolver.purge_newer_than(25) == 0
        assert "my.contract" in resolver.cache.contracts()
        assert resolver.purge_newer_than(15) == 1
        assert resolver.cache.contracts() == []


class TestIsSetabi:

    async def test_requires_cyber_receiver(self):
        action = ActionData.model_validate(make_action("cyber", "setabi", receiver="cyber"))
        assert is_setabi(action)
        action = ActionData.model_validate(make_action("cyber", "setabi", receiver="alice"))
        assert not is_setabi(action)


class TestAccountPathsCache:

    async def test_entries_expire_lazily(self):
        clock = FakeClock()
        cache = AccountPathsCache(ttl=10, clock=clock)
        cache.put("c", "a", {"blockNum": 1, "accountPaths": ["to"]})
        clock.now += 5
        assert cache.get("c", "a").record["accountPaths"] == ["to"]
        clock.now += 6
        assert cache.get("c", "a") is None

    async def test_sweep(self):
        clock = FakeClock()
        cache = AccountPathsCache(ttl=10, clock=clock)
        cache.put("c", "old", None)
        clock.now += 8
        cache.put("c", "new", None)
        clock.now += 5
        assert cache.sweep() == 1
        assert cache.get("c", "new") is not None
        clock.now += 20
        assert cache.sweep() == 1
        assert cache.contracts() == []

    async def test_no_ttl_never_expires(self):
        cache = AccountPathsCache()
        cache.put("c", "a", None)
        assert cache.sweep() == 0
        entry = cache.get("c", "a")
        assert entry is not None and entry.record is None
