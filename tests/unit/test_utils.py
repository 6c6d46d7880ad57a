"""
test_utils.py - Unit tests for the shared helpers.

Covers block time encoding, bucket keys, argument path walking and the
counters rollup merge.
"""

from datetime import datetime, timedelta, timezone

import pytest

from indexer.utils import (
    bucket_id,
    chunked,
    extract_by_path,
    from_iso,
    level_str,
    merge_counters,
    to_iso,
)


class TestTimes:

    def test_to_iso_uses_utc_and_milliseconds(self):
        dt = datetime(2019, 8, 1, 12, 0, 3, tzinfo=timezone.utc)
        assert to_iso(dt) == "2019-08-01T12:00:03.000Z"

    def test_to_iso_converts_other_timezones(self):
        dt = datetime(2019, 8, 1, 15, 0, 0, tzinfo=timezone(timedelta(hours=3)))
        assert to_iso(dt) == "2019-08-01T12:00:00.000Z"

    def test_naive_datetime_is_treated_as_utc(self):
        assert to_iso(datetime(2019, 8, 1)) == "2019-08-01T00:00:00.000Z"

    def test_from_iso_roundtrip(self):
        dt = datetime(2019, 8, 1, 12, 0, 3, 500000, tzinfo=timezone.utc)
        assert from_iso(to_iso(dt)) == dt

    def test_from_iso_empty(self):
        assert from_iso(None) is None
        assert from_iso("") is None

    def test_bucket_is_month(self):
        assert bucket_id(datetime(2019, 8, 31, 23, 59, tzinfo=timezone.utc)) == "2019-08"
        assert bucket_id(datetime(2019, 9, 1, tzinfo=timezone.utc)) == "2019-09"


class TestLevelStr:

    def test_actor_at_permission(self):
        assert level_str({"actor": "alice", "permission": "active"}) == "alice@active"


class TestExtractByPath:

    def test_top_level_field(self):
        assert extract_by_path({"to": "bob"}, ["to"]) == ["bob"]

    def test_nested_field(self):
        args = {"message_id": {"author": "alice", "permlink": "p"}}
        assert extract_by_path(args, ["message_id", "author"]) == ["alice"]

    def test_lists_are_flattened(self):
        args = {"recipients": [{"to": "bob"}, {"to": "carol"}]}
        assert extract_by_path(args, ["recipients", "to"]) == ["bob", "carol"]

    def test_nested_lists(self):
        args = {
            "owner": {
                "accounts": [
                    {"permission": {"actor": "alice", "permission": "owner"}},
                    {"permission": {"actor": "bob", "permission": "active"}},
                ]
            }
        }
        path = "owner/accounts/permission/actor".split("/")
        assert extract_by_path(args, path) == ["alice", "bob"]

    def test_list_leaf(self):
        assert extract_by_path({"accounts": ["a", "b"]}, ["accounts"]) == ["a", "b"]

    def test_missing_and_null_yield_nothing(self):
        assert extract_by_path({"to": None}, ["to"]) == []
        assert extract_by_path({}, ["to"]) == []
        assert extract_by_path({"to": "bob"}, ["to", "deeper"]) == []
        assert extract_by_path("not a dict", ["to"]) == []


class TestMergeCounters:

    def test_no_parent_takes_current(self):
        current = {"actions": {"count": 3}}
        merged = merge_counters(None, current)
        assert merged == current
        assert merged is not current

    def test_numbers_are_summed(self):
        total = {"actions": {"count": 3}, "transactions": {"total": 2, "executed": 2}}
        current = {"actions": {"count": 1}, "transactions": {"total": 1, "executed": 0}}
        assert merge_counters(total, current) == {
            "actions": {"count": 4},
            "transactions": {"total": 3, "executed": 2},
        }

    def test_category_missing_on_either_side_is_kept(self):
        total = {"transactions": {"executed": 5}}
        current = {"transactions": {"executed": 1, "hard_fail": 1}}
        assert merge_counters(total, current) == {"transactions": {"executed": 6, "hard_fail": 1}}
        assert merge_counters(current, total) == {"transactions": {"executed": 6, "hard_fail": 1}}

    def test_inputs_are_not_modified(self):
        total = {"a": {"b": 1}}
        current = {"a": {"b": 2}}
        merge_counters(total, current)
        assert total == {"a": {"b": 1}}
        assert current == {"a": {"b": 2}}


class TestChunked:

    def test_splits_in_order(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 100)) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))
