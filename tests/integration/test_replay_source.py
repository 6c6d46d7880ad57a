"""
test_replay_source.py - ReplaySource delivery and IndexerService wiring.

Covers in-memory and JSON-lines replay, resume by sequence, stop requests,
and a full service run over a file-backed database.
"""

import json

import pytest
from pydantic import ValidationError

from indexer.models import EventType
from indexer.service import IndexerService
from indexer.source import ReplaySource
from indexer.storage import StorageManager

from tests.conftest import block_event, fork_event, irreversible_event, make_block

pytestmark = pytest.mark.asyncio


def _events():
    blocks = [make_block(n, sequence=n * 10) for n in range(1, 4)]
    return [
        block_event(blocks[0]),
        block_event(blocks[1]),
        irreversible_event(blocks[0]),
        fork_event(1),
        block_event(blocks[2]),
    ]


def _forked_events():
    """Blocks 1-3, a fork back to 1, then blocks 2-3 of the new branch."""
    old = [make_block(n, sequence=n) for n in range(1, 4)]
    new = [
        make_block(2, block_id="b2x", parent_id="block-1", sequence=4),
        make_block(3, block_id="b3x", parent_id="b2x", sequence=5),
    ]
    return [block_event(b) for b in old] + [fork_event(1)] + [block_event(b) for b in new]


def _write_jsonl(path, events):
    with open(path, "w", encoding="utf-8") as f:
        for event in events:
            f.write(json.dumps(event) + "\n")
            f.write("\n")


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


class TestReplaySource:

    async def test_delivers_in_order(self):
        source = ReplaySource(events=_events())
        recorder = Recorder()
        source.subscribe(recorder)
        await source.start()
        assert [e.type for e in recorder.events] == [
            EventType.BLOCK, EventType.BLOCK, EventType.IRREVERSIBLE_BLOCK, EventType.FORK, EventType.BLOCK,
        ]
        assert source.delivered == 5
        assert source.running is False

    async def test_resume_delivers_events_after_checkpoint(self):
        source = ReplaySource(events=_events())
        recorder = Recorder()
        source.subscribe(recorder)
        await source.set_last_block_meta(2, 20)
        await source.start()
        assert [e.type for e in recorder.events] == [
            EventType.IRREVERSIBLE_BLOCK, EventType.FORK, EventType.BLOCK,
        ]
        assert recorder.events[-1].data.block_num == 3
        assert source.skipped == 2

    async def test_resume_skips_fork_before_checkpoint(self):
        source = ReplaySource(events=_forked_events())
        recorder = Recorder()
        source.subscribe(recorder)
        await source.set_last_block_meta(2, 4)
        await source.start()
        assert [(e.type, e.data.id) for e in recorder.events] == [(EventType.BLOCK, "b3x")]
        assert source.skipped == 5

    async def test_resume_skips_final_irreversible_blocks(self):
        source = ReplaySource(events=_events())
        recorder = Recorder()
        source.subscribe(recorder)
        await source.set_last_block_meta(None, None, irreversible_block_num=1)
        await source.start()
        assert EventType.IRREVERSIBLE_BLOCK not in [e.type for e in recorder.events]
        assert source.delivered == 4
        assert source.skipped == 1

    async def test_accepts_a_generator(self):
        source = ReplaySource(events=(event for event in _events()))
        recorder = Recorder()
        source.subscribe(recorder)
        await source.set_last_block_meta(1, 10)
        await source.start()
        assert len(recorder.events) == 4

    async def test_reads_jsonl_file(self, tmp_path):
        path = tmp_path / "events.jsonl"
        _write_jsonl(path, _events())
        source = ReplaySource(path=str(path))
        recorder = Recorder()
        source.subscribe(recorder)
        await source.start()
        assert len(recorder.events) == 5
        assert recorder.events[3].data.base_block_num == 1

    async def test_bad_json_line(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_text(json.dumps(block_event(make_block(1))) + "\n{broken\n", encoding="utf-8")
        source = ReplaySource(path=str(path))
        source.subscribe(Recorder())
        with pytest.raises(ValueError, match="events.jsonl:2"):
            await source.start()

    async def test_stop_from_handler(self):
        source = ReplaySource(events=_events())
        seen = []

        async def handler(event):
            seen.append(event)
            await source.stop()

        source.subscribe(handler)
        await source.start()
        assert len(seen) == 1

    async def test_requires_handler(self):
        with pytest.raises(RuntimeError):
            await ReplaySource(events=[]).start()

    async def test_requires_exactly_one_input(self, tmp_path):
        with pytest.raises(ValueError):
            ReplaySource()
        with pytest.raises(ValueError):
            ReplaySource(events=[], path=str(tmp_path / "events.jsonl"))


class TestIndexerService:

    async def test_run_and_resume(self, tmp_path):
        db_path = str(tmp_path / "db" / "indexer.db")
        events = [block_event(make_block(n, sequence=n * 10)) for n in range(1, 5)]

        await IndexerService(ReplaySource(events=events), db_path=db_path).start()

        storage = StorageManager(db_path)
        await storage.initialize()
        try:
            assert await storage.blocks.count() == 4
            assert (await storage.meta.get())["lastProcessedSequence"] == 40
        finally:
            await storage.close()

        # a restart over the same stream delivers nothing already stored
        source = ReplaySource(events=events)
        await IndexerService(source, db_path=db_path).start()
        assert source.delivered == 0
        assert source.skipped == 4

    async def test_restart_after_fork_keeps_new_branch(self, tmp_path):
        db_path = str(tmp_path / "indexer.db")

        async def block_ids():
            storage = StorageManager(db_path)
            await storage.initialize()
            try:
                return [b["id"] for b in await storage.blocks.list_all()]
            finally:
                await storage.close()

        await IndexerService(ReplaySource(events=_forked_events()), db_path=db_path).start()
        assert await block_ids() == ["block-1", "b2x", "b3x"]

        source = ReplaySource(events=_forked_events())
        await IndexerService(source, db_path=db_path).start()
        assert source.delivered == 0
        assert await block_ids() == ["block-1", "b2x", "b3x"]

    async def test_restart_skips_finalized_blocks(self, tmp_path):
        db_path = str(tmp_path / "indexer.db")
        blocks = [make_block(n, sequence=n * 10) for n in range(1, 3)]
        events = [block_event(blocks[0]), irreversible_event(blocks[0]), block_event(blocks[1])]

        await IndexerService(ReplaySource(events=events), db_path=db_path).start()

        # roll the checkpoint back so the finality event falls after the resume point
        storage = StorageManager(db_path)
        await storage.initialize()
        try:
            await storage.meta.set_last_processed(1, 10)
        finally:
            await storage.close()

        source = ReplaySource(events=events)
        await IndexerService(source, db_path=db_path).start()
        assert source.delivered == 1
        assert source.skipped == 2

    async def test_bad_event_closes_storage(self, tmp_path):
        service = IndexerService(
            ReplaySource(events=[{"type": "BLOCK", "data": {"id": "broken"}}]),
            db_path=str(tmp_path / "indexer.db"),
        )
        with pytest.raises(ValidationError):
            await service.start()
        assert service.storage is None
