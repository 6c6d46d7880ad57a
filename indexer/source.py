"""
source.py - Block event sources.

A source delivers {type, data} events strictly in order and awaits the
subscribed handler for each one before moving on. At startup it is told the
last durable checkpoint: everything up to the checkpointed BLOCK in stream
order is not delivered again, nor are IRREVERSIBLE_BLOCK events at or below
the last finalized block.
"""

import json
import logging
from typing import Awaitable, Callable, Iterable, Iterator, List, Optional, Union

from indexer.models import BlockEvent, EventType

logger = logging.getLogger("source")

EventHandler = Callable[[BlockEvent], Awaitable[None]]


class BlockSource:
    """Base class for block event sources."""

    def __init__(self):
        self._handler: Optional[EventHandler] = None
        self._running = False
        self.last_block_num: Optional[int] = None
        self.last_sequence: Optional[int] = None
        self.irreversible_block_num: Optional[int] = None

    async def set_last_block_meta(
        self,
        block_num: Optional[int],
        sequence: Optional[int],
        irreversible_block_num: Optional[int] = None,
    ):
        self.last_block_num = block_num
        self.last_sequence = sequence
        self.irreversible_block_num = irreversible_block_num
        logger.info(
            "Resuming after block %s (sequence %s, irreversible %s)",
            block_num, sequence, irreversible_block_num,
        )

    def subscribe(self, handler: EventHandler):
        self._handler = handler

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        raise NotImplementedError

    async def stop(self):
        self._running = False


class ReplaySource(BlockSource):
    """Replays a recorded event stream from memory or a JSON-lines file."""

    def __init__(
        self,
        events: Optional[Iterable[Union[dict, BlockEvent]]] = None,
        path: Optional[str] = None,
    ):
        super().__init__()
        if (events is None) == (path is None):
            raise ValueError("ReplaySource needs exactly one of events or path")
        # read twice: once to locate the resume point, once to deliver
        self._events: Optional[List[Union[dict, BlockEvent]]] = (
            list(events) if events is not None else None
        )
        self._path = path
        self.delivered = 0
        self.skipped = 0

    async def start(self):
        if self._handler is None:
            raise RuntimeError("No handler subscribed")

        self._running = True
        resume_at = self._resume_position()
        logger.info(
            "Replay started (%s), resuming at event %d", self._path or "in-memory events", resume_at
        )
        for position, raw in enumerate(self._iter_events()):
            if not self._running:
                logger.info("Replay stopped")
                break
            if position < resume_at:
                self.skipped += 1
                continue
            event = raw if isinstance(raw, BlockEvent) else BlockEvent.from_dict(raw)
            if self._already_final(event):
                self.skipped += 1
                continue
            await self._handler(event)
            self.delivered += 1
        self._running = False
        logger.info("Replay finished: %d delivered, %d skipped", self.delivered, self.skipped)

    def _resume_position(self) -> int:
        """Index just past the last BLOCK covered by the checkpoint, 0 without one."""
        if self.last_sequence is None:
            return 0
        resume_at = 0
        for position, raw in enumerate(self._iter_events()):
            event_type, sequence = _block_sequence(raw)
            if event_type is not EventType.BLOCK or sequence is None:
                continue
            if sequence <= self.last_sequence:
                resume_at = position + 1
        return resume_at

    def _already_final(self, event: BlockEvent) -> bool:
        if event.type is not EventType.IRREVERSIBLE_BLOCK or self.irreversible_block_num is None:
            return False
        return event.data.block_num <= self.irreversible_block_num

    def _iter_events(self) -> Iterator[Union[dict, BlockEvent]]:
        if self._events is not None:
            yield from self._events
            return
        with open(self._path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"{self._path}:{line_no}: invalid event JSON: {exc}") from exc


def _block_sequence(raw: Union[dict, BlockEvent]):
    """(type, sequence) of a raw event without validating the whole payload."""
    if isinstance(raw, BlockEvent):
        return raw.type, getattr(raw.data, "sequence", None)
    event_type = EventType(raw["type"])
    return event_type, (raw.get("data") or {}).get("sequence")
