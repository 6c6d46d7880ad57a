"""Pydantic models for the block event stream."""

import enum
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class EventType(str, enum.Enum):
    BLOCK = "BLOCK"
    IRREVERSIBLE_BLOCK = "IRREVERSIBLE_BLOCK"
    FORK = "FORK"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_doc(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class AuthData(_WireModel):
    actor: str
    permission: str


class EventData(_WireModel):
    code: str
    event: str
    args: Any = None
    data: Optional[str] = None


class ActionData(_WireModel):
    code: str
    action: str
    receiver: str = ""
    auth: List[AuthData] = Field(default_factory=list)
    args: Any = None
    data: Optional[str] = None
    events: List[EventData] = Field(default_factory=list)


class TransactionData(_WireModel):
    id: str
    status: str = "executed"
    actions: List[ActionData] = Field(default_factory=list)


class BlockData(_WireModel):
    id: str
    parent_id: str
    block_num: int
    block_time: datetime
    producer: str
    schedule: List[str] = Field(default_factory=list)
    next_schedule: List[str] = Field(default_factory=list)
    sequence: int = 0
    transactions: List[TransactionData] = Field(default_factory=list)

    @field_validator("block_time")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ForkData(_WireModel):
    base_block_num: int


class BlockEvent(BaseModel):
    type: EventType
    data: Union[BlockData, ForkData]

    @classmethod
    def from_dict(cls, raw: dict) -> "BlockEvent":
        event_type = EventType(raw["type"])
        payload = raw.get("data") or {}
        if event_type is EventType.FORK:
            data = ForkData.model_validate(payload)
        else:
            data = BlockData.model_validate(payload)
        return cls(type=event_type, data=data)
