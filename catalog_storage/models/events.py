"""Outbox event rows replayed against the external metadata graph."""

from enum import IntEnum
from typing import ClassVar, Optional

from sqlalchemy import BigInteger, Boolean, SmallInteger
from sqlmodel import Column, Field

from catalog_storage.constants import (
    EVENT_FAILED,
    EVENT_PROCESSED,
    EVENT_PROCESSED_ID,
    EVENT_TYPE,
    EVENTS_NAMESPACE,
)
from catalog_storage.models.storable import Storable


class EventType(IntEnum):
    """Persisted event kinds (small integer column)."""
    CREATE_META = 1
    UPDATE_META = 2
    CREATE_VERSION = 3

    @classmethod
    def for_num_value(cls, value: int) -> "EventType":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported event type: {value}") from None


class EventStorable(Storable, table=True):
    """Outbox row.

    Lifecycle:
        pending (processed=False, failed=False) -> processed
                                                -> failed
    Both end states are terminal.
    """

    __tablename__ = EVENTS_NAMESPACE

    cacheable: ClassVar[bool] = False

    id: Optional[int] = Field(default=None, primary_key=True)
    type: int = Field(sa_column=Column(EVENT_TYPE, SmallInteger, nullable=False))
    processed_id: int = Field(sa_column=Column(EVENT_PROCESSED_ID, BigInteger, nullable=False))
    processed: bool = Field(default=False, sa_column=Column(EVENT_PROCESSED, Boolean, nullable=False, default=False))
    failed: bool = Field(default=False, sa_column=Column(EVENT_FAILED, Boolean, nullable=False, default=False))

    @property
    def event_type(self) -> EventType:
        return EventType.for_num_value(self.type)

    @property
    def is_pending(self) -> bool:
        return not self.processed and not self.failed
