from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from splitledger.db.models import ActivityType, Bill
from splitledger.logging import get_logger


@dataclass(slots=True, frozen=True)
class BillChangedEvent:
    bill_id: str
    version: int
    change: ActivityType
    actor_id: str
    participant_ids: tuple[str, ...]
    occurred_at: datetime

    @classmethod
    def for_bill(cls, bill: Bill, change: ActivityType, actor_id: str, occurred_at: datetime) -> "BillChangedEvent":
        return cls(
            bill_id=bill.id,
            version=bill.version,
            change=change,
            actor_id=actor_id,
            participant_ids=tuple(bill.participant_ids),
            occurred_at=occurred_at,
        )


class NotificationDispatcher(Protocol):
    async def publish(self, event: BillChangedEvent) -> None: ...


class LoggingDispatcher:
    """Default dispatcher: records the event; delivery belongs to another service."""

    def __init__(self) -> None:
        self._log = get_logger(__name__)

    async def publish(self, event: BillChangedEvent) -> None:
        self._log.info(
            "bill.changed",
            bill_id=event.bill_id,
            version=event.version,
            change=event.change.value,
            actor_id=event.actor_id,
            recipients=[pid for pid in event.participant_ids if pid != event.actor_id],
        )
