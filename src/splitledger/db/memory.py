from __future__ import annotations

import asyncio
import copy
from typing import Optional, Sequence

from splitledger.channel import Channel
from splitledger.db.models import Bill, BillActivity
from splitledger.db.store import WriteResult
from splitledger.logging import get_logger


class MemoryBillStore:
    """In-process bill store with the same transactional contract as Postgres.

    Bills are copied on the way in and out so callers never share state with
    the store, the way they would not with a remote one.
    """

    def __init__(self) -> None:
        self._bills: dict[str, Bill] = {}
        self._activities: list[BillActivity] = []
        self._lock = asyncio.Lock()
        self._subscribers: dict[Channel[Bill], Optional[str]] = {}
        self._log = get_logger(__name__)

    async def get_bill(self, bill_id: str) -> Optional[Bill]:
        bill = self._bills.get(bill_id)
        return copy.deepcopy(bill) if bill is not None else None

    async def read_version(self, bill_id: str) -> int:
        bill = self._bills.get(bill_id)
        return bill.version if bill is not None else 0

    async def write_if_version(
        self,
        bill: Bill,
        expected_version: int,
        activities: Sequence[BillActivity] = (),
    ) -> WriteResult:
        async with self._lock:
            stored = self._bills.get(bill.id)
            stored_version = stored.version if stored is not None else 0
            if stored_version != expected_version:
                self._log.info(
                    "store.write.conflict",
                    bill_id=bill.id,
                    expected_version=expected_version,
                    stored_version=stored_version,
                )
                return WriteResult(committed=False, current=copy.deepcopy(stored))

            self._bills[bill.id] = copy.deepcopy(bill)
            self._activities.extend(activities)
            self._log.info("store.write.committed", bill_id=bill.id, version=bill.version)

        self._notify(bill, stored)
        return WriteResult(committed=True, current=copy.deepcopy(bill))

    async def subscribe(self, participant_id: Optional[str] = None) -> Channel[Bill]:
        channel: Channel[Bill] = Channel(on_close=self._unsubscribe)
        self._subscribers[channel] = participant_id
        return channel

    async def list_bills(self, participant_id: str, include_deleted: bool = False) -> list[Bill]:
        bills = [
            copy.deepcopy(bill)
            for bill in self._bills.values()
            if participant_id in bill.participant_ids and (include_deleted or not bill.is_deleted)
        ]
        bills.sort(key=lambda bill: bill.created_at)
        return bills

    async def list_activities(
        self,
        bill_id: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> list[BillActivity]:
        return [
            activity
            for activity in self._activities
            if (bill_id is None or activity.bill_id == bill_id)
            and (participant_id is None or activity.participant_id == participant_id)
        ]

    def _notify(self, bill: Bill, previous: Optional[Bill]) -> None:
        # Participants removed by this write still need to see it.
        audience = set(bill.participant_ids)
        if previous is not None:
            audience.update(previous.participant_ids)
        for channel, participant_id in list(self._subscribers.items()):
            if participant_id is None or participant_id in audience:
                channel.push(copy.deepcopy(bill))

    def _unsubscribe(self, channel: Channel[Bill]) -> None:
        self._subscribers.pop(channel, None)
