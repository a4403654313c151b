from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from splitledger.channel import Channel
from splitledger.db.models import Bill
from splitledger.db.store import BillStore
from splitledger.logging import get_logger
from splitledger.services.settlement import Transfer, settle
from splitledger.services.split import UserBalance, calculate_balances, calculate_user_balance


@dataclass(slots=True, frozen=True)
class LedgerSnapshot:
    user_id: str
    revision: int
    bills: tuple[Bill, ...]
    balance: UserBalance

    def get(self, bill_id: str) -> Optional[Bill]:
        for bill in self.bills:
            if bill.id == bill_id:
                return bill
        return None


class LedgerStore:
    """Read-side cache of the current user's live bills.

    The cache only moves forward: a delivered bill is applied when its version
    is newer than anything already seen for that id, so late or duplicate
    deliveries from the change stream are dropped. Every applied change
    publishes a fresh ``LedgerSnapshot`` to all subscribers.
    """

    def __init__(self, store: BillStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id
        self._bills: dict[str, Bill] = {}
        self._seen_versions: dict[str, int] = {}
        self._subscribers: set[Channel[LedgerSnapshot]] = set()
        self._stream: Optional[Channel[Bill]] = None
        self._revision = 0
        self._log = get_logger(__name__)

    @property
    def user_id(self) -> str:
        return self._user_id

    async def load(self) -> LedgerSnapshot:
        bills = await self._store.list_bills(self._user_id)
        changed = False
        for bill in bills:
            changed = self._merge(bill) or changed
        self._log.info("ledger.loaded", user_id=self._user_id, bills=len(self._bills))
        if changed:
            self._publish()
        return self.snapshot()

    async def run(self) -> None:
        """Follow the change stream until cancelled or stopped."""
        stream = await self._store.subscribe(self._user_id)
        self._stream = stream
        try:
            # Subscribed first so nothing committed during the load is missed.
            await self.load()
            async for bill in stream:
                self.apply(bill)
        finally:
            await stream.close()
            self._stream = None
            self._log.info("ledger.stopped", user_id=self._user_id)

    async def stop(self) -> None:
        if self._stream is not None:
            await self._stream.close()

    def apply(self, bill: Bill) -> bool:
        if not self._merge(bill):
            self._log.debug("ledger.stale", bill_id=bill.id, version=bill.version)
            return False
        self._log.info("ledger.applied", bill_id=bill.id, version=bill.version, deleted=bill.is_deleted)
        self._publish()
        return True

    def bills(self) -> list[Bill]:
        return sorted(self._bills.values(), key=lambda bill: (bill.date, bill.id), reverse=True)

    def get(self, bill_id: str) -> Optional[Bill]:
        return self._bills.get(bill_id)

    def balance(self) -> UserBalance:
        return calculate_user_balance(self._user_id, self._bills.values())

    def group_balances(self) -> dict[str, int]:
        return calculate_balances(self._bills.values())

    def settlements(self) -> list[Transfer]:
        return settle(self.group_balances())

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            user_id=self._user_id,
            revision=self._revision,
            bills=tuple(self.bills()),
            balance=self.balance(),
        )

    def subscribe(self) -> Channel[LedgerSnapshot]:
        channel: Channel[LedgerSnapshot] = Channel(on_close=self._subscribers.discard)
        self._subscribers.add(channel)
        channel.push(self.snapshot())
        return channel

    def _merge(self, bill: Bill) -> bool:
        if self._seen_versions.get(bill.id, 0) >= bill.version:
            return False
        self._seen_versions[bill.id] = bill.version
        if bill.is_deleted or self._user_id not in bill.participant_ids:
            self._bills.pop(bill.id, None)
        else:
            self._bills[bill.id] = bill
        return True

    def _publish(self) -> None:
        self._revision += 1
        snapshot = self.snapshot()
        for channel in list(self._subscribers):
            channel.push(snapshot)
