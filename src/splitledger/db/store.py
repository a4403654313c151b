from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from splitledger.channel import Channel
from splitledger.db.models import Bill, BillActivity


@dataclass(slots=True, frozen=True)
class WriteResult:
    committed: bool
    current: Optional[Bill]

    @property
    def stored_version(self) -> int:
        return self.current.version if self.current is not None else 0


class BillStore(Protocol):
    """Authoritative document store for bills.

    ``write_if_version`` is a compare-and-swap: inside one transaction it reads
    the stored version (0 for an absent bill), compares it with
    ``expected_version`` and only then writes the bill together with its
    activity records. On mismatch nothing is written and ``current`` holds the
    stored snapshot.
    """

    async def get_bill(self, bill_id: str) -> Optional[Bill]: ...

    async def read_version(self, bill_id: str) -> int: ...

    async def write_if_version(
        self,
        bill: Bill,
        expected_version: int,
        activities: Sequence[BillActivity] = (),
    ) -> WriteResult: ...

    async def subscribe(self, participant_id: Optional[str] = None) -> Channel[Bill]: ...

    async def list_bills(self, participant_id: str, include_deleted: bool = False) -> list[Bill]: ...

    async def list_activities(
        self,
        bill_id: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> list[BillActivity]: ...
