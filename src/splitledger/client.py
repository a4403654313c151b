from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from splitledger.db.models import (
    Bill,
    BillItem,
    BillMetadata,
    BillParticipant,
    BillPatch,
    ConflictResolution,
    DeleteAck,
)
from splitledger.errors import ValidationError
from splitledger.logging import get_logger
from splitledger.services.bills import BillCommandService
from splitledger.services.ledger import LedgerStore
from splitledger.services.session import SessionSnapshot, SessionStore


class SplitLedgerClient:
    """Command surface for one signed-in user.

    Writes go through the command service; bills it returns are applied to the
    ledger right away so the caller reads its own writes before the change
    stream catches up.
    """

    def __init__(
        self,
        commands: BillCommandService,
        ledger: LedgerStore,
        sessions: SessionStore,
        default_currency: str = "USD",
    ) -> None:
        self.commands = commands
        self.ledger = ledger
        self.sessions = sessions
        self._default_currency = default_currency
        self._log = get_logger(__name__)

    @property
    def user_id(self) -> str:
        return self.ledger.user_id

    async def create_bill(
        self,
        items: Iterable[BillItem],
        participants: Iterable[BillParticipant],
        payer_id: str,
        bill_name: Optional[str] = None,
        currency: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Bill:
        metadata = BillMetadata(
            created_by=self.user_id,
            bill_name=bill_name,
            currency=currency or self._default_currency,
            date=date,
        )
        bill = await self.commands.create_bill(items, participants, payer_id, metadata)
        self.ledger.apply(bill)
        return bill

    async def update_bill(self, bill_id: str, patch: BillPatch, expected_version: int) -> Bill:
        bill = await self.commands.update_bill(bill_id, patch, expected_version, self.user_id)
        self.ledger.apply(bill)
        return bill

    async def edit_bill(self, bill_id: str, **changes: Any) -> Bill:
        """Patch the bill as this client last saw it."""
        base = self.ledger.get(bill_id) or await self.commands.get_bill(bill_id)
        patch = BillPatch.from_bill(base, **changes)
        return await self.update_bill(bill_id, patch, base.version)

    async def delete_bill(self, bill_id: str) -> DeleteAck:
        ack = await self.commands.delete_bill(bill_id, self.user_id)
        self.ledger.apply(await self.commands.get_bill(bill_id))
        return ack

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ConflictResolution | str,
        manual_patch: Optional[BillPatch] = None,
    ) -> Optional[Bill]:
        bill = await self.commands.resolve_conflict(conflict_id, resolution, manual_patch)
        if bill is not None:
            self.ledger.apply(bill)
        return bill

    def save_session(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        return self.sessions.save(snapshot)

    def load_session(self) -> Optional[SessionSnapshot]:
        return self.sessions.load()

    def discard_session(self) -> None:
        self.sessions.clear()

    def has_active_session(self) -> bool:
        return self.sessions.has_active()

    async def commit_session(self, snapshot: SessionSnapshot) -> Bill:
        """Create the bill a finished session describes, then drop the snapshot."""
        if snapshot.paid_by is None:
            raise ValidationError(["session has no payer"])
        bill = await self.create_bill(
            snapshot.bill_items(),
            snapshot.participants,
            snapshot.paid_by,
            bill_name=snapshot.bill_name,
            currency=snapshot.currency,
        )
        self.sessions.clear()
        self._log.info("session.committed", session_id=snapshot.session_id, bill_id=bill.id)
        return bill
