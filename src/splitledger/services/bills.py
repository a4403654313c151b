from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence

from splitledger.db.models import (
    ActivityType,
    Bill,
    BillActivity,
    BillConflict,
    BillItem,
    BillMetadata,
    BillParticipant,
    BillPatch,
    ConflictResolution,
    ConflictSeverity,
    DeleteAck,
    new_id,
)
from splitledger.db.store import BillStore
from splitledger.errors import (
    BillDeletedError,
    BillError,
    BillNotFoundError,
    ConflictError,
    ConflictNotFoundError,
    ResolutionNotAllowedError,
    StorageError,
    ValidationError,
)
from splitledger.logging import get_logger
from splitledger.services.authz import assert_can_delete, assert_can_edit
from splitledger.services.conflicts import ConflictDetector, merge_patch
from splitledger.services.events import BillChangedEvent, LoggingDispatcher, NotificationDispatcher
from splitledger.services.split import calculate_bill_split
from splitledger.utils.money import format_amount


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_bill(
    items: Sequence[BillItem],
    participants: Sequence[BillParticipant],
    payer_id: str,
    currency: str,
) -> None:
    """Raise ValidationError listing every rule the bill breaks."""
    problems: list[str] = []

    participant_ids = [participant.id for participant in participants]
    known = set(participant_ids)
    if not participants:
        problems.append("bill must have at least one participant")
    if len(known) != len(participant_ids):
        problems.append("participants must be unique")
    if payer_id not in known:
        problems.append(f"payer {payer_id} is not a participant")

    if not items:
        problems.append("bill must have at least one item")
    if len({item.id for item in items}) != len(items):
        problems.append("item ids must be unique")
    for item in items:
        if not isinstance(item.price, int) or isinstance(item.price, bool) or item.price <= 0:
            problems.append(f"item {item.name!r} must have a positive price")
        if not item.participant_ids:
            problems.append(f"item {item.name!r} is not assigned to anyone")
        unknown = set(item.participant_ids) - known
        if unknown:
            problems.append(f"item {item.name!r} is assigned to non-participants: {', '.join(sorted(unknown))}")

    if not (len(currency) == 3 and currency.isalpha() and currency.isupper()):
        problems.append(f"currency {currency!r} is not a three-letter code")

    if problems:
        raise ValidationError(problems)


@dataclass(slots=True)
class PendingEdit:
    conflict: BillConflict
    patch: BillPatch
    actor_id: str
    server: Bill


class BillCommandService:
    def __init__(
        self,
        store: BillStore,
        detector: Optional[ConflictDetector] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow,
        auto_dismiss_low_conflicts: bool = False,
        delete_max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._clock = clock
        self._detector = detector or ConflictDetector(clock)
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._auto_dismiss_low_conflicts = auto_dismiss_low_conflicts
        self._delete_max_attempts = delete_max_attempts
        self._pending: dict[str, PendingEdit] = {}
        self._log = get_logger(__name__)

    async def get_bill(self, bill_id: str) -> Bill:
        bill = await self._store.get_bill(bill_id)
        if bill is None:
            raise BillNotFoundError(bill_id)
        return bill

    async def bill_history(self, bill_id: str) -> list[BillActivity]:
        return await self._store.list_activities(bill_id=bill_id)

    async def create_bill(
        self,
        items: Iterable[BillItem],
        participants: Iterable[BillParticipant],
        payer_id: str,
        metadata: BillMetadata,
    ) -> Bill:
        items = list(items)
        participants = list(participants)
        validate_bill(items, participants, payer_id, metadata.currency)

        now = self._clock()
        result = calculate_bill_split(items, participants)
        bill = Bill(
            id=new_id(),
            created_by=metadata.created_by,
            paid_by=payer_id,
            bill_name=metadata.bill_name,
            total_amount=sum(item.price for item in items),
            currency=metadata.currency,
            date=metadata.date or now,
            created_at=now,
            items=items,
            participants=participants,
            calculated_totals=result.totals,
            rounding_adjustments=result.rounding_adjustments,
            version=1,
            last_modified_by=metadata.created_by,
            last_modified_at=now,
        )

        write = await self._store.write_if_version(
            bill, 0, self._activities(bill, ActivityType.CREATED, metadata.created_by, now)
        )
        if not write.committed:
            raise StorageError(f"bill id {bill.id} is already taken")

        self._log.info(
            "bill.created",
            bill_id=bill.id,
            total=format_amount(bill.total_amount, bill.currency),
            participants=len(participants),
        )
        await self._publish(bill, ActivityType.CREATED, metadata.created_by, now)
        return write.current or bill

    async def update_bill(self, bill_id: str, patch: BillPatch, expected_version: int, actor_id: str) -> Bill:
        try:
            current = await self.get_bill(bill_id)
            assert_can_edit(current, actor_id)
            if current.is_deleted:
                raise BillDeletedError(bill_id)
            if current.version != expected_version:
                raise self._conflict(patch, current, expected_version, actor_id)
            return await self._commit_patch(current, patch, actor_id)
        except ConflictError as exc:
            conflict = exc.conflict
            if (
                conflict is not None
                and conflict.severity is ConflictSeverity.LOW
                and self._auto_dismiss_low_conflicts
            ):
                return await self.dismiss_conflict(conflict.id)
            raise

    async def delete_bill(self, bill_id: str, actor_id: str) -> DeleteAck:
        current = await self.get_bill(bill_id)
        assert_can_delete(current, actor_id)

        # A concurrent edit is re-read and the delete stamped on its newer version.
        for _ in range(self._delete_max_attempts):
            if current.is_deleted:
                if current.deleted_at is None:
                    raise StorageError(f"bill {bill_id} is deleted but has no deletion time")
                self._log.info("bill.delete.noop", bill_id=bill_id, actor_id=actor_id)
                return DeleteAck(bill_id=bill_id, deleted_at=current.deleted_at, already_deleted=True)

            now = self._clock()
            deleted = replace(
                current,
                is_deleted=True,
                deleted_by=actor_id,
                deleted_at=now,
                version=current.version + 1,
            )
            write = await self._store.write_if_version(
                deleted,
                current.version,
                self._activities(deleted, ActivityType.DELETED, actor_id, now),
            )
            if write.committed:
                self._log.info("bill.deleted", bill_id=bill_id, actor_id=actor_id, version=deleted.version)
                await self._publish(deleted, ActivityType.DELETED, actor_id, now)
                return DeleteAck(bill_id=bill_id, deleted_at=now)

            if write.current is None:
                raise BillNotFoundError(bill_id)
            current = write.current
            assert_can_delete(current, actor_id)

        raise StorageError(f"bill {bill_id} kept changing; delete gave up after {self._delete_max_attempts} attempts")

    def pending_conflicts(self) -> list[BillConflict]:
        return [pending.conflict for pending in self._pending.values()]

    def get_conflict(self, conflict_id: str) -> BillConflict:
        return self._pending_edit(conflict_id).conflict

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ConflictResolution | str,
        manual_patch: Optional[BillPatch] = None,
    ) -> Optional[Bill]:
        pending = self._pending_edit(conflict_id)
        resolution = ConflictResolution(resolution)
        if not pending.conflict.allows(resolution):
            raise ResolutionNotAllowedError(conflict_id, resolution.value)

        self._log.info(
            "conflict.resolve",
            conflict_id=conflict_id,
            bill_id=pending.server.id,
            resolution=resolution.value,
            severity=pending.conflict.severity.value,
        )

        if resolution is ConflictResolution.CANCEL:
            del self._pending[conflict_id]
            return None
        if resolution is ConflictResolution.ACCEPT_SERVER:
            del self._pending[conflict_id]
            return pending.server

        if resolution is ConflictResolution.MERGE:
            patch = merge_patch(pending.patch, pending.conflict)
            if patch.is_empty():
                del self._pending[conflict_id]
                return pending.server
        elif resolution is ConflictResolution.MANUAL:
            if manual_patch is None:
                raise ValidationError(["manual resolution requires a resolved patch"])
            patch = manual_patch
        else:
            patch = pending.patch

        assert_can_edit(pending.server, pending.actor_id)
        try:
            bill = await self._commit_patch(pending.server, patch, pending.actor_id)
        except ConflictError:
            # A newer conflict replaced this one.
            self._pending.pop(conflict_id, None)
            raise
        self._pending.pop(conflict_id, None)
        return bill

    async def dismiss_conflict(self, conflict_id: str) -> Bill:
        """Push a low-severity edit through as if the user accepted it."""
        pending = self._pending_edit(conflict_id)
        if pending.conflict.severity is not ConflictSeverity.LOW:
            raise ResolutionNotAllowedError(conflict_id, "dismiss")
        bill = await self.resolve_conflict(conflict_id, ConflictResolution.ACCEPT_LOCAL)
        if bill is None:
            raise StorageError(f"conflict {conflict_id} was dismissed without a write")
        return bill

    async def expire_low_conflicts(self, older_than: timedelta) -> list[Bill]:
        cutoff = self._clock() - older_than
        expired = [
            pending.conflict.id
            for pending in self._pending.values()
            if pending.conflict.severity is ConflictSeverity.LOW and pending.conflict.detected_at <= cutoff
        ]
        committed: list[Bill] = []
        for conflict_id in expired:
            try:
                committed.append(await self.dismiss_conflict(conflict_id))
            except BillError as exc:
                self._log.warning("conflict.auto_dismiss.failed", conflict_id=conflict_id, error=str(exc))
        return committed

    async def _commit_patch(self, current: Bill, patch: BillPatch, actor_id: str) -> Bill:
        candidate = patch.apply(current)
        validate_bill(candidate.items, candidate.participants, candidate.paid_by, candidate.currency)

        now = self._clock()
        result = calculate_bill_split(candidate.items, candidate.participants)
        updated = replace(
            candidate,
            total_amount=sum(item.price for item in candidate.items),
            calculated_totals=result.totals,
            rounding_adjustments=result.rounding_adjustments,
            version=current.version + 1,
            last_modified_by=actor_id,
            last_modified_at=now,
        )

        write = await self._store.write_if_version(
            updated,
            current.version,
            self._activities(updated, ActivityType.EDITED, actor_id, now),
        )
        if not write.committed:
            server = write.current
            if server is None:
                raise BillNotFoundError(current.id)
            if server.is_deleted:
                raise BillDeletedError(current.id)
            raise self._conflict(patch, server, current.version, actor_id)

        self._log.info(
            "bill.updated",
            bill_id=updated.id,
            version=updated.version,
            actor_id=actor_id,
            fields=sorted(patch.fields),
        )
        await self._publish(updated, ActivityType.EDITED, actor_id, now)
        return write.current or updated

    def _conflict(self, patch: BillPatch, server: Bill, expected_version: int, actor_id: str) -> ConflictError:
        conflict = self._detector.detect(patch, server, local_version=expected_version)
        if conflict is not None:
            self._pending[conflict.id] = PendingEdit(conflict=conflict, patch=patch, actor_id=actor_id, server=server)
        self._log.info(
            "bill.conflict",
            bill_id=server.id,
            expected_version=expected_version,
            server_version=server.version,
            conflict_id=conflict.id if conflict else None,
        )
        return ConflictError(server, expected_version, conflict)

    def _pending_edit(self, conflict_id: str) -> PendingEdit:
        pending = self._pending.get(conflict_id)
        if pending is None:
            raise ConflictNotFoundError(conflict_id)
        return pending

    def _activities(self, bill: Bill, activity_type: ActivityType, actor_id: str, now: datetime) -> list[BillActivity]:
        return [
            BillActivity(
                id=new_id(),
                bill_id=bill.id,
                participant_id=participant.id,
                actor_id=actor_id,
                activity_type=activity_type,
                timestamp=now,
                amount_snapshot=bill.total_amount,
                bill_name=bill.display_name,
                currency=bill.currency,
            )
            for participant in bill.participants
        ]

    async def _publish(self, bill: Bill, change: ActivityType, actor_id: str, now: datetime) -> None:
        event = BillChangedEvent.for_bill(bill, change, actor_id, now)
        try:
            await self._dispatcher.publish(event)
        except Exception:
            # The write is already committed.
            self._log.exception("bill.notify.failed", bill_id=bill.id, version=bill.version)
