from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from splitledger.db.models import (
    Bill,
    BillConflict,
    BillPatch,
    ConflictResolution,
    ConflictSeverity,
    new_id,
)
from splitledger.logging import get_logger
from splitledger.services.split import calculate_bill_split

_ALL_BUT_MERGE = (
    ConflictResolution.ACCEPT_LOCAL,
    ConflictResolution.ACCEPT_SERVER,
    ConflictResolution.MANUAL,
    ConflictResolution.CANCEL,
)

RESOLUTION_OPTIONS: dict[ConflictSeverity, tuple[ConflictResolution, ...]] = {
    # accept_local doubles as "dismiss" for low conflicts
    ConflictSeverity.LOW: (
        ConflictResolution.ACCEPT_LOCAL,
        ConflictResolution.ACCEPT_SERVER,
        ConflictResolution.MERGE,
        ConflictResolution.CANCEL,
    ),
    ConflictSeverity.MEDIUM: (
        ConflictResolution.ACCEPT_LOCAL,
        ConflictResolution.ACCEPT_SERVER,
        ConflictResolution.MERGE,
        ConflictResolution.MANUAL,
        ConflictResolution.CANCEL,
    ),
    ConflictSeverity.HIGH: (
        ConflictResolution.ACCEPT_LOCAL,
        ConflictResolution.ACCEPT_SERVER,
        ConflictResolution.MERGE,
        ConflictResolution.MANUAL,
        ConflictResolution.CANCEL,
    ),
    ConflictSeverity.CRITICAL: _ALL_BUT_MERGE,
}

METADATA_FIELDS = frozenset({"bill_name", "date"})


def resolution_options(severity: ConflictSeverity) -> tuple[ConflictResolution, ...]:
    return RESOLUTION_OPTIONS[severity]


def _comparable(name: str, value: Any) -> Any:
    if name == "items":
        return tuple((item.id, item.name, item.price, frozenset(item.participant_ids)) for item in value)
    if name == "participants":
        return frozenset(value)
    return value


def _differs(name: str, left: Any, right: Any) -> bool:
    return _comparable(name, left) != _comparable(name, right)


def conflicting_fields(patch: BillPatch, server: Bill) -> frozenset[str]:
    """Fields both sides changed to different values.

    A field only the editor touched, or one where the server already holds the
    editor's value, is not a conflict.
    """
    fields = set()
    for name, value in patch.changes.items():
        server_value = getattr(server, name)
        if not _differs(name, value, server_value):
            continue
        if name in patch.base and not _differs(name, patch.base[name], server_value):
            continue
        fields.add(name)
    return frozenset(fields)


def classify(patch: BillPatch, server: Bill, fields: frozenset[str]) -> ConflictSeverity:
    # A payer change is critical even when only other fields conflict.
    if "paid_by" in fields or ("paid_by" in patch.changes and patch.changes["paid_by"] != server.paid_by):
        return ConflictSeverity.CRITICAL

    candidate = patch.apply(server)
    if candidate.paid_by not in candidate.participant_ids:
        return ConflictSeverity.CRITICAL
    try:
        result = calculate_bill_split(candidate.items, candidate.participants)
    except ValueError:
        return ConflictSeverity.CRITICAL
    if result.total_amount != sum(item.price for item in candidate.items):
        return ConflictSeverity.CRITICAL

    if "items" in fields or "participants" in fields:
        if "items" in fields and result.totals != server.calculated_totals:
            return ConflictSeverity.HIGH
        return ConflictSeverity.MEDIUM

    if fields - METADATA_FIELDS:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def merge_patch(patch: BillPatch, conflict: BillConflict) -> BillPatch:
    """The part of ``patch`` that does not touch any conflicting field."""
    return patch.restricted_to(patch.fields - conflict.conflicting_fields)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConflictDetector:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._log = get_logger(__name__)

    def detect(self, patch: BillPatch, server: Bill, local_version: Optional[int] = None) -> Optional[BillConflict]:
        if local_version is not None and local_version == server.version:
            return None

        fields = conflicting_fields(patch, server)
        if not fields:
            return None

        severity = classify(patch, server, fields)
        conflict = BillConflict(
            id=new_id(),
            operation_id=server.id,
            local_version=local_version if local_version is not None else server.version,
            server_version=server.version,
            conflicting_fields=fields,
            severity=severity,
            resolution_options=resolution_options(severity),
            detected_at=self._clock(),
        )
        self._log.info(
            "conflict.detected",
            conflict_id=conflict.id,
            bill_id=server.id,
            fields=sorted(fields),
            severity=severity.value,
            local_version=conflict.local_version,
            server_version=conflict.server_version,
        )
        return conflict
