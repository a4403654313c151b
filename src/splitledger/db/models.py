from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from uuid import uuid4

from pydantic import TypeAdapter


def new_id() -> str:
    return str(uuid4())


class ActivityType(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    DELETED = "deleted"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    ConflictSeverity.LOW,
    ConflictSeverity.MEDIUM,
    ConflictSeverity.HIGH,
    ConflictSeverity.CRITICAL,
]


class ConflictResolution(str, Enum):
    ACCEPT_LOCAL = "accept_local"
    ACCEPT_SERVER = "accept_server"
    MERGE = "merge"
    MANUAL = "manual"
    CANCEL = "cancel"


@dataclass(slots=True, frozen=True)
class BillParticipant:
    id: str
    display_name: str
    email: str
    photo_url: Optional[str] = None


@dataclass(slots=True)
class BillItem:
    id: str
    name: str
    price: int
    participant_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        self.participant_ids = frozenset(self.participant_ids)

    @classmethod
    def new(cls, name: str, price: int, participant_ids: Iterable[str]) -> "BillItem":
        return cls(id=new_id(), name=name, price=price, participant_ids=frozenset(participant_ids))


@dataclass(slots=True)
class Bill:
    id: str
    created_by: str
    paid_by: str
    bill_name: Optional[str]
    total_amount: int
    currency: str
    date: datetime
    created_at: datetime
    items: list[BillItem]
    participants: list[BillParticipant]
    calculated_totals: dict[str, int]
    rounding_adjustments: dict[str, int] = field(default_factory=dict)
    version: int = 1
    last_modified_by: Optional[str] = None
    last_modified_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @property
    def participant_ids(self) -> list[str]:
        return [participant.id for participant in self.participants]

    @property
    def display_name(self) -> str:
        if self.bill_name and self.bill_name.strip():
            return self.bill_name
        if len(self.items) == 1:
            return self.items[0].name
        return f"{len(self.items)} items"

    def participant(self, participant_id: str) -> Optional[BillParticipant]:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None


@dataclass(slots=True, frozen=True)
class BillActivity:
    id: str
    bill_id: str
    participant_id: str
    actor_id: str
    activity_type: ActivityType
    timestamp: datetime
    amount_snapshot: int
    bill_name: str
    currency: str


@dataclass(slots=True, frozen=True)
class BillConflict:
    id: str
    operation_id: str
    local_version: int
    server_version: int
    conflicting_fields: frozenset[str]
    severity: ConflictSeverity
    resolution_options: tuple[ConflictResolution, ...]
    detected_at: datetime

    def allows(self, resolution: ConflictResolution) -> bool:
        return resolution in self.resolution_options


@dataclass(slots=True)
class BillMetadata:
    created_by: str
    bill_name: Optional[str] = None
    currency: str = "USD"
    date: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class DeleteAck:
    bill_id: str
    deleted_at: datetime
    already_deleted: bool = False


PATCHABLE_FIELDS = ("bill_name", "paid_by", "currency", "date", "items", "participants")


@dataclass(slots=True)
class BillPatch:
    """An intended edit to a bill.

    ``changes`` maps field names to the new values. ``base`` maps the same
    names to the values the editor started from; a field missing from ``base``
    is compared two-way against the server.
    """

    changes: dict[str, Any] = field(default_factory=dict)
    base: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = (set(self.changes) | set(self.base)) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields cannot be patched: {', '.join(sorted(unknown))}")

    @classmethod
    def from_bill(cls, bill: Bill, **changes: Any) -> "BillPatch":
        base = {name: copy.deepcopy(getattr(bill, name)) for name in changes if name in PATCHABLE_FIELDS}
        return cls(changes=dict(changes), base=base)

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.changes)

    def restricted_to(self, names: Iterable[str]) -> "BillPatch":
        keep = set(names)
        return BillPatch(
            changes={name: value for name, value in self.changes.items() if name in keep},
            base={name: value for name, value in self.base.items() if name in keep},
        )

    def apply(self, bill: Bill) -> Bill:
        return replace(bill, **copy.deepcopy(self.changes))

    def is_empty(self) -> bool:
        return not self.changes


_bill_adapter = TypeAdapter(Bill)
_activity_adapter = TypeAdapter(BillActivity)


def bill_to_document(bill: Bill) -> str:
    return _bill_adapter.dump_json(bill).decode()


def bill_from_document(document: str | bytes | Mapping[str, Any]) -> Bill:
    if isinstance(document, Mapping):
        return _bill_adapter.validate_python(dict(document))
    return _bill_adapter.validate_json(document)


def activity_to_document(activity: BillActivity) -> str:
    return _activity_adapter.dump_json(activity).decode()


def activity_from_document(document: str | bytes) -> BillActivity:
    return _activity_adapter.validate_json(document)
