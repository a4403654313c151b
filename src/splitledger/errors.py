from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from splitledger.db.models import Bill, BillConflict


class BillError(Exception):
    pass


class ValidationError(BillError, ValueError):
    def __init__(self, problems: Iterable[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid bill")


class BillDeletedError(ValidationError):
    def __init__(self, bill_id: str) -> None:
        self.bill_id = bill_id
        super().__init__([f"bill {bill_id} is deleted"])


class BillNotFoundError(BillError, LookupError):
    def __init__(self, bill_id: str) -> None:
        self.bill_id = bill_id
        super().__init__(f"bill {bill_id} not found")


class ConflictError(BillError):
    """The stored version moved past the caller's expected version.

    ``server`` is the store's current snapshot. ``conflict`` is the detector's
    verdict; it is ``None`` when the intervening writes touched none of the
    fields the caller meant to change, in which case the caller re-applies its
    patch on ``server`` with ``expected_version=server.version``.
    """

    def __init__(self, server: Bill, expected_version: int, conflict: Optional[BillConflict] = None) -> None:
        self.server = server
        self.expected_version = expected_version
        self.conflict = conflict
        super().__init__(
            f"bill {server.id} is at version {server.version}, expected {expected_version}"
        )


class ConflictNotFoundError(BillError, LookupError):
    def __init__(self, conflict_id: str) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"conflict {conflict_id} not found")


class ResolutionNotAllowedError(BillError):
    def __init__(self, conflict_id: str, resolution: str) -> None:
        self.conflict_id = conflict_id
        self.resolution = resolution
        super().__init__(f"resolution {resolution!r} is not offered for conflict {conflict_id}")


class StorageError(BillError):
    pass


class SessionPersistenceError(StorageError):
    pass


class CorruptedSessionError(BillError):
    pass
