from __future__ import annotations

from splitledger.db.models import Bill
from splitledger.errors import BillError


class AuthorizationError(BillError, PermissionError):
    def __init__(self, actor_id: str, bill_id: str, action: str) -> None:
        self.actor_id = actor_id
        self.bill_id = bill_id
        self.action = action
        super().__init__(f"{actor_id} may not {action} bill {bill_id}")


def can_delete(bill: Bill, actor_id: str) -> bool:
    return actor_id in (bill.created_by, bill.paid_by)


def can_edit(bill: Bill, actor_id: str) -> bool:
    return can_delete(bill, actor_id) or actor_id in bill.participant_ids


def assert_can_delete(bill: Bill, actor_id: str) -> None:
    if not can_delete(bill, actor_id):
        raise AuthorizationError(actor_id, bill.id, "delete")


def assert_can_edit(bill: Bill, actor_id: str) -> None:
    if not can_edit(bill, actor_id):
        raise AuthorizationError(actor_id, bill.id, "edit")
