from datetime import datetime, timezone

import pytest

from splitledger.db.models import Bill, BillParticipant
from splitledger.services.authz import (
    AuthorizationError,
    assert_can_delete,
    assert_can_edit,
    can_delete,
    can_edit,
)


def _bill() -> Bill:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return Bill(
        id="bill-1",
        created_by="owner",
        paid_by="payer",
        bill_name="Dinner",
        total_amount=0,
        currency="USD",
        date=now,
        created_at=now,
        items=[],
        participants=[
            BillParticipant(id="payer", display_name="Payer", email="payer@example.com"),
            BillParticipant(id="guest", display_name="Guest", email="guest@example.com"),
        ],
        calculated_totals={},
    )


def test_creator_and_payer_can_delete():
    bill = _bill()
    assert can_delete(bill, "owner") is True
    assert can_delete(bill, "payer") is True
    assert can_delete(bill, "guest") is False


def test_assert_can_delete_denied():
    with pytest.raises(AuthorizationError) as excinfo:
        assert_can_delete(_bill(), "guest")
    assert excinfo.value.action == "delete"


def test_participant_can_edit():
    bill = _bill()
    assert can_edit(bill, "guest") is True
    assert_can_edit(bill, "owner")


def test_assert_can_edit_denied():
    with pytest.raises(AuthorizationError):
        assert_can_edit(_bill(), "stranger")
