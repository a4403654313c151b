from datetime import datetime, timezone

import pytest

from splitledger.db.models import Bill, BillItem, BillParticipant
from splitledger.services.split import (
    calculate_balances,
    calculate_bill_split,
    calculate_user_balance,
    split,
    split_amount,
)

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _people(*ids: str) -> list[BillParticipant]:
    return [BillParticipant(id=pid, display_name=pid.upper(), email=f"{pid}@example.com") for pid in ids]


def _bill(bill_id: str, paid_by: str, totals: dict[str, int], deleted: bool = False) -> Bill:
    return Bill(
        id=bill_id,
        created_by=paid_by,
        paid_by=paid_by,
        bill_name=None,
        total_amount=sum(totals.values()),
        currency="USD",
        date=NOW,
        created_at=NOW,
        items=[],
        participants=_people(*totals),
        calculated_totals=totals,
        is_deleted=deleted,
    )


def test_split_amount_even():
    shares = split_amount(1000, ["a", "b", "c", "d"])
    assert shares == {"a": 250, "b": 250, "c": 250, "d": 250}


def test_split_amount_remainder_goes_to_lowest_ids():
    shares = split_amount(1000, ["c", "a", "b"])
    assert shares == {"a": 334, "b": 333, "c": 333}

    shares = split_amount(1001, ["c", "b", "a"])
    assert shares == {"a": 334, "b": 334, "c": 333}


def test_split_amount_rejects_empty_consumers():
    with pytest.raises(ValueError):
        split_amount(100, [])


def test_bill_split_sums_to_item_prices():
    people = _people("a", "b", "c", "d")
    items = [
        BillItem(id="1", name="Wine", price=2999, participant_ids=frozenset({"a", "b", "c"})),
        BillItem(id="2", name="Bread", price=7, participant_ids=frozenset({"b", "d"})),
        BillItem(id="3", name="Cake", price=1, participant_ids=frozenset({"a", "b", "c", "d"})),
    ]

    result = calculate_bill_split(items, people)

    assert result.total_amount == 2999 + 7 + 1
    assert result.totals == {"a": 1001, "b": 1004, "c": 999, "d": 3}
    assert result.rounding_adjustments == {"a": 2, "b": 2}


def test_bill_split_keeps_unassigned_participants_at_zero():
    result = split(
        [BillItem(id="1", name="Tea", price=300, participant_ids=frozenset({"a"}))],
        _people("a", "b"),
    )
    assert result == {"a": 300, "b": 0}


def test_bill_split_rejects_bad_assignments():
    people = _people("a", "b")
    with pytest.raises(ValueError):
        calculate_bill_split([BillItem(id="1", name="Tea", price=300)], people)
    with pytest.raises(ValueError):
        calculate_bill_split(
            [BillItem(id="1", name="Tea", price=300, participant_ids=frozenset({"z"}))],
            people,
        )


def test_calculate_balances_skips_deleted_bills():
    bills = [
        _bill("1", "a", {"a": 334, "b": 333, "c": 333}),
        _bill("2", "b", {"a": 500, "b": 500}),
        _bill("3", "c", {"a": 9000, "c": 1000}, deleted=True),
    ]

    balances = calculate_balances(bills)

    assert sum(balances.values()) == 0
    assert balances == {"a": 166, "b": 167, "c": -333}


def test_user_balance():
    bills = [
        _bill("1", "a", {"a": 334, "b": 333, "c": 333}),
        _bill("2", "b", {"a": 500, "b": 500}),
    ]

    balance = calculate_user_balance("a", bills)

    assert balance.total_owed_to == 666
    assert balance.total_owed == 500
    assert balance.net_balance == 166
    assert balance.balances_by_person == {"b": -167, "c": 333}
    assert balance.top_debts() == [("b", 167)]
    assert balance.top_credits() == [("c", 333)]
