from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from splitledger.db.models import Bill, BillItem, BillParticipant


@dataclass(slots=True, frozen=True)
class BillSplit:
    totals: dict[str, int]
    rounding_adjustments: dict[str, int]

    @property
    def total_amount(self) -> int:
        return sum(self.totals.values())


def split_amount(amount_cents: int, consumers: Iterable[str]) -> dict[str, int]:
    """Split ``amount_cents`` evenly; leftover cents go to the lowest ids first."""
    if amount_cents < 0:
        raise ValueError("amount_cents must be non-negative")
    ordered = sorted(set(consumers))
    if not ordered:
        raise ValueError("consumers must not be empty")

    base_share, remainder = divmod(amount_cents, len(ordered))
    return {
        consumer: base_share + (1 if index < remainder else 0)
        for index, consumer in enumerate(ordered)
    }


def merge_shares(shares: Iterable[Mapping[str, int]]) -> dict[str, int]:
    result: dict[str, int] = {}
    for share in shares:
        for participant_id, amount in share.items():
            result[participant_id] = result.get(participant_id, 0) + amount
    return result


def calculate_bill_split(items: Sequence[BillItem], participants: Sequence[BillParticipant]) -> BillSplit:
    known = {participant.id for participant in participants}
    totals = {participant.id: 0 for participant in participants}
    adjustments: dict[str, int] = {}

    for item in items:
        if not item.participant_ids:
            raise ValueError(f"item {item.id} has no participants")
        unknown = item.participant_ids - known
        if unknown:
            raise ValueError(f"item {item.id} references unknown participants: {', '.join(sorted(unknown))}")

        shares = split_amount(item.price, item.participant_ids)
        base_share = item.price // len(shares)
        for participant_id, share in shares.items():
            totals[participant_id] += share
            if share > base_share:
                adjustments[participant_id] = adjustments.get(participant_id, 0) + share - base_share

    return BillSplit(totals=totals, rounding_adjustments=adjustments)


def split(items: Sequence[BillItem], participants: Sequence[BillParticipant]) -> dict[str, int]:
    return calculate_bill_split(items, participants).totals


def calculate_balances(bills: Iterable[Bill]) -> dict[str, int]:
    """Net position per participant across bills: positive means owed money."""
    balances: dict[str, int] = {}
    for bill in bills:
        if bill.is_deleted:
            continue
        for participant_id, share in bill.calculated_totals.items():
            balances[participant_id] = balances.get(participant_id, 0) - share
        balances[bill.paid_by] = balances.get(bill.paid_by, 0) + bill.total_amount
    return balances


@dataclass(slots=True)
class UserBalance:
    total_owed: int = 0
    total_owed_to: int = 0
    balances_by_person: dict[str, int] = field(default_factory=dict)

    @property
    def net_balance(self) -> int:
        return self.total_owed_to - self.total_owed

    def top_debts(self, limit: int = 3) -> list[tuple[str, int]]:
        debts = [(person, -amount) for person, amount in self.balances_by_person.items() if amount < 0]
        debts.sort(key=lambda entry: (-entry[1], entry[0]))
        return debts[:limit]

    def top_credits(self, limit: int = 3) -> list[tuple[str, int]]:
        credits = [(person, amount) for person, amount in self.balances_by_person.items() if amount > 0]
        credits.sort(key=lambda entry: (-entry[1], entry[0]))
        return credits[:limit]


def calculate_user_balance(user_id: str, bills: Iterable[Bill]) -> UserBalance:
    balance = UserBalance()
    for bill in bills:
        if bill.is_deleted:
            continue
        if bill.paid_by == user_id:
            for participant_id, amount in bill.calculated_totals.items():
                if participant_id == user_id or amount == 0:
                    continue
                balance.total_owed_to += amount
                balance.balances_by_person[participant_id] = balance.balances_by_person.get(participant_id, 0) + amount
        else:
            amount = bill.calculated_totals.get(user_id, 0)
            if amount == 0:
                continue
            balance.total_owed += amount
            balance.balances_by_person[bill.paid_by] = balance.balances_by_person.get(bill.paid_by, 0) - amount
    return balance
