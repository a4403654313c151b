from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(slots=True, frozen=True)
class Transfer:
    from_participant: str
    to_participant: str
    amount_cents: int


def settle(balances: Mapping[str, int]) -> list[Transfer]:
    """Greedy payback plan: largest debtor pays largest creditor first.

    Ties are broken by participant id so the plan is stable across runs.
    """
    creditors = sorted(
        ((participant_id, balance) for participant_id, balance in balances.items() if balance > 0),
        key=lambda entry: (-entry[1], entry[0]),
    )
    debtors = sorted(
        ((participant_id, -balance) for participant_id, balance in balances.items() if balance < 0),
        key=lambda entry: (-entry[1], entry[0]),
    )

    transfers: list[Transfer] = []
    i, j = 0, 0

    while i < len(creditors) and j < len(debtors):
        cred_id, cred_amount = creditors[i]
        debt_id, debt_amount = debtors[j]

        amount = min(cred_amount, debt_amount)
        transfers.append(Transfer(from_participant=debt_id, to_participant=cred_id, amount_cents=amount))

        cred_amount -= amount
        debt_amount -= amount

        if cred_amount == 0:
            i += 1
        else:
            creditors[i] = (cred_id, cred_amount)

        if debt_amount == 0:
            j += 1
        else:
            debtors[j] = (debt_id, debt_amount)

    return transfers
