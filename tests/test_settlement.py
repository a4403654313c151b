from splitledger.services.settlement import Transfer, settle


def test_settle_balances():
    balances = {
        "a": 500,
        "b": -300,
        "c": -200,
    }

    transfers = settle(balances)

    assert transfers == [
        Transfer(from_participant="b", to_participant="a", amount_cents=300),
        Transfer(from_participant="c", to_participant="a", amount_cents=200),
    ]

    after = balances.copy()
    for t in transfers:
        after[t.to_participant] -= t.amount_cents
        after[t.from_participant] += t.amount_cents

    assert all(value == 0 for value in after.values())


def test_settle_breaks_ties_by_id():
    transfers = settle({"z": 100, "y": 100, "b": -100, "a": -100})

    assert transfers == [
        Transfer(from_participant="a", to_participant="y", amount_cents=100),
        Transfer(from_participant="b", to_participant="z", amount_cents=100),
    ]


def test_settle_nothing_owed():
    assert settle({"a": 0, "b": 0}) == []
