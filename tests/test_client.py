import pytest

from splitledger.client import SplitLedgerClient
from splitledger.db.models import BillParticipant
from splitledger.errors import ValidationError
from splitledger.services.ledger import LedgerStore
from splitledger.services.session import DraftItem, SessionSnapshot, SessionStep, SessionStore


@pytest.fixture
def client(tmp_path, store, service, clock) -> SplitLedgerClient:
    sessions = SessionStore(tmp_path / "session.json", clock=clock)
    return SplitLedgerClient(service, LedgerStore(store, "a"), sessions)


def _draft(paid_by="a") -> SessionSnapshot:
    return SessionSnapshot(
        step=SessionStep.SAVING,
        items=[DraftItem(id="pizza", name="Pizza", price=1000, participant_ids=["a", "b"])],
        participants=[
            BillParticipant(id="a", display_name="Alice", email="alice@example.com"),
            BillParticipant(id="b", display_name="Bob", email="bob@example.com"),
        ],
        paid_by=paid_by,
        bill_name="Dinner",
        currency="EUR",
    )


@pytest.mark.asyncio
async def test_commit_session_creates_bill_and_clears_draft(client):
    saved = client.save_session(_draft())

    bill = await client.commit_session(saved)

    assert bill.created_by == "a"
    assert bill.bill_name == "Dinner"
    assert bill.currency == "EUR"
    assert bill.calculated_totals == {"a": 500, "b": 500}
    assert client.load_session() is None
    assert client.ledger.get(bill.id) == bill


@pytest.mark.asyncio
async def test_commit_session_requires_payer(client):
    saved = client.save_session(_draft(paid_by=None))

    with pytest.raises(ValidationError):
        await client.commit_session(saved)

    assert client.has_active_session() is True


@pytest.mark.asyncio
async def test_edit_and_delete_update_the_ledger(client, people, pizza):
    bill = await client.create_bill([pizza], people, "a", bill_name="Dinner")
    assert bill.currency == "USD"

    edited = await client.edit_bill(bill.id, bill_name="Brunch")
    assert edited.version == 2
    assert client.ledger.get(bill.id).bill_name == "Brunch"

    ack = await client.delete_bill(bill.id)
    assert ack.already_deleted is False
    assert client.ledger.get(bill.id) is None


def test_discard_session(client):
    client.save_session(_draft())

    client.discard_session()

    assert client.load_session() is None
