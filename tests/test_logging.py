import pytest
from structlog.testing import capture_logs

from splitledger.db.models import BillMetadata, BillPatch
from splitledger.errors import ConflictError
from splitledger.logging import configure_logging


def test_configure_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        configure_logging("chatty")


@pytest.mark.asyncio
async def test_bill_lifecycle_is_logged(service, people, pizza):
    with capture_logs() as logs:
        bill = await service.create_bill([pizza], people, "a", BillMetadata(created_by="a"))
        await service.update_bill(bill.id, BillPatch.from_bill(bill, bill_name="Brunch"), 1, "b")
        with pytest.raises(ConflictError):
            await service.update_bill(bill.id, BillPatch.from_bill(bill, bill_name="Lunch"), 1, "c")

    events = [entry["event"] for entry in logs]
    assert "bill.created" in events
    assert "bill.updated" in events
    assert "conflict.detected" in events
    created = next(entry for entry in logs if entry["event"] == "bill.created")
    assert created["total"] == "10.00 USD"
