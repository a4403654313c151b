from dataclasses import replace

import pytest

from splitledger.db.models import BillItem, BillMetadata, BillPatch, ConflictSeverity


def test_patch_rejects_unknown_fields():
    with pytest.raises(ValueError):
        BillPatch(changes={"version": 7})


@pytest.mark.asyncio
async def test_patch_apply_copies_changes(service, people, pizza):
    bill = await service.create_bill([pizza], people, "a", BillMetadata(created_by="a"))
    wine = BillItem.new("Wine", 500, ["a"])
    patch = BillPatch.from_bill(bill, items=[pizza, wine])

    applied = patch.apply(bill)
    patch.changes["items"].pop()

    assert [item.name for item in applied.items] == ["Pizza", "Wine"]
    assert [item.name for item in bill.items] == ["Pizza"]
    assert patch.fields == {"items"}
    assert BillPatch().is_empty()


@pytest.mark.asyncio
async def test_display_name_falls_back_to_items(service, people, pizza):
    bill = await service.create_bill([pizza], people, "a", BillMetadata(created_by="a"))

    assert bill.display_name == "Pizza"
    assert replace(bill, bill_name="  ").display_name == "Pizza"
    assert replace(bill, items=[pizza, replace(pizza, id="2")]).display_name == "2 items"
    assert replace(bill, bill_name="Dinner").display_name == "Dinner"


def test_severity_order():
    ranks = [severity.rank for severity in ConflictSeverity]
    assert ranks == sorted(ranks)
    assert ConflictSeverity.CRITICAL.rank > ConflictSeverity.LOW.rank
