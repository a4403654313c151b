import json
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from splitledger.db.models import ActivityType, Bill, bill_from_document, bill_to_document
from splitledger.db.repo import PostgresBillStore
from splitledger.services.split import calculate_bill_split

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _bill(people, pizza, version=1) -> Bill:
    result = calculate_bill_split([pizza], people)
    return Bill(
        id="bill-1",
        created_by="a",
        paid_by="a",
        bill_name="Dinner",
        total_amount=result.total_amount,
        currency="USD",
        date=NOW,
        created_at=NOW,
        items=[pizza],
        participants=list(people),
        calculated_totals=result.totals,
        rounding_adjustments=result.rounding_adjustments,
        version=version,
    )


class DummyConn:
    def __init__(self, row=None, insert_status="INSERT 0 1") -> None:
        self.row = row
        self.insert_status = insert_status
        self.executed = []
        self.batches = []

    async def fetchrow(self, query: str, *args):
        return self.row

    async def execute(self, query: str, *args):
        self.executed.append((query, args))
        if "INSERT INTO bills" in query:
            return self.insert_status
        return "OK"

    async def executemany(self, query: str, args):
        self.batches.append(list(args))


class DummyDB:
    def __init__(self, conn=None) -> None:
        self.documents = {}
        self.activities = []
        self.conn = conn

    async def fetchrow(self, query: str, *args):
        document = self.documents.get(args[0])
        return {"document": document} if document is not None else None

    async def fetchval(self, query: str, *args):
        document = self.documents.get(args[0])
        return json.loads(document)["version"] if document is not None else None

    async def fetch(self, query: str, *args):
        if "bill_activities" in query:
            return self.activities
        return [{"document": document} for document in self.documents.values()]

    @asynccontextmanager
    async def transaction(self):
        yield self.conn


@pytest.mark.asyncio
async def test_get_bill_decodes_document(people, pizza):
    db = DummyDB()
    bill = _bill(people, pizza, version=4)
    db.documents[bill.id] = bill_to_document(bill)
    store = PostgresBillStore(db)  # type: ignore[arg-type]

    loaded = await store.get_bill(bill.id)

    assert loaded == bill
    assert loaded.items[0].participant_ids == frozenset({"a", "b", "c"})
    assert await store.read_version(bill.id) == 4
    assert await store.read_version("missing") == 0
    assert await store.get_bill("missing") is None


@pytest.mark.asyncio
async def test_list_activities_maps_rows():
    db = DummyDB()
    db.activities = [
        {
            "id": "act-1",
            "bill_id": "bill-1",
            "participant_id": "b",
            "actor_id": "a",
            "activity_type": "deleted",
            "created_at": NOW,
            "amount_snapshot": 1000,
            "bill_name": "Dinner",
            "currency": "USD",
        }
    ]
    store = PostgresBillStore(db)  # type: ignore[arg-type]

    activities = await store.list_activities(bill_id="bill-1")

    assert activities[0].activity_type is ActivityType.DELETED
    assert activities[0].timestamp == NOW


@pytest.mark.asyncio
async def test_create_on_taken_id_is_not_committed(people, pizza):
    existing = _bill(people, pizza, version=2)
    conn = DummyConn(row={"document": bill_to_document(existing)}, insert_status="INSERT 0 0")
    store = PostgresBillStore(DummyDB(conn))  # type: ignore[arg-type]

    result = await store.write_if_version(_bill(people, pizza), 0)

    assert result.committed is False
    assert result.stored_version == 2
    assert conn.batches == []


@pytest.mark.asyncio
async def test_stale_update_writes_nothing(people, pizza):
    stored = _bill(people, pizza, version=3)
    conn = DummyConn(row={"version": 3, "participant_ids": ["a", "b", "c"], "document": bill_to_document(stored)})
    store = PostgresBillStore(DummyDB(conn))  # type: ignore[arg-type]

    result = await store.write_if_version(_bill(people, pizza, version=2), 1)

    assert result.committed is False
    assert result.current.version == 3
    assert conn.executed == []


@pytest.mark.asyncio
async def test_update_notifies_old_and_new_participants(people, pizza):
    stored = _bill(people, pizza, version=1)
    conn = DummyConn(row={"version": 1, "participant_ids": ["a", "b", "c"], "document": bill_to_document(stored)})
    store = PostgresBillStore(DummyDB(conn))  # type: ignore[arg-type]
    without_carol = [person for person in people if person.id != "c"]
    updated = replace(
        stored,
        version=2,
        participants=without_carol,
        items=[replace(pizza, participant_ids=frozenset({"a", "b"}))],
    )

    result = await store.write_if_version(updated, 1)

    assert result.committed is True
    assert any("UPDATE bills" in query for query, _ in conn.executed)
    notify_args = conn.executed[-1][1]
    assert notify_args[0] == "bill_changes"
    assert json.loads(notify_args[1]) == {"id": "bill-1", "version": 2, "participant_ids": ["a", "b", "c"]}


def test_bill_document_accepts_mapping(people, pizza):
    bill = _bill(people, pizza)

    assert bill_from_document(json.loads(bill_to_document(bill))) == bill
