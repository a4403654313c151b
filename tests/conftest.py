from datetime import datetime, timedelta, timezone

import pytest

from splitledger.db.memory import MemoryBillStore
from splitledger.db.models import BillItem, BillParticipant
from splitledger.services.bills import BillCommandService
from splitledger.services.events import BillChangedEvent


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events: list[BillChangedEvent] = []

    async def publish(self, event: BillChangedEvent) -> None:
        self.events.append(event)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> MemoryBillStore:
    return MemoryBillStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def service(store, dispatcher, clock) -> BillCommandService:
    return BillCommandService(store, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def people() -> list[BillParticipant]:
    return [
        BillParticipant(id="a", display_name="Alice", email="alice@example.com"),
        BillParticipant(id="b", display_name="Bob", email="bob@example.com"),
        BillParticipant(id="c", display_name="Carol", email="carol@example.com"),
    ]


@pytest.fixture
def pizza() -> BillItem:
    return BillItem(id="pizza", name="Pizza", price=1000, participant_ids=frozenset({"a", "b", "c"}))
