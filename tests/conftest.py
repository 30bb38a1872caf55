from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from mnemo.application.card_service import CardService
from mnemo.application.review_session import ReviewSessionController
from mnemo.domain.models import Card, CardKind, CardSchedulingState, Deck
from mnemo.domain.ports import Clock
from mnemo.infrastructure.stores.memory_store import InMemoryCardStore
from mnemo.infrastructure.stores.sql_store import SqlCardStore

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, days: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(days=days, **kwargs)
        return self.current


def make_card(
    card_id: str,
    owner_id: str = "alice",
    due: datetime = T0,
    deck_id: str | None = None,
    kind: CardKind = CardKind.WORD,
    front: str | None = None,
    back: str | None = None,
    **scheduling,
) -> Card:
    return Card(
        id=card_id,
        owner_id=owner_id,
        front=front or f"front-{card_id}",
        back=back or f"back-{card_id}",
        kind=kind,
        deck_id=deck_id,
        scheduling=CardSchedulingState(next_review_date=due, **scheduling),
        created_at=T0,
    )


def make_deck(deck_id: str, owner_id: str = "alice", name: str | None = None, **kwargs) -> Deck:
    return Deck(id=deck_id, owner_id=owner_id, name=name or deck_id, created_at=T0, **kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request):
    """Every store-facing test runs against both adapters."""
    if request.param == "memory":
        yield InMemoryCardStore()
    else:
        s = SqlCardStore("sqlite:///:memory:")
        yield s
        await s.close()


@pytest.fixture
def controller(store, clock):
    return ReviewSessionController(store, clock)


@pytest.fixture
def card_service(store, clock):
    return CardService(store, clock)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(name="make_card")
def make_card_fixture():
    return make_card


@pytest.fixture(name="make_deck")
def make_deck_fixture():
    return make_deck
