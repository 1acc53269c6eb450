import pytest

from agents.coordinator import GameCoordinator
from agents.game_master import game_master
from services.memory_store import InMemoryGameStore
from helpers import FixedDeal, RecordingNotifier


@pytest.fixture(autouse=True)
def fixed_deal(monkeypatch):
    monkeypatch.setattr(game_master, "rng", FixedDeal())


@pytest.fixture
def store():
    return InMemoryGameStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def coordinator(store, notifier):
    coord = GameCoordinator(store, notifier=notifier)
    yield coord
    coord.shutdown()
