import random
from typing import List, Tuple

from agents.coordinator import GameCoordinator
from models.game import GameEvent, GameState, PlayerState, Role, _utcnow
from services.notifier import Notifier


class FixedDeal(random.Random):
    """Deals roles in the order they are listed (p1 gets the first role)."""

    def shuffle(self, x):
        pass


class RecordingNotifier(Notifier):

    def __init__(self):
        self.published: List[Tuple[str, GameEvent]] = []

    async def publish(self, game_id: str, event: GameEvent) -> None:
        self.published.append((game_id, event))

    def types(self):
        return [e.type for _, e in self.published]


async def start_game(coord: GameCoordinator, roles: List[Role], game_id: str = "g1") -> GameState:
    """Create, fill and start a game. Players are p1..pN, p1 hosts."""
    n = len(roles) - 2 if Role.THIEF in roles else len(roles)
    await coord.create_game(game_id, "p1", "P1")
    for i in range(2, n + 1):
        outcome = await coord.join(game_id, f"p{i}", f"P{i}")
        assert outcome.ok
    outcome = await coord.start(game_id, "p1", roles)
    assert outcome.ok, outcome.message
    return coord.get_game(game_id)


def make_state(roles: List[Role], **fields) -> GameState:
    """Bare started GameState for pure Game Master tests."""
    players = [PlayerState(id=f"p{i}", username=f"P{i}", role=r) for i, r in enumerate(roles, 1)]
    return GameState(game_id="g1", host_id="p1", players=players, started_at=_utcnow(), **fields)
