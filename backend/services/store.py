"""
Durable store contract.

The game document is written whole at the end of every gate section
(StoreSession.commit). Idempotent operations that need a durable answer
("was this night action already recorded?", "did this vote change?", "is the
potion still available?") go through the session so their writes land in
the same atomic commit as the game document, or not at all.

Implementations: services.memory_store.InMemoryGameStore (default) and
services.firestore_service.FirestoreService.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models.game import (
    GameState, PlayerState, GameEvent, NightAction, Potion, VoteRecord, VoteType,
    WriteResult,
)


class StoreSession(ABC):
    """Unit of work bound to one game, opened by the gate for one section."""

    def __init__(self, game_id: str):
        self.game_id = game_id

    @abstractmethod
    async def add_vote_if_changed(
        self, voter_id: str, target_id: str, vote_type: VoteType, round: int
    ) -> WriteResult:
        """Stage a vote. duplicate=True when the voter already targets the same player."""

    @abstractmethod
    async def clear_votes(self, vote_type: VoteType, round: int) -> None:
        ...

    @abstractmethod
    async def add_night_action_once(
        self, round: int, action_type, actor_id: str, target_id: Optional[str]
    ) -> WriteResult:
        """Stage a ledger entry. duplicate=True if (round, action_type, actor) exists."""

    @abstractmethod
    async def use_witch_potion_if_available(self, potion: Potion) -> WriteResult:
        """Claim a single-use potion. duplicate=True when it was already used."""

    @abstractmethod
    async def commit(self, game: GameState) -> None:
        """Persist the game document and every staged write atomically."""

    @abstractmethod
    def discard(self) -> None:
        """Drop staged writes (section aborted)."""


class GameStore(ABC):

    @abstractmethod
    def session(self, game_id: str) -> StoreSession:
        ...

    # ── Game CRUD ─────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_game(self, game: GameState) -> None:
        ...

    @abstractmethod
    async def get_game(self, game_id: str) -> Optional[GameState]:
        ...

    @abstractmethod
    async def load_games(self) -> List[GameState]:
        """Every stored game, used to restore in-progress games after a restart."""

    @abstractmethod
    async def update_game(self, game_id: str, updates: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_game(self, game_id: str) -> None:
        ...

    # ── Players ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def add_player(self, game_id: str, player: PlayerState) -> None:
        ...

    @abstractmethod
    async def update_player(self, game_id: str, player_id: str, updates: Dict[str, Any]) -> None:
        ...

    # ── Reads used for review / dedup checks ─────────────────────────────────

    @abstractmethod
    async def get_votes(self, game_id: str, vote_type: VoteType, round: int) -> List[VoteRecord]:
        ...

    @abstractmethod
    async def get_night_actions(self, game_id: str, round: Optional[int] = None) -> List[NightAction]:
        ...

    # ── Events (append-only audit log) and history ────────────────────────────

    @abstractmethod
    async def log_event(self, game_id: str, event: GameEvent) -> None:
        ...

    @abstractmethod
    async def get_events(self, game_id: str, visible_only: bool = False) -> List[GameEvent]:
        ...

    @abstractmethod
    async def save_game_history(self, game: GameState) -> None:
        ...


def game_document(game: GameState) -> Dict[str, Any]:
    """JSON-safe game document without the players (stored separately)."""
    return game.model_dump(mode="json", exclude={"players", "atomic_active"})


def player_document(player: PlayerState) -> Dict[str, Any]:
    return player.model_dump(mode="json")


def history_document(game: GameState) -> Dict[str, Any]:
    return {
        "game_id": game.game_id,
        "winner": game.winner.value if game.winner else None,
        "day_count": game.day_count,
        "started_at": game.started_at.isoformat() if game.started_at else None,
        "ended_at": game.ended_at.isoformat() if game.ended_at else None,
        "players": [
            {
                "id": p.id,
                "username": p.username,
                "role": p.role.value if p.role else None,
                "alive": p.alive,
                "in_love": p.in_love,
            }
            for p in game.players
        ],
        "action_log": list(game.action_log),
    }
