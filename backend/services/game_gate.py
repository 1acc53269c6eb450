"""
Atomic Mutation Gate — the single serialization point for game state.

  run_atomic(game_id, mutator)

Sections for the same game run one at a time, in arrival order (asyncio.Lock
wakes waiters FIFO). Inside a section the mutator gets the live GameState and a
StoreSession. When it returns, the whole game document and the staged session
writes are committed together; only then does the caller see the result.

On any failure (mutator raised, overran gate_timeout_seconds, or the commit
failed) the game is restored in place from the snapshot taken on entry and the
staged writes are dropped. The lock is released on every path.
"""
import asyncio
import contextvars
import logging
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from models.errors import (
    ActionRejected, GameError, GateTimeoutError, PersistenceError, ReasonCode,
    ReentrantGateError,
)
from models.game import GameState
from services.store import GameStore, StoreSession
from config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
Mutator = Callable[[GameState, StoreSession], Awaitable[T]]

# Game ids whose section the current task (and anything it awaits) is inside
_held_sections: contextvars.ContextVar[frozenset] = contextvars.ContextVar(
    "held_game_sections", default=frozenset()
)


class GameRegistry:
    """Owned collection of the games loaded in this process, keyed by game id."""

    def __init__(self):
        self._games: Dict[str, GameState] = {}

    def get(self, game_id: str) -> Optional[GameState]:
        return self._games.get(game_id)

    def add(self, game: GameState) -> None:
        self._games[game.game_id] = game

    def remove(self, game_id: str) -> Optional[GameState]:
        return self._games.pop(game_id, None)

    def all(self) -> List[GameState]:
        return list(self._games.values())

    def __contains__(self, game_id: str) -> bool:
        return game_id in self._games

    def __len__(self) -> int:
        return len(self._games)


def _restore(game: GameState, snapshot: GameState) -> None:
    """Copy every field of `snapshot` back onto `game` (identity preserved)."""
    for name in GameState.model_fields:
        setattr(game, name, getattr(snapshot, name))


class GameGate:

    def __init__(self, registry: GameRegistry, store: GameStore, timeout: Optional[float] = None):
        self.registry = registry
        self.store = store
        self.timeout = settings.gate_timeout_seconds if timeout is None else timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, game_id: str) -> asyncio.Lock:
        lock = self._locks.get(game_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[game_id] = lock
        return lock

    def is_active(self, game_id: str) -> bool:
        lock = self._locks.get(game_id)
        return bool(lock and lock.locked())

    def forget(self, game_id: str) -> None:
        """Drop the lock of a deleted game. Queued sections find the game gone."""
        self._locks.pop(game_id, None)

    async def run_atomic(self, game_id: str, mutator: Mutator) -> T:
        if game_id in _held_sections.get():
            raise ReentrantGateError(f"Section for game {game_id} is already held by this task")
        if game_id not in self.registry:
            raise ActionRejected(ReasonCode.GAME_NOT_FOUND)

        async with self._lock_for(game_id):
            # The game may have been terminated while we were queued
            game = self.registry.get(game_id)
            if game is None:
                raise ActionRejected(ReasonCode.GAME_NOT_FOUND)

            snapshot = game.model_copy(deep=True)
            session = self.store.session(game_id)
            token = _held_sections.set(_held_sections.get() | {game_id})
            game.atomic_active = True
            try:
                try:
                    result = await asyncio.wait_for(mutator(game, session), self.timeout)
                except asyncio.TimeoutError:
                    raise GateTimeoutError(
                        f"Mutation on game {game_id} exceeded {self.timeout}s"
                    ) from None

                try:
                    await session.commit(game)
                except Exception as e:
                    raise PersistenceError(f"Could not persist game {game_id}: {e}") from e

                return result
            except BaseException as e:
                session.discard()
                _restore(game, snapshot)
                if isinstance(e, (PersistenceError, GateTimeoutError)):
                    logger.exception(f"[{game_id}] Section rolled back")
                elif not isinstance(e, (GameError, asyncio.CancelledError)):
                    logger.exception(f"[{game_id}] Mutator failed, section rolled back")
                raise
            finally:
                game.atomic_active = False
                _held_sections.reset(token)
