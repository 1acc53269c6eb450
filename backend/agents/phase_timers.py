"""
Per-game phase timers — one pending asyncio task per (game, TimerKind).

A timer only knows its TimerToken. When it fires it hands the token back to the
coordinator, which replays it through the game gate as a TIMEOUT action; a
token that no longer matches the game is rejected there as already resolved.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from models.game import TimerKind, TimerToken

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str, TimerToken], Awaitable[object]]


class PhaseTimers:

    def __init__(self, on_fire: TimerCallback):
        self._on_fire = on_fire
        self._tasks: Dict[Tuple[str, TimerKind], asyncio.Task] = {}
        self._tokens: Dict[Tuple[str, TimerKind], TimerToken] = {}

    def pending(self, game_id: str, kind: TimerKind) -> Optional[TimerToken]:
        return self._tokens.get((game_id, kind))

    def schedule(self, game_id: str, token: TimerToken, delay: float) -> None:
        """Start a timer, replacing any pending one of the same kind for this game."""
        self.cancel(game_id, token.kind)
        key = (game_id, token.kind)
        self._tokens[key] = token
        self._tasks[key] = asyncio.create_task(self._fire_after(game_id, token, delay))
        logger.debug(f"[{game_id}] Timer {token.kind.value} scheduled in {delay}s")

    def ensure(self, game_id: str, token: TimerToken, delay: float) -> None:
        """Schedule unless a timer with the very same token is already pending."""
        if self.pending(game_id, token.kind) != token:
            self.schedule(game_id, token, delay)

    def cancel(self, game_id: str, kind: TimerKind) -> None:
        key = (game_id, kind)
        self._tokens.pop(key, None)
        task = self._tasks.pop(key, None)
        if task and not task.done():
            task.cancel()

    def cancel_all(self, game_id: Optional[str] = None) -> None:
        for key in list(self._tasks):
            if game_id is None or key[0] == game_id:
                self.cancel(*key)

    async def _fire_after(self, game_id: str, token: TimerToken, delay: float) -> None:
        await asyncio.sleep(delay)
        key = (game_id, token.kind)
        # Deregister before firing so the callback may schedule the next timer
        if self._tokens.get(key) == token:
            self._tokens.pop(key, None)
            self._tasks.pop(key, None)
        try:
            await self._on_fire(game_id, token)
        except Exception:
            logger.exception(f"[{game_id}] Timer {token.kind.value} callback failed")
