"""
Game Coordinator — the one entry point for everything that changes a game.

Owns the registry of loaded games, the gate, the ledger and the timers. Every
mutation runs as a gate section; the events a section returns are dispatched
only after it committed:
  • audit log (store.log_event)
  • notifier (failures swallowed)
  • victory → game history, termination → game deleted
  • timers re-armed from the new state
"""
import logging
from typing import Awaitable, Callable, List, Optional

from models.errors import ActionRejected, DuplicateAction, PersistenceError, ReasonCode
from models.game import (
    ActionOutcome, ActionType, EventType, GameEvent, GameState, OutcomeStatus, Phase,
    PlayerState, Role, SubPhase, TimerKind, TimerToken,
)
from agents.game_master import game_master as gm
from agents.night_ledger import NightActionLedger
from agents.phase_timers import PhaseTimers
from agents.role_handlers import ActionContext, handle_action
from services.game_gate import GameGate, GameRegistry
from services.notifier import LoggingNotifier, Notifier, notify_safely
from services.store import GameStore, StoreSession
from config import settings

logger = logging.getLogger(__name__)

Section = Callable[[GameState, StoreSession], Awaitable[List[GameEvent]]]


def _require_open(game: GameState) -> None:
    # A terminated game stays registered until dispatch deletes it
    if game.phase == Phase.ENDED:
        raise ActionRejected(ReasonCode.GAME_ENDED)


class GameCoordinator:

    def __init__(
        self,
        store: GameStore,
        notifier: Optional[Notifier] = None,
        gate_timeout: Optional[float] = None,
    ):
        self.store = store
        self.registry = GameRegistry()
        self.gate = GameGate(self.registry, store, timeout=gate_timeout)
        self.ledger = NightActionLedger(store)
        self.notifier = notifier or LoggingNotifier()
        self.timers = PhaseTimers(self.handle_timeout)

    # ── Reads (outside the gate, possibly stale) ──────────────────────────────

    def get_game(self, game_id: str) -> Optional[GameState]:
        return self.registry.get(game_id)

    # ── Lobby ─────────────────────────────────────────────────────────────────

    async def create_game(self, game_id: str, host_id: str, host_name: str) -> GameState:
        if game_id in self.registry:
            raise ActionRejected(ReasonCode.GAME_EXISTS)

        game = GameState(
            game_id=game_id,
            host_id=host_id,
            players=[PlayerState(id=host_id, username=host_name)],
        )
        self.registry.add(game)
        try:
            await self.store.create_game(game)
        except Exception as e:
            self.registry.remove(game_id)
            raise PersistenceError(f"Could not create game {game_id}: {e}") from e

        logger.info(f"[{game_id}] Game created by {host_id}")
        self.timers.schedule(
            game_id, TimerToken(kind=TimerKind.LOBBY), settings.lobby_timeout_seconds
        )
        return game

    async def join(self, game_id: str, player_id: str, username: str) -> ActionOutcome:
        async def section(game: GameState, session: StoreSession) -> List[GameEvent]:
            _require_open(game)
            if game.started:
                raise ActionRejected(ReasonCode.GAME_ALREADY_STARTED)
            if game.get_player(player_id):
                raise ActionRejected(ReasonCode.ALREADY_JOINED)
            if len(game.players) >= settings.max_players:
                raise ActionRejected(ReasonCode.GAME_FULL)
            player = PlayerState(id=player_id, username=username)
            game.players.append(player)
            return [gm.event(game, EventType.PLAYER_JOINED, target=player_id, data=player.to_public())]

        return await self._run(game_id, None, section)

    async def start(
        self, game_id: str, host_id: str, roles: Optional[List[Role]] = None
    ) -> ActionOutcome:
        async def section(game: GameState, session: StoreSession) -> List[GameEvent]:
            _require_open(game)
            if host_id != game.host_id:
                raise ActionRejected(ReasonCode.NOT_HOST)
            if game.started:
                raise ActionRejected(ReasonCode.GAME_ALREADY_STARTED)
            if len(game.players) < settings.min_players:
                raise ActionRejected(
                    ReasonCode.NOT_ENOUGH_PLAYERS,
                    f"Need at least {settings.min_players} players, have {len(game.players)}",
                )
            return gm.start_game(game, roles)

        return await self._run(game_id, None, section)

    # ── Actions ──────────────────────────────────────────────────────────────

    async def execute(
        self,
        action: ActionType,
        game_id: str,
        actor_id: str,
        target_ids: Optional[List[str]] = None,
    ) -> ActionOutcome:
        """Run one player action. Rejections and duplicates come back as outcomes."""
        if action == ActionType.TIMEOUT:
            return ActionOutcome(
                status=OutcomeStatus.REJECTED, action=action,
                reason=ReasonCode.UNKNOWN_ACTION, message="Timeouts are internal",
            )

        async def section(game: GameState, session: StoreSession) -> List[GameEvent]:
            ctx = ActionContext(game, session, self.ledger, actor_id, target_ids)
            return await handle_action(action, ctx)

        return await self._run(game_id, action, section)

    async def handle_timeout(self, game_id: str, token: TimerToken) -> ActionOutcome:
        """Timer callback: a forced advance, subject to the same gate as players."""
        async def section(game: GameState, session: StoreSession) -> List[GameEvent]:
            ctx = ActionContext(game, session, self.ledger, token=token)
            return await handle_action(ActionType.TIMEOUT, ctx)

        return await self._run(game_id, ActionType.TIMEOUT, section)

    async def terminate(self, game_id: str, requested_by: Optional[str] = None) -> ActionOutcome:
        """End and delete a game. requested_by=None skips the host check (admin reset)."""
        async def section(game: GameState, session: StoreSession) -> List[GameEvent]:
            if requested_by is not None and requested_by != game.host_id:
                raise ActionRejected(ReasonCode.NOT_HOST)
            if game.phase == Phase.ENDED and game.winner is None:
                # Already terminated; deletion is pending in the dispatcher
                raise ActionRejected(ReasonCode.ALREADY_RESOLVED)
            game.phase = Phase.ENDED
            game.log_action("Game terminated")
            return [gm.event(game, EventType.GAME_TERMINATED, actor=requested_by, data={
                "reason": "admin_reset" if requested_by is None else "host",
            })]

        return await self._run(game_id, None, section)

    async def force_reset(self, game_id: str) -> ActionOutcome:
        outcome = await self.terminate(game_id)
        if outcome.reason == ReasonCode.GAME_NOT_FOUND:
            # Not loaded here, but it may still linger in the store
            await self.store.delete_game(game_id)
        return outcome

    # ── Section runner + dispatcher ──────────────────────────────────────────

    async def _run(
        self, game_id: str, action: Optional[ActionType], section: Section
    ) -> ActionOutcome:
        label = action.value if action else "lobby"
        try:
            events = await self.gate.run_atomic(game_id, section)
        except ActionRejected as e:
            logger.debug(f"[{game_id}] {label} rejected: {e.reason.value}")
            return ActionOutcome(
                status=OutcomeStatus.REJECTED, action=action, reason=e.reason, message=e.message,
            )
        except DuplicateAction as e:
            logger.debug(f"[{game_id}] {label} duplicate: {e.message}")
            return ActionOutcome(status=OutcomeStatus.DUPLICATE, action=action, message=e.message)

        await self._dispatch(game_id, events)
        return ActionOutcome(status=OutcomeStatus.APPLIED, action=action, events=events)

    async def _dispatch(self, game_id: str, events: List[GameEvent]) -> None:
        for event in events:
            try:
                await self.store.log_event(game_id, event)
            except Exception as e:
                logger.warning(f"[{game_id}] Could not log event {event.type.value}: {e}")
            await notify_safely(self.notifier, game_id, event)

        types = {e.type for e in events}
        game = self.registry.get(game_id)
        if EventType.GAME_TERMINATED in types:
            await self._destroy(game_id)
            return
        if game is None:
            return
        if EventType.VICTORY in types:
            try:
                await self.store.save_game_history(game)
            except Exception:
                logger.exception(f"[{game_id}] Failed to save game history")
        self._sync_timers(game)

    async def _destroy(self, game_id: str) -> None:
        self.timers.cancel_all(game_id)
        self.registry.remove(game_id)
        self.gate.forget(game_id)
        try:
            await self.store.delete_game(game_id)
        except Exception:
            logger.exception(f"[{game_id}] Failed to delete game from store")
        logger.info(f"[{game_id}] Game removed")

    def _sync_timers(self, game: GameState) -> None:
        """Arm exactly the timers the current state waits on, cancel the rest."""
        game_id = game.game_id
        if game.phase == Phase.ENDED:
            self.timers.cancel_all(game_id)
            return
        if not game.started:
            # Any lobby activity restarts the inactivity countdown
            self.timers.schedule(
                game_id, TimerToken(kind=TimerKind.LOBBY), settings.lobby_timeout_seconds
            )
            return
        self.timers.cancel(game_id, TimerKind.LOBBY)

        if game.hunter_must_shoot:
            self.timers.ensure(
                game_id,
                TimerToken(kind=TimerKind.HUNTER, day_count=game.day_count, subject=game.hunter_must_shoot),
                settings.hunter_shoot_timeout_seconds,
            )
        else:
            self.timers.cancel(game_id, TimerKind.HUNTER)

        token = TimerToken(day_count=game.day_count, sub_phase=game.sub_phase, kind=TimerKind.NIGHT_ACTION)
        if game.phase == Phase.NIGHT and game.sub_phase is not None:
            self.timers.ensure(game_id, token, settings.night_action_timeout_seconds)
        else:
            self.timers.cancel(game_id, TimerKind.NIGHT_ACTION)

        if game.phase == Phase.DAY and game.sub_phase in (SubPhase.CAPTAIN_VOTE, SubPhase.VOTE):
            self.timers.ensure(
                game_id, token.model_copy(update={"kind": TimerKind.DAY_VOTE}),
                settings.day_vote_timeout_seconds,
            )
        else:
            self.timers.cancel(game_id, TimerKind.DAY_VOTE)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def restore(self) -> int:
        """Reload unfinished games from the store after a restart."""
        restored = 0
        for game in await self.store.load_games():
            if game.phase == Phase.ENDED or game.game_id in self.registry:
                continue
            self.registry.add(game)
            self._sync_timers(game)
            restored += 1
        logger.info(f"Restored {restored} game(s) from the store")
        return restored

    def shutdown(self) -> None:
        self.timers.cancel_all()
