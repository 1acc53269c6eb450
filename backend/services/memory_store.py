"""
In-process implementation of the durable store contract.

Documents are kept as JSON-safe dicts (copies, never the live GameState), so a
rolled-back section cannot leak into what was "persisted". Used by default
(settings.storage_backend == "memory") and by the test-suite.
"""
import logging
from typing import Any, Dict, List, Optional

from models.game import (
    GameState, PlayerState, GameEvent, NightAction, Potion, VoteRecord, VoteType,
    WriteResult, ActionType,
)
from services.store import (
    GameStore, StoreSession, game_document, player_document, history_document,
)

logger = logging.getLogger(__name__)


class InMemorySession(StoreSession):

    def __init__(self, store: "InMemoryGameStore", game_id: str):
        super().__init__(game_id)
        self._store = store
        # key → record, or None for a staged delete
        self._votes: Dict[str, Optional[VoteRecord]] = {}
        self._night_actions: Dict[str, NightAction] = {}
        self._potions_claimed: set = set()

    def _current_vote(self, key: str) -> Optional[VoteRecord]:
        if key in self._votes:
            return self._votes[key]
        return self._store._votes.get(self.game_id, {}).get(key)

    async def add_vote_if_changed(
        self, voter_id: str, target_id: str, vote_type: VoteType, round: int
    ) -> WriteResult:
        record = VoteRecord(
            game_id=self.game_id, voter_id=voter_id, target_id=target_id,
            vote_type=vote_type, round=round,
        )
        current = self._current_vote(record.key)
        if current is not None and current.target_id == target_id:
            return WriteResult.no_op()
        self._votes[record.key] = record
        return WriteResult.fresh()

    async def clear_votes(self, vote_type: VoteType, round: int) -> None:
        keys = set(self._store._votes.get(self.game_id, {})) | set(self._votes)
        for key in keys:
            record = self._current_vote(key)
            if record is not None and record.vote_type == vote_type and record.round == round:
                self._votes[key] = None

    async def add_night_action_once(
        self, round: int, action_type: ActionType, actor_id: str, target_id: Optional[str]
    ) -> WriteResult:
        entry = NightAction(
            game_id=self.game_id, round=round, action_type=action_type,
            actor_id=actor_id, target_id=target_id,
        )
        if entry.key in self._night_actions or entry.key in self._store._night_actions.get(self.game_id, {}):
            return WriteResult.no_op()
        self._night_actions[entry.key] = entry
        return WriteResult.fresh()

    async def use_witch_potion_if_available(self, potion: Potion) -> WriteResult:
        doc = self._store._games.get(self.game_id, {})
        available = doc.get("witch_potions", {}).get(potion.value, True)
        if potion in self._potions_claimed or not available:
            return WriteResult.no_op()
        self._potions_claimed.add(potion)
        return WriteResult.fresh()

    async def commit(self, game: GameState) -> None:
        doc = game_document(game)
        for potion in self._potions_claimed:
            doc["witch_potions"][potion.value] = False
        players = {p.id: player_document(p) for p in game.players}

        votes = dict(self._store._votes.get(self.game_id, {}))
        for key, record in self._votes.items():
            if record is None:
                votes.pop(key, None)
            else:
                votes[key] = record
        ledger = dict(self._store._night_actions.get(self.game_id, {}))
        ledger.update(self._night_actions)

        # Swap everything in at once, no await between these assignments
        self._store._games[self.game_id] = doc
        self._store._players[self.game_id] = players
        self._store._votes[self.game_id] = votes
        self._store._night_actions[self.game_id] = ledger
        self.discard()

    def discard(self) -> None:
        self._votes.clear()
        self._night_actions.clear()
        self._potions_claimed.clear()


class InMemoryGameStore(GameStore):
    session_class = InMemorySession

    def __init__(self):
        self._games: Dict[str, Dict[str, Any]] = {}
        self._players: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._votes: Dict[str, Dict[str, VoteRecord]] = {}
        self._night_actions: Dict[str, Dict[str, NightAction]] = {}
        self._events: Dict[str, List[GameEvent]] = {}
        self.history: List[Dict[str, Any]] = []

    def session(self, game_id: str) -> StoreSession:
        return self.session_class(self, game_id)

    # ── Game CRUD ─────────────────────────────────────────────────────────────

    async def create_game(self, game: GameState) -> None:
        self._games[game.game_id] = game_document(game)
        self._players[game.game_id] = {p.id: player_document(p) for p in game.players}

    async def get_game(self, game_id: str) -> Optional[GameState]:
        doc = self._games.get(game_id)
        if doc is None:
            return None
        players = [PlayerState(**p) for p in self._players.get(game_id, {}).values()]
        return GameState(**doc, players=players)

    async def load_games(self) -> List[GameState]:
        games = []
        for game_id in list(self._games):
            game = await self.get_game(game_id)
            if game:
                games.append(game)
        return games

    async def update_game(self, game_id: str, updates: Dict[str, Any]) -> None:
        self._games[game_id].update(updates)

    async def delete_game(self, game_id: str) -> None:
        for bucket in (self._games, self._players, self._votes, self._night_actions, self._events):
            bucket.pop(game_id, None)

    # ── Players ───────────────────────────────────────────────────────────────

    async def add_player(self, game_id: str, player: PlayerState) -> None:
        self._players.setdefault(game_id, {})[player.id] = player_document(player)

    async def update_player(self, game_id: str, player_id: str, updates: Dict[str, Any]) -> None:
        self._players[game_id][player_id].update(updates)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_votes(self, game_id: str, vote_type: VoteType, round: int) -> List[VoteRecord]:
        return [
            v for v in self._votes.get(game_id, {}).values()
            if v.vote_type == vote_type and v.round == round
        ]

    async def get_night_actions(self, game_id: str, round: Optional[int] = None) -> List[NightAction]:
        entries = list(self._night_actions.get(game_id, {}).values())
        if round is not None:
            entries = [e for e in entries if e.round == round]
        return sorted(entries, key=lambda e: e.created_at)

    # ── Events and history ────────────────────────────────────────────────────

    async def log_event(self, game_id: str, event: GameEvent) -> None:
        self._events.setdefault(game_id, []).append(event)

    async def get_events(self, game_id: str, visible_only: bool = False) -> List[GameEvent]:
        events = self._events.get(game_id, [])
        if visible_only:
            events = [e for e in events if e.visible_in_game]
        return list(events)

    async def save_game_history(self, game: GameState) -> None:
        self.history.append(history_document(game))
        logger.info(f"[{game.game_id}] Game history saved (winner={game.winner})")
