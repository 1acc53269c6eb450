import asyncio
import logging
import os
from typing import Optional, List, Dict, Any

from models.game import (
    GameState, PlayerState, GameEvent, NightAction, Potion, VoteRecord, VoteType,
    WriteResult, ActionType,
)
from services.store import (
    GameStore, StoreSession, game_document, player_document, history_document,
)
from config import settings

logger = logging.getLogger(__name__)


class FirestoreSession(StoreSession):
    """
    Stages writes for one gate section and commits them with the game document
    in a single WriteBatch. Reads go straight to Firestore: the gate already
    serialises every section of a game inside this process.
    """

    def __init__(self, service: "FirestoreService", game_id: str):
        super().__init__(game_id)
        self._fs = service
        self._votes: Dict[str, Optional[VoteRecord]] = {}
        self._night_actions: Dict[str, NightAction] = {}
        self._potions_claimed: set = set()

    async def _durable_vote(self, key: str) -> Optional[VoteRecord]:
        doc = await self._fs._run(lambda: self._fs._votes_ref(self.game_id).document(key).get())
        return VoteRecord(**doc.to_dict()) if doc.exists else None

    async def add_vote_if_changed(
        self, voter_id: str, target_id: str, vote_type: VoteType, round: int
    ) -> WriteResult:
        record = VoteRecord(
            game_id=self.game_id, voter_id=voter_id, target_id=target_id,
            vote_type=vote_type, round=round,
        )
        if record.key in self._votes:
            current = self._votes[record.key]
        else:
            current = await self._durable_vote(record.key)
        if current is not None and current.target_id == target_id:
            return WriteResult.no_op()
        self._votes[record.key] = record
        return WriteResult.fresh()

    async def clear_votes(self, vote_type: VoteType, round: int) -> None:
        durable = await self._fs.get_votes(self.game_id, vote_type, round)
        for record in durable:
            self._votes[record.key] = None
        for key, record in list(self._votes.items()):
            if record is not None and record.vote_type == vote_type and record.round == round:
                self._votes[key] = None

    async def add_night_action_once(
        self, round: int, action_type: ActionType, actor_id: str, target_id: Optional[str]
    ) -> WriteResult:
        entry = NightAction(
            game_id=self.game_id, round=round, action_type=action_type,
            actor_id=actor_id, target_id=target_id,
        )
        if entry.key in self._night_actions:
            return WriteResult.no_op()
        doc = await self._fs._run(
            lambda: self._fs._night_actions_ref(self.game_id).document(entry.key).get()
        )
        if doc.exists:
            return WriteResult.no_op()
        self._night_actions[entry.key] = entry
        return WriteResult.fresh()

    async def use_witch_potion_if_available(self, potion: Potion) -> WriteResult:
        if potion in self._potions_claimed:
            return WriteResult.no_op()
        doc = await self._fs._run(lambda: self._fs._game_ref(self.game_id).get())
        potions = (doc.to_dict() or {}).get("witch_potions", {}) if doc.exists else {}
        if not potions.get(potion.value, True):
            return WriteResult.no_op()
        self._potions_claimed.add(potion)
        return WriteResult.fresh()

    async def commit(self, game: GameState) -> None:
        data = game_document(game)
        for potion in self._potions_claimed:
            data["witch_potions"][potion.value] = False

        def _write():
            batch = self._fs.db.batch()
            batch.set(self._fs._game_ref(self.game_id), data)
            for p in game.players:
                batch.set(self._fs._players_ref(self.game_id).document(p.id), player_document(p))
            for key, record in self._votes.items():
                ref = self._fs._votes_ref(self.game_id).document(key)
                if record is None:
                    batch.delete(ref)
                else:
                    batch.set(ref, record.model_dump(mode="json"))
            for key, entry in self._night_actions.items():
                # create() fails the whole batch if another writer got there first
                batch.create(self._fs._night_actions_ref(self.game_id).document(key),
                             entry.model_dump(mode="json"))
            batch.commit()

        await self._fs._run(_write)
        self.discard()

    def discard(self) -> None:
        self._votes.clear()
        self._night_actions.clear()
        self._potions_claimed.clear()


class FirestoreService(GameStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. Switch to AsyncClient once stable.
    """

    def __init__(self):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self.db = firestore.Client(project=settings.google_cloud_project or None)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    def session(self, game_id: str) -> StoreSession:
        return FirestoreSession(self, game_id)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _game_ref(self, game_id: str):
        return self.db.collection("games").document(game_id)

    def _players_ref(self, game_id: str):
        return self._game_ref(game_id).collection("players")

    def _votes_ref(self, game_id: str):
        return self._game_ref(game_id).collection("votes")

    def _night_actions_ref(self, game_id: str):
        return self._game_ref(game_id).collection("night_actions")

    def _events_ref(self, game_id: str):
        return self._game_ref(game_id).collection("events")

    # ── Game CRUD ─────────────────────────────────────────────────────────────

    async def create_game(self, game: GameState) -> None:
        data = game_document(game)
        await self._run(lambda: self._game_ref(game.game_id).set(data))
        for p in game.players:
            await self.add_player(game.game_id, p)

    async def get_game(self, game_id: str) -> Optional[GameState]:
        doc = await self._run(lambda: self._game_ref(game_id).get())
        if not doc.exists:
            return None
        players = await self._run(
            lambda: list(self._players_ref(game_id).order_by("joined_at").stream())
        )
        return GameState(**doc.to_dict(), players=[PlayerState(**d.to_dict()) for d in players])

    async def load_games(self) -> List[GameState]:
        docs = await self._run(lambda: list(self.db.collection("games").stream()))
        games = []
        for d in docs:
            game = await self.get_game(d.id)
            if game:
                games.append(game)
        return games

    async def update_game(self, game_id: str, updates: Dict[str, Any]) -> None:
        await self._run(lambda: self._game_ref(game_id).update(updates))

    async def delete_game(self, game_id: str) -> None:
        def _delete():
            for sub in ("players", "votes", "night_actions", "events"):
                for d in self._game_ref(game_id).collection(sub).stream():
                    d.reference.delete()
            self._game_ref(game_id).delete()

        await self._run(_delete)

    # ── Players ───────────────────────────────────────────────────────────────

    async def add_player(self, game_id: str, player: PlayerState) -> None:
        data = player_document(player)
        await self._run(lambda: self._players_ref(game_id).document(player.id).set(data))

    async def update_player(self, game_id: str, player_id: str, updates: Dict[str, Any]) -> None:
        await self._run(lambda: self._players_ref(game_id).document(player_id).update(updates))

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_votes(self, game_id: str, vote_type: VoteType, round: int) -> List[VoteRecord]:
        ref = (
            self._votes_ref(game_id)
            .where("vote_type", "==", vote_type.value)
            .where("round", "==", round)
        )
        docs = await self._run(lambda: list(ref.stream()))
        return [VoteRecord(**d.to_dict()) for d in docs]

    async def get_night_actions(self, game_id: str, round: Optional[int] = None) -> List[NightAction]:
        ref = self._night_actions_ref(game_id)
        if round is not None:
            ref = ref.where("round", "==", round)
        docs = await self._run(lambda: list(ref.stream()))
        return sorted((NightAction(**d.to_dict()) for d in docs), key=lambda e: e.created_at)

    # ── Events (append-only audit log) ───────────────────────────────────────

    async def log_event(self, game_id: str, event: GameEvent) -> None:
        data = event.model_dump(mode="json")
        await self._run(lambda: self._events_ref(game_id).document(event.id).set(data))

    async def get_events(self, game_id: str, visible_only: bool = False) -> List[GameEvent]:
        ref = self._events_ref(game_id)
        if visible_only:
            ref = ref.where("visible_in_game", "==", True)
        docs = await self._run(lambda: list(ref.order_by("timestamp").stream()))
        return [GameEvent(**d.to_dict()) for d in docs]

    async def save_game_history(self, game: GameState) -> None:
        data = history_document(game)
        await self._run(lambda: self.db.collection("game_history").add(data))


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> "FirestoreService":
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service


def get_game_store() -> GameStore:
    """Store selected by settings.storage_backend."""
    if settings.storage_backend == "firestore":
        return get_firestore_service()
    from services.memory_store import InMemoryGameStore
    return InMemoryGameStore()
