"""
Night Action Ledger — "this actor already did this action this round".

Entries are keyed (game, round, action_type, actor). The first record_once for
a key is applied, any later one with the same key is reported as a duplicate
and changes nothing. Entries are staged on the gate's StoreSession, so they are
committed with the game document or dropped with a rolled-back section.
"""
import logging
from typing import List, Optional

from models.game import ActionType, NightAction, WriteResult
from services.store import GameStore, StoreSession

logger = logging.getLogger(__name__)

LedgerResult = WriteResult

# Pseudo-actor for the pack's collective kill: one entry per night, whoever voted
WOLF_PACK_ACTOR = "wolves"


class NightActionLedger:

    def __init__(self, store: GameStore):
        self.store = store

    async def record_once(
        self,
        session: StoreSession,
        round: int,
        action_type: ActionType,
        actor_id: str,
        target_id: Optional[str] = None,
    ) -> LedgerResult:
        result = await session.add_night_action_once(round, action_type, actor_id, target_id)
        if result.duplicate:
            logger.debug(
                f"[{session.game_id}] Duplicate {action_type.value} by {actor_id} (round {round})"
            )
        return result

    async def entries(self, game_id: str, round: Optional[int] = None) -> List[NightAction]:
        """Committed entries in creation order, for post-game review."""
        return await self.store.get_night_actions(game_id, round)
