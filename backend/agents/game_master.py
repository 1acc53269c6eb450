"""
Game Master — pure deterministic Python, no I/O.

Responsibilities:
- Role assignment at game start
- Sub-phase sequencing (Thief → Cupid → Protector → Wolves → White Wolf →
  Witch → Seer → Wake → Captain vote → Deliberation → Vote → night again),
  skipping every role phase whose role has no living holder
- Dawn resolution (wolves' victim, protector, witch potions, white wolf)
- Deaths, collateral lover deaths, hunter suspension
- Win condition checks

Every method mutates the GameState it is handed and returns the GameEvents
describing what happened. Callers run it inside the game gate; notifications,
timers and the audit log are driven from the returned events after commit.
"""
import logging
import random
from typing import Optional, Dict, Any, List, Sequence

from pydantic import BaseModel

from models.errors import ActionRejected, ReasonCode
from models.game import (
    GameState, GameEvent, EventType, Phase, SubPhase, Role, Winner, WOLF_ROLES,
    SUB_PHASE_ROLES, BASE_ROLE_POOL, CUPID_MIN_PLAYERS, THIEF_EXTRA_ROLE_COUNT,
    _utcnow,
)
from models.phases import (
    NIGHT_ORDER, DAY_ORDER, is_valid_transition, is_valid_main_transition,
)
from agents.wolf_vote import create_vote_state, plurality

logger = logging.getLogger(__name__)


class PhaseChange(BaseModel):
    previous_phase: Phase
    previous_sub_phase: Optional[SubPhase] = None
    phase: Phase
    sub_phase: Optional[SubPhase] = None
    day_count: int
    suspended: bool = False         # hunter still has to shoot, advance deferred
    events: List[GameEvent] = []


class GameMaster:
    """
    Deterministic game logic engine.
    Holds no game state of its own, so one instance serves every game.
    """

    # The captain's village vote counts double
    CAPTAIN_VOTE_WEIGHT = 2

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def event(
        self,
        game: GameState,
        type: EventType,
        actor: Optional[str] = None,
        target: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        visible: bool = True,
        recipients: Optional[Sequence[str]] = None,
    ) -> GameEvent:
        return GameEvent(
            type=type,
            round=game.day_count,
            phase=game.phase,
            sub_phase=game.sub_phase,
            actor=actor,
            target=target,
            data=data or {},
            visible_in_game=visible,
            recipients=list(recipients or []),
        )

    # ── Role assignment ───────────────────────────────────────────────────────

    def build_role_pool(self, player_count: int) -> List[Role]:
        """Default pool: 2 werewolves, seer, witch, hunter, cupid from 7 players,
        villagers for every remaining seat."""
        pool = list(BASE_ROLE_POOL)
        if player_count >= CUPID_MIN_PLAYERS:
            pool.append(Role.CUPID)
        if player_count < len(pool):
            raise ActionRejected(
                ReasonCode.NOT_ENOUGH_PLAYERS,
                f"Need at least {len(pool)} players, have {player_count}",
            )
        return pool + [Role.VILLAGER] * (player_count - len(pool))

    def assign_roles(self, game: GameState, roles: Optional[List[Role]] = None) -> List[GameEvent]:
        """
        Shuffle and deal roles. An explicit list must hold one role per player,
        plus two surplus roles when it contains the thief; the surplus goes to
        game.thief_extra_roles.
        """
        n = len(game.players)
        if roles:
            roles = list(roles)
            expected = n + THIEF_EXTRA_ROLE_COUNT if Role.THIEF in roles else n
            if len(roles) != expected:
                raise ActionRejected(
                    ReasonCode.INVALID_ROLES,
                    f"Expected {expected} roles for {n} players, got {len(roles)}",
                )
            if not any(r in WOLF_ROLES for r in roles):
                raise ActionRejected(ReasonCode.INVALID_ROLES, "At least one wolf is required")
        else:
            roles = self.build_role_pool(n)

        extras: List[Role] = []
        if Role.THIEF in roles:
            roles.remove(Role.THIEF)
            self.rng.shuffle(roles)
            extras = roles[n - 1:]
            roles = roles[:n - 1] + [Role.THIEF]
        self.rng.shuffle(roles)

        for player, role in zip(game.players, roles):
            player.role = role
        game.thief_extra_roles = extras

        pack = [p.id for p in game.players if p.is_wolf]
        events = []
        for p in game.players:
            data: Dict[str, Any] = {"role": p.role.value}
            if p.is_wolf:
                data["pack"] = pack
            if p.role == Role.THIEF:
                data["extra_roles"] = [r.value for r in extras]
            events.append(self.event(
                game, EventType.ROLE_ASSIGNED, target=p.id, data=data,
                visible=False, recipients=[p.id],
            ))
        return events

    def start_game(self, game: GameState, roles: Optional[List[Role]] = None) -> List[GameEvent]:
        if game.started:
            raise ActionRejected(ReasonCode.GAME_ALREADY_STARTED)

        role_events = self.assign_roles(game, roles)
        game.started_at = _utcnow()
        game.phase = Phase.NIGHT
        game.sub_phase = None
        game.day_count = 0
        game.log_action(f"Game started with {len(game.players)} players")
        logger.info(f"[{game.game_id}] Game started ({len(game.players)} players)")

        events = [self.event(game, EventType.GAME_STARTED, data={
            "players": [p.to_public() for p in game.players],
        })]
        events += role_events
        events += self._open_night(game)
        return events

    # ── Sub-phase sequencing ──────────────────────────────────────────────────

    def captain_vote_needed(self, game: GameState) -> bool:
        """First day without a captain, or the captain has died."""
        if game.captain_id is None:
            return game.day_count == 1
        captain = game.get_player(game.captain_id)
        return captain is None or not captain.alive

    def is_applicable(self, game: GameState, sub_phase: SubPhase) -> bool:
        if sub_phase == SubPhase.THIEF:
            return (
                game.day_count == 0
                and game.has_alive_role(Role.THIEF)
                and len(game.thief_extra_roles) == THIEF_EXTRA_ROLE_COUNT
            )
        if sub_phase == SubPhase.CUPID:
            return game.day_count == 0 and game.has_alive_role(Role.CUPID) and not game.lovers
        if sub_phase == SubPhase.WHITE_WOLF:
            # Every second night
            return game.day_count % 2 == 1 and game.has_alive_role(Role.WHITE_WOLF)
        if sub_phase == SubPhase.WITCH:
            potions = game.witch_potions
            return game.has_alive_role(Role.WITCH) and (potions.life or potions.death)
        if sub_phase in SUB_PHASE_ROLES:
            return game.has_alive_role(*SUB_PHASE_ROLES[sub_phase])
        if sub_phase == SubPhase.CAPTAIN_VOTE:
            return self.captain_vote_needed(game)
        return True

    def next_sub_phase(self, game: GameState) -> Optional[SubPhase]:
        """First applicable sub-phase after the current one, None at the end of
        the night (→ day) or of the day (→ night)."""
        order = NIGHT_ORDER if game.phase == Phase.NIGHT else DAY_ORDER
        start = order.index(game.sub_phase) + 1 if game.sub_phase in order else 0
        for sub_phase in order[start:]:
            if self.is_applicable(game, sub_phase):
                return sub_phase
        return None

    def _enter_sub_phase(self, game: GameState, sub_phase: SubPhase) -> List[GameEvent]:
        previous = game.sub_phase
        if not is_valid_transition(previous, sub_phase):
            raise ValueError(f"Illegal sub-phase transition {previous} → {sub_phase}")

        if sub_phase == SubPhase.CAPTAIN_VOTE:
            game.captain_id = None
            game.captain_votes = {}
        game.sub_phase = sub_phase
        logger.info(
            f"[{game.game_id}] Sub-phase: {previous.value if previous else None} → "
            f"{sub_phase.value} (day {game.day_count})"
        )

        events = [self.event(game, EventType.PHASE_CHANGE, data={
            "from": previous.value if previous else None,
            "to": sub_phase.value,
        })]
        if sub_phase == SubPhase.WITCH and game.night_victim:
            witches = [p.id for p in game.alive_with_role(Role.WITCH)]
            events.append(self.event(
                game, EventType.NIGHT_VICTIM, target=game.night_victim,
                visible=False, recipients=witches,
            ))
        return events

    def _close_wolves(self, game: GameState) -> List[GameEvent]:
        """Leaving the wolves' turn without a decision counts as their no-kill."""
        if game.sub_phase != SubPhase.WOLVES or game.wolves_vote_state.resolved:
            return []
        game.wolves_vote_state.resolved = True
        game.wolves_vote_state.votes = {}
        game.log_action("Wolves did not agree on a victim")
        return [self.event(
            game, EventType.NO_KILL, data={"reason": "unresolved"},
            visible=False, recipients=game.wolves_vote_state.eligible,
        )]

    def advance_sub_phase(self, game: GameState) -> PhaseChange:
        """
        Move to the next applicable sub-phase, falling through to day or night.
        Deferred (pending_advance) while a dead hunter still has to shoot; the
        game ends instead if a camp has already won.
        """
        if game.phase == Phase.ENDED:
            raise ActionRejected(ReasonCode.GAME_ENDED)

        previous_phase, previous_sub_phase = game.phase, game.sub_phase
        suspended = False
        events: List[GameEvent] = []

        if game.hunter_must_shoot:
            game.pending_advance = True
            suspended = True
            logger.info(f"[{game.game_id}] Advance suspended until {game.hunter_must_shoot} shoots")
        else:
            events = self.evaluate_victory(game)
            if not events:
                events = self._close_wolves(game)
                nxt = self.next_sub_phase(game)
                if nxt is not None:
                    events += self._enter_sub_phase(game, nxt)
                elif game.phase == Phase.NIGHT:
                    events += self.transition_to_day(game)
                else:
                    events += self.transition_to_night(game)

        return PhaseChange(
            previous_phase=previous_phase,
            previous_sub_phase=previous_sub_phase,
            phase=game.phase,
            sub_phase=game.sub_phase,
            day_count=game.day_count,
            suspended=suspended,
            events=events,
        )

    # ── Main transitions ──────────────────────────────────────────────────────

    def _open_night(self, game: GameState) -> List[GameEvent]:
        game.night_victim = None
        game.white_wolf_kill_target = None
        game.witch_save = False
        game.witch_kill_target = None
        game.protected_player_id = None
        game.village_votes = {}
        game.captain_tiebreak = None
        game.wolves_vote_state = create_vote_state(p.id for p in game.alive_wolves())

        first = self.next_sub_phase(game)
        if first is None:
            return self.transition_to_day(game)
        return self._enter_sub_phase(game, first)

    def transition_to_day(self, game: GameState) -> List[GameEvent]:
        """Night → day: resolve the night's deaths at dawn."""
        if not is_valid_main_transition(game.phase, Phase.DAY):
            raise ActionRejected(ReasonCode.WRONG_PHASE)

        events = self._close_wolves(game)
        game.phase = Phase.DAY
        game.day_count += 1
        events += self._enter_sub_phase(game, SubPhase.WAKE)

        victim = game.night_victim
        if victim:
            if game.witch_save:
                game.log_action("Witch saved the wolves' victim")
            elif victim == game.protected_player_id:
                game.log_action("Protector blocked the wolves' attack")
                events.append(self.event(game, EventType.PROTECTED, target=victim))
            else:
                events += self.kill(game, victim, cause="wolves")
        if game.white_wolf_kill_target:
            events += self.kill(game, game.white_wolf_kill_target, cause="white_wolf")
        if game.witch_kill_target:
            events += self.kill(game, game.witch_kill_target, cause="poison")

        game.last_protected_player_id = game.protected_player_id
        game.protected_player_id = None
        game.witch_save = False
        game.witch_kill_target = None

        events += self.evaluate_victory(game)
        return events

    def transition_to_night(self, game: GameState) -> List[GameEvent]:
        """Day → night: reset the night fields and open the first night sub-phase."""
        if not is_valid_main_transition(game.phase, Phase.NIGHT):
            raise ActionRejected(ReasonCode.WRONG_PHASE)
        game.phase = Phase.NIGHT
        return self._open_night(game)

    # ── Deaths ────────────────────────────────────────────────────────────────

    def kill(self, game: GameState, player_id: str, cause: str) -> List[GameEvent]:
        """Kill a player; a linked lover dies with them. No-op on the dead."""
        player = game.get_player(player_id)
        if player is None or not player.alive:
            return []

        player.alive = False
        game.log_action(f"{player.username} died ({cause})")
        logger.info(f"[{game.game_id}] {player.username} died (cause={cause}, role={player.role})")

        events = [self.event(game, EventType.DEATH, target=player.id, data={
            "cause": cause,
            "role": player.role.value if player.role else None,
        })]
        if player.role == Role.HUNTER and game.hunter_must_shoot is None:
            game.hunter_must_shoot = player.id
            events.append(self.event(game, EventType.HUNTER_MUST_SHOOT, target=player.id))

        lover = game.lover_of(player.id)
        if lover:
            events += self.kill(game, lover, cause="love")
        return events

    def after_hunter(self, game: GameState) -> List[GameEvent]:
        """Hunter shot or timed out: re-check victory, then replay a deferred advance."""
        if game.hunter_must_shoot:
            return []
        events = self.evaluate_victory(game)
        if game.phase != Phase.ENDED and game.pending_advance:
            game.pending_advance = False
            events += self.advance_sub_phase(game).events
        return events

    # ── Village vote ──────────────────────────────────────────────────────────

    def vote_weights(self, game: GameState) -> Dict[str, int]:
        captain = game.get_player(game.captain_id)
        if captain and captain.alive:
            return {captain.id: self.CAPTAIN_VOTE_WEIGHT}
        return {}

    def resolve_lynch(self, game: GameState, allow_tiebreak: bool = True) -> List[GameEvent]:
        """
        Close the village vote. A single leader is lynched; a tie goes to the
        living captain (captain_tiebreak) when allowed, otherwise nobody dies.
        """
        leaders, tally = plurality(game.village_votes, self.vote_weights(game))
        captain = game.get_player(game.captain_id)

        if (
            len(leaders) > 1 and allow_tiebreak and game.captain_tiebreak is None
            and captain is not None and captain.alive
        ):
            game.captain_tiebreak = leaders
            logger.info(f"[{game.game_id}] Lynch tie {leaders}, captain decides")
            return [self.event(
                game, EventType.CAPTAIN_TIEBREAK, actor=captain.id,
                data={"tied": leaders, "tally": tally},
            )]

        if len(leaders) == 1:
            return self.lynch(game, leaders[0], data={"tally": tally})

        game.village_votes = {}
        game.captain_tiebreak = None
        game.log_action("Village vote: nobody eliminated")
        events = [self.event(game, EventType.NO_LYNCH, data={"tally": tally, "tied": leaders})]
        return events + self.advance_sub_phase(game).events

    def lynch(self, game: GameState, target_id: str, data: Optional[Dict[str, Any]] = None) -> List[GameEvent]:
        game.village_votes = {}
        game.captain_tiebreak = None
        target = game.get_player(target_id)
        game.log_action(f"Village vote: {target.username if target else target_id} eliminated")
        events = [self.event(game, EventType.LYNCH, target=target_id, data=data)]
        events += self.kill(game, target_id, cause="vote")
        return events + self.advance_sub_phase(game).events

    def elect_captain(self, game: GameState, strict: bool = True) -> List[GameEvent]:
        """
        Close the captain election by plurality. strict: no votes or a tie is
        rejected and nothing changes; otherwise the day goes on without a captain.
        """
        leaders, tally = plurality(game.captain_votes)
        if strict and not leaders:
            raise ActionRejected(ReasonCode.NO_VOTES, "No captain votes recorded")
        if strict and len(leaders) > 1:
            raise ActionRejected(ReasonCode.TIE, f"Captain vote tied between {', '.join(leaders)}")

        events = []
        if len(leaders) == 1:
            game.captain_id = leaders[0]
            game.log_action(f"Captain elected: {leaders[0]}")
            events.append(self.event(
                game, EventType.CAPTAIN_ELECTED, target=leaders[0], data={"tally": tally},
            ))
        game.captain_votes = {}
        return events + self.advance_sub_phase(game).events

    # ── Win condition check ──────────────────────────────────────────────────

    def check_winner(self, game: GameState) -> Optional[Winner]:
        """
        Evaluated in this fixed order, first match wins:
          1. nobody alive                          → DRAW
          2. the two lovers are the only survivors → LOVERS (even wolf + villager)
          3. no wolf alive                         → VILLAGE
          4. no non-wolf alive                     → WOLVES
          5. wolves at least as many as the rest   → WOLVES
        Werewolves and the white wolf both count as wolves: the white wolf is
        scored with the pack here, not as a solo camp that must outlive it.
        """
        alive = game.alive_players()
        if not alive:
            return Winner.DRAW
        if len(game.lovers) == 2 and len(alive) == 2 and all(p.id in game.lovers for p in alive):
            return Winner.LOVERS

        wolves = sum(1 for p in alive if p.is_wolf)
        others = len(alive) - wolves
        if wolves == 0:
            return Winner.VILLAGE
        if others == 0 or wolves >= others:
            return Winner.WOLVES
        return None

    def evaluate_victory(self, game: GameState) -> List[GameEvent]:
        """End the game if a camp has won. Deferred while a hunter must shoot."""
        if game.phase == Phase.ENDED or game.hunter_must_shoot:
            return []
        winner = self.check_winner(game)
        if winner is None:
            return []
        return [self.end_game(game, winner)]

    def end_game(self, game: GameState, winner: Winner) -> GameEvent:
        game.phase = Phase.ENDED
        game.winner = winner
        game.ended_at = _utcnow()
        game.pending_advance = False
        game.log_action(f"Victory: {winner.value}")
        logger.info(f"[{game.game_id}] Game over — winner: {winner.value}")
        return self.event(game, EventType.VICTORY, data={
            "winner": winner.value,
            "roles": {p.id: p.role.value if p.role else None for p in game.players},
            "survivors": [p.id for p in game.alive_players()],
        })


# Module-level singleton
game_master = GameMaster()
