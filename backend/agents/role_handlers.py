"""
Role Resolution Handlers — one coroutine per ActionType.

Every handler runs inside the game gate and receives an ActionContext. It
validates its preconditions first (raising ActionRejected with a reason code,
or DuplicateAction for a replay), then mutates the game through the Game
Master and returns the GameEvents produced. A raised error rolls the whole
section back, so partial work before it is never persisted.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from models.errors import ActionRejected, DuplicateAction, ReasonCode
from models.game import (
    ActionType, EventType, GameEvent, GameState, Phase, PlayerState, Potion, Role,
    SubPhase, TimerKind, TimerToken, VoteType, WOLF_ROLES, SUB_PHASE_ROLES,
)
from agents.game_master import game_master as gm
from agents.night_ledger import NightActionLedger, WOLF_PACK_ACTOR
from agents.wolf_vote import (
    TallyAction, create_vote_state, process_vote, register_vote, resolve_on_timeout,
)
from services.store import StoreSession

logger = logging.getLogger(__name__)

# Night sub-phases whose role may pass its turn
SKIPPABLE_SUB_PHASES = frozenset({
    SubPhase.THIEF,
    SubPhase.CUPID,
    SubPhase.PROTECTOR,
    SubPhase.WHITE_WOLF,
    SubPhase.WITCH,
    SubPhase.SEER,
})


class ActionContext:
    """Everything a handler may touch inside one gate section."""

    def __init__(
        self,
        game: GameState,
        session: StoreSession,
        ledger: NightActionLedger,
        actor_id: Optional[str] = None,
        target_ids: Optional[List[str]] = None,
        token: Optional[TimerToken] = None,
    ):
        self.game = game
        self.session = session
        self.ledger = ledger
        self.actor_id = actor_id
        self.target_ids = list(target_ids or [])
        self.token = token

    @property
    def round(self) -> int:
        return self.game.day_count

    async def record(self, action_type: ActionType, target_id: Optional[str] = None) -> None:
        """Claim this actor's ledger slot for the round, or raise DuplicateAction."""
        result = await self.ledger.record_once(
            self.session, self.round, action_type, self.actor_id, target_id
        )
        if result.duplicate:
            raise DuplicateAction(f"{action_type.value} already recorded this round")


Handler = Callable[[ActionContext], Awaitable[List[GameEvent]]]


# ── Precondition helpers ──────────────────────────────────────────────────────

def _require_running(game: GameState) -> None:
    if not game.started:
        raise ActionRejected(ReasonCode.GAME_NOT_STARTED)
    if game.phase == Phase.ENDED:
        raise ActionRejected(ReasonCode.GAME_ENDED)


def _require_sub_phase(game: GameState, phase: Phase, sub_phase: SubPhase) -> None:
    if game.phase != phase or game.sub_phase != sub_phase:
        raise ActionRejected(
            ReasonCode.WRONG_PHASE,
            f"Only allowed during {phase.value}/{sub_phase.value}",
        )


def _require_no_hunter(game: GameState) -> None:
    if game.hunter_must_shoot:
        raise ActionRejected(ReasonCode.HUNTER_MUST_SHOOT, "Waiting for the hunter to shoot")


def _require_actor(ctx: ActionContext, *roles: Role, alive: bool = True) -> PlayerState:
    player = ctx.game.get_player(ctx.actor_id)
    if player is None:
        raise ActionRejected(ReasonCode.NOT_IN_GAME)
    if alive and not player.alive:
        raise ActionRejected(ReasonCode.PLAYER_ELIMINATED)
    if roles and player.role not in roles:
        raise ActionRejected(ReasonCode.WRONG_ROLE)
    return player


def _require_target(ctx: ActionContext, index: int = 0, allow_self: bool = False) -> PlayerState:
    if len(ctx.target_ids) <= index:
        raise ActionRejected(ReasonCode.MISSING_TARGET)
    target = ctx.game.get_player(ctx.target_ids[index])
    if target is None:
        raise ActionRejected(ReasonCode.INVALID_TARGET, f"Unknown player {ctx.target_ids[index]}")
    if not target.alive:
        raise ActionRejected(ReasonCode.TARGET_DEAD)
    if not allow_self and target.id == ctx.actor_id:
        raise ActionRejected(ReasonCode.INVALID_SELF_TARGET)
    return target


def _night_actor(ctx: ActionContext, sub_phase: SubPhase) -> PlayerState:
    _require_running(ctx.game)
    _require_sub_phase(ctx.game, Phase.NIGHT, sub_phase)
    return _require_actor(ctx, *SUB_PHASE_ROLES[sub_phase])


# ── Wolves ────────────────────────────────────────────────────────────────────

async def _commit_wolf_kill(ctx: ActionContext, target_id: str) -> List[GameEvent]:
    game = ctx.game
    result = await ctx.ledger.record_once(
        ctx.session, ctx.round, ActionType.KILL, WOLF_PACK_ACTOR, target_id
    )
    if result.duplicate:
        raise DuplicateAction("The wolves already killed tonight")

    game.night_victim = target_id
    game.wolves_vote_state.votes = {}
    await ctx.session.clear_votes(VoteType.WOLVES, ctx.round)
    victim = game.get_player(target_id)
    game.log_action(f"Wolves chose {victim.username if victim else target_id}")
    return [gm.event(
        game, EventType.KILL, target=target_id,
        visible=False, recipients=game.wolves_vote_state.eligible,
    )]


async def handle_kill(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    wolf = _night_actor(ctx, SubPhase.WOLVES)
    state = game.wolves_vote_state
    if state.resolved:
        raise ActionRejected(ReasonCode.ALREADY_RESOLVED)
    if wolf.id not in state.eligible:
        raise ActionRejected(ReasonCode.NOT_ELIGIBLE)
    target = _require_target(ctx)
    if target.is_wolf:
        raise ActionRejected(ReasonCode.CANNOT_TARGET_WOLF)

    write = await ctx.session.add_vote_if_changed(wolf.id, target.id, VoteType.WOLVES, ctx.round)
    if write.duplicate:
        raise DuplicateAction("Vote unchanged")

    register_vote(state, wolf.id, target.id)
    vote_round = state.round
    outcome = process_vote(state)
    pack = list(state.eligible)
    events = [gm.event(
        game, EventType.WOLF_VOTE, actor=wolf.id, target=target.id,
        data={
            "round": vote_round,
            "votes_for_target": outcome.votes_for_target,
            "majority_needed": outcome.majority_needed,
        },
        visible=False, recipients=pack,
    )]

    if outcome.action == TallyAction.KILL:
        events += await _commit_wolf_kill(ctx, outcome.target_id)
        events += gm.advance_sub_phase(game).events
    elif outcome.action == TallyAction.ADVANCE_ROUND:
        await ctx.session.clear_votes(VoteType.WOLVES, ctx.round)
        game.log_action("Wolves split, second vote round")
        events.append(gm.event(
            game, EventType.ADVANCE_ROUND, data={"round": state.round},
            visible=False, recipients=pack,
        ))
    elif outcome.action == TallyAction.NO_KILL:
        await ctx.session.clear_votes(VoteType.WOLVES, ctx.round)
        game.log_action("Wolves did not agree on a victim")
        events.append(gm.event(
            game, EventType.NO_KILL, data={"reason": "no_consensus"},
            visible=False, recipients=pack,
        ))
        events += gm.advance_sub_phase(game).events
    return events


async def handle_white_wolf_kill(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    white_wolf = _night_actor(ctx, SubPhase.WHITE_WOLF)
    target = _require_target(ctx)
    if target.role != Role.WEREWOLF:
        raise ActionRejected(ReasonCode.INVALID_TARGET, "The white wolf can only devour a werewolf")

    await ctx.record(ActionType.WHITE_WOLF_KILL, target.id)
    game.white_wolf_kill_target = target.id
    game.log_action(f"White wolf chose {target.username}")
    events = [gm.event(
        game, EventType.WHITE_WOLF_KILL, actor=white_wolf.id, target=target.id,
        visible=False, recipients=[white_wolf.id],
    )]
    return events + gm.advance_sub_phase(game).events


# ── Village roles at night ───────────────────────────────────────────────────

async def handle_protect(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    protector = _night_actor(ctx, SubPhase.PROTECTOR)
    target = _require_target(ctx)
    if target.id == game.last_protected_player_id:
        raise ActionRejected(ReasonCode.CANNOT_PROTECT_SAME)

    await ctx.record(ActionType.PROTECT, target.id)
    game.protected_player_id = target.id
    game.log_action(f"Protector shields {target.username}")
    events = [gm.event(
        game, EventType.PROTECTED, actor=protector.id, target=target.id,
        visible=False, recipients=[protector.id],
    )]
    return events + gm.advance_sub_phase(game).events


def _after_potion(game: GameState) -> List[GameEvent]:
    if game.witch_potions.life or game.witch_potions.death:
        return []
    return gm.advance_sub_phase(game).events


async def _claim_potion(ctx: ActionContext, potion: Potion) -> None:
    claim = await ctx.session.use_witch_potion_if_available(potion)
    if claim.duplicate:
        raise ActionRejected(ReasonCode.NO_POTION, f"The {potion.value} potion is already used")


async def handle_save(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    witch = _night_actor(ctx, SubPhase.WITCH)
    if not game.night_victim:
        raise ActionRejected(ReasonCode.NO_VICTIM)
    if not game.witch_potions.life:
        raise ActionRejected(ReasonCode.NO_POTION)

    await ctx.record(ActionType.SAVE, game.night_victim)
    await _claim_potion(ctx, Potion.LIFE)
    game.witch_potions.life = False
    game.witch_save = True
    game.log_action("Witch used the life potion")
    events = [gm.event(
        game, EventType.WITCH_SAVE, actor=witch.id, target=game.night_victim,
        visible=False, recipients=[witch.id],
    )]
    return events + _after_potion(game)


async def handle_poison(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    witch = _night_actor(ctx, SubPhase.WITCH)
    if not game.witch_potions.death:
        raise ActionRejected(ReasonCode.NO_POTION)
    target = _require_target(ctx)

    await ctx.record(ActionType.POISON, target.id)
    await _claim_potion(ctx, Potion.DEATH)
    game.witch_potions.death = False
    game.witch_kill_target = target.id
    game.log_action(f"Witch poisoned {target.username}")
    events = [gm.event(
        game, EventType.WITCH_POISON, actor=witch.id, target=target.id,
        visible=False, recipients=[witch.id],
    )]
    return events + _after_potion(game)


async def handle_see(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    seer = _night_actor(ctx, SubPhase.SEER)
    target = _require_target(ctx)

    await ctx.record(ActionType.SEE, target.id)
    game.log_action(f"Seer looked at {target.username}")
    events = [gm.event(
        game, EventType.SEER_RESULT, actor=seer.id, target=target.id,
        data={"role": target.role.value if target.role else None},
        visible=False, recipients=[seer.id],
    )]
    return events + gm.advance_sub_phase(game).events


async def handle_love(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    cupid = _night_actor(ctx, SubPhase.CUPID)
    if game.lovers:
        raise ActionRejected(ReasonCode.ALREADY_USED)
    first = _require_target(ctx, 0, allow_self=True)
    second = _require_target(ctx, 1, allow_self=True)
    if first.id == second.id:
        raise ActionRejected(ReasonCode.INVALID_TARGET, "Pick two different players")

    await ctx.record(ActionType.LOVE, f"{first.id}+{second.id}")
    game.lovers = [first.id, second.id]
    first.in_love = True
    second.in_love = True
    game.log_action(f"Cupid linked {first.username} and {second.username}")
    recipients = list(dict.fromkeys([cupid.id, first.id, second.id]))
    events = [gm.event(
        game, EventType.LOVERS_LINKED, actor=cupid.id,
        data={"lovers": list(game.lovers)},
        visible=False, recipients=recipients,
    )]
    return events + gm.advance_sub_phase(game).events


async def handle_steal(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    thief = _night_actor(ctx, SubPhase.THIEF)
    extras = list(game.thief_extra_roles)
    if len(extras) != 2:
        raise ActionRejected(ReasonCode.ALREADY_USED)
    if not ctx.target_ids:
        raise ActionRejected(ReasonCode.MISSING_TARGET)

    # "1" / "2" or the role name itself
    choice = ctx.target_ids[0]
    if choice in ("1", "2"):
        chosen = extras[int(choice) - 1]
    elif choice in [r.value for r in extras]:
        chosen = Role(choice)
    else:
        raise ActionRejected(ReasonCode.INVALID_TARGET, "Choose 1 or 2")

    await ctx.record(ActionType.STEAL, chosen.value)
    old_role = thief.role
    thief.role = chosen
    game.thief_extra_roles = []
    if thief.is_wolf:
        # The wolves' turn has not started yet this night
        game.wolves_vote_state = create_vote_state(p.id for p in game.alive_wolves())
    game.log_action(f"Thief became {chosen.value}")
    events = [gm.event(
        game, EventType.ROLE_STOLEN, actor=thief.id,
        data={"from": old_role.value if old_role else None, "to": chosen.value},
        visible=False, recipients=[thief.id],
    )]
    return events + gm.advance_sub_phase(game).events


async def handle_skip(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    if game.phase != Phase.NIGHT:
        raise ActionRejected(ReasonCode.WRONG_PHASE)
    if game.sub_phase not in SKIPPABLE_SUB_PHASES:
        raise ActionRejected(ReasonCode.SKIP_FORBIDDEN)
    player = _require_actor(ctx, *SUB_PHASE_ROLES[game.sub_phase])
    if game.sub_phase == SubPhase.THIEF and all(r in WOLF_ROLES for r in game.thief_extra_roles):
        raise ActionRejected(ReasonCode.SKIP_FORBIDDEN, "Both cards are wolves, the thief must take one")

    await ctx.record(ActionType.SKIP)
    if game.sub_phase == SubPhase.THIEF:
        game.thief_extra_roles = []
    game.log_action(f"{game.sub_phase.value} passed")
    events = [gm.event(game, EventType.SKIPPED, actor=player.id, data={"sub_phase": game.sub_phase.value})]
    return events + gm.advance_sub_phase(game).events


# ── Hunter ────────────────────────────────────────────────────────────────────

async def handle_shoot(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    hunter = _require_actor(ctx, Role.HUNTER, alive=False)
    if game.hunter_must_shoot != hunter.id:
        raise ActionRejected(ReasonCode.HUNTER_CANNOT_SHOOT)
    target = _require_target(ctx)

    await ctx.record(ActionType.SHOOT, target.id)
    game.hunter_must_shoot = None
    game.log_action(f"Hunter {hunter.username} shot {target.username}")
    events = [gm.event(game, EventType.HUNTER_SHOT, actor=hunter.id, target=target.id)]
    events += gm.kill(game, target.id, cause="hunter")
    return events + gm.after_hunter(game)


# ── Day ───────────────────────────────────────────────────────────────────────

async def handle_vote(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    _require_sub_phase(game, Phase.DAY, SubPhase.VOTE)
    voter = _require_actor(ctx)
    _require_no_hunter(game)
    target = _require_target(ctx, allow_self=True)

    if game.captain_tiebreak is not None:
        if voter.id != game.captain_id:
            raise ActionRejected(ReasonCode.NOT_ELIGIBLE, "Only the captain breaks the tie")
        if target.id not in game.captain_tiebreak:
            raise ActionRejected(ReasonCode.INVALID_TARGET, "Pick one of the tied players")
        await ctx.session.clear_votes(VoteType.VILLAGE, ctx.round)
        return gm.lynch(game, target.id, data={"tiebreak": True})

    write = await ctx.session.add_vote_if_changed(voter.id, target.id, VoteType.VILLAGE, ctx.round)
    if write.duplicate:
        raise DuplicateAction("Vote unchanged")
    game.village_votes[voter.id] = target.id
    events = [gm.event(
        game, EventType.VOTE_CAST, actor=voter.id, target=target.id,
        data={"votes_cast": len(game.village_votes)},
    )]

    if all(p.id in game.village_votes for p in game.alive_players()):
        await ctx.session.clear_votes(VoteType.VILLAGE, ctx.round)
        events += gm.resolve_lynch(game)
    return events


async def handle_captain_vote(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    _require_sub_phase(game, Phase.DAY, SubPhase.CAPTAIN_VOTE)
    voter = _require_actor(ctx)
    target = _require_target(ctx, allow_self=True)

    write = await ctx.session.add_vote_if_changed(voter.id, target.id, VoteType.CAPTAIN, ctx.round)
    if write.duplicate:
        raise DuplicateAction("Vote unchanged")
    game.captain_votes[voter.id] = target.id
    return [gm.event(game, EventType.CAPTAIN_VOTE_CAST, actor=voter.id, target=target.id)]


async def handle_declare_captain(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    _require_sub_phase(game, Phase.DAY, SubPhase.CAPTAIN_VOTE)
    if ctx.actor_id != game.host_id:
        _require_actor(ctx)

    events = gm.elect_captain(game, strict=True)
    await ctx.session.clear_votes(VoteType.CAPTAIN, ctx.round)
    return events


async def handle_next_phase(ctx: ActionContext) -> List[GameEvent]:
    game = ctx.game
    _require_running(game)
    if ctx.actor_id != game.host_id:
        raise ActionRejected(ReasonCode.NOT_HOST)

    if game.phase == Phase.DAY and game.sub_phase == SubPhase.VOTE and not game.hunter_must_shoot:
        await ctx.session.clear_votes(VoteType.VILLAGE, ctx.round)
        return gm.resolve_lynch(game, allow_tiebreak=game.captain_tiebreak is None)
    if game.phase == Phase.DAY and game.sub_phase == SubPhase.CAPTAIN_VOTE and not game.hunter_must_shoot:
        await ctx.session.clear_votes(VoteType.CAPTAIN, ctx.round)
        return gm.elect_captain(game, strict=False)
    return gm.advance_sub_phase(game).events


# ── Timers ────────────────────────────────────────────────────────────────────

async def handle_timeout(ctx: ActionContext) -> List[GameEvent]:
    """
    Synthetic action fired by a timer. Only valid while the game is still where
    the timer was scheduled; anything else means a real action got there first.
    """
    game, token = ctx.game, ctx.token
    if token is None:
        raise ActionRejected(ReasonCode.UNKNOWN_ACTION)
    if game.phase == Phase.ENDED:
        raise ActionRejected(ReasonCode.ALREADY_RESOLVED)

    if token.kind == TimerKind.LOBBY:
        if game.started:
            raise ActionRejected(ReasonCode.ALREADY_RESOLVED)
        game.phase = Phase.ENDED
        game.log_action("Lobby expired")
        logger.info(f"[{game.game_id}] Lobby expired")
        return [gm.event(game, EventType.GAME_TERMINATED, data={"reason": "lobby_timeout"})]

    if token.kind == TimerKind.HUNTER:
        if not game.hunter_must_shoot or game.hunter_must_shoot != token.subject:
            raise ActionRejected(ReasonCode.ALREADY_RESOLVED)
        game.hunter_must_shoot = None
        game.log_action("Hunter did not shoot in time")
        events = [gm.event(game, EventType.HUNTER_TIMEOUT, target=token.subject)]
        return events + gm.after_hunter(game)

    if game.day_count != token.day_count or game.sub_phase != token.sub_phase:
        raise ActionRejected(ReasonCode.ALREADY_RESOLVED)

    if token.kind == TimerKind.NIGHT_ACTION:
        if game.phase != Phase.NIGHT:
            raise ActionRejected(ReasonCode.ALREADY_RESOLVED)
        game.log_action(f"AFK timeout: {game.sub_phase.value}")
        events = [gm.event(game, EventType.AFK_TIMEOUT, data={"sub_phase": game.sub_phase.value})]
        if game.sub_phase == SubPhase.WOLVES:
            pack = list(game.wolves_vote_state.eligible)
            outcome = resolve_on_timeout(game.wolves_vote_state)
            if outcome.action == TallyAction.KILL:
                events += await _commit_wolf_kill(ctx, outcome.target_id)
            elif outcome.action == TallyAction.NO_KILL:
                game.wolves_vote_state.votes = {}
                await ctx.session.clear_votes(VoteType.WOLVES, ctx.round)
                events.append(gm.event(
                    game, EventType.NO_KILL, data={"reason": "timeout"},
                    visible=False, recipients=pack,
                ))
        return events + gm.advance_sub_phase(game).events

    if token.kind == TimerKind.DAY_VOTE and game.phase == Phase.DAY and not game.hunter_must_shoot:
        if game.sub_phase == SubPhase.CAPTAIN_VOTE:
            await ctx.session.clear_votes(VoteType.CAPTAIN, ctx.round)
            return gm.elect_captain(game, strict=False)
        if game.sub_phase == SubPhase.VOTE:
            await ctx.session.clear_votes(VoteType.VILLAGE, ctx.round)
            return gm.resolve_lynch(game, allow_tiebreak=False)
    raise ActionRejected(ReasonCode.ALREADY_RESOLVED)


HANDLERS: Dict[ActionType, Handler] = {
    ActionType.KILL: handle_kill,
    ActionType.WHITE_WOLF_KILL: handle_white_wolf_kill,
    ActionType.PROTECT: handle_protect,
    ActionType.SAVE: handle_save,
    ActionType.POISON: handle_poison,
    ActionType.SEE: handle_see,
    ActionType.LOVE: handle_love,
    ActionType.SHOOT: handle_shoot,
    ActionType.STEAL: handle_steal,
    ActionType.SKIP: handle_skip,
    ActionType.VOTE: handle_vote,
    ActionType.CAPTAIN_VOTE: handle_captain_vote,
    ActionType.DECLARE_CAPTAIN: handle_declare_captain,
    ActionType.NEXT_PHASE: handle_next_phase,
    ActionType.TIMEOUT: handle_timeout,
}

_unhandled = set(ActionType) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No handler for actions: {sorted(a.value for a in _unhandled)}")


async def handle_action(action: ActionType, ctx: ActionContext) -> List[GameEvent]:
    return await HANDLERS[action](ctx)
