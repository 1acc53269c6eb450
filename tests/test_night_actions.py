import asyncio

from agents.night_ledger import WOLF_PACK_ACTOR
from models.errors import ReasonCode
from models.game import (
    ActionType, EventType, OutcomeStatus, Phase, Role, SubPhase, TimerKind, TimerToken,
    VoteType,
)
from helpers import start_game

W, S, WI, H, C, P, T, V = (
    Role.WEREWOLF, Role.SEER, Role.WITCH, Role.HUNTER, Role.CUPID,
    Role.PROTECTOR, Role.THIEF, Role.VILLAGER,
)
KILL, SEE = ActionType.KILL, ActionType.SEE


async def test_wolves_majority_kill_resolves_at_dawn(coordinator, store):
    game = await start_game(coordinator, [W, W, S, V, V, V])
    assert game.sub_phase == SubPhase.WOLVES

    first = await coordinator.execute(KILL, "g1", "p1", ["p4"])
    assert first.ok
    assert game.night_victim is None

    second = await coordinator.execute(KILL, "g1", "p2", ["p4"])
    assert second.ok
    assert EventType.KILL in second.event_types()
    assert game.night_victim == "p4"
    assert game.sub_phase == SubPhase.SEER
    assert game.get_player("p4").alive

    seen = await coordinator.execute(SEE, "g1", "p3", ["p1"])
    result = next(e for e in seen.events if e.type == EventType.SEER_RESULT)
    assert result.data["role"] == "werewolf"
    assert result.recipients == ["p3"]

    assert game.phase == Phase.DAY
    assert game.day_count == 1
    assert not game.get_player("p4").alive

    kills = [e for e in await coordinator.ledger.entries("g1", 0) if e.action_type == KILL]
    assert len(kills) == 1
    assert kills[0].actor_id == WOLF_PACK_ACTOR
    assert await store.get_votes("g1", VoteType.WOLVES, 0) == []
    assert not (await store.get_game("g1")).get_player("p4").alive


async def test_split_pack_twice_means_no_kill(coordinator):
    game = await start_game(coordinator, [W, W, W, W, S, V, V, V, V])
    assert game.wolves_vote_state.eligible == ["p1", "p2", "p3", "p4"]

    votes = [("p1", "p6"), ("p2", "p6"), ("p3", "p7"), ("p4", "p7")]
    for wolf, target in votes:
        outcome = await coordinator.execute(KILL, "g1", wolf, [target])
        assert outcome.ok
    assert EventType.ADVANCE_ROUND in outcome.event_types()
    assert game.wolves_vote_state.round == 2

    for wolf, target in votes:
        outcome = await coordinator.execute(KILL, "g1", wolf, [target])
        assert outcome.ok
    assert EventType.NO_KILL in outcome.event_types()
    assert game.night_victim is None
    assert game.sub_phase == SubPhase.SEER

    late = await coordinator.execute(KILL, "g1", "p1", ["p8"])
    assert late.reason == ReasonCode.WRONG_PHASE
    assert [e for e in await coordinator.ledger.entries("g1") if e.action_type == KILL] == []


async def test_repeated_vote_is_a_duplicate(coordinator):
    await start_game(coordinator, [W, W, S, V, V, V])
    assert (await coordinator.execute(KILL, "g1", "p1", ["p4"])).ok

    again = await coordinator.execute(KILL, "g1", "p1", ["p4"])
    assert again.status == OutcomeStatus.DUPLICATE

    changed = await coordinator.execute(KILL, "g1", "p1", ["p5"])
    assert changed.ok


async def test_wolf_vote_preconditions(coordinator):
    await start_game(coordinator, [W, W, S, V, V, V])
    checks = [
        ("p3", ["p4"], ReasonCode.WRONG_ROLE),
        ("p1", ["p2"], ReasonCode.CANNOT_TARGET_WOLF),
        ("p1", [], ReasonCode.MISSING_TARGET),
        ("p1", ["ghost"], ReasonCode.INVALID_TARGET),
        ("stranger", ["p4"], ReasonCode.NOT_IN_GAME),
    ]
    for actor, targets, reason in checks:
        outcome = await coordinator.execute(KILL, "g1", actor, targets)
        assert outcome.status == OutcomeStatus.REJECTED
        assert outcome.reason == reason


async def test_seer_cannot_act_out_of_turn(coordinator):
    await start_game(coordinator, [W, W, S, V, V, V])
    outcome = await coordinator.execute(SEE, "g1", "p3", ["p1"])
    assert outcome.reason == ReasonCode.WRONG_PHASE


async def test_night_timeout_uses_plurality(coordinator):
    game = await start_game(coordinator, [W, W, W, S, V, V, V, V])
    await coordinator.execute(KILL, "g1", "p1", ["p5"])

    token = TimerToken(kind=TimerKind.NIGHT_ACTION, day_count=0, sub_phase=SubPhase.WOLVES)
    outcome = await coordinator.handle_timeout("g1", token)
    assert outcome.ok
    assert EventType.AFK_TIMEOUT in outcome.event_types()
    assert game.night_victim == "p5"
    assert game.sub_phase == SubPhase.SEER


async def test_stale_timeout_is_already_resolved(coordinator):
    game = await start_game(coordinator, [W, W, S, V, V, V])
    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    await coordinator.execute(KILL, "g1", "p2", ["p4"])
    assert game.sub_phase == SubPhase.SEER

    token = TimerToken(kind=TimerKind.NIGHT_ACTION, day_count=0, sub_phase=SubPhase.WOLVES)
    outcome = await coordinator.handle_timeout("g1", token)
    assert outcome.status == OutcomeStatus.REJECTED
    assert outcome.reason == ReasonCode.ALREADY_RESOLVED
    assert game.sub_phase == SubPhase.SEER


async def test_timeout_cannot_be_submitted_by_players(coordinator):
    await start_game(coordinator, [W, W, S, V, V, V])
    outcome = await coordinator.execute(ActionType.TIMEOUT, "g1", "p1")
    assert outcome.reason == ReasonCode.UNKNOWN_ACTION


async def test_concurrent_hunter_shots_apply_once(coordinator, store):
    game = await start_game(coordinator, [W, W, H, V, V, V])
    await coordinator.execute(KILL, "g1", "p1", ["p3"])
    await coordinator.execute(KILL, "g1", "p2", ["p3"])
    assert game.phase == Phase.DAY
    assert game.hunter_must_shoot == "p3"
    assert coordinator.timers.pending("g1", TimerKind.HUNTER) is not None

    outcomes = await asyncio.gather(
        coordinator.execute(ActionType.SHOOT, "g1", "p3", ["p1"]),
        coordinator.execute(ActionType.SHOOT, "g1", "p3", ["p4"]),
    )
    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == ["applied", "rejected"]
    rejected = next(o for o in outcomes if not o.ok)
    assert rejected.reason == ReasonCode.HUNTER_CANNOT_SHOOT

    assert not game.get_player("p1").alive
    assert game.get_player("p4").alive
    assert game.hunter_must_shoot is None
    assert coordinator.timers.pending("g1", TimerKind.HUNTER) is None

    shots = [e for e in await coordinator.ledger.entries("g1", game.day_count)
             if e.action_type == ActionType.SHOOT]
    assert [(e.actor_id, e.target_id) for e in shots] == [("p3", "p1")]
    persisted = await store.get_game("g1")
    assert [p.id for p in persisted.players if not p.alive] == ["p1", "p3"]
    assert persisted.hunter_must_shoot is None


async def test_protector_cannot_shield_same_player_twice(coordinator):
    game = await start_game(coordinator, [W, W, P, V, V, V])
    assert game.sub_phase == SubPhase.PROTECTOR

    assert (await coordinator.execute(ActionType.PROTECT, "g1", "p3", ["p4"])).ok
    assert game.sub_phase == SubPhase.WOLVES
    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    outcome = await coordinator.execute(KILL, "g1", "p2", ["p4"])
    assert EventType.PROTECTED in outcome.event_types()
    assert game.get_player("p4").alive
    assert game.phase == Phase.DAY

    # wake → captain vote → deliberation → vote → next night
    for _ in range(4):
        assert (await coordinator.execute(ActionType.NEXT_PHASE, "g1", "p1")).ok
    assert game.phase == Phase.NIGHT
    assert game.sub_phase == SubPhase.PROTECTOR

    same = await coordinator.execute(ActionType.PROTECT, "g1", "p3", ["p4"])
    assert same.reason == ReasonCode.CANNOT_PROTECT_SAME
    assert (await coordinator.execute(ActionType.PROTECT, "g1", "p3", ["p5"])).ok


async def test_witch_potions_are_single_use(coordinator, store):
    game = await start_game(coordinator, [W, W, WI, V, V, V])
    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    outcome = await coordinator.execute(KILL, "g1", "p2", ["p4"])
    assert game.sub_phase == SubPhase.WITCH
    told = next(e for e in outcome.events if e.type == EventType.NIGHT_VICTIM)
    assert told.recipients == ["p3"] and told.target == "p4"

    assert (await coordinator.execute(ActionType.SAVE, "g1", "p3")).ok
    assert game.sub_phase == SubPhase.WITCH
    again = await coordinator.execute(ActionType.SAVE, "g1", "p3")
    assert again.reason == ReasonCode.NO_POTION

    assert (await coordinator.execute(ActionType.POISON, "g1", "p3", ["p1"])).ok
    assert game.phase == Phase.DAY
    assert game.get_player("p4").alive
    assert not game.get_player("p1").alive
    persisted = await store.get_game("g1")
    assert not persisted.witch_potions.life and not persisted.witch_potions.death


async def test_cupid_links_lovers_who_die_together(coordinator):
    game = await start_game(coordinator, [W, W, C, V, V, V, V])
    assert game.sub_phase == SubPhase.CUPID

    assert (await coordinator.execute(ActionType.LOVE, "g1", "p3", ["p4", "p5"])).ok
    assert game.lovers == ["p4", "p5"]
    assert game.sub_phase == SubPhase.WOLVES

    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    outcome = await coordinator.execute(KILL, "g1", "p2", ["p4"])
    deaths = {e.target: e.data["cause"] for e in outcome.events if e.type == EventType.DEATH}
    assert deaths == {"p4": "wolves", "p5": "love"}


async def test_thief_takes_a_surplus_role(coordinator):
    game = await start_game(coordinator, [W, W, V, V, V, S, V, T])
    assert game.thief_extra_roles == [S, V]
    assert game.sub_phase == SubPhase.THIEF

    assert (await coordinator.execute(ActionType.STEAL, "g1", "p6", ["1"])).ok
    assert game.get_player("p6").role == Role.SEER
    assert game.thief_extra_roles == []
    assert game.sub_phase == SubPhase.WOLVES


async def test_thief_must_take_a_wolf_card(coordinator):
    game = await start_game(coordinator, [W, V, V, V, V, W, W, T])
    assert game.thief_extra_roles == [W, W]

    skipped = await coordinator.execute(ActionType.SKIP, "g1", "p6")
    assert skipped.reason == ReasonCode.SKIP_FORBIDDEN

    assert (await coordinator.execute(ActionType.STEAL, "g1", "p6", ["2"])).ok
    assert game.get_player("p6").role == Role.WEREWOLF
    assert game.wolves_vote_state.eligible == ["p1", "p6"]


async def test_wolves_cannot_skip(coordinator):
    await start_game(coordinator, [W, W, S, V, V, V])
    outcome = await coordinator.execute(ActionType.SKIP, "g1", "p1")
    assert outcome.reason == ReasonCode.SKIP_FORBIDDEN


async def test_seer_may_pass(coordinator):
    game = await start_game(coordinator, [W, W, S, V, V, V])
    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    await coordinator.execute(KILL, "g1", "p2", ["p4"])

    outcome = await coordinator.execute(ActionType.SKIP, "g1", "p3")
    assert EventType.SKIPPED in outcome.event_types()
    assert game.phase == Phase.DAY


# ── White wolf ────────────────────────────────────────────────────────────────

WW = Role.WHITE_WOLF


async def _second_night(coordinator):
    """W, W, WW and six villagers; the pack eats p4 on night one, nobody is lynched."""
    game = await start_game(coordinator, [W, W, WW, V, V, V, V, V, V])
    assert game.wolves_vote_state.eligible == ["p1", "p2", "p3"]

    early = await coordinator.execute(ActionType.WHITE_WOLF_KILL, "g1", "p3", ["p1"])
    assert early.reason == ReasonCode.WRONG_PHASE

    await coordinator.execute(KILL, "g1", "p1", ["p4"])
    await coordinator.execute(KILL, "g1", "p2", ["p4"])
    assert game.phase == Phase.DAY
    for _ in range(4):
        assert (await coordinator.execute(ActionType.NEXT_PHASE, "g1", "p1")).ok
    assert game.phase == Phase.NIGHT and game.day_count == 1
    return game


async def test_white_wolf_devours_a_werewolf_on_the_second_night(coordinator, store):
    game = await _second_night(coordinator)
    await coordinator.execute(KILL, "g1", "p1", ["p5"])
    await coordinator.execute(KILL, "g1", "p2", ["p5"])
    assert game.night_victim == "p5"
    assert game.sub_phase == SubPhase.WHITE_WOLF

    checks = [
        ("p1", ["p2"], ReasonCode.WRONG_ROLE),
        ("p3", ["p6"], ReasonCode.INVALID_TARGET),
        ("p3", ["p3"], ReasonCode.INVALID_SELF_TARGET),
        ("p3", [], ReasonCode.MISSING_TARGET),
    ]
    for actor, targets, reason in checks:
        outcome = await coordinator.execute(ActionType.WHITE_WOLF_KILL, "g1", actor, targets)
        assert outcome.reason == reason
    assert game.white_wolf_kill_target is None

    outcome = await coordinator.execute(ActionType.WHITE_WOLF_KILL, "g1", "p3", ["p1"])
    assert outcome.ok
    chosen = next(e for e in outcome.events if e.type == EventType.WHITE_WOLF_KILL)
    assert chosen.recipients == ["p3"]

    assert game.phase == Phase.DAY and game.day_count == 2
    assert not game.get_player("p5").alive
    assert not game.get_player("p1").alive
    assert game.get_player("p2").alive and game.get_player("p3").alive
    assert game.winner is None

    entries = await coordinator.ledger.entries("g1", 1)
    assert sorted((e.action_type, e.actor_id, e.target_id) for e in entries) == sorted([
        (KILL, WOLF_PACK_ACTOR, "p5"),
        (ActionType.WHITE_WOLF_KILL, "p3", "p1"),
    ])
    persisted = await store.get_game("g1")
    assert not persisted.get_player("p1").alive and not persisted.get_player("p5").alive


async def test_replayed_white_wolf_kill_is_a_duplicate(coordinator, store):
    game = await _second_night(coordinator)
    await coordinator.execute(KILL, "g1", "p1", ["p5"])
    await coordinator.execute(KILL, "g1", "p2", ["p5"])

    # The claim already reached the store, e.g. before a restart
    session = store.session("g1")
    await coordinator.ledger.record_once(session, 1, ActionType.WHITE_WOLF_KILL, "p3", "p1")
    await session.commit(game)

    replay = await coordinator.execute(ActionType.WHITE_WOLF_KILL, "g1", "p3", ["p1"])
    assert replay.status == OutcomeStatus.DUPLICATE
    assert game.white_wolf_kill_target is None
    assert game.sub_phase == SubPhase.WHITE_WOLF
