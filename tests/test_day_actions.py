from models.errors import ReasonCode
from models.game import (
    ActionType, EventType, OutcomeStatus, Phase, Role, SubPhase, TimerKind, TimerToken,
    Winner,
)
from helpers import start_game

W, V = Role.WEREWOLF, Role.VILLAGER
KILL, VOTE, NEXT = ActionType.KILL, ActionType.VOTE, ActionType.NEXT_PHASE


async def _first_day(coordinator, roles, victim):
    """Start, let every wolf pick `victim`, return the game at dawn."""
    game = await start_game(coordinator, roles)
    for wolf in list(game.wolves_vote_state.eligible):
        await coordinator.execute(KILL, "g1", wolf, [victim])
    assert game.phase == Phase.DAY and game.sub_phase == SubPhase.WAKE
    return game


async def test_captain_election_and_tiebreak(coordinator):
    game = await _first_day(coordinator, [W, V, V, V, V, W], victim="p5")
    assert (await coordinator.execute(NEXT, "g1", "p1")).ok
    assert game.sub_phase == SubPhase.CAPTAIN_VOTE

    for voter, target in (("p2", "p3"), ("p3", "p3"), ("p4", "p2")):
        assert (await coordinator.execute(ActionType.CAPTAIN_VOTE, "g1", voter, [target])).ok
    elected = await coordinator.execute(ActionType.DECLARE_CAPTAIN, "g1", "p1")
    assert EventType.CAPTAIN_ELECTED in elected.event_types()
    assert game.captain_id == "p3"
    assert game.sub_phase == SubPhase.DELIBERATION

    assert (await coordinator.execute(NEXT, "g1", "p1")).ok
    assert game.sub_phase == SubPhase.VOTE

    # The captain's vote counts double: p1 3, p2 3
    for voter, target in (("p3", "p1"), ("p4", "p1"), ("p1", "p2"), ("p2", "p2"), ("p6", "p2")):
        outcome = await coordinator.execute(VOTE, "g1", voter, [target])
        assert outcome.ok
    assert EventType.CAPTAIN_TIEBREAK in outcome.event_types()
    assert game.captain_tiebreak == ["p1", "p2"]

    not_captain = await coordinator.execute(VOTE, "g1", "p4", ["p1"])
    assert not_captain.reason == ReasonCode.NOT_ELIGIBLE
    off_list = await coordinator.execute(VOTE, "g1", "p3", ["p4"])
    assert off_list.reason == ReasonCode.INVALID_TARGET

    decided = await coordinator.execute(VOTE, "g1", "p3", ["p1"])
    assert EventType.LYNCH in decided.event_types()
    assert not game.get_player("p1").alive
    assert game.phase == Phase.NIGHT
    assert game.sub_phase == SubPhase.WOLVES
    assert game.wolves_vote_state.eligible == ["p6"]


async def test_strict_captain_election_needs_a_single_leader(coordinator):
    game = await _first_day(coordinator, [W, V, V, V, V, W], victim="p5")
    await coordinator.execute(NEXT, "g1", "p1")

    empty = await coordinator.execute(ActionType.DECLARE_CAPTAIN, "g1", "p1")
    assert empty.reason == ReasonCode.NO_VOTES

    await coordinator.execute(ActionType.CAPTAIN_VOTE, "g1", "p2", ["p3"])
    await coordinator.execute(ActionType.CAPTAIN_VOTE, "g1", "p3", ["p2"])
    tied = await coordinator.execute(ActionType.DECLARE_CAPTAIN, "g1", "p1")
    assert tied.reason == ReasonCode.TIE
    assert game.sub_phase == SubPhase.CAPTAIN_VOTE
    assert game.captain_votes == {"p2": "p3", "p3": "p2"}


async def test_dead_players_cannot_vote(coordinator):
    await _first_day(coordinator, [W, V, V, V, V, W], victim="p5")
    await coordinator.execute(NEXT, "g1", "p1")
    outcome = await coordinator.execute(ActionType.CAPTAIN_VOTE, "g1", "p5", ["p2"])
    assert outcome.reason == ReasonCode.PLAYER_ELIMINATED


async def test_only_host_advances(coordinator):
    await _first_day(coordinator, [W, V, V, V, V, W], victim="p5")
    outcome = await coordinator.execute(NEXT, "g1", "p2")
    assert outcome.reason == ReasonCode.NOT_HOST


async def test_day_vote_timeout_on_tie_lynches_nobody(coordinator):
    game = await _first_day(coordinator, [W, V, V, V, V, W], victim="p5")
    for _ in range(3):
        await coordinator.execute(NEXT, "g1", "p1")
    assert game.sub_phase == SubPhase.VOTE
    assert coordinator.timers.pending("g1", TimerKind.DAY_VOTE) is not None

    await coordinator.execute(VOTE, "g1", "p2", ["p1"])
    await coordinator.execute(VOTE, "g1", "p3", ["p6"])

    token = TimerToken(kind=TimerKind.DAY_VOTE, day_count=1, sub_phase=SubPhase.VOTE)
    outcome = await coordinator.handle_timeout("g1", token)
    assert EventType.NO_LYNCH in outcome.event_types()
    assert all(p.alive for p in game.players if p.id != "p5")
    assert game.phase == Phase.NIGHT
    assert coordinator.timers.pending("g1", TimerKind.DAY_VOTE) is None
    assert coordinator.timers.pending("g1", TimerKind.NIGHT_ACTION) is not None


async def test_lynching_the_last_wolf_ends_the_game(coordinator, store, notifier):
    game = await _first_day(coordinator, [W, V, V, V, V], victim="p2")
    for _ in range(3):
        await coordinator.execute(NEXT, "g1", "p1")

    for voter, target in (("p1", "p3"), ("p3", "p1"), ("p4", "p1")):
        await coordinator.execute(VOTE, "g1", voter, [target])
    final = await coordinator.execute(VOTE, "g1", "p5", ["p1"])

    assert EventType.VICTORY in final.event_types()
    assert game.phase == Phase.ENDED
    assert game.winner == Winner.VILLAGE
    assert store.history[0]["winner"] == "village"
    assert EventType.VICTORY in notifier.types()
    for kind in TimerKind:
        assert coordinator.timers.pending("g1", kind) is None

    after = await coordinator.execute(VOTE, "g1", "p3", ["p4"])
    assert after.status == OutcomeStatus.REJECTED
    assert after.reason == ReasonCode.GAME_ENDED


async def test_no_votes_during_hunter_shot(coordinator):
    game = await _first_day(coordinator, [W, V, V, V, Role.HUNTER, W], victim="p2")
    for _ in range(3):
        await coordinator.execute(NEXT, "g1", "p1")
    for voter in ("p1", "p3", "p4", "p6"):
        await coordinator.execute(VOTE, "g1", voter, ["p5"])
    lynched = await coordinator.execute(VOTE, "g1", "p5", ["p3"])
    assert EventType.HUNTER_MUST_SHOOT in lynched.event_types()
    assert game.pending_advance
    assert game.sub_phase == SubPhase.VOTE

    blocked = await coordinator.execute(VOTE, "g1", "p3", ["p1"])
    assert blocked.reason == ReasonCode.HUNTER_MUST_SHOOT

    shot = await coordinator.execute(ActionType.SHOOT, "g1", "p5", ["p1"])
    assert shot.ok
    assert game.phase == Phase.NIGHT
    assert not game.pending_advance


async def test_hunter_timeout_replays_the_advance(coordinator):
    game = await _first_day(coordinator, [W, V, V, V, Role.HUNTER, W], victim="p5")
    assert game.hunter_must_shoot == "p5"

    blocked = await coordinator.execute(NEXT, "g1", "p1")
    assert blocked.ok
    assert game.pending_advance and game.sub_phase == SubPhase.WAKE

    token = TimerToken(kind=TimerKind.HUNTER, day_count=1, subject="p5")
    outcome = await coordinator.handle_timeout("g1", token)
    assert EventType.HUNTER_TIMEOUT in outcome.event_types()
    assert game.hunter_must_shoot is None
    assert game.sub_phase == SubPhase.CAPTAIN_VOTE

    again = await coordinator.handle_timeout("g1", token)
    assert again.reason == ReasonCode.ALREADY_RESOLVED
