from agents.night_ledger import NightActionLedger, WOLF_PACK_ACTOR
from models.game import ActionType, GameState


async def test_record_once_then_duplicate(store):
    ledger = NightActionLedger(store)
    game = GameState(game_id="g1", host_id="p1")

    session = store.session("g1")
    first = await ledger.record_once(session, 0, ActionType.SEE, "p3", "p1")
    again = await ledger.record_once(session, 0, ActionType.SEE, "p3", "p2")
    assert first.applied and not first.duplicate
    assert again.duplicate and not again.applied
    await session.commit(game)

    # Committed entries are seen by later sections too
    later = await ledger.record_once(store.session("g1"), 0, ActionType.SEE, "p3", "p4")
    assert later.duplicate

    entries = await ledger.entries("g1")
    assert len(entries) == 1
    assert entries[0].target_id == "p1"


async def test_other_round_or_actor_is_fresh(store):
    ledger = NightActionLedger(store)
    session = store.session("g1")
    assert (await ledger.record_once(session, 0, ActionType.KILL, WOLF_PACK_ACTOR, "p4")).applied
    assert (await ledger.record_once(session, 2, ActionType.KILL, WOLF_PACK_ACTOR, "p5")).applied
    assert (await ledger.record_once(session, 0, ActionType.PROTECT, "p3", "p4")).applied
    await session.commit(GameState(game_id="g1", host_id="p1"))

    assert [e.round for e in await ledger.entries("g1", 2)] == [2]
    assert len(await ledger.entries("g1")) == 3


async def test_discarded_session_leaves_no_entry(store):
    ledger = NightActionLedger(store)
    session = store.session("g1")
    await ledger.record_once(session, 0, ActionType.SEE, "p3", "p1")
    session.discard()

    assert await ledger.entries("g1") == []
    fresh = await ledger.record_once(store.session("g1"), 0, ActionType.SEE, "p3", "p1")
    assert fresh.applied
