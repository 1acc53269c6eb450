import pytest

from agents.wolf_vote import (
    TallyAction, create_vote_state, get_majority, plurality, process_vote,
    register_vote, resolve_on_timeout,
)


@pytest.mark.parametrize("eligible,majority", [(0, 1), (1, 1), (2, 2), (3, 2), (4, 3), (5, 3)])
def test_get_majority(eligible, majority):
    assert get_majority(eligible) == majority


def test_three_wolves_kill_on_second_matching_vote():
    state = create_vote_state(["w1", "w2", "w3"])
    register_vote(state, "w1", "v1")
    assert process_vote(state).action == TallyAction.PENDING

    register_vote(state, "w2", "v1")
    outcome = process_vote(state)
    assert outcome.action == TallyAction.KILL
    assert outcome.target_id == "v1"
    assert outcome.votes_for_target == 2
    assert state.resolved


def test_changed_vote_overwrites_previous():
    state = create_vote_state(["w1", "w2", "w3"])
    register_vote(state, "w1", "v1")
    assert register_vote(state, "w1", "v2") == 1
    assert state.votes == {"w1": "v2"}


def test_split_pack_gets_a_second_round_then_no_kill():
    state = create_vote_state(["w1", "w2", "w3", "w4"])
    for wolf, target in (("w1", "a"), ("w2", "a"), ("w3", "b"), ("w4", "b")):
        register_vote(state, wolf, target)
    outcome = process_vote(state)
    assert outcome.action == TallyAction.ADVANCE_ROUND
    assert state.round == 2
    assert state.votes == {}
    assert not state.resolved

    for wolf, target in (("w1", "a"), ("w2", "a"), ("w3", "b"), ("w4", "b")):
        register_vote(state, wolf, target)
    assert process_vote(state).action == TallyAction.NO_KILL
    assert state.resolved


def test_resolved_state_ignores_votes():
    state = create_vote_state(["w1"])
    register_vote(state, "w1", "v1")
    assert process_vote(state).action == TallyAction.KILL
    assert register_vote(state, "w1", "v2") is None
    assert process_vote(state).action == TallyAction.ALREADY_RESOLVED


def test_timeout_uses_plurality():
    state = create_vote_state(["w1", "w2", "w3", "w4"])
    register_vote(state, "w1", "a")
    register_vote(state, "w2", "a")
    register_vote(state, "w3", "b")
    outcome = resolve_on_timeout(state)
    assert outcome.action == TallyAction.KILL
    assert outcome.target_id == "a"
    assert state.resolved


@pytest.mark.parametrize("votes", [{}, {"w1": "a", "w2": "b"}])
def test_timeout_tie_or_silence_is_no_kill(votes):
    state = create_vote_state(["w1", "w2", "w3"])
    for wolf, target in votes.items():
        register_vote(state, wolf, target)
    assert resolve_on_timeout(state).action == TallyAction.NO_KILL


def test_plurality_weights_and_order():
    leaders, tally = plurality({"c": "x", "v1": "y", "v2": "y"}, weights={"c": 2})
    assert leaders == ["x", "y"]
    assert tally == {"x": 2, "y": 2}
    assert plurality({}) == ([], {})
