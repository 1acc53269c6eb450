from models.game import Phase, SubPhase
from models.phases import (
    NIGHT_ORDER, TransitionPolicy, VALID_TRANSITIONS, is_valid_main_transition,
    is_valid_transition,
)


def test_night_order_successors():
    assert is_valid_transition(SubPhase.WOLVES, SubPhase.SEER)
    assert is_valid_transition(SubPhase.WOLVES, SubPhase.WAKE)
    assert not is_valid_transition(SubPhase.SEER, SubPhase.WOLVES)
    assert not is_valid_transition(SubPhase.WAKE, SubPhase.VOTE)


def test_vote_loops_back_to_any_night_opener():
    for sub_phase in (SubPhase.THIEF, SubPhase.CUPID, SubPhase.PROTECTOR, SubPhase.WOLVES):
        assert is_valid_transition(SubPhase.VOTE, sub_phase)
    assert not is_valid_transition(SubPhase.VOTE, SubPhase.SEER)


def test_ended_reachable_from_everywhere():
    for sub_phase in VALID_TRANSITIONS:
        assert is_valid_transition(sub_phase, Phase.ENDED)
    assert is_valid_transition(None, "ended", policy=TransitionPolicy.STRICT)


def test_self_transition_is_legal():
    assert is_valid_transition(SubPhase.WITCH, SubPhase.WITCH)


def test_unknown_origin_follows_policy():
    assert is_valid_transition(None, SubPhase.WOLVES)
    assert is_valid_transition("bogus", SubPhase.WOLVES)
    assert not is_valid_transition(None, SubPhase.WOLVES, policy=TransitionPolicy.STRICT)
    assert not is_valid_transition("bogus", SubPhase.WOLVES, policy=TransitionPolicy.STRICT)


def test_unknown_target_is_rejected():
    assert not is_valid_transition(None, "sunrise")


def test_string_values_accepted():
    assert is_valid_transition("wolves", "witch")
    assert not is_valid_transition("seer", "thief")


def test_main_transitions():
    assert is_valid_main_transition(Phase.NIGHT, Phase.DAY)
    assert is_valid_main_transition("day", "night")
    assert is_valid_main_transition(Phase.DAY, Phase.ENDED)
    assert not is_valid_main_transition(Phase.ENDED, Phase.NIGHT)
    assert not is_valid_main_transition("dusk", Phase.NIGHT)


def test_every_night_sub_phase_has_a_table_entry():
    assert all(sub_phase in VALID_TRANSITIONS for sub_phase in NIGHT_ORDER)
