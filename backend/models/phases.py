"""
Static phase tables — which sub-phase may follow which.

Night sub-phases are listed with every legal successor, so that a role with
no living holder can be skipped (WOLVES may jump straight to WAKE). The day
table loops VOTE back into whichever night sub-phase opens the next night.
Pure lookups, no game state.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from models.game import Phase, SubPhase


class TransitionPolicy(str, Enum):
    PERMISSIVE = "permissive"  # unknown/null origin may go anywhere (game bootstrap)
    STRICT = "strict"          # unknown/null origin is rejected


# Policy for transitions whose origin is null or not in the table.
# Permissive keeps the lobby → first night sub-phase bootstrap a plain
# transition; pass policy=TransitionPolicy.STRICT to lock it down.
UNKNOWN_FROM_POLICY = TransitionPolicy.PERMISSIVE


VALID_TRANSITIONS: Dict[SubPhase, FrozenSet[SubPhase]] = {
    # Night (order depends on alive roles, these are ALL valid successors)
    SubPhase.THIEF: frozenset({SubPhase.CUPID, SubPhase.PROTECTOR, SubPhase.WOLVES}),
    SubPhase.CUPID: frozenset({SubPhase.PROTECTOR, SubPhase.WOLVES}),
    SubPhase.PROTECTOR: frozenset({SubPhase.WOLVES}),
    SubPhase.WOLVES: frozenset({SubPhase.WHITE_WOLF, SubPhase.WITCH, SubPhase.SEER, SubPhase.WAKE}),
    SubPhase.WHITE_WOLF: frozenset({SubPhase.WITCH, SubPhase.SEER, SubPhase.WAKE}),
    SubPhase.WITCH: frozenset({SubPhase.SEER, SubPhase.WAKE}),
    SubPhase.SEER: frozenset({SubPhase.WAKE}),
    # Day
    SubPhase.WAKE: frozenset({SubPhase.CAPTAIN_VOTE, SubPhase.DELIBERATION}),
    SubPhase.CAPTAIN_VOTE: frozenset({SubPhase.DELIBERATION}),
    SubPhase.DELIBERATION: frozenset({SubPhase.VOTE}),
    SubPhase.VOTE: frozenset({SubPhase.WOLVES, SubPhase.CUPID, SubPhase.PROTECTOR, SubPhase.THIEF}),
}

MAIN_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.NIGHT: frozenset({Phase.DAY, Phase.ENDED}),
    Phase.DAY: frozenset({Phase.NIGHT, Phase.ENDED}),
    Phase.ENDED: frozenset(),
}

# Waking order, used by the state machine to pick the first applicable successor
NIGHT_ORDER = [
    SubPhase.THIEF,
    SubPhase.CUPID,
    SubPhase.PROTECTOR,
    SubPhase.WOLVES,
    SubPhase.WHITE_WOLF,
    SubPhase.WITCH,
    SubPhase.SEER,
]
DAY_ORDER = [
    SubPhase.WAKE,
    SubPhase.CAPTAIN_VOTE,
    SubPhase.DELIBERATION,
    SubPhase.VOTE,
]
NIGHT_SUB_PHASES = frozenset(NIGHT_ORDER)
DAY_SUB_PHASES = frozenset(DAY_ORDER)


def _coerce_sub_phase(value) -> Optional[SubPhase]:
    if isinstance(value, SubPhase):
        return value
    try:
        return SubPhase(value)
    except ValueError:
        return None


def _is_ended(value) -> bool:
    return value == Phase.ENDED or value == Phase.ENDED.value


def is_valid_transition(
    from_sub_phase: Union[SubPhase, str, None],
    to: Union[SubPhase, Phase, str],
    policy: Optional[TransitionPolicy] = None,
) -> bool:
    """Return True when `to` may follow `from_sub_phase`.

    ENDED is reachable from anywhere (victory can happen at any sub-phase) and
    re-entering the current sub-phase is always legal. An origin that is null
    or not in the table is decided by `policy` (default UNKNOWN_FROM_POLICY).
    """
    if _is_ended(to):
        return True
    if from_sub_phase is not None and from_sub_phase == to:
        return True

    target = _coerce_sub_phase(to)
    origin = _coerce_sub_phase(from_sub_phase) if from_sub_phase is not None else None
    allowed = VALID_TRANSITIONS.get(origin) if origin is not None else None

    if allowed is None:
        effective = policy or UNKNOWN_FROM_POLICY
        return effective == TransitionPolicy.PERMISSIVE and target is not None
    return target in allowed


def is_valid_main_transition(from_phase: Union[Phase, str], to_phase: Union[Phase, str]) -> bool:
    """NIGHT ↔ DAY, either → ENDED. ENDED has no successors."""
    try:
        origin = Phase(from_phase)
        target = Phase(to_phase)
    except ValueError:
        return False
    return target in MAIN_TRANSITIONS[origin]
