"""
Vote Tally Engine — pure majority / plurality logic, no I/O.

Wolves vote collectively during the WOLVES sub-phase:
  • Majority = floor(eligible / 2) + 1  (2 → 2 unanimity, 3 → 2, 4 → 3).
  • Round 1: majority reached → immediate kill. Everyone voted, no majority → round 2.
  • Round 2: majority reached → kill. Everyone voted, no majority → no kill.
  • Timer expiry: plurality wins, strict tie or no votes → no kill.

The eligible set is snapshotted when the round opens, so a wolf dying
mid-round through an unrelated effect does not shift the threshold.
The caller persists votes and applies the victim; this module only mutates
the WolvesVoteState it is handed.
"""
from collections import Counter
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from models.game import WolvesVoteState


class TallyAction(str, Enum):
    KILL = "kill"
    NO_KILL = "no_kill"
    ADVANCE_ROUND = "advance_round"
    PENDING = "pending"
    ALREADY_RESOLVED = "already_resolved"


class TallyOutcome(BaseModel):
    action: TallyAction
    target_id: Optional[str] = None
    votes_for_target: Optional[int] = None
    majority_needed: Optional[int] = None


MAX_ROUNDS = 2


def get_majority(total_eligible: int) -> int:
    """Strict majority of the eligible voters. Two or fewer voters need unanimity."""
    if total_eligible <= 0:
        return 1
    if total_eligible <= 2:
        return total_eligible
    return total_eligible // 2 + 1


def create_vote_state(eligible: Iterable[str], round: int = 1) -> WolvesVoteState:
    return WolvesVoteState(round=round, votes={}, resolved=False, eligible=list(eligible))


def register_vote(state: WolvesVoteState, voter_id: str, target_id: str) -> Optional[int]:
    """Record (or overwrite) a vote. Returns the target's vote count, None once resolved."""
    if state.resolved:
        return None
    state.votes[voter_id] = target_id
    return sum(1 for t in state.votes.values() if t == target_id)


def check_majority(state: WolvesVoteState, total_eligible: int) -> Optional[Tuple[str, int]]:
    """First target whose count reaches the majority, in vote order."""
    majority = get_majority(total_eligible)
    counts: Dict[str, int] = {}
    for target_id in state.votes.values():
        counts[target_id] = counts.get(target_id, 0) + 1
        if counts[target_id] >= majority:
            return target_id, counts[target_id]
    return None


def all_voted(state: WolvesVoteState, eligible: Iterable[str]) -> bool:
    return all(voter in state.votes for voter in eligible)


def advance_round(state: WolvesVoteState) -> int:
    """Round 1 → 2: votes cleared, same eligible snapshot."""
    state.round = MAX_ROUNDS
    state.votes = {}
    return state.round


def process_vote(
    state: WolvesVoteState,
    eligible: Optional[List[str]] = None,
    total_eligible: Optional[int] = None,
) -> TallyOutcome:
    """Evaluate the state after a vote was registered.

    Defaults to the snapshot held in the state itself. Marks the state resolved
    on a terminal outcome (kill / no_kill).
    """
    if state.resolved:
        return TallyOutcome(action=TallyAction.ALREADY_RESOLVED)

    voters = list(state.eligible if eligible is None else eligible)
    total = len(voters) if total_eligible is None else total_eligible
    majority_needed = get_majority(total)

    winner = check_majority(state, total)
    if winner:
        state.resolved = True
        return TallyOutcome(
            action=TallyAction.KILL,
            target_id=winner[0],
            votes_for_target=winner[1],
            majority_needed=majority_needed,
        )

    if voters and all_voted(state, voters):
        if state.round < MAX_ROUNDS:
            advance_round(state)
            return TallyOutcome(action=TallyAction.ADVANCE_ROUND, majority_needed=majority_needed)
        state.resolved = True
        return TallyOutcome(action=TallyAction.NO_KILL, majority_needed=majority_needed)

    last_target = list(state.votes.values())[-1] if state.votes else None
    votes_for_target = (
        sum(1 for t in state.votes.values() if t == last_target) if last_target else 0
    )
    return TallyOutcome(
        action=TallyAction.PENDING,
        target_id=last_target,
        votes_for_target=votes_for_target,
        majority_needed=majority_needed,
    )


def plurality(
    votes: Dict[str, str], weights: Optional[Dict[str, int]] = None
) -> Tuple[List[str], Dict[str, int]]:
    """Weighted count of `votes` (voter → target).

    Returns (leaders, tally): every target sharing the top count, in first-vote
    order, and the full tally. No votes → ([], {}).
    """
    tally: Counter = Counter()
    for voter_id, target_id in votes.items():
        tally[target_id] += (weights or {}).get(voter_id, 1)
    if not tally:
        return [], {}
    top = max(tally.values())
    leaders = [target for target, count in tally.items() if count == top]
    return leaders, dict(tally)


def resolve_on_timeout(state: WolvesVoteState) -> TallyOutcome:
    """AFK fallback: plurality instead of majority. Resolves the state."""
    if state.resolved:
        return TallyOutcome(action=TallyAction.ALREADY_RESOLVED)

    state.resolved = True
    leaders, tally = plurality(state.votes)
    if len(leaders) != 1:
        return TallyOutcome(action=TallyAction.NO_KILL)
    return TallyOutcome(
        action=TallyAction.KILL,
        target_id=leaders[0],
        votes_for_target=tally[leaders[0]],
    )
