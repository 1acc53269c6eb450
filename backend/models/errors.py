"""
Error taxonomy shared by the engine, the gate and the routers.

- ActionRejected   precondition violation, expected traffic, nothing mutated
- DuplicateAction  replay of an action that was already applied
- PersistenceError the durable write failed, the attempt was rolled back
- GateTimeoutError a mutator overran its time budget, rolled back
"""
from enum import Enum
from typing import Optional


class ReasonCode(str, Enum):
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    GAME_EXISTS = "GAME_EXISTS"
    GAME_NOT_STARTED = "GAME_NOT_STARTED"
    GAME_ALREADY_STARTED = "GAME_ALREADY_STARTED"
    GAME_ENDED = "GAME_ENDED"
    GAME_FULL = "GAME_FULL"
    NOT_ENOUGH_PLAYERS = "NOT_ENOUGH_PLAYERS"
    INVALID_ROLES = "INVALID_ROLES"
    ALREADY_JOINED = "ALREADY_JOINED"
    NOT_IN_GAME = "NOT_IN_GAME"
    NOT_HOST = "NOT_HOST"
    WRONG_PHASE = "WRONG_PHASE"
    WRONG_ROLE = "WRONG_ROLE"
    PLAYER_ELIMINATED = "PLAYER_ELIMINATED"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    MISSING_TARGET = "MISSING_TARGET"
    INVALID_TARGET = "INVALID_TARGET"
    TARGET_DEAD = "TARGET_DEAD"
    INVALID_SELF_TARGET = "INVALID_SELF_TARGET"
    CANNOT_TARGET_WOLF = "CANNOT_TARGET_WOLF"
    CANNOT_PROTECT_SAME = "CANNOT_PROTECT_SAME"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    ALREADY_USED = "ALREADY_USED"
    NO_POTION = "NO_POTION"
    NO_VICTIM = "NO_VICTIM"
    HUNTER_CANNOT_SHOOT = "HUNTER_CANNOT_SHOOT"
    HUNTER_MUST_SHOOT = "HUNTER_MUST_SHOOT"
    SKIP_FORBIDDEN = "SKIP_FORBIDDEN"
    NO_VOTES = "NO_VOTES"
    TIE = "TIE"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"


class GameError(Exception):
    """Base class for every error raised by the game engine."""


class ActionRejected(GameError):
    def __init__(self, reason: ReasonCode, message: Optional[str] = None):
        self.reason = reason
        self.message = message or reason.value.replace("_", " ").capitalize()
        super().__init__(f"{reason.value}: {self.message}")


class DuplicateAction(GameError):
    """The same actor already performed this action (or cast this exact vote)."""

    def __init__(self, message: str = "Action already recorded"):
        self.message = message
        super().__init__(message)


class PersistenceError(GameError):
    """Durable write failed inside the gate; in-memory state was restored."""


class GateTimeoutError(GameError):
    """A mutator exceeded the gate's time budget and was abandoned."""


class ReentrantGateError(GameError):
    """A mutator tried to open a second section on the game it already holds."""
