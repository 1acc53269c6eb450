from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid

from models.errors import ReasonCode


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    WEREWOLF = "werewolf"
    WHITE_WOLF = "white_wolf"  # Hunts with the pack, may devour a werewolf every second night
    SEER = "seer"
    WITCH = "witch"            # One life potion, one death potion per game
    HUNTER = "hunter"          # Shoots someone when eliminated
    CUPID = "cupid"            # Links two lovers on the first night
    PROTECTOR = "protector"    # Shields one player per night, never the same twice in a row
    THIEF = "thief"            # May swap for one of two surplus roles on the first night
    VILLAGER = "villager"


WOLF_ROLES = frozenset({Role.WEREWOLF, Role.WHITE_WOLF})


class Phase(str, Enum):
    NIGHT = "night"
    DAY = "day"
    ENDED = "ended"


class SubPhase(str, Enum):
    # Night, in waking order
    THIEF = "thief"
    CUPID = "cupid"
    PROTECTOR = "protector"
    WOLVES = "wolves"
    WHITE_WOLF = "white_wolf"
    WITCH = "witch"
    SEER = "seer"
    # Day
    WAKE = "wake"
    CAPTAIN_VOTE = "captain_vote"
    DELIBERATION = "deliberation"
    VOTE = "vote"


# Role whose holder acts in each night sub-phase
SUB_PHASE_ROLES: Dict[SubPhase, frozenset] = {
    SubPhase.THIEF: frozenset({Role.THIEF}),
    SubPhase.CUPID: frozenset({Role.CUPID}),
    SubPhase.PROTECTOR: frozenset({Role.PROTECTOR}),
    SubPhase.WOLVES: WOLF_ROLES,
    SubPhase.WHITE_WOLF: frozenset({Role.WHITE_WOLF}),
    SubPhase.WITCH: frozenset({Role.WITCH}),
    SubPhase.SEER: frozenset({Role.SEER}),
}


class Winner(str, Enum):
    VILLAGE = "village"
    WOLVES = "wolves"
    LOVERS = "lovers"
    DRAW = "draw"


class ActionType(str, Enum):
    KILL = "kill"
    WHITE_WOLF_KILL = "white_wolf_kill"
    PROTECT = "protect"
    SAVE = "save"
    POISON = "poison"
    SEE = "see"
    LOVE = "love"
    SHOOT = "shoot"
    STEAL = "steal"
    SKIP = "skip"
    VOTE = "vote"
    CAPTAIN_VOTE = "captain_vote"
    DECLARE_CAPTAIN = "declare_captain"
    NEXT_PHASE = "next_phase"
    # Synthetic action fired by the timers collaborator
    TIMEOUT = "timeout"


class VoteType(str, Enum):
    WOLVES = "wolves"
    VILLAGE = "village"
    CAPTAIN = "captain"


class Potion(str, Enum):
    LIFE = "life"
    DEATH = "death"


class TimerKind(str, Enum):
    NIGHT_ACTION = "night_action"
    DAY_VOTE = "day_vote"
    HUNTER = "hunter"
    LOBBY = "lobby"


class EventType(str, Enum):
    PLAYER_JOINED = "player_joined"
    GAME_STARTED = "game_started"
    ROLE_ASSIGNED = "role_assigned"
    PHASE_CHANGE = "phase_change"
    NIGHT_VICTIM = "night_victim"   # told privately to the witch when she wakes
    WOLF_VOTE = "wolf_vote"
    KILL = "kill"
    NO_KILL = "no_kill"
    ADVANCE_ROUND = "advance_round"
    WHITE_WOLF_KILL = "white_wolf_kill"
    PROTECTED = "protected"
    WITCH_SAVE = "witch_save"
    WITCH_POISON = "witch_poison"
    SEER_RESULT = "seer_result"
    LOVERS_LINKED = "lovers_linked"
    ROLE_STOLEN = "role_stolen"
    SKIPPED = "skipped"
    DEATH = "death"
    HUNTER_MUST_SHOOT = "hunter_must_shoot"
    HUNTER_SHOT = "hunter_shot"
    HUNTER_TIMEOUT = "hunter_timeout"
    AFK_TIMEOUT = "afk_timeout"
    VOTE_CAST = "vote_cast"
    CAPTAIN_VOTE_CAST = "captain_vote_cast"
    CAPTAIN_ELECTED = "captain_elected"
    CAPTAIN_TIEBREAK = "captain_tiebreak"
    LYNCH = "lynch"
    NO_LYNCH = "no_lynch"
    VICTORY = "victory"
    GAME_TERMINATED = "game_terminated"


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


# Default role pool (before villagers fill the remaining seats)
BASE_ROLE_POOL: List[Role] = [
    Role.WEREWOLF,
    Role.WEREWOLF,
    Role.SEER,
    Role.WITCH,
    Role.HUNTER,
]
CUPID_MIN_PLAYERS = 7
THIEF_EXTRA_ROLE_COUNT = 2


class PlayerState(BaseModel):
    id: str
    username: str
    role: Optional[Role] = None
    alive: bool = True
    in_love: bool = False
    joined_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_wolf(self) -> bool:
        return self.role in WOLF_ROLES

    def to_public(self) -> Dict[str, Any]:
        """Safe representation — omits role while the game is running."""
        return {
            "id": self.id,
            "username": self.username,
            "alive": self.alive,
        }


class WitchPotions(BaseModel):
    life: bool = True
    death: bool = True


class WolvesVoteState(BaseModel):
    round: int = 1
    votes: Dict[str, str] = {}      # wolf id → target id
    resolved: bool = False
    eligible: List[str] = []        # alive wolf ids snapshotted at round start


class GameState(BaseModel):
    game_id: str                    # channel identifier of the chat front-end
    host_id: str
    phase: Phase = Phase.NIGHT
    sub_phase: Optional[SubPhase] = None
    day_count: int = 0
    players: List[PlayerState] = []
    lovers: List[str] = []          # empty, or exactly two player ids
    wolves_vote_state: WolvesVoteState = Field(default_factory=WolvesVoteState)
    night_victim: Optional[str] = None
    white_wolf_kill_target: Optional[str] = None
    witch_potions: WitchPotions = Field(default_factory=WitchPotions)
    witch_save: bool = False
    witch_kill_target: Optional[str] = None
    protected_player_id: Optional[str] = None
    last_protected_player_id: Optional[str] = None
    captain_id: Optional[str] = None
    captain_votes: Dict[str, str] = {}
    village_votes: Dict[str, str] = {}
    captain_tiebreak: Optional[List[str]] = None
    hunter_must_shoot: Optional[str] = None
    pending_advance: bool = False   # advance suspended until the hunter has shot
    thief_extra_roles: List[Role] = []
    action_log: List[str] = []
    winner: Optional[Winner] = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    # True only while a gate section runs for this game; never persisted
    atomic_active: bool = Field(default=False, exclude=True)

    @property
    def started(self) -> bool:
        return self.started_at is not None

    def get_player(self, player_id: Optional[str]) -> Optional[PlayerState]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def alive_players(self) -> List[PlayerState]:
        return [p for p in self.players if p.alive]

    def alive_with_role(self, *roles: Role) -> List[PlayerState]:
        return [p for p in self.players if p.alive and p.role in roles]

    def has_alive_role(self, *roles: Role) -> bool:
        return bool(self.alive_with_role(*roles))

    def alive_wolves(self) -> List[PlayerState]:
        return [p for p in self.players if p.alive and p.is_wolf]

    def lover_of(self, player_id: str) -> Optional[str]:
        if len(self.lovers) == 2 and player_id in self.lovers:
            return self.lovers[1] if self.lovers[0] == player_id else self.lovers[0]
        return None

    def log_action(self, text: str) -> None:
        self.action_log.append(text)


class GameEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType
    round: int
    phase: Phase
    sub_phase: Optional[SubPhase] = None
    actor: Optional[str] = None
    target: Optional[str] = None
    data: Dict[str, Any] = {}
    visible_in_game: bool = True
    recipients: List[str] = []      # non-empty → private delivery to these players only
    timestamp: datetime = Field(default_factory=_utcnow)


class NightAction(BaseModel):
    game_id: str
    round: int
    action_type: ActionType
    actor_id: str
    target_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> str:
        return f"{self.round}:{self.action_type.value}:{self.actor_id}"


class VoteRecord(BaseModel):
    game_id: str
    voter_id: str
    target_id: str
    vote_type: VoteType
    round: int

    @property
    def key(self) -> str:
        return f"{self.vote_type.value}:{self.round}:{self.voter_id}"


class WriteResult(BaseModel):
    """Answer of every *Once / *IfChanged store operation."""
    applied: bool
    duplicate: bool = False

    @classmethod
    def fresh(cls) -> "WriteResult":
        return cls(applied=True, duplicate=False)

    @classmethod
    def no_op(cls) -> "WriteResult":
        return cls(applied=False, duplicate=True)


class TimerToken(BaseModel):
    """Identifies what a pending timer was scheduled for. A fired timer whose
    token no longer matches the game is stale and gets rejected."""
    kind: TimerKind
    day_count: int = 0
    sub_phase: Optional[SubPhase] = None
    subject: Optional[str] = None   # hunter id for HUNTER timers


class ActionOutcome(BaseModel):
    status: OutcomeStatus
    action: Optional[ActionType] = None     # None for lobby operations
    reason: Optional[ReasonCode] = None
    message: Optional[str] = None
    data: Dict[str, Any] = {}
    events: List[GameEvent] = []

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.APPLIED

    def event_types(self) -> List[EventType]:
        return [e.type for e in self.events]


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    game_id: str
    host_id: str
    host_name: str = "Host"


class CreateGameResponse(BaseModel):
    game_id: str
    host_id: str


class JoinGameRequest(BaseModel):
    player_id: str
    username: str


class StartGameRequest(BaseModel):
    host_id: str
    roles: Optional[List[Role]] = None


class ActionRequest(BaseModel):
    action: ActionType
    actor_id: str
    target_ids: List[str] = []
