"""Data models for the Mafia bot."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class GameStatus(str, Enum):
    """Lifecycle status of a game."""
    PREPARING = "preparing"
    RUNNING = "running"
    PAUSED = "paused"
    ABANDONED = "abandoned"
    FINISHED = "finished"


class TimeOfDay(str, Enum):
    """Part of the current game-day."""
    MORNING = "morning"
    DAY = "day"
    EVENING = "evening"
    NIGHT = "night"


class PlayerStatus(str, Enum):
    """Status of a roster entry."""
    ALIVE = "alive"
    DEAD = "dead"
    MOD = "mod"
    SPECTATOR = "spectator"
    UNVOTE = "unvote"  # placeholder target used to rescind a vote
    NOLYNCH = "nolynch"  # placeholder target for "lynch no one today"
    OTHER = "other"


class ActionKind(str, Enum):
    """Kinds of recorded player actions."""
    VOTE = "vote"
    DOUBLE_VOTE = "doubleVote"
    NO_LYNCH = "noLynch"
    KILL = "kill"
    VISIT = "visit"
    GUARD = "guard"


VOTE_KINDS = (ActionKind.VOTE, ActionKind.DOUBLE_VOTE, ActionKind.NO_LYNCH)
PLACEHOLDER_STATUSES = (PlayerStatus.UNVOTE, PlayerStatus.NOLYNCH)

LOVED = 1
VANILLA = 0
HATED = -1


@dataclass
class Game:
    """A game played in one thread."""
    id: int
    status: GameStatus
    day: int
    time_of_day: TimeOfDay
    name: Optional[str] = None


@dataclass
class Player:
    """A forum user. `name` is the canonical lowercase form."""
    id: int
    name: str
    proper_name: str


@dataclass
class RosterEntry:
    """Membership of a player in a game."""
    game_id: int
    player_id: int
    status: PlayerStatus
    vote_weight: int = 1
    lynch_modifier: int = VANILLA
    player: Optional[Player] = None

    @property
    def is_alive(self) -> bool:
        return self.status == PlayerStatus.ALIVE

    @property
    def is_mod(self) -> bool:
        return self.status == PlayerStatus.MOD

    @property
    def is_placeholder(self) -> bool:
        return self.status in PLACEHOLDER_STATUSES


@dataclass
class Action:
    """A single recorded player command tied to a game-day and post."""
    game_id: int
    day: int
    post: int
    player_id: int
    kind: ActionKind
    target_id: Optional[int] = None
    retracted_in_post: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_current(self) -> bool:
        return self.retracted_in_post is None

    @property
    def is_vote(self) -> bool:
        return self.kind in VOTE_KINDS


@dataclass
class InboundCommand:
    """One command relayed from a forum post by the bot transport."""
    game_id: int
    post: int
    actor: str
    command: str
    args: List[str] = field(default_factory=list)


@dataclass
class CommandResult:
    """Outcome of a command, handed to the notifier."""
    success: bool
    message: str
    command: Optional[str] = None
    lynched: Optional[str] = None
    error: Optional[Exception] = None
    data: Optional[Any] = None


@dataclass
class VoteRecord:
    """One vote as shown in a vote history list."""
    voter: str
    post: int
    retracted_in_post: Optional[int] = None

    @property
    def retracted(self) -> bool:
        return self.retracted_in_post is not None


@dataclass
class TargetVotes:
    """Votes received by one target during a day."""
    target: str
    count: int
    threshold: Optional[int]
    records: List[VoteRecord] = field(default_factory=list)


@dataclass
class VoteSummary:
    """Everything needed to render the vote count for a day."""
    day: int
    num_players: int
    to_lynch: int
    targets: List[TargetVotes] = field(default_factory=list)
    not_voting: List[str] = field(default_factory=list)

    @property
    def tally(self) -> Dict[str, int]:
        return {t.target: t.count for t in self.targets if t.count}


@dataclass
class PlayerList:
    """Living, dead and moderating members of a game."""
    living: List[str] = field(default_factory=list)
    dead: List[str] = field(default_factory=list)
    mods: List[str] = field(default_factory=list)
