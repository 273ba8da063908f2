"""Domain types shared by the ranking engine.

Raw inputs (picks, outcomes, leagues, submissions, live scores) are read from
the stores; everything else is derived on demand and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

Outcome = Literal["H", "D", "A"]
FormResult = Literal["W", "D", "L"]

VALID_OUTCOMES: frozenset[str] = frozenset({"H", "D", "A"})

# Live score statuses that count as a provisional result
PROVISIONAL_STATUSES = frozenset({"IN_PLAY", "PAUSED", "FINISHED"})
FINISHED_STATUS = "FINISHED"


# =============================================================================
# Raw inputs
# =============================================================================


@dataclass(slots=True, frozen=True)
class Pick:
    """A user's predicted outcome for one fixture."""

    user_id: str
    gameweek: int
    fixture_index: int
    pick: str  # "H", "D" or "A"; anything else is ignored when scoring


@dataclass(slots=True, frozen=True)
class OutcomeRow:
    """An official result row. Either `result` or both goal counts may be set."""

    gameweek: int
    fixture_index: int
    result: str | None = None
    home_goals: int | None = None
    away_goals: int | None = None


@dataclass(slots=True, frozen=True)
class Submission:
    """Marks that a user locked their picks for a gameweek."""

    user_id: str
    gameweek: int
    submitted_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class LiveScore:
    """In-progress or final score for one fixture of a gameweek."""

    gameweek: int
    fixture_index: int
    home_score: int
    away_score: int
    status: str
    minute: int | None = None


@dataclass(slots=True, frozen=True)
class Member:
    """A league member at the time the membership snapshot was taken."""

    user_id: str
    name: str


@dataclass(slots=True)
class League:
    """A mini-league with its membership snapshot."""

    id: str
    name: str
    created_at: datetime | None = None
    start_gw: int | None = None
    members: list[Member] = field(default_factory=list)

    @property
    def member_ids(self) -> list[str]:
        return [m.user_id for m in self.members]

    def member_name(self, user_id: str) -> str:
        for m in self.members:
            if m.user_id == user_id:
                return m.name
        return "User"


# =============================================================================
# Derived results
# =============================================================================


@dataclass(slots=True)
class GwMemberScore:
    """One member's result for one league gameweek."""

    user_id: str
    score: int = 0
    unicorns: int = 0


@dataclass(slots=True, frozen=True)
class GameweekTableRow:
    """A row of the current-gameweek table view."""

    user_id: str
    name: str
    score: int
    unicorns: int


@dataclass(slots=True)
class SeasonStanding:
    """Cumulative mini-league standing for one member."""

    user_id: str
    name: str
    mlt_points: int = 0
    unicorns: int = 0
    ocp: int = 0
    wins: int = 0
    draws: int = 0
    form: list[FormResult] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class RankResult:
    """A user's rank within a comparison population."""

    rank: int
    total: int
    is_tied: bool
    percentile: int
    percentile_label: str


@dataclass(slots=True, frozen=True)
class RankMovement:
    """Rank before and after the latest gameweek (positive change = climbed)."""

    before: int | None
    after: int | None
    change: int | None


@dataclass(slots=True, frozen=True)
class GameweekPoints:
    gameweek: int
    points: int


@dataclass(slots=True, frozen=True)
class WeeklyPar:
    """A user's gameweek score against the average of everyone who played."""

    gameweek: int
    user_points: int
    average_points: float


@dataclass(slots=True, frozen=True)
class Streak:
    """Consecutive gameweeks meeting a condition (length 0 = never)."""

    length: int
    start_gw: int | None = None
    end_gw: int | None = None


@dataclass(slots=True)
class SeasonStats:
    """Per-user season figures derived from every user's gameweek scores."""

    gameweeks_played: int
    average_points: float | None
    best_gameweek: GameweekPoints | None
    lowest_gameweek: GameweekPoints | None
    best_top_quarter_streak: Streak
    weekly_par: list[WeeklyPar] = field(default_factory=list)
