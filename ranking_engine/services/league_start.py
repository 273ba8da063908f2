"""League start gameweek resolution.

Resolution order (first match wins):
1. Name-based override table (configuration data). The independent-track
   sentinel (999 by default) marks a league that counts all of its own
   gameweeks; callers must not compare it numerically.
2. The league's stored start_gw.
3. Derived from created_at: the first completed gameweek whose prediction
   deadline (first kickoff - buffer) is strictly after the creation time.

"Strictly after" is the single boundary policy: a league created exactly at
a deadline missed that gameweek. The same predicate answers whether a
gameweek is still open for new leagues/members.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta

from ranking_engine.services.models import League
from ranking_engine.services.stores import Clock, GameweekStore, OutcomeStore, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_BUFFER = timedelta(minutes=75)
DEFAULT_INDEPENDENT_TRACK_SENTINEL = 999


def _as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def is_before_deadline(moment: datetime, deadline: datetime) -> bool:
    """Boundary rule shared by start resolution and joinability checks."""
    return _as_utc(moment) < _as_utc(deadline)


class LeagueStartResolver:
    """Resolves the first gameweek counting toward a league's standings."""

    def __init__(
        self,
        gameweeks: GameweekStore,
        outcomes: OutcomeStore,
        overrides: Mapping[str, int] | None = None,
        deadline_buffer: timedelta = DEFAULT_DEADLINE_BUFFER,
        independent_track_sentinel: int = DEFAULT_INDEPENDENT_TRACK_SENTINEL,
        clock: Clock = utc_now,
    ):
        self.gameweeks = gameweeks
        self.outcomes = outcomes
        self.overrides = dict(overrides or {})
        self.deadline_buffer = deadline_buffer
        self.independent_track_sentinel = independent_track_sentinel
        self.clock = clock
        self._kickoffs: dict[int, datetime] = {}

    def is_independent_track(self, start_gw: int) -> bool:
        return start_gw == self.independent_track_sentinel

    def deadline_for(self, first_kickoff: datetime) -> datetime:
        return _as_utc(first_kickoff) - self.deadline_buffer

    async def _first_kickoffs(self, gameweeks: list[int]) -> dict[int, datetime]:
        """Fetch (and memoize) first kickoff times for the given gameweeks."""
        missing = [gw for gw in gameweeks if gw not in self._kickoffs]
        if missing:
            fetched = await self.gameweeks.get_first_kickoffs(missing)
            self._kickoffs.update(fetched)
        return {gw: self._kickoffs[gw] for gw in gameweeks if gw in self._kickoffs}

    async def _completed_gameweeks(self) -> list[int]:
        rows = await self.outcomes.get_outcomes()
        return sorted({row.gameweek for row in rows})

    async def resolve_start_gw(
        self,
        league: League,
        current_gw: int,
        completed_gameweeks: Iterable[int] | None = None,
    ) -> int:
        """Determine the earliest gameweek counting toward a league's standings.

        Args:
            league: League record (name, created_at, optional start_gw)
            current_gw: Current gameweek number
            completed_gameweeks: Gameweeks with at least one outcome; loaded
                from the Outcome Store when not supplied

        Returns:
            Start gameweek, or the independent-track sentinel
        """
        override = self.overrides.get(league.name)
        if override is not None:
            logger.debug(f"League {league.id} start overridden by name: GW{override}")
            return override

        if league.start_gw is not None:
            return league.start_gw

        if league.created_at is None:
            return current_gw

        if completed_gameweeks is None:
            completed = await self._completed_gameweeks()
        else:
            completed = sorted(set(completed_gameweeks))

        if not completed:
            return current_gw

        kickoffs = await self._first_kickoffs(completed)
        for gw in completed:
            kickoff = kickoffs.get(gw)
            if kickoff is None:
                continue
            if is_before_deadline(league.created_at, self.deadline_for(kickoff)):
                return gw

        return completed[-1] + 1

    async def deadline_for_gameweek(self, gameweek: int) -> datetime | None:
        """Prediction deadline for a gameweek, or None if it has no kickoff yet."""
        kickoffs = await self._first_kickoffs([gameweek])
        kickoff = kickoffs.get(gameweek)
        return self.deadline_for(kickoff) if kickoff is not None else None

    async def is_gameweek_open(self, gameweek: int) -> bool:
        """Whether a league created now (or a member joining now) makes this gameweek."""
        deadline = await self.deadline_for_gameweek(gameweek)
        if deadline is None:
            return True
        return is_before_deadline(self.clock(), deadline)
