"""Mini-league standings service.

Loads the inputs for one league (or all of a user's leagues), runs the pure
scoring fold and caches the result. Per-league loads fan out concurrently
with bounded concurrency; a failing league is reported as unavailable and
never blocks the others. A league is written to the cache only after its
fold succeeded, and the user-level result only when every league did.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from ranking_engine.config import Settings, get_settings
from ranking_engine.services.league_start import LeagueStartResolver
from ranking_engine.services.models import (
    GameweekTableRow,
    League,
    SeasonStanding,
)
from ranking_engine.services.result_cache import ResultCache, get_result_cache
from ranking_engine.services.scoring import (
    OutcomeIndex,
    aggregate_season,
    build_outcome_index,
    gameweek_table,
    gameweek_winners,
    is_gameweek_decided,
    outcomes_from_live_scores,
    relevant_gameweeks,
    score_gameweek,
)
from ranking_engine.services.stores import (
    DataSources,
    DataUnavailableError,
    fetch_all_picks,
)

logger = logging.getLogger(__name__)


class LeagueNotFoundError(Exception):
    """Raised when a league does not exist."""


# =============================================================================
# Result types
# =============================================================================


@dataclass(slots=True)
class LeagueStandings:
    """Season standing for one league."""

    league_id: str
    league_name: str
    gameweek: int  # current gameweek the standing was computed at
    start_gw: int
    relevant_gameweeks: list[int]
    standings: list[SeasonStanding]
    latest_gameweek: int | None = None
    latest_winners: list[str] = field(default_factory=list)
    stale: bool = False

    def position_of(self, user_id: str) -> int | None:
        """1-based table position of a member, or None if not a member."""
        for position, standing in enumerate(self.standings, start=1):
            if standing.user_id == user_id:
                return position
        return None


@dataclass(slots=True)
class GameweekTable:
    """Current-gameweek table for one league."""

    league_id: str
    gameweek: int
    rows: list[GameweekTableRow]
    winners: list[str]
    provisional: bool = False


@dataclass(slots=True)
class UserLeagueStandings:
    """Standings for every league a user belongs to, with explicit gaps."""

    user_id: str
    gameweek: int
    leagues: list[LeagueStandings]
    unavailable: list[str] = field(default_factory=list)

    @property
    def stale(self) -> bool:
        return any(league.stale for league in self.leagues)


@dataclass(slots=True)
class GameweekDeadline:
    gameweek: int
    deadline: datetime | None
    is_open: bool


@dataclass(slots=True)
class SeasonContext:
    """Inputs shared by every league of one request."""

    current_gw: int
    outcome_index: OutcomeIndex
    completed_gameweeks: list[int]
    current_gw_decided: bool


# =============================================================================
# Service
# =============================================================================


class LeagueStandingsService:
    """Service for mini-league gameweek tables and season standings."""

    def __init__(
        self,
        sources: DataSources,
        cache: ResultCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.sources = sources
        self.cache = cache if cache is not None else get_result_cache()
        self.settings = settings if settings is not None else get_settings()
        self.resolver = LeagueStartResolver(
            sources.gameweeks,
            sources.outcomes,
            overrides=self.settings.league_start_overrides,
            deadline_buffer=timedelta(minutes=self.settings.deadline_buffer_minutes),
            independent_track_sentinel=self.settings.independent_track_sentinel,
            clock=sources.clock,
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _get_league(self, league_id: str) -> League:
        league = await self.sources.memberships.get_league(league_id)
        if league is None:
            raise LeagueNotFoundError(f"League {league_id} not found")
        return league

    async def _live_outcomes(self, gameweek: int, finished_only: bool) -> dict | None:
        """Outcomes derived from live scores, or None if the feed failed.

        Live scores only supplement official results, so a failing feed is
        logged and never fails the request.
        """
        if self.sources.live_scores is None:
            return {}
        try:
            live = await self.sources.live_scores.get_live_scores(gameweek)
        except Exception as e:
            logger.warning(f"Live scores unavailable for GW{gameweek}: {type(e).__name__}: {e}")
            return None
        return outcomes_from_live_scores(live, gameweek, finished_only=finished_only)

    async def _load_context(self, current_gw: int) -> SeasonContext:
        """Load outcomes and fixture counts once per request."""
        outcome_rows, fixture_counts, finished_live = await asyncio.gather(
            self.sources.outcomes.get_outcomes(),
            self.sources.gameweeks.get_fixture_counts(),
            self._live_outcomes(current_gw, finished_only=True),
        )
        official = build_outcome_index(outcome_rows)
        index = official.with_provisional(current_gw, finished_live) if finished_live else official

        return SeasonContext(
            current_gw=current_gw,
            outcome_index=index,
            completed_gameweeks=official.gameweeks(),
            current_gw_decided=is_gameweek_decided(
                index, current_gw, fixture_counts.get(current_gw)
            ),
        )

    async def _compute_league(self, league: League, ctx: SeasonContext) -> LeagueStandings:
        """Resolve the start gameweek, fetch the league's data and fold it."""
        start_gw = await self.resolver.resolve_start_gw(
            league, ctx.current_gw, ctx.completed_gameweeks
        )
        relevant = relevant_gameweeks(
            ctx.completed_gameweeks,
            start_gw,
            current_gw=ctx.current_gw,
            current_gw_decided=ctx.current_gw_decided,
            independent_track_sentinel=self.settings.independent_track_sentinel,
        )
        min_members = self.settings.unicorn_min_members

        picks: list = []
        submissions: list = []
        if relevant and league.members:
            picks, submissions = await asyncio.gather(
                fetch_all_picks(
                    self.sources.picks,
                    league.member_ids,
                    relevant[0],
                    relevant[-1],
                    self.settings.pick_page_size,
                ),
                self.sources.submissions.get_submissions(
                    relevant[0], relevant[-1], league.member_ids
                ),
            )

        standings = aggregate_season(
            league, relevant, picks, submissions, ctx.outcome_index, min_members
        )

        latest = relevant[-1] if relevant else None
        winners: list[str] = []
        if latest is not None:
            latest_rows = score_gameweek(
                league, latest, picks, submissions, ctx.outcome_index, min_members
            )
            winners = gameweek_winners(latest_rows)

        return LeagueStandings(
            league_id=league.id,
            league_name=league.name,
            gameweek=ctx.current_gw,
            start_gw=start_gw,
            relevant_gameweeks=relevant,
            standings=standings,
            latest_gameweek=latest,
            latest_winners=winners,
        )

    def _stale_user_standings(
        self, user_id: str, cached: UserLeagueStandings | None
    ) -> UserLeagueStandings:
        if cached is None:
            raise DataUnavailableError(f"No league standings available for user {user_id}")
        logger.warning(f"Serving stale league standings for user {user_id}")
        return replace(cached, leagues=[replace(lg, stale=True) for lg in cached.leagues])

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get_league_standings(self, league_id: str) -> LeagueStandings:
        """Season standing for one league.

        Raises:
            LeagueNotFoundError: If the league does not exist
            DataUnavailableError: If the inputs cannot be loaded and no
                cached value exists
        """
        current_gw = await self.sources.gameweeks.get_current_gameweek()
        key = self.cache.league_key(league_id, current_gw)
        cached, fresh = self.cache.get(key)
        if fresh:
            return cached

        try:
            league = await self._get_league(league_id)
            ctx = await self._load_context(current_gw)
            result = await self._compute_league(league, ctx)
        except DataUnavailableError:
            if cached is None:
                raise
            logger.warning(f"Serving stale standings for league {league_id}")
            return replace(cached, stale=True)

        self.cache.set(key, result)
        return result

    async def get_user_league_standings(self, user_id: str) -> UserLeagueStandings:
        """Standings for every league of a user.

        Leagues fan out concurrently (bounded by settings.fanout_concurrency).
        A league whose load fails is listed in `unavailable`, or served from
        a stale cache entry when one exists.
        """
        current_gw = await self.sources.gameweeks.get_current_gameweek()
        membership_key = self.cache.user_leagues_key(user_id, current_gw)
        try:
            leagues = await self.sources.memberships.get_user_leagues(user_id)
        except DataUnavailableError:
            # Membership is needed for the set key; fall back to the last known one
            league_ids, _ = self.cache.get(membership_key)
            if league_ids is None:
                raise
            cached, _ = self.cache.get(
                self.cache.league_set_key(user_id, league_ids, current_gw)
            )
            return self._stale_user_standings(user_id, cached)
        self.cache.set(membership_key, [lg.id for lg in leagues])

        set_key = self.cache.league_set_key(user_id, [lg.id for lg in leagues], current_gw)
        cached, fresh = self.cache.get(set_key)
        if fresh:
            return cached

        if not leagues:
            result = UserLeagueStandings(user_id=user_id, gameweek=current_gw, leagues=[])
            self.cache.set(set_key, result)
            return result

        try:
            ctx = await self._load_context(current_gw)
        except DataUnavailableError:
            return self._stale_user_standings(user_id, cached)

        semaphore = asyncio.Semaphore(self.settings.fanout_concurrency)

        async def load_one(league: League) -> LeagueStandings | None:
            """Returns None when the league is unavailable."""
            key = self.cache.league_key(league.id, current_gw)
            hit, hit_fresh = self.cache.get(key)
            if hit_fresh:
                return hit
            async with semaphore:
                try:
                    standing = await self._compute_league(league, ctx)
                except Exception as e:
                    logger.warning(
                        f"League {league.id} unavailable: {type(e).__name__}: {e}"
                    )
                    return replace(hit, stale=True) if hit is not None else None
            self.cache.set(key, standing)
            return standing

        results = await asyncio.gather(*[load_one(lg) for lg in leagues])

        loaded: list[LeagueStandings] = []
        unavailable: list[str] = []
        for league, standing in zip(leagues, results):
            if standing is None:
                unavailable.append(league.id)
            else:
                loaded.append(standing)

        if unavailable:
            logger.warning(
                f"User {user_id} standings completed with {len(unavailable)}/{len(leagues)} "
                f"leagues unavailable"
            )
        else:
            logger.info(f"User {user_id} standings loaded for {len(leagues)} leagues")

        result = UserLeagueStandings(
            user_id=user_id,
            gameweek=current_gw,
            leagues=loaded,
            unavailable=unavailable,
        )
        if not unavailable and not result.stale:
            self.cache.set(set_key, result)
        return result

    async def get_gameweek_table(self, league_id: str, gameweek: int) -> GameweekTable:
        """Gameweek table for one league.

        For the current gameweek, in-play and finished live scores stand in
        for results that have not been recorded yet.
        """
        key = self.cache.gameweek_table_key(league_id, gameweek)
        cached, fresh = self.cache.get(key)
        if fresh:
            return cached

        league = await self._get_league(league_id)
        current_gw, outcome_rows = await asyncio.gather(
            self.sources.gameweeks.get_current_gameweek(),
            self.sources.outcomes.get_outcomes(),
        )

        picks: list = []
        submissions: list = []
        if league.members:
            picks, submissions = await asyncio.gather(
                fetch_all_picks(
                    self.sources.picks,
                    league.member_ids,
                    gameweek,
                    gameweek,
                    self.settings.pick_page_size,
                ),
                self.sources.submissions.get_submissions(
                    gameweek, gameweek, league.member_ids
                ),
            )

        index = build_outcome_index(outcome_rows)
        provisional = False
        live_failed = False
        if gameweek == current_gw:
            live = await self._live_outcomes(gameweek, finished_only=False)
            if live is None:
                live_failed = True
            elif live:
                official = index.for_gameweek(gameweek)
                provisional = any(idx not in official for idx in live)
                index = index.with_provisional(gameweek, live)

        rows = score_gameweek(
            league, gameweek, picks, submissions, index, self.settings.unicorn_min_members
        )
        result = GameweekTable(
            league_id=league.id,
            gameweek=gameweek,
            rows=gameweek_table(league, rows),
            winners=gameweek_winners(rows),
            provisional=provisional,
        )
        # A table missing its live scores is served but not cached
        if not live_failed:
            self.cache.set(key, result)
        return result

    async def get_gameweek_deadline(self, gameweek: int) -> GameweekDeadline:
        """Prediction deadline and whether new leagues/members still make it."""
        deadline = await self.resolver.deadline_for_gameweek(gameweek)
        is_open = await self.resolver.is_gameweek_open(gameweek)
        return GameweekDeadline(gameweek=gameweek, deadline=deadline, is_open=is_open)
