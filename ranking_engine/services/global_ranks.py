"""Global rank service: last-gameweek, form and season ranks across all users.

Scores are loaded in two slices: the recent window (enough for the last
gameweek, both form windows and their movement) and everything before it.
Season figures (season rank, trophy cabinet and stats) need both slices. A
failure loading the older slice only marks those unavailable.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace

from ranking_engine.config import Settings, get_settings
from ranking_engine.services.models import RankMovement, RankResult, SeasonStats
from ranking_engine.services.ranks import (
    FORM_WINDOWS,
    LAST_GAMEWEEK,
    SEASON,
    form_metric,
    form_movement,
    form_rank,
    last_gameweek_rank,
    season_movement,
    season_rank,
    season_stats,
    trophy_cabinet,
)
from ranking_engine.services.result_cache import ResultCache, get_result_cache
from ranking_engine.services.scoring import (
    OutcomeIndex,
    build_outcome_index,
    latest_decided_gameweek,
    score_all_users,
)
from ranking_engine.services.stores import (
    DataSources,
    DataUnavailableError,
    fetch_all_picks,
)

logger = logging.getLogger(__name__)

TROPHY_CABINET = "trophy_cabinet"
STATS = "stats"


@dataclass(slots=True)
class UserRanks:
    """A user's ranks among every user, as of the latest decided gameweek."""

    user_id: str
    gameweek: int | None
    ranks: dict[str, RankResult | None] = field(default_factory=dict)
    movement: dict[str, RankMovement] = field(default_factory=dict)
    trophy_cabinet: dict[str, int] | None = None
    stats: SeasonStats | None = None
    unavailable: list[str] = field(default_factory=list)
    stale: bool = False

    @property
    def trophies(self) -> dict[str, bool]:
        """Metrics where the user currently holds (a share of) first place."""
        return {
            metric: result is not None and result.rank == 1
            for metric, result in self.ranks.items()
        }


class GlobalRankService:
    """Service for global and form ranks."""

    def __init__(
        self,
        sources: DataSources,
        cache: ResultCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.sources = sources
        self.cache = cache if cache is not None else get_result_cache()
        self.settings = settings if settings is not None else get_settings()

    async def _load_scores(
        self, gw_from: int, gw_to: int, index: OutcomeIndex
    ) -> dict[int, dict[str, int]]:
        """Every submitted user's score per gameweek in [gw_from, gw_to]."""
        picks, submissions = await asyncio.gather(
            fetch_all_picks(
                self.sources.picks, None, gw_from, gw_to, self.settings.pick_page_size
            ),
            self.sources.submissions.get_submissions(gw_from, gw_to),
        )
        return score_all_users(picks, submissions, index)

    async def _try_load_scores(
        self, gw_from: int, gw_to: int, index: OutcomeIndex
    ) -> dict[int, dict[str, int]] | None:
        """Like _load_scores, but returns None on failure."""
        if gw_from > gw_to:
            return {}
        try:
            return await self._load_scores(gw_from, gw_to, index)
        except Exception as e:
            logger.warning(
                f"Scores for GW{gw_from}-{gw_to} unavailable: {type(e).__name__}: {e}"
            )
            return None

    async def get_user_ranks(self, user_id: str) -> UserRanks:
        """Compute a user's last-gameweek, form and season ranks.

        Args:
            user_id: User to rank

        Returns:
            UserRanks; metrics the user has no score for are None, metrics
            whose data could not be loaded are listed in `unavailable`

        Raises:
            DataUnavailableError: If no metric could be computed and no
                cached value exists
        """
        current_gw = await self.sources.gameweeks.get_current_gameweek()
        key = self.cache.ranks_key(user_id, current_gw)
        cached, fresh = self.cache.get(key)
        if fresh:
            return cached

        try:
            outcome_rows, fixture_counts = await asyncio.gather(
                self.sources.outcomes.get_outcomes(),
                self.sources.gameweeks.get_fixture_counts(),
            )
        except DataUnavailableError:
            if cached is None:
                raise
            logger.warning(f"Serving stale ranks for user {user_id}")
            return replace(cached, stale=True)

        index = build_outcome_index(outcome_rows)
        latest = latest_decided_gameweek(index, fixture_counts)
        if latest is None:
            result = UserRanks(user_id=user_id, gameweek=None)
            self.cache.set(key, result)
            return result

        first = index.gameweeks()[0]
        # One extra gameweek so the widest form window can be shifted back
        recent_from = max(first, latest - max(FORM_WINDOWS))

        recent, earlier = await asyncio.gather(
            self._try_load_scores(recent_from, latest, index),
            self._try_load_scores(first, recent_from - 1, index),
        )

        # Every metric needs the recent slice
        if recent is None:
            if cached is None:
                raise DataUnavailableError(f"No rank data available for user {user_id}")
            logger.warning(f"Serving stale ranks for user {user_id}")
            return replace(cached, stale=True)

        result = UserRanks(user_id=user_id, gameweek=latest)
        result.ranks[LAST_GAMEWEEK] = last_gameweek_rank(recent, latest, user_id)
        for window in FORM_WINDOWS:
            metric = form_metric(window)
            result.ranks[metric] = form_rank(recent, latest, window, user_id)
            result.movement[metric] = form_movement(recent, latest, window, user_id)

        if earlier is None:
            result.unavailable.extend([SEASON, TROPHY_CABINET, STATS])
        else:
            season_scores = {**earlier, **recent}
            result.ranks[SEASON] = season_rank(season_scores, user_id)
            result.movement[SEASON] = season_movement(season_scores, latest, user_id)
            result.trophy_cabinet = trophy_cabinet(season_scores, user_id)
            result.stats = season_stats(season_scores, user_id)

        if result.unavailable:
            logger.warning(
                f"Ranks for user {user_id} partially unavailable: {result.unavailable}"
            )
        else:
            self.cache.set(key, result)
        return result
