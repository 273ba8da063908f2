"""asyncpg implementations of the collaborator ports.

Every call acquires its own pooled connection, so independent fetches can
run concurrently. Transient connection failures are retried with tenacity;
anything still failing surfaces as DataUnavailableError.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import asyncpg
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ranking_engine.config import get_settings
from ranking_engine.db import get_connection
from ranking_engine.services.models import (
    League,
    LiveScore,
    Member,
    OutcomeRow,
    Pick,
    Submission,
)
from ranking_engine.services.stores import DataSources, DataUnavailableError

logger = logging.getLogger(__name__)

# Errors worth another attempt: dropped connections, pool exhaustion, timeouts
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.TooManyConnectionsError,
    TimeoutError,
    OSError,
)


def _is_transient(exception: BaseException) -> bool:
    return isinstance(exception, TRANSIENT_ERRORS)


# =============================================================================
# SQL Constants
# =============================================================================

_PICKS_PAGE_SQL = """
    SELECT user_id, gw, fixture_index, pick
    FROM picks
    WHERE gw BETWEEN $1 AND $2
      AND ($3::text[] IS NULL OR user_id = ANY($3::text[]))
    ORDER BY gw, fixture_index, user_id
    OFFSET $4 LIMIT $5
"""

_OUTCOMES_SQL = """
    SELECT gw, fixture_index, result, home_goals, away_goals
    FROM gw_results
    ORDER BY gw, fixture_index
"""

_LEAGUE_SQL = """
    SELECT id, name, created_at, start_gw
    FROM leagues
    WHERE id = $1
"""

_USER_LEAGUES_SQL = """
    SELECT l.id, l.name, l.created_at, l.start_gw
    FROM leagues l
    JOIN league_members lm ON lm.league_id = l.id
    WHERE lm.user_id = $1
    ORDER BY l.name, l.id
"""

_LEAGUE_MEMBERS_SQL = """
    SELECT lm.league_id, lm.user_id, COALESCE(u.name, 'User') AS name
    FROM league_members lm
    LEFT JOIN users u ON u.id = lm.user_id
    WHERE lm.league_id = ANY($1::text[])
    ORDER BY lm.joined_at, lm.user_id
"""

_SUBMISSIONS_SQL = """
    SELECT user_id, gw, submitted_at
    FROM gw_submissions
    WHERE gw BETWEEN $1 AND $2
      AND submitted_at IS NOT NULL
      AND ($3::text[] IS NULL OR user_id = ANY($3::text[]))
"""

_CURRENT_GW_SQL = """
    SELECT current_gw FROM app_meta WHERE id = 1
"""

_FIXTURE_COUNTS_SQL = """
    SELECT gw, COUNT(*) AS fixture_count
    FROM fixtures
    GROUP BY gw
"""

_FIRST_KICKOFFS_SQL = """
    SELECT gw, MIN(kickoff_time) AS first_kickoff
    FROM fixtures
    WHERE gw = ANY($1::int[]) AND kickoff_time IS NOT NULL
    GROUP BY gw
"""

_LIVE_SCORES_SQL = """
    SELECT gw, fixture_index, home_score, away_score, status, minute
    FROM live_scores
    WHERE gw = $1
"""


# =============================================================================
# Base
# =============================================================================


class PostgresStore:
    """Shared query helpers with retry and error translation."""

    def __init__(self, retry_attempts: int = 3):
        self._retrying = AsyncRetrying(
            stop=stop_after_attempt(retry_attempts),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _fetch_once(self, sql: str, *args: Any) -> list[Any]:
        async with get_connection() as conn:
            return await conn.fetch(sql, *args)

    async def _fetch(self, sql: str, *args: Any) -> list[Any]:
        """Run a query with retries; raise DataUnavailableError on failure."""
        # Each call gets its own retry state (coroutines share a thread)
        retrying = self._retrying.copy()
        try:
            return await retrying(self._fetch_once, sql, *args)
        except (asyncpg.PostgresError, *TRANSIENT_ERRORS) as e:
            logger.error(f"Store query failed: {type(e).__name__}: {e}")
            raise DataUnavailableError(str(e)) from e


def _user_filter(user_ids: Sequence[str] | None) -> list[str] | None:
    return list(user_ids) if user_ids is not None else None


# =============================================================================
# Stores
# =============================================================================


class PgPickStore(PostgresStore):
    async def get_picks(
        self,
        user_ids: Sequence[str] | None,
        gw_from: int,
        gw_to: int,
        *,
        offset: int,
        limit: int,
    ) -> list[Pick]:
        rows = await self._fetch(
            _PICKS_PAGE_SQL, gw_from, gw_to, _user_filter(user_ids), offset, limit
        )
        return [
            Pick(
                user_id=str(row["user_id"]),
                gameweek=row["gw"],
                fixture_index=row["fixture_index"],
                pick=row["pick"],
            )
            for row in rows
        ]


class PgOutcomeStore(PostgresStore):
    async def get_outcomes(self) -> list[OutcomeRow]:
        rows = await self._fetch(_OUTCOMES_SQL)
        return [
            OutcomeRow(
                gameweek=row["gw"],
                fixture_index=row["fixture_index"],
                result=row["result"],
                home_goals=row["home_goals"],
                away_goals=row["away_goals"],
            )
            for row in rows
        ]


class PgMembershipStore(PostgresStore):
    async def _with_members(self, league_rows: list[Any]) -> list[League]:
        if not league_rows:
            return []

        leagues = {
            str(row["id"]): League(
                id=str(row["id"]),
                name=row["name"] or "League",
                created_at=row["created_at"],
                start_gw=row["start_gw"],
            )
            for row in league_rows
        }
        member_rows = await self._fetch(_LEAGUE_MEMBERS_SQL, list(leagues))
        for row in member_rows:
            league = leagues.get(str(row["league_id"]))
            if league is not None:
                league.members.append(Member(user_id=str(row["user_id"]), name=row["name"]))
        return list(leagues.values())

    async def get_league(self, league_id: str) -> League | None:
        rows = await self._fetch(_LEAGUE_SQL, league_id)
        leagues = await self._with_members(rows)
        return leagues[0] if leagues else None

    async def get_user_leagues(self, user_id: str) -> list[League]:
        rows = await self._fetch(_USER_LEAGUES_SQL, user_id)
        return await self._with_members(rows)


class PgSubmissionStore(PostgresStore):
    async def get_submissions(
        self,
        gw_from: int,
        gw_to: int,
        user_ids: Sequence[str] | None = None,
    ) -> list[Submission]:
        rows = await self._fetch(_SUBMISSIONS_SQL, gw_from, gw_to, _user_filter(user_ids))
        return [
            Submission(
                user_id=str(row["user_id"]),
                gameweek=row["gw"],
                submitted_at=row["submitted_at"],
            )
            for row in rows
        ]


class PgGameweekStore(PostgresStore):
    async def get_current_gameweek(self) -> int:
        rows = await self._fetch(_CURRENT_GW_SQL)
        if not rows or rows[0]["current_gw"] is None:
            raise DataUnavailableError("Current gameweek not set in app_meta")
        return rows[0]["current_gw"]

    async def get_fixture_counts(self) -> dict[int, int]:
        rows = await self._fetch(_FIXTURE_COUNTS_SQL)
        return {row["gw"]: row["fixture_count"] for row in rows}

    async def get_first_kickoffs(self, gameweeks: Sequence[int]) -> dict[int, datetime]:
        if not gameweeks:
            return {}
        rows = await self._fetch(_FIRST_KICKOFFS_SQL, list(gameweeks))
        return {row["gw"]: row["first_kickoff"] for row in rows}


class PgLiveScoreStore(PostgresStore):
    async def get_live_scores(self, gameweek: int) -> list[LiveScore]:
        rows = await self._fetch(_LIVE_SCORES_SQL, gameweek)
        return [
            LiveScore(
                gameweek=row["gw"],
                fixture_index=row["fixture_index"],
                home_score=row["home_score"] or 0,
                away_score=row["away_score"] or 0,
                status=row["status"],
                minute=row["minute"],
            )
            for row in rows
        ]


def build_postgres_sources() -> DataSources:
    """Wire every port to the shared asyncpg pool."""
    attempts = get_settings().store_retry_attempts
    return DataSources(
        picks=PgPickStore(attempts),
        outcomes=PgOutcomeStore(attempts),
        memberships=PgMembershipStore(attempts),
        submissions=PgSubmissionStore(attempts),
        gameweeks=PgGameweekStore(attempts),
        live_scores=PgLiveScoreStore(attempts),
    )
