"""Shared pytest fixtures for ranking engine tests."""

from collections.abc import Sequence
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from ranking_engine.config import Settings
from ranking_engine.main import app
from ranking_engine.services.models import (
    League,
    LiveScore,
    Member,
    OutcomeRow,
    Pick,
    Submission,
)
from ranking_engine.services.result_cache import ResultCache
from ranking_engine.services.stores import DataSources, DataUnavailableError


@pytest.fixture
async def async_client():
    """Async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_pool():
    """Mock DB pool check for require_db() dependency (503 check)."""
    with patch("ranking_engine.dependencies.get_pool") as mock:
        mock.return_value = MagicMock()
        yield mock


class MockDB:
    """Patch a module's get_connection so queries hit an AsyncMock connection.

    Usage:
        db = MockDB("ranking_engine.services.repository.get_connection")
        db.conn.fetch.return_value = [...]
        with db:
            ...
    """

    def __init__(self, target: str):
        self.target = target
        self.conn = AsyncMock()
        self._patcher = None

    def __enter__(self) -> "MockDB":
        self._patcher = patch(self.target)
        mock_get_connection = self._patcher.start()
        mock_get_connection.return_value.__aenter__ = AsyncMock(return_value=self.conn)
        # __aexit__ must return falsy to not suppress exceptions
        mock_get_connection.return_value.__aexit__ = AsyncMock(return_value=None)
        return self

    def __exit__(self, *exc_info) -> bool:
        self._patcher.stop()
        return False


# =============================================================================
# In-memory stores
# =============================================================================


class FakePickStore:
    """Pick Store over a list; raises for any request touching failing_users."""

    def __init__(self, picks: Sequence[Pick] = (), failing_users: Sequence[str] = ()):
        self.picks = list(picks)
        self.failing_users = set(failing_users)
        self.calls: list[dict] = []

    async def get_picks(self, user_ids, gw_from, gw_to, *, offset, limit):
        self.calls.append(
            {"user_ids": user_ids, "gw_from": gw_from, "gw_to": gw_to, "offset": offset, "limit": limit}
        )
        if user_ids is not None and self.failing_users & set(user_ids):
            raise DataUnavailableError("pick store timed out")
        rows = [
            p
            for p in self.picks
            if gw_from <= p.gameweek <= gw_to and (user_ids is None or p.user_id in user_ids)
        ]
        rows.sort(key=lambda p: (p.gameweek, p.fixture_index, p.user_id))
        return rows[offset : offset + limit]


class FakeOutcomeStore:
    def __init__(self, rows: Sequence[OutcomeRow] = ()):
        self.rows = list(rows)
        self.error: Exception | None = None

    async def get_outcomes(self):
        if self.error is not None:
            raise self.error
        return list(self.rows)


class FakeMembershipStore:
    def __init__(self, leagues: Sequence[League] = ()):
        self.leagues = {league.id: league for league in leagues}
        self.error: Exception | None = None

    async def get_league(self, league_id):
        if self.error is not None:
            raise self.error
        return self.leagues.get(league_id)

    async def get_user_leagues(self, user_id):
        if self.error is not None:
            raise self.error
        return [
            league
            for league in self.leagues.values()
            if user_id in league.member_ids
        ]


class FakeSubmissionStore:
    def __init__(self, submissions: Sequence[Submission] = ()):
        self.submissions = list(submissions)

    async def get_submissions(self, gw_from, gw_to, user_ids=None):
        return [
            s
            for s in self.submissions
            if gw_from <= s.gameweek <= gw_to and (user_ids is None or s.user_id in user_ids)
        ]


class FakeGameweekStore:
    def __init__(
        self,
        current_gw: int = 1,
        fixture_counts: dict[int, int] | None = None,
        kickoffs: dict[int, datetime] | None = None,
    ):
        self.current_gw = current_gw
        self.fixture_counts = dict(fixture_counts or {})
        self.kickoffs = dict(kickoffs or {})
        self.kickoff_calls: list[list[int]] = []

    async def get_current_gameweek(self):
        return self.current_gw

    async def get_fixture_counts(self):
        return dict(self.fixture_counts)

    async def get_first_kickoffs(self, gameweeks):
        self.kickoff_calls.append(list(gameweeks))
        return {gw: self.kickoffs[gw] for gw in gameweeks if gw in self.kickoffs}


class FakeLiveScoreStore:
    def __init__(self, scores: Sequence[LiveScore] = ()):
        self.scores = list(scores)
        self.error: Exception | None = None

    async def get_live_scores(self, gameweek):
        if self.error is not None:
            raise self.error
        return [s for s in self.scores if s.gameweek == gameweek]


class FakeTimer:
    """Manually advanced monotonic timer for cache tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Builders
# =============================================================================


def make_league(
    league_id: str,
    members: Sequence[tuple[str, str]],
    name: str | None = None,
    created_at: datetime | None = None,
    start_gw: int | None = None,
) -> League:
    """Build a League from (user_id, name) pairs."""
    return League(
        id=league_id,
        name=name or f"League {league_id}",
        created_at=created_at,
        start_gw=start_gw,
        members=[Member(user_id=uid, name=member_name) for uid, member_name in members],
    )


def make_picks(user_id: str, gameweek: int, picks: str) -> list[Pick]:
    """Build picks from a string like "HDA" (fixture 0 = H, 1 = D, 2 = A)."""
    return [
        Pick(user_id=user_id, gameweek=gameweek, fixture_index=idx, pick=pick)
        for idx, pick in enumerate(picks)
    ]


def make_outcomes(gameweek: int, results: str) -> list[OutcomeRow]:
    """Build outcome rows from a string like "HDA"."""
    return [
        OutcomeRow(gameweek=gameweek, fixture_index=idx, result=result)
        for idx, result in enumerate(results)
    ]


def make_sources(
    leagues: Sequence[League] = (),
    picks: Sequence[Pick] = (),
    outcomes: Sequence[OutcomeRow] = (),
    submissions: Sequence[Submission] = (),
    current_gw: int = 1,
    fixture_counts: dict[int, int] | None = None,
    kickoffs: dict[int, datetime] | None = None,
    live_scores: Sequence[LiveScore] | None = None,
    failing_users: Sequence[str] = (),
    now: datetime | None = None,
) -> DataSources:
    """Wire in-memory stores into a DataSources bundle."""
    clock_value = now or datetime(2025, 1, 1, tzinfo=UTC)
    return DataSources(
        picks=FakePickStore(picks, failing_users=failing_users),
        outcomes=FakeOutcomeStore(outcomes),
        memberships=FakeMembershipStore(leagues),
        submissions=FakeSubmissionStore(submissions),
        gameweeks=FakeGameweekStore(current_gw, fixture_counts, kickoffs),
        live_scores=FakeLiveScoreStore(live_scores) if live_scores is not None else None,
        clock=lambda: clock_value,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(_env_file=None, database_url="", pick_page_size=2, fanout_concurrency=2)


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def result_cache(timer: FakeTimer) -> ResultCache:
    return ResultCache(basic_ttl=300, league_ttl=60, schema_version=1, timer=timer)
