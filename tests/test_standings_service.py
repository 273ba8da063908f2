"""Tests for LeagueStandingsService.

League L1 (Alice, Bob, Cara) created before the season:
- GW1 (H, D): Alice 2 + unicorn, Bob 1, Cara 0 -> Alice wins outright (3)
- GW2 (A, H): Alice 1, Bob 2, Cara 2 -> Bob and Cara share (1 each)
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from ranking_engine.services.models import LiveScore, Submission
from ranking_engine.services.standings import (
    LeagueNotFoundError,
    LeagueStandingsService,
)
from ranking_engine.services.stores import DataUnavailableError
from tests.conftest import (
    FakePickStore,
    make_league,
    make_outcomes,
    make_picks,
    make_sources,
)

KICKOFFS = {
    1: datetime(2024, 8, 16, 19, 0, tzinfo=UTC),
    2: datetime(2024, 8, 24, 11, 30, tzinfo=UTC),
    3: datetime(2024, 8, 31, 11, 30, tzinfo=UTC),
}
PRESEASON = datetime(2024, 7, 1, tzinfo=UTC)


def submitted(gameweek: int, *user_ids: str) -> list[Submission]:
    return [Submission(user_id=uid, gameweek=gameweek) for uid in user_ids]


@pytest.fixture
def league():
    return make_league("L1", [("a", "Alice"), ("b", "Bob"), ("c", "Cara")], created_at=PRESEASON)


@pytest.fixture
def picks():
    return (
        make_picks("a", 1, "HD")
        + make_picks("b", 1, "HA")
        + make_picks("c", 1, "AA")
        + make_picks("a", 2, "AA")
        + make_picks("b", 2, "AH")
        + make_picks("c", 2, "AH")
        + make_picks("a", 3, "HH")
        + make_picks("b", 3, "AA")
        + make_picks("c", 3, "AA")
    )


@pytest.fixture
def season(league, picks) -> dict:
    """Keyword arguments for make_sources()."""
    return {
        "leagues": [league],
        "picks": picks,
        "outcomes": make_outcomes(1, "HD") + make_outcomes(2, "AH"),
        "submissions": submitted(1, "a", "b", "c") + submitted(2, "a", "b", "c") + submitted(3, "a", "b", "c"),
        "current_gw": 3,
        "fixture_counts": {1: 2, 2: 2, 3: 2},
        "kickoffs": KICKOFFS,
    }


def make_service(settings, result_cache, **kwargs) -> LeagueStandingsService:
    return LeagueStandingsService(make_sources(**kwargs), cache=result_cache, settings=settings)


class TestLeagueStandings:
    """Tests for get_league_standings()."""

    async def test_season_table(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        result = await service.get_league_standings("L1")

        assert result.start_gw == 1
        assert result.relevant_gameweeks == [1, 2]
        assert [(s.user_id, s.mlt_points, s.unicorns, s.ocp) for s in result.standings] == [
            ("a", 3, 1, 3),
            ("b", 1, 0, 3),
            ("c", 1, 0, 2),
        ]
        assert result.standings[0].form == ["W", "L"]
        assert result.latest_gameweek == 2
        assert result.latest_winners == ["b", "c"]
        assert result.position_of("c") == 3
        assert result.position_of("zed") is None
        assert result.stale is False

    async def test_cached_after_success(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        first = await service.get_league_standings("L1")
        calls = len(service.sources.picks.calls)
        second = await service.get_league_standings("L1")

        assert second is first
        assert len(service.sources.picks.calls) == calls

    async def test_league_not_found(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        with pytest.raises(LeagueNotFoundError):
            await service.get_league_standings("nope")

    async def test_late_league_starts_after_missed_deadline(self, settings, result_cache, season, league):
        league.created_at = KICKOFFS[1]  # after the GW1 deadline
        service = make_service(settings, result_cache, **season)

        result = await service.get_league_standings("L1")

        assert result.start_gw == 2
        assert result.relevant_gameweeks == [2]
        assert {s.user_id: s.mlt_points for s in result.standings} == {"a": 0, "b": 1, "c": 1}

    async def test_name_override_from_settings(self, settings, result_cache, season, league):
        league.name = "Late Starters"
        settings.league_start_overrides = {"Late Starters": 2}
        service = make_service(settings, result_cache, **season)

        result = await service.get_league_standings("L1")

        assert result.start_gw == 2

    async def test_current_gameweek_included_once_finished(self, settings, result_cache, season):
        live = [
            LiveScore(gameweek=3, fixture_index=0, home_score=1, away_score=0, status="FINISHED"),
            LiveScore(gameweek=3, fixture_index=1, home_score=2, away_score=2, status="FINISHED"),
        ]
        service = make_service(settings, result_cache, live_scores=live, **season)

        result = await service.get_league_standings("L1")

        assert result.relevant_gameweeks == [1, 2, 3]
        assert result.latest_gameweek == 3
        # GW3 (H, D): Alice 1 + unicorn wins outright
        assert result.latest_winners == ["a"]
        assert result.standings[0].mlt_points == 6

    async def test_current_gameweek_in_play_not_included(self, settings, result_cache, season):
        live = [
            LiveScore(gameweek=3, fixture_index=0, home_score=1, away_score=0, status="FINISHED"),
            LiveScore(gameweek=3, fixture_index=1, home_score=2, away_score=2, status="IN_PLAY"),
        ]
        service = make_service(settings, result_cache, live_scores=live, **season)

        result = await service.get_league_standings("L1")

        assert result.relevant_gameweeks == [1, 2]

    async def test_no_completed_gameweeks(self, settings, result_cache, league):
        service = make_service(settings, result_cache, leagues=[league], current_gw=1)

        result = await service.get_league_standings("L1")

        assert result.relevant_gameweeks == []
        assert result.latest_gameweek is None
        assert [s.mlt_points for s in result.standings] == [0, 0, 0]
        assert [s.name for s in result.standings] == ["Alice", "Bob", "Cara"]

    async def test_failure_without_cache_raises(self, settings, result_cache, season):
        service = make_service(settings, result_cache, failing_users=["a"], **season)

        with pytest.raises(DataUnavailableError):
            await service.get_league_standings("L1")

    async def test_failure_serves_stale_value(self, settings, result_cache, timer, season):
        service = make_service(settings, result_cache, **season)
        fresh = await service.get_league_standings("L1")

        timer.advance(settings.cache_ttl_league + 1)
        service.sources.picks.failing_users.add("a")
        result = await service.get_league_standings("L1")

        assert result.stale is True
        assert result.standings == fresh.standings
        assert fresh.stale is False

    async def test_membership_outage_serves_stale_value(self, settings, result_cache, timer, season):
        service = make_service(settings, result_cache, **season)
        fresh = await service.get_league_standings("L1")

        timer.advance(settings.cache_ttl_league + 1)
        service.sources.memberships.error = DataUnavailableError("membership store down")
        result = await service.get_league_standings("L1")

        assert result.stale is True
        assert result.standings == fresh.standings

    async def test_membership_outage_without_cache_raises(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)
        service.sources.memberships.error = DataUnavailableError("membership store down")

        with pytest.raises(DataUnavailableError):
            await service.get_league_standings("L1")


class TestUserLeagueStandings:
    """Tests for get_user_league_standings() fan-out."""

    @pytest.fixture
    def second_league(self):
        return make_league("L2", [("a", "Alice"), ("x", "Xena")], created_at=PRESEASON)

    async def test_all_leagues(self, settings, result_cache, season, second_league):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, **season)

        result = await service.get_user_league_standings("a")

        assert [lg.league_id for lg in result.leagues] == ["L1", "L2"]
        assert result.unavailable == []
        assert result.stale is False
        assert result.gameweek == 3

    async def test_full_result_cached(self, settings, result_cache, season, second_league):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, **season)

        first = await service.get_user_league_standings("a")
        second = await service.get_user_league_standings("a")

        assert second is first

    async def test_failing_league_isolated(self, settings, result_cache, season, second_league):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, failing_users=["x"], **season)

        result = await service.get_user_league_standings("a")

        assert [lg.league_id for lg in result.leagues] == ["L1"]
        assert result.unavailable == ["L2"]

        # The healthy league was cached, the partial user-level result was not
        _, l1_fresh = result_cache.get(result_cache.league_key("L1", 3))
        assert l1_fresh
        cached, _ = result_cache.get(result_cache.league_set_key("a", ["L1", "L2"], 3))
        assert cached is None
        cached_l2, _ = result_cache.get(result_cache.league_key("L2", 3))
        assert cached_l2 is None

    async def test_failing_league_served_stale(self, settings, result_cache, timer, season, second_league):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, **season)
        await service.get_user_league_standings("a")

        timer.advance(settings.cache_ttl_league + 1)
        service.sources.picks.failing_users.add("x")
        result = await service.get_user_league_standings("a")

        assert result.unavailable == []
        assert {lg.league_id: lg.stale for lg in result.leagues} == {"L1": False, "L2": True}
        assert result.stale is True

    async def test_shared_inputs_unavailable_serves_stale(
        self, settings, result_cache, timer, season, second_league
    ):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, **season)
        await service.get_user_league_standings("a")

        timer.advance(settings.cache_ttl_league + 1)
        service.sources.outcomes.error = DataUnavailableError("outcome store down")
        result = await service.get_user_league_standings("a")

        assert [lg.league_id for lg in result.leagues] == ["L1", "L2"]
        assert all(lg.stale for lg in result.leagues)

    async def test_shared_inputs_unavailable_without_cache_raises(
        self, settings, result_cache, season
    ):
        service = make_service(settings, result_cache, **season)
        service.sources.outcomes.error = DataUnavailableError("outcome store down")

        with pytest.raises(DataUnavailableError):
            await service.get_user_league_standings("a")

    async def test_membership_outage_serves_stale(
        self, settings, result_cache, timer, season, second_league
    ):
        season["leagues"] = [*season["leagues"], second_league]
        service = make_service(settings, result_cache, **season)
        await service.get_user_league_standings("a")

        timer.advance(settings.cache_ttl_league + 1)
        service.sources.memberships.error = DataUnavailableError("membership store down")
        result = await service.get_user_league_standings("a")

        assert [lg.league_id for lg in result.leagues] == ["L1", "L2"]
        assert all(lg.stale for lg in result.leagues)

    async def test_membership_outage_without_cache_raises(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)
        service.sources.memberships.error = DataUnavailableError("membership store down")

        with pytest.raises(DataUnavailableError):
            await service.get_user_league_standings("a")

    async def test_user_without_leagues(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        result = await service.get_user_league_standings("nobody")

        assert result.leagues == []
        assert result.unavailable == []

    async def test_fan_out_is_bounded(self, settings, result_cache, season):
        leagues = [
            make_league(f"L{i}", [("a", "Alice"), (f"m{i}", f"Member {i}")], created_at=PRESEASON)
            for i in range(6)
        ]

        class TrackingPickStore(FakePickStore):
            def __init__(self, picks):
                super().__init__(picks)
                self.in_flight = 0
                self.max_in_flight = 0

            async def get_picks(self, user_ids, gw_from, gw_to, *, offset, limit):
                self.in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self.in_flight)
                await asyncio.sleep(0.01)
                try:
                    return await super().get_picks(user_ids, gw_from, gw_to, offset=offset, limit=limit)
                finally:
                    self.in_flight -= 1

        season["leagues"] = leagues
        sources = make_sources(**season)
        sources.picks = TrackingPickStore(season["picks"])
        service = LeagueStandingsService(sources, cache=result_cache, settings=settings)

        result = await service.get_user_league_standings("a")

        assert len(result.leagues) == 6
        assert sources.picks.max_in_flight == settings.fanout_concurrency


class TestGameweekTable:
    """Tests for get_gameweek_table()."""

    async def test_completed_gameweek(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        table = await service.get_gameweek_table("L1", 1)

        assert [(r.name, r.score, r.unicorns) for r in table.rows] == [
            ("Alice", 2, 1),
            ("Bob", 1, 0),
            ("Cara", 0, 0),
        ]
        assert table.winners == ["a"]
        assert table.provisional is False

    async def test_current_gameweek_uses_live_scores(self, settings, result_cache, season):
        live = [
            LiveScore(gameweek=3, fixture_index=0, home_score=0, away_score=1, status="IN_PLAY", minute=60),
            LiveScore(gameweek=3, fixture_index=1, home_score=0, away_score=0, status="SCHEDULED"),
        ]
        service = make_service(settings, result_cache, live_scores=live, **season)

        table = await service.get_gameweek_table("L1", 3)

        assert table.provisional is True
        assert [(r.user_id, r.score) for r in table.rows] == [("b", 1), ("c", 1), ("a", 0)]

    async def test_only_submitted_members_listed(self, settings, result_cache, season):
        season["submissions"] = submitted(1, "a", "c")
        service = make_service(settings, result_cache, **season)

        table = await service.get_gameweek_table("L1", 1)

        assert [r.user_id for r in table.rows] == ["a", "c"]
        # Two submitted members: no unicorns
        assert all(r.unicorns == 0 for r in table.rows)

    async def test_league_not_found(self, settings, result_cache, season):
        service = make_service(settings, result_cache, **season)

        with pytest.raises(LeagueNotFoundError):
            await service.get_gameweek_table("nope", 1)

    async def test_live_feed_failure_falls_back_to_official_results(
        self, settings, result_cache, season
    ):
        season["current_gw"] = 1
        service = make_service(settings, result_cache, live_scores=[], **season)
        service.sources.live_scores.error = DataUnavailableError("live feed down")

        table = await service.get_gameweek_table("L1", 1)

        assert [(r.user_id, r.score) for r in table.rows] == [("a", 2), ("b", 1), ("c", 0)]
        assert table.provisional is False
        # Not cached without its live scores
        cached, _ = result_cache.get(result_cache.gameweek_table_key("L1", 1))
        assert cached is None


class TestGameweekDeadline:
    async def test_deadline_and_open_flag(self, settings, result_cache, season):
        now = KICKOFFS[3] - timedelta(hours=2)
        season["now"] = now
        service = make_service(settings, result_cache, **season)

        result = await service.get_gameweek_deadline(3)

        assert result.deadline == KICKOFFS[3] - timedelta(minutes=75)
        assert result.is_open is True

        closed = await service.get_gameweek_deadline(2)
        assert closed.is_open is False
