"""Rank API routes - Global, form and season ranks for a user."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ranking_engine.api.leagues import UserIdPath
from ranking_engine.dependencies import get_rank_service
from ranking_engine.services.global_ranks import GlobalRankService
from ranking_engine.services.models import GameweekPoints, RankResult, SeasonStats
from ranking_engine.services.stores import DataUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/users", tags=["ranks"])


class RankResultResponse(BaseModel):
    """A user's rank within one population."""

    rank: int = Field(ge=1)
    total: int = Field(ge=1)
    is_tied: bool
    percentile: int = Field(ge=1, le=100)
    percentile_label: str


class RankMovementResponse(BaseModel):
    """Rank before and after the latest gameweek. Positive change = climbed."""

    before: int | None
    after: int | None
    change: int | None


class GameweekPointsResponse(BaseModel):
    gameweek: int
    points: int


class WeeklyParResponse(BaseModel):
    gameweek: int
    user_points: int
    average_points: float


class StreakResponse(BaseModel):
    length: int = Field(ge=0)
    start_gw: int | None
    end_gw: int | None


class SeasonStatsResponse(BaseModel):
    """Season figures for the user: best and worst weeks, par and streaks."""

    gameweeks_played: int
    average_points: float | None
    best_gameweek: GameweekPointsResponse | None
    lowest_gameweek: GameweekPointsResponse | None
    best_top_quarter_streak: StreakResponse
    weekly_par: list[WeeklyParResponse]


class UserRanksResponse(BaseModel):
    """Response for GET /users/{user_id}/ranks.

    `ranks` keys: last_gameweek, form5, form10, season. A null value means
    the user has no score in that population (or the window has not been
    reached yet). `trophies` flags ranks currently held at 1; `trophy_cabinet`
    counts the gameweeks at which each was held.
    """

    user_id: str
    gameweek: int | None  # Latest fully-decided gameweek
    ranks: dict[str, RankResultResponse | None]
    movement: dict[str, RankMovementResponse]
    trophies: dict[str, bool]
    trophy_cabinet: dict[str, int] | None
    stats: SeasonStatsResponse | None
    unavailable: list[str]
    stale: bool


def _rank_response(result: RankResult | None) -> RankResultResponse | None:
    if result is None:
        return None
    return RankResultResponse(
        rank=result.rank,
        total=result.total,
        is_tied=result.is_tied,
        percentile=result.percentile,
        percentile_label=result.percentile_label,
    )


def _stats_response(stats: SeasonStats | None) -> SeasonStatsResponse | None:
    if stats is None:
        return None

    def points(entry: GameweekPoints | None) -> GameweekPointsResponse | None:
        if entry is None:
            return None
        return GameweekPointsResponse(gameweek=entry.gameweek, points=entry.points)

    streak = stats.best_top_quarter_streak
    return SeasonStatsResponse(
        gameweeks_played=stats.gameweeks_played,
        average_points=stats.average_points,
        best_gameweek=points(stats.best_gameweek),
        lowest_gameweek=points(stats.lowest_gameweek),
        best_top_quarter_streak=StreakResponse(
            length=streak.length, start_gw=streak.start_gw, end_gw=streak.end_gw
        ),
        weekly_par=[
            WeeklyParResponse(
                gameweek=p.gameweek, user_points=p.user_points, average_points=p.average_points
            )
            for p in stats.weekly_par
        ],
    )


@router.get("/{user_id}/ranks", response_model=UserRanksResponse)
async def get_user_ranks(
    user_id: UserIdPath,
    service: Annotated[GlobalRankService, Depends(get_rank_service)],
) -> UserRanksResponse:
    """Get a user's last-gameweek, 5/10-week form and season ranks among all users."""
    try:
        result = await service.get_user_ranks(user_id)
    except DataUnavailableError as e:
        raise HTTPException(status_code=503, detail="Rank data temporarily unavailable") from e
    except Exception as e:
        logger.exception(f"Failed to get user ranks: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while computing ranks",
        ) from e

    return UserRanksResponse(
        user_id=result.user_id,
        gameweek=result.gameweek,
        ranks={metric: _rank_response(r) for metric, r in result.ranks.items()},
        movement={
            metric: RankMovementResponse(before=m.before, after=m.after, change=m.change)
            for metric, m in result.movement.items()
        },
        trophies=result.trophies,
        trophy_cabinet=result.trophy_cabinet,
        stats=_stats_response(result.stats),
        unavailable=result.unavailable,
        stale=result.stale,
    )
