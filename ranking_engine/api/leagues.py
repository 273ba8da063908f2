"""League API routes - Gameweek tables and season standings."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from ranking_engine.dependencies import get_standings_service
from ranking_engine.services.standings import (
    LeagueNotFoundError,
    LeagueStandings,
    LeagueStandingsService,
)
from ranking_engine.services.stores import DataUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["leagues"])


# =============================================================================
# Pydantic Response Models
# =============================================================================


class GameweekTableRowResponse(BaseModel):
    """One member's row in a gameweek table."""

    user_id: str
    name: str
    score: int = Field(ge=0)
    unicorns: int = Field(ge=0)


class GameweekTableResponse(BaseModel):
    """Response for GET /leagues/{league_id}/gameweeks/{gameweek}/table."""

    league_id: str
    gameweek: int
    provisional: bool  # Live scores stand in for missing results
    winners: list[str]
    rows: list[GameweekTableRowResponse]


class SeasonStandingResponse(BaseModel):
    """One member's season standing."""

    position: int = Field(ge=1)
    user_id: str
    name: str
    mlt_points: int = Field(ge=0)
    unicorns: int = Field(ge=0)
    ocp: int = Field(ge=0)
    wins: int = Field(ge=0)
    draws: int = Field(ge=0)
    form: list[str]


class LeagueStandingsResponse(BaseModel):
    """Response for GET /leagues/{league_id}/standings."""

    league_id: str
    league_name: str
    gameweek: int
    start_gw: int
    relevant_gameweeks: list[int]
    latest_gameweek: int | None
    latest_winners: list[str]
    user_position: int | None = None  # Only present when user_id is given
    stale: bool
    standings: list[SeasonStandingResponse]


class UserLeagueStandingsResponse(BaseModel):
    """Response for GET /users/{user_id}/leagues/standings."""

    user_id: str
    gameweek: int
    stale: bool
    unavailable: list[str]  # League ids that could not be loaded
    leagues: list[LeagueStandingsResponse]


# =============================================================================
# Helpers
# =============================================================================


def _standings_response(
    result: LeagueStandings, user_id: str | None = None
) -> LeagueStandingsResponse:
    return LeagueStandingsResponse(
        league_id=result.league_id,
        league_name=result.league_name,
        gameweek=result.gameweek,
        start_gw=result.start_gw,
        relevant_gameweeks=result.relevant_gameweeks,
        latest_gameweek=result.latest_gameweek,
        latest_winners=result.latest_winners,
        user_position=result.position_of(user_id) if user_id else None,
        stale=result.stale,
        standings=[
            SeasonStandingResponse(
                position=position,
                user_id=s.user_id,
                name=s.name,
                mlt_points=s.mlt_points,
                unicorns=s.unicorns,
                ocp=s.ocp,
                wins=s.wins,
                draws=s.draws,
                form=s.form,
            )
            for position, s in enumerate(result.standings, start=1)
        ],
    )


# =============================================================================
# Routes
# =============================================================================

# Ids are opaque text (numeric ids and auth UUIDs alike)
ID_PATTERN = r"^[A-Za-z0-9_-]+$"
LeagueIdPath = Annotated[
    str, Path(min_length=1, max_length=64, pattern=ID_PATTERN, description="League ID")
]
UserIdPath = Annotated[
    str, Path(min_length=1, max_length=64, pattern=ID_PATTERN, description="User ID")
]
GameweekPath = Annotated[int, Path(ge=1, le=99, description="Gameweek number")]
StandingsService = Annotated[LeagueStandingsService, Depends(get_standings_service)]


@router.get(
    "/leagues/{league_id}/gameweeks/{gameweek}/table",
    response_model=GameweekTableResponse,
)
async def get_gameweek_table(
    league_id: LeagueIdPath,
    gameweek: GameweekPath,
    service: StandingsService,
) -> GameweekTableResponse:
    """
    Get a league's table for one gameweek.

    Only members who submitted predictions appear. For the current gameweek,
    in-play scores count provisionally.
    """
    try:
        table = await service.get_gameweek_table(league_id, gameweek)
    except LeagueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except DataUnavailableError as e:
        raise HTTPException(status_code=503, detail="League data temporarily unavailable") from e
    except Exception as e:
        logger.exception(f"Failed to get gameweek table: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while computing gameweek table",
        ) from e

    return GameweekTableResponse(
        league_id=table.league_id,
        gameweek=table.gameweek,
        provisional=table.provisional,
        winners=table.winners,
        rows=[
            GameweekTableRowResponse(
                user_id=row.user_id, name=row.name, score=row.score, unicorns=row.unicorns
            )
            for row in table.rows
        ],
    )


@router.get("/leagues/{league_id}/standings", response_model=LeagueStandingsResponse)
async def get_league_standings(
    league_id: LeagueIdPath,
    service: StandingsService,
    user_id: str | None = Query(
        default=None,
        min_length=1,
        max_length=64,
        pattern=ID_PATTERN,
        description="Viewer to locate in the table",
    ),
) -> LeagueStandingsResponse:
    """Get a league's season standings (MLT points, unicorns, OCP)."""
    try:
        result = await service.get_league_standings(league_id)
    except LeagueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except DataUnavailableError as e:
        raise HTTPException(status_code=503, detail="League data temporarily unavailable") from e
    except Exception as e:
        logger.exception(f"Failed to get league standings: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while computing league standings",
        ) from e

    return _standings_response(result, user_id)


@router.get(
    "/users/{user_id}/leagues/standings",
    response_model=UserLeagueStandingsResponse,
)
async def get_user_league_standings(
    user_id: UserIdPath,
    service: StandingsService,
) -> UserLeagueStandingsResponse:
    """
    Get season standings for every league the user belongs to.

    Leagues that could not be loaded are listed under `unavailable`.
    """
    try:
        result = await service.get_user_league_standings(user_id)
    except DataUnavailableError as e:
        raise HTTPException(status_code=503, detail="League data temporarily unavailable") from e
    except Exception as e:
        logger.exception(f"Failed to get user league standings: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while computing league standings",
        ) from e

    return UserLeagueStandingsResponse(
        user_id=result.user_id,
        gameweek=result.gameweek,
        stale=result.stale,
        unavailable=result.unavailable,
        leagues=[_standings_response(lg, result.user_id) for lg in result.leagues],
    )
