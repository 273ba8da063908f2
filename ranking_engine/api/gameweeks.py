"""Gameweek API routes - Prediction deadlines."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel

from ranking_engine.dependencies import get_standings_service
from ranking_engine.services.standings import LeagueStandingsService
from ranking_engine.services.stores import DataUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/gameweeks", tags=["gameweeks"])


class GameweekDeadlineResponse(BaseModel):
    """Response for GET /gameweeks/{gameweek}/deadline."""

    gameweek: int
    deadline: datetime | None  # None until the gameweek has a kickoff time
    is_open: bool  # A league created now still counts this gameweek


@router.get("/{gameweek}/deadline", response_model=GameweekDeadlineResponse)
async def get_gameweek_deadline(
    gameweek: Annotated[int, Path(ge=1, le=99, description="Gameweek number")],
    service: Annotated[LeagueStandingsService, Depends(get_standings_service)],
) -> GameweekDeadlineResponse:
    """Get the prediction deadline (first kickoff minus buffer) for a gameweek."""
    try:
        result = await service.get_gameweek_deadline(gameweek)
    except DataUnavailableError as e:
        raise HTTPException(status_code=503, detail="Fixture data temporarily unavailable") from e

    return GameweekDeadlineResponse(
        gameweek=result.gameweek,
        deadline=result.deadline,
        is_open=result.is_open,
    )
