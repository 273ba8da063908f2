"""Shared FastAPI dependencies for API routes."""

from fastapi import HTTPException

from ranking_engine.db import get_pool
from ranking_engine.services.global_ranks import GlobalRankService
from ranking_engine.services.repository import build_postgres_sources
from ranking_engine.services.standings import LeagueStandingsService
from ranking_engine.services.stores import DataSources


def require_db() -> None:
    """FastAPI dependency that requires database availability.

    Raises HTTPException 503 if the database pool is not initialized.

    Usage:
        @router.get("/endpoint")
        async def endpoint(_: None = Depends(require_db)):
            ...
    """
    try:
        get_pool()
    except RuntimeError as e:
        raise HTTPException(
            status_code=503,
            detail="Database not available. This feature requires database connection.",
        ) from e


def get_sources() -> DataSources:
    """Collaborators backed by the asyncpg pool. Overridden in tests."""
    require_db()
    return build_postgres_sources()


def get_standings_service() -> LeagueStandingsService:
    return LeagueStandingsService(get_sources())


def get_rank_service() -> GlobalRankService:
    return GlobalRankService(get_sources())
