"""Service layer for business logic."""

from ranking_engine.services.global_ranks import GlobalRankService
from ranking_engine.services.standings import LeagueNotFoundError, LeagueStandingsService

__all__ = ["GlobalRankService", "LeagueNotFoundError", "LeagueStandingsService"]
