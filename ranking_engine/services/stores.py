"""Collaborator ports consumed by the ranking engine.

The engine reads picks, outcomes, memberships, submissions, gameweek
metadata and (optionally) live scores through these protocols. The asyncpg
implementations live in repository.py; tests use in-memory fakes.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from ranking_engine.services.models import (
    League,
    LiveScore,
    OutcomeRow,
    Pick,
    Submission,
)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


class DataUnavailableError(Exception):
    """Raised when a collaborator call fails or times out."""


class PickStore(Protocol):
    """Paged access to picks."""

    async def get_picks(
        self,
        user_ids: Sequence[str] | None,
        gw_from: int,
        gw_to: int,
        *,
        offset: int,
        limit: int,
    ) -> list[Pick]:
        """Return one page of picks ordered stably. `user_ids=None` means all users."""
        ...


class OutcomeStore(Protocol):
    async def get_outcomes(self) -> list[OutcomeRow]:
        """Return every known result row."""
        ...


class MembershipStore(Protocol):
    async def get_league(self, league_id: str) -> League | None:
        """Return league metadata with its current membership snapshot."""
        ...

    async def get_user_leagues(self, user_id: str) -> list[League]:
        """Return every league the user belongs to, with memberships."""
        ...


class SubmissionStore(Protocol):
    async def get_submissions(
        self,
        gw_from: int,
        gw_to: int,
        user_ids: Sequence[str] | None = None,
    ) -> list[Submission]:
        """Return submissions in [gw_from, gw_to]. `user_ids=None` means all users."""
        ...


class GameweekStore(Protocol):
    async def get_current_gameweek(self) -> int:
        ...

    async def get_fixture_counts(self) -> dict[int, int]:
        """Return gameweek -> number of fixtures."""
        ...

    async def get_first_kickoffs(self, gameweeks: Sequence[int]) -> dict[int, datetime]:
        """Return gameweek -> earliest fixture kickoff (gameweeks without one omitted)."""
        ...


class LiveScoreStore(Protocol):
    async def get_live_scores(self, gameweek: int) -> list[LiveScore]:
        ...


@dataclass
class DataSources:
    """Bundle of collaborators handed to the services."""

    picks: PickStore
    outcomes: OutcomeStore
    memberships: MembershipStore
    submissions: SubmissionStore
    gameweeks: GameweekStore
    live_scores: LiveScoreStore | None = None
    clock: Clock = field(default=utc_now)


async def fetch_all_picks(
    store: PickStore,
    user_ids: Sequence[str] | None,
    gw_from: int,
    gw_to: int,
    page_size: int = 1000,
) -> list[Pick]:
    """Read every page of picks; a short page signals the end of the data.

    Args:
        store: Pick Store
        user_ids: Users to fetch (None = all users)
        gw_from: First gameweek (inclusive)
        gw_to: Last gameweek (inclusive)
        page_size: Rows per page

    Returns:
        All matching picks
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")
    if user_ids is not None and not user_ids:
        return []

    picks: list[Pick] = []
    offset = 0
    while True:
        page = await store.get_picks(
            user_ids, gw_from, gw_to, offset=offset, limit=page_size
        )
        picks.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    return picks
