#!/usr/bin/env python
"""
Print a league's season standings and gameweek table from the database.

Usage:
    python -m scripts.show_league_table 42
    python -m scripts.show_league_table 42 --gameweek 12
    python -m scripts.show_league_table 42 --user 7   # mark a member's row
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment before settings are read
load_dotenv(".env.local")
load_dotenv(".env")

from ranking_engine.db import close_pool, init_pool  # noqa: E402
from ranking_engine.services.repository import build_postgres_sources  # noqa: E402
from ranking_engine.services.standings import (  # noqa: E402
    GameweekTable,
    LeagueNotFoundError,
    LeagueStandings,
    LeagueStandingsService,
)
from ranking_engine.services.stores import DataUnavailableError  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def format_standings(result: LeagueStandings, user_id: str | None = None) -> list[str]:
    """Render season standings as text lines."""
    lines = [
        f"{result.league_name} (league {result.league_id})",
        f"Start GW{result.start_gw}, {len(result.relevant_gameweeks)} gameweek(s) counted",
        f"{'#':>3}  {'Name':<24} {'MLT':>4} {'Uni':>4} {'OCP':>4}  Form",
    ]
    for position, s in enumerate(result.standings, start=1):
        marker = "*" if s.user_id == user_id else " "
        form = "".join(s.form[-5:])
        lines.append(
            f"{position:>3}{marker} {s.name[:24]:<24} {s.mlt_points:>4} {s.unicorns:>4} "
            f"{s.ocp:>4}  {form}"
        )
    if result.latest_gameweek is not None and result.latest_winners:
        names = {s.user_id: s.name for s in result.standings}
        winners = ", ".join(names.get(uid, uid) for uid in result.latest_winners)
        lines.append(f"GW{result.latest_gameweek} winner(s): {winners}")
    if result.stale:
        lines.append("(stale: served from cache)")
    return lines


def format_gameweek_table(table: GameweekTable) -> list[str]:
    """Render a gameweek table as text lines."""
    title = f"GW{table.gameweek}" + (" (provisional)" if table.provisional else "")
    lines = [title, f"{'#':>3}  {'Name':<24} {'Pts':>4} {'Uni':>4}"]
    for position, row in enumerate(table.rows, start=1):
        lines.append(f"{position:>3}  {row.name[:24]:<24} {row.score:>4} {row.unicorns:>4}")
    if not table.rows:
        lines.append("  (no submissions)")
    return lines


async def show_league(league_id: str, gameweek: int | None, user_id: str | None) -> int:
    await init_pool()
    try:
        service = LeagueStandingsService(build_postgres_sources())
        standings = await service.get_league_standings(league_id)
        gw = gameweek if gameweek is not None else standings.gameweek
        table = await service.get_gameweek_table(league_id, gw)
    except LeagueNotFoundError as e:
        logger.error(str(e))
        return 1
    except DataUnavailableError as e:
        logger.error(f"Data unavailable: {e}")
        return 2
    finally:
        await close_pool()

    print("\n".join(format_standings(standings, user_id)))
    print()
    print("\n".join(format_gameweek_table(table)))
    return 0


async def main() -> None:
    parser = argparse.ArgumentParser(description="Show a league's standings and gameweek table")
    parser.add_argument("league_id", help="League ID")
    parser.add_argument(
        "--gameweek",
        type=int,
        default=None,
        help="Gameweek table to show (current gameweek if not provided)",
    )
    parser.add_argument("--user", default=None, help="User ID to highlight")
    args = parser.parse_args()

    try:
        code = await show_league(args.league_id, args.gameweek, args.user)
    except ValueError as e:
        # Raised by init_pool when DATABASE_URL is missing
        logger.error(str(e))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    asyncio.run(main())
