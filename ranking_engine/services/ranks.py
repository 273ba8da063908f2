"""Global and form rank calculations.

All variants share one pattern: rank a user within a population ordered by a
metric (descending). Ties share a rank ("1224" standard competition ranking),
so the rank never depends on the order the population was supplied in.
"""

from collections.abc import Mapping

from ranking_engine.services.models import (
    GameweekPoints,
    RankMovement,
    RankResult,
    SeasonStats,
    Streak,
    WeeklyPar,
)

FORM_WINDOWS = (5, 10)
LAST_GAMEWEEK = "last_gameweek"
SEASON = "season"

# Top 25%: at least this share of a gameweek's players scored at or below the user
TOP_QUARTER_PERCENTILE = 75.0


def form_metric(window: int) -> str:
    return f"form{window}"


def percentile_for(rank: int, total: int) -> int:
    """Share of the population ranked at or below the user, 1-100."""
    raw = round(100 - 100 * (rank - 1) / total)
    return max(1, min(100, raw))


def percentile_label(rank: int, total: int) -> str:
    """Human label such as "Top 5%" (rank 1 of 100 -> "Top 1%")."""
    top = max(1, min(100, round(100 * rank / total)))
    return f"Top {top}%"


def rank_in_population(
    metric_by_user: Mapping[str, int], user_id: str
) -> RankResult | None:
    """Rank a user within a population by metric, descending.

    Args:
        metric_by_user: Dict mapping user_id -> metric value (the population)
        user_id: User to rank

    Returns:
        RankResult, or None if the user is not part of the population
    """
    if user_id not in metric_by_user:
        return None

    mine = metric_by_user[user_id]
    ahead = 0
    level = 0
    for uid, value in metric_by_user.items():
        if value > mine:
            ahead += 1
        elif value == mine and uid != user_id:
            level += 1

    total = len(metric_by_user)
    rank = ahead + 1
    return RankResult(
        rank=rank,
        total=total,
        is_tied=level >= 1,
        percentile=percentile_for(rank, total),
        percentile_label=percentile_label(rank, total),
    )


def window_totals(
    scores_by_gw: Mapping[int, Mapping[str, int]], start_gw: int, end_gw: int
) -> dict[str, int]:
    """Sum each user's scores over [start_gw, end_gw].

    The population is every user with any score inside the window.
    """
    totals: dict[str, int] = {}
    for gw in range(start_gw, end_gw + 1):
        for uid, score in scores_by_gw.get(gw, {}).items():
            totals[uid] = totals.get(uid, 0) + score
    return totals


def last_gameweek_rank(
    scores_by_gw: Mapping[int, Mapping[str, int]], latest_gw: int, user_id: str
) -> RankResult | None:
    """Rank among every user with a recorded score for the latest gameweek."""
    return rank_in_population(scores_by_gw.get(latest_gw, {}), user_id)


def form_rank(
    scores_by_gw: Mapping[int, Mapping[str, int]],
    latest_gw: int,
    window: int,
    user_id: str,
) -> RankResult | None:
    """Rank over the trailing `window` gameweeks ending at `latest_gw`.

    Undefined (None) until at least `window` gameweeks have been played.
    """
    if latest_gw < window:
        return None
    totals = window_totals(scores_by_gw, latest_gw - window + 1, latest_gw)
    return rank_in_population(totals, user_id)


def season_totals(scores_by_gw: Mapping[int, Mapping[str, int]]) -> dict[str, int]:
    """Season competition points (OCP) per user."""
    totals: dict[str, int] = {}
    for by_user in scores_by_gw.values():
        for uid, score in by_user.items():
            totals[uid] = totals.get(uid, 0) + score
    return totals


def season_rank(
    scores_by_gw: Mapping[int, Mapping[str, int]], user_id: str
) -> RankResult | None:
    """Rank among all users with a season total."""
    return rank_in_population(season_totals(scores_by_gw), user_id)


def season_movement(
    scores_by_gw: Mapping[int, Mapping[str, int]], latest_gw: int, user_id: str
) -> RankMovement:
    """Season rank before and after the latest gameweek.

    "Before" is the season as it stood after the previous gameweek: only
    users who had played by then, without the latest gameweek's scores.
    """
    after_totals = season_totals(scores_by_gw)
    before_totals = season_totals(
        {gw: by_user for gw, by_user in scores_by_gw.items() if gw < latest_gw}
    )
    return _movement(
        rank_in_population(before_totals, user_id),
        rank_in_population(after_totals, user_id),
    )


def form_movement(
    scores_by_gw: Mapping[int, Mapping[str, int]],
    latest_gw: int,
    window: int,
    user_id: str,
) -> RankMovement:
    """Form rank for the window ending at the previous gameweek vs. now."""
    after = form_rank(scores_by_gw, latest_gw, window, user_id)
    before = (
        form_rank(scores_by_gw, latest_gw - 1, window, user_id)
        if latest_gw > window
        else None
    )
    return _movement(before, after)


def _movement(before: RankResult | None, after: RankResult | None) -> RankMovement:
    before_rank = before.rank if before else None
    after_rank = after.rank if after else None
    change = (
        before_rank - after_rank
        if before_rank is not None and after_rank is not None
        else None
    )
    return RankMovement(before=before_rank, after=after_rank, change=change)


# =============================================================================
# Trophy cabinet and season stats
# =============================================================================


def trophy_cabinet(
    scores_by_gw: Mapping[int, Mapping[str, int]], user_id: str
) -> dict[str, int]:
    """Count the gameweeks at which the user ranked first, per metric.

    Every gameweek is ranked as if it were the latest: its own score, the
    form windows ending there (from gameweek 5 / 10) and the season on
    cumulative points up to it.
    """
    cabinet = {LAST_GAMEWEEK: 0, **{form_metric(w): 0 for w in FORM_WINDOWS}, SEASON: 0}
    running: dict[str, int] = {}
    for gw in sorted(scores_by_gw):
        for uid, score in scores_by_gw[gw].items():
            running[uid] = running.get(uid, 0) + score

        ranked = {
            LAST_GAMEWEEK: last_gameweek_rank(scores_by_gw, gw, user_id),
            SEASON: rank_in_population(running, user_id),
        }
        for window in FORM_WINDOWS:
            ranked[form_metric(window)] = form_rank(scores_by_gw, gw, window, user_id)

        for metric, result in ranked.items():
            if result is not None and result.rank == 1:
                cabinet[metric] += 1
    return cabinet


def gameweek_percentile(scores: Mapping[str, int], user_id: str) -> float | None:
    """Share (0-100) of a gameweek's players scoring at or below the user."""
    if user_id not in scores:
        return None
    mine = scores[user_id]
    at_or_below = sum(1 for value in scores.values() if value <= mine)
    return 100 * at_or_below / len(scores)


def best_streak(
    scores_by_gw: Mapping[int, Mapping[str, int]],
    user_id: str,
    threshold: float = TOP_QUARTER_PERCENTILE,
) -> Streak:
    """Longest run of consecutive gameweeks at or above `threshold`.

    A gameweek the user did not play breaks the run. The earliest run wins
    ties.
    """
    best = Streak(length=0)
    length = 0
    start: int | None = None
    for gw in sorted(scores_by_gw):
        percentile = gameweek_percentile(scores_by_gw[gw], user_id)
        if percentile is None or percentile < threshold:
            length = 0
            continue
        if length == 0:
            start = gw
        length += 1
        if length > best.length:
            best = Streak(length=length, start_gw=start, end_gw=gw)
    return best


def season_stats(
    scores_by_gw: Mapping[int, Mapping[str, int]], user_id: str
) -> SeasonStats:
    """Best/lowest gameweek, average, weekly par and best top-25% streak."""
    played = [
        GameweekPoints(gameweek=gw, points=scores_by_gw[gw][user_id])
        for gw in sorted(scores_by_gw)
        if user_id in scores_by_gw[gw]
    ]
    weekly_par = []
    for entry in played:
        population = scores_by_gw[entry.gameweek]
        weekly_par.append(
            WeeklyPar(
                gameweek=entry.gameweek,
                user_points=entry.points,
                average_points=sum(population.values()) / len(population),
            )
        )

    # max()/min() keep the first of equal values, i.e. the earliest gameweek
    return SeasonStats(
        gameweeks_played=len(played),
        average_points=sum(p.points for p in played) / len(played) if played else None,
        best_gameweek=max(played, key=lambda p: p.points, default=None),
        lowest_gameweek=min(played, key=lambda p: p.points, default=None),
        best_top_quarter_streak=best_streak(scores_by_gw, user_id),
        weekly_par=weekly_par,
    )
