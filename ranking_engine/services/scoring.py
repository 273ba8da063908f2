"""Pure scoring functions for mini-league tables.

These functions are stateless and have no database or external dependencies,
making them easy to test in isolation. The orchestration services fetch the
inputs, call into this module, and cache the output.
"""

from collections.abc import Iterable, Iterator, Mapping

from ranking_engine.services.models import (
    FINISHED_STATUS,
    PROVISIONAL_STATUSES,
    VALID_OUTCOMES,
    GameweekTableRow,
    GwMemberScore,
    League,
    LiveScore,
    Outcome,
    OutcomeRow,
    Pick,
    SeasonStanding,
    Submission,
)

# =============================================================================
# Constants
# =============================================================================

# League points for a gameweek win. Shared wins are NOT 3 / N.
OUTRIGHT_WIN_POINTS = 3
SHARED_WIN_POINTS = 1

DEFAULT_UNICORN_MIN_MEMBERS = 3


# =============================================================================
# Outcome Index
# =============================================================================


class OutcomeIndex(Mapping[tuple[int, int], Outcome]):
    """Lookup from (gameweek, fixture_index) to the official result."""

    def __init__(self, results: Mapping[tuple[int, int], Outcome] | None = None):
        self._results: dict[tuple[int, int], Outcome] = dict(results or {})
        self._by_gameweek: dict[int, dict[int, Outcome]] = {}
        for (gw, idx), outcome in self._results.items():
            self._by_gameweek.setdefault(gw, {})[idx] = outcome

    def __getitem__(self, key: tuple[int, int]) -> Outcome:
        return self._results[key]

    def __iter__(self) -> Iterator[tuple[int, int]]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def for_gameweek(self, gameweek: int) -> dict[int, Outcome]:
        """Return fixture_index -> outcome for one gameweek."""
        return dict(self._by_gameweek.get(gameweek, {}))

    def gameweeks(self) -> list[int]:
        """Gameweeks with at least one outcome, ascending."""
        return sorted(self._by_gameweek)

    def with_provisional(
        self, gameweek: int, outcomes: Mapping[int, Outcome]
    ) -> "OutcomeIndex":
        """Return a new index where `outcomes` fill fixtures not yet decided.

        Official results always win over provisional ones.
        """
        merged = dict(self._results)
        for idx, outcome in outcomes.items():
            merged.setdefault((gameweek, idx), outcome)
        return OutcomeIndex(merged)


def outcome_from_row(row: OutcomeRow) -> Outcome | None:
    """Resolve the H/D/A outcome of a result row.

    Uses the stored result when valid, otherwise derives it from the goals.
    Returns None when the row carries neither.
    """
    if row.result in VALID_OUTCOMES:
        return row.result  # type: ignore[return-value]
    if row.home_goals is not None and row.away_goals is not None:
        return _outcome_from_goals(row.home_goals, row.away_goals)
    return None


def _outcome_from_goals(home: int, away: int) -> Outcome:
    if home > away:
        return "H"
    if home < away:
        return "A"
    return "D"


def build_outcome_index(rows: Iterable[OutcomeRow]) -> OutcomeIndex:
    """Build the Outcome Index from flat result rows.

    Duplicate (gameweek, fixture_index) rows are not expected; the last one
    seen wins. Rows without a usable result are skipped.

    Args:
        rows: Result rows from the Outcome Store

    Returns:
        OutcomeIndex keyed by (gameweek, fixture_index)
    """
    results: dict[tuple[int, int], Outcome] = {}
    for row in rows:
        outcome = outcome_from_row(row)
        if outcome is None:
            continue
        results[(row.gameweek, row.fixture_index)] = outcome
    return OutcomeIndex(results)


def outcomes_from_live_scores(
    live_scores: Iterable[LiveScore],
    gameweek: int,
    finished_only: bool = False,
) -> dict[int, Outcome]:
    """Derive provisional outcomes for a gameweek from live scores.

    Args:
        live_scores: Live score rows (any gameweek)
        gameweek: Gameweek to derive outcomes for
        finished_only: Only accept fixtures with status FINISHED

    Returns:
        Dict mapping fixture_index -> provisional outcome
    """
    outcomes: dict[int, Outcome] = {}
    for live in live_scores:
        if live.gameweek != gameweek:
            continue
        if finished_only:
            if live.status != FINISHED_STATUS:
                continue
        elif live.status not in PROVISIONAL_STATUSES:
            continue
        outcomes[live.fixture_index] = _outcome_from_goals(
            live.home_score, live.away_score
        )
    return outcomes


def is_gameweek_decided(
    outcome_index: OutcomeIndex, gameweek: int, fixture_count: int | None
) -> bool:
    """Check whether every fixture of a gameweek has an outcome."""
    if not fixture_count:
        return False
    return len(outcome_index.for_gameweek(gameweek)) >= fixture_count


def latest_decided_gameweek(
    outcome_index: OutcomeIndex, fixture_counts: Mapping[int, int]
) -> int | None:
    """Find the latest fully-decided gameweek.

    Falls back to the latest gameweek with any outcome when fixture counts
    are unknown.
    """
    gameweeks = outcome_index.gameweeks()
    if not gameweeks:
        return None
    if not fixture_counts:
        return gameweeks[-1]

    for gw in reversed(gameweeks):
        if is_gameweek_decided(outcome_index, gw, fixture_counts.get(gw)):
            return gw
    return None


# =============================================================================
# Per-Gameweek Scorer
# =============================================================================


def score_gameweek(
    league: League,
    gameweek: int,
    picks: Iterable[Pick],
    submissions: Iterable[Submission],
    outcome_index: OutcomeIndex,
    min_unicorn_members: int = DEFAULT_UNICORN_MIN_MEMBERS,
) -> list[GwMemberScore]:
    """Score one league gameweek.

    Only members with a Submission for the gameweek get a row; stray picks
    from members who never submitted are ignored. Picks for fixtures without
    an outcome (or with an unknown pick value) never score.

    A unicorn is awarded when exactly one submitted member is correct on a
    fixture and at least `min_unicorn_members` members submitted.

    Args:
        league: League with its membership snapshot
        gameweek: Gameweek to score
        picks: Picks (any users/gameweeks; filtered here)
        submissions: Submissions (any users/gameweeks; filtered here)
        outcome_index: Official outcomes
        min_unicorn_members: Submitted-member floor for unicorns

    Returns:
        One GwMemberScore per submitted member, in membership order
    """
    submitted_ids = {s.user_id for s in submissions if s.gameweek == gameweek}
    rows: dict[str, GwMemberScore] = {}
    for member in league.members:
        if member.user_id in submitted_ids and member.user_id not in rows:
            rows[member.user_id] = GwMemberScore(user_id=member.user_id)

    if not rows:
        return []

    picks_by_fixture: dict[int, dict[str, str]] = {}
    for p in picks:
        if p.gameweek != gameweek or p.user_id not in rows:
            continue
        picks_by_fixture.setdefault(p.fixture_index, {})[p.user_id] = p.pick

    unicorns_allowed = len(rows) >= min_unicorn_members

    for fixture_index, outcome in sorted(outcome_index.for_gameweek(gameweek).items()):
        fixture_picks = picks_by_fixture.get(fixture_index, {})
        correct = [uid for uid, pick in fixture_picks.items() if pick == outcome]

        for uid in correct:
            rows[uid].score += 1

        if len(correct) == 1 and unicorns_allowed:
            rows[correct[0]].unicorns += 1

    return list(rows.values())


def gameweek_table(
    league: League, rows: Iterable[GwMemberScore]
) -> list[GameweekTableRow]:
    """Order gameweek rows for display: score, unicorns, then name."""
    table = [
        GameweekTableRow(
            user_id=r.user_id,
            name=league.member_name(r.user_id),
            score=r.score,
            unicorns=r.unicorns,
        )
        for r in rows
    ]
    table.sort(key=lambda r: (-r.score, -r.unicorns, r.name.casefold(), r.user_id))
    return table


def gameweek_winners(rows: Iterable[GwMemberScore]) -> list[str]:
    """Return the user ids of the leading (score, unicorns) tie group."""
    ordered = sorted(rows, key=lambda r: (-r.score, -r.unicorns))
    if not ordered:
        return []
    top = ordered[0]
    return [
        r.user_id
        for r in ordered
        if r.score == top.score and r.unicorns == top.unicorns
    ]


# =============================================================================
# Season Aggregator
# =============================================================================


def relevant_gameweeks(
    completed_gameweeks: Iterable[int],
    start_gw: int,
    current_gw: int | None = None,
    current_gw_decided: bool = False,
    independent_track_sentinel: int | None = None,
) -> list[int]:
    """Select the gameweeks that count toward a league's standings.

    Args:
        completed_gameweeks: Gameweeks with at least one outcome
        start_gw: The league's resolved start gameweek
        current_gw: Current gameweek number
        current_gw_decided: Whether the current gameweek is fully decided
        independent_track_sentinel: Start value meaning "include everything"

    Returns:
        Ascending list of relevant gameweeks
    """
    include_all = (
        independent_track_sentinel is not None and start_gw == independent_track_sentinel
    )
    completed = sorted(set(completed_gameweeks))
    relevant = completed if include_all else [g for g in completed if g >= start_gw]

    if (
        current_gw is not None
        and current_gw_decided
        and current_gw not in relevant
        and (include_all or current_gw >= start_gw)
    ):
        relevant = sorted([*relevant, current_gw])

    return relevant


def _group_by_gameweek(items: Iterable[Pick] | Iterable[Submission]) -> dict[int, list]:
    grouped: dict[int, list] = {}
    for item in items:
        grouped.setdefault(item.gameweek, []).append(item)
    return grouped


def aggregate_season(
    league: League,
    relevant_gws: Iterable[int],
    picks: Iterable[Pick],
    submissions: Iterable[Submission],
    outcome_index: OutcomeIndex,
    min_unicorn_members: int = DEFAULT_UNICORN_MIN_MEMBERS,
) -> list[SeasonStanding]:
    """Fold per-gameweek scores into the season table.

    For each relevant gameweek (ascending): add score to OCP and unicorns to
    the unicorn total, then award league points to the leading
    (score, unicorns) tie group - 3 for an outright win, 1 each when shared.

    Every member of the snapshot appears in the result, including members
    who never submitted.

    Args:
        league: League with its membership snapshot
        relevant_gws: Gameweeks counting toward the standings
        picks: All picks of the league's members
        submissions: All submissions of the league's members
        outcome_index: Official outcomes
        min_unicorn_members: Submitted-member floor for unicorns

    Returns:
        Standings sorted by mlt_points, unicorns, ocp (desc), then name
    """
    standings: dict[str, SeasonStanding] = {}
    for member in league.members:
        standings.setdefault(
            member.user_id, SeasonStanding(user_id=member.user_id, name=member.name)
        )

    picks_by_gw = _group_by_gameweek(picks)
    submissions_by_gw = _group_by_gameweek(submissions)

    for gw in sorted(set(relevant_gws)):
        rows = score_gameweek(
            league,
            gw,
            picks_by_gw.get(gw, []),
            submissions_by_gw.get(gw, []),
            outcome_index,
            min_unicorn_members,
        )
        if not rows:
            continue

        winners = set(gameweek_winners(rows))
        outright = len(winners) == 1

        for r in rows:
            standing = standings[r.user_id]
            standing.ocp += r.score
            standing.unicorns += r.unicorns

            if r.user_id not in winners:
                standing.form.append("L")
            elif outright:
                standing.mlt_points += OUTRIGHT_WIN_POINTS
                standing.wins += 1
                standing.form.append("W")
            else:
                standing.mlt_points += SHARED_WIN_POINTS
                standing.draws += 1
                standing.form.append("D")

    return sort_season_standings(standings.values())


def sort_season_standings(standings: Iterable[SeasonStanding]) -> list[SeasonStanding]:
    """Sort by mlt_points, unicorns, ocp (all desc), then case-insensitive name."""
    return sorted(
        standings,
        key=lambda s: (-s.mlt_points, -s.unicorns, -s.ocp, s.name.casefold(), s.user_id),
    )


# =============================================================================
# Global scores
# =============================================================================


def score_all_users(
    picks: Iterable[Pick],
    submissions: Iterable[Submission],
    outcome_index: OutcomeIndex,
) -> dict[int, dict[str, int]]:
    """Compute every submitted user's score per decided gameweek.

    Used as the comparison population for global and form ranks. A user has
    a recorded score for a gameweek only if they submitted it.

    Returns:
        Dict mapping gameweek -> {user_id: score}
    """
    scores: dict[int, dict[str, int]] = {}
    decided = set(outcome_index.gameweeks())
    for s in submissions:
        if s.gameweek in decided:
            scores.setdefault(s.gameweek, {}).setdefault(s.user_id, 0)

    # One pick per (user, gameweek, fixture); the last one seen wins
    latest: dict[tuple[str, int, int], str] = {}
    for p in picks:
        by_user = scores.get(p.gameweek)
        if by_user is None or p.user_id not in by_user:
            continue
        latest[(p.user_id, p.gameweek, p.fixture_index)] = p.pick

    for (user_id, gw, fixture_index), pick in latest.items():
        if outcome_index.get((gw, fixture_index)) == pick:
            scores[gw][user_id] += 1

    return scores
