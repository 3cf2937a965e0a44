"""
Ceeps League - Leaderboard
Deterministic ranking of player aggregates.
"""

from typing import Optional, Iterable

from config import GUEST_PLAYER_NAME
from database import PlayerAggregate
from errors import ValidationError

# sort_by key -> aggregate attribute
SORT_FIELDS = {
    'win_ratio': 'win_ratio',
    'cups_hit_avg': 'cups_hit_avg',
    'total_cups': 'total_cups_hit',
    'total_wins': 'games_won',
    'games_played': 'games_played',
    'scorecards': 'number_of_scorecards',
}


def _sort_key(sort_by: str):
    primary = SORT_FIELDS[sort_by]

    def key(aggregate: PlayerAggregate) -> tuple:
        parts = [-getattr(aggregate, primary)]
        if primary != 'win_ratio':
            parts.append(-aggregate.win_ratio)
        if primary != 'games_played':
            parts.append(-aggregate.games_played)
        # Name last so every pair of rows compares unequal
        parts.append(aggregate.player_name)
        return tuple(parts)

    return key


def rank_players(aggregates: Iterable[PlayerAggregate], sort_by: str = "win_ratio",
                 limit: Optional[int] = None) -> list[dict]:
    """Rank aggregates for one metric.

    Players with no games and the Guest placeholder are left out. Ties on the
    metric fall back to win ratio, then games played, then name (A-Z). Ranks
    are positional, so fully tied rows still get distinct consecutive ranks.

    Args:
        aggregates: Current aggregate rows
        sort_by: One of SORT_FIELDS
        limit: Maximum rows to return, None for all

    Returns:
        List of aggregate dicts with a 1-based 'rank' key.
    """
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            f"Unknown sort_by {sort_by!r}; expected one of {', '.join(SORT_FIELDS)}",
            field='sort_by'
        )
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise ValidationError("limit must be a positive integer", field='limit')

    eligible = [a for a in aggregates
                if a.games_played > 0 and a.player_name != GUEST_PLAYER_NAME]
    eligible.sort(key=_sort_key(sort_by))
    if limit is not None:
        eligible = eligible[:limit]

    leaderboard = []
    for position, aggregate in enumerate(eligible, start=1):
        row = {'rank': position}
        row.update(aggregate.to_dict())
        leaderboard.append(row)
    return leaderboard
