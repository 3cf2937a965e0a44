"""
Ceeps League - Game Rules
Validates a raw game submission and normalizes it into a Game record.

Scores, winner, naked laps and the scorecard holder are all derived from the
per-player cups here, so a stored Game is always internally consistent.
"""

from datetime import date as date_cls, datetime
from typing import Optional, Any
import logging

from config import GUEST_PLAYER_NAME, TEAM_SIZE, TEAMS, NAKED_LAP_CUP_THRESHOLD
from database import Game, PlayerLine
from errors import ValidationError

_logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('date', 'team1', 'team2', 'individual_stats')


def derive_naked_laps(cups_hit: int, on_losing_team: bool,
                      override: Optional[int] = None) -> int:
    """Effective naked laps for one player.

    A positive override always wins. Otherwise (no override, or 0) a losing
    player with NAKED_LAP_CUP_THRESHOLD cups or fewer runs one lap.
    """
    if override:
        return override
    if on_losing_team and cups_hit <= NAKED_LAP_CUP_THRESHOLD:
        return 1
    return 0


def _parse_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_cls):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date().isoformat()
        except ValueError:
            pass
    raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD", field='date')


def _non_negative_int(value: Any, field: str, required: bool = False) -> Optional[int]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    # bool is an int subclass; True cups makes no sense
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return value


def _parse_team(value: Any, team: str) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{team} must be a list of player names", field=team)
    if len(value) != TEAM_SIZE:
        raise ValidationError(f"Each team must have exactly {TEAM_SIZE} players", field=team)
    names = []
    for name in value:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"{team} contains an empty player name", field=team)
        names.append(name.strip())
    return names


def _check_lineups(team1: list[str], team2: list[str], roster: Optional[set[str]]):
    for team, names in zip(TEAMS, (team1, team2)):
        if names.count(GUEST_PLAYER_NAME) > 1:
            raise ValidationError(f"{GUEST_PLAYER_NAME} can appear at most once per team",
                                  field=team)

    tracked = [name for name in team1 + team2 if name != GUEST_PLAYER_NAME]
    duplicates = sorted({name for name in tracked if tracked.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate players in game: {', '.join(duplicates)}",
                              field=_team_of(duplicates[0], team2))

    if roster is not None:
        unknown = sorted({name for name in tracked if name not in roster})
        if unknown:
            raise ValidationError(f"Unknown players: {', '.join(unknown)}",
                                  field=_team_of(unknown[0], team2))


def _team_of(name: str, team2: list[str]) -> str:
    # A name on both teams is reported against team2, where the clash shows up
    return TEAMS[1] if name in team2 else TEAMS[0]


def _stats_entry(individual_stats: dict, name: str, team: str) -> dict:
    """Find the raw stats dict for one team slot."""
    if name not in individual_stats:
        raise ValidationError(f"Missing individual stats for {name}", field='individual_stats')
    entry = individual_stats[name]
    if not isinstance(entry, dict):
        raise ValidationError(f"Stats for {name} must be an object", field='individual_stats')

    if name == GUEST_PLAYER_NAME and set(entry) and set(entry) <= set(TEAMS):
        # Per-team Guest entry: {"team1": {...}, "team2": {...}}
        if team not in entry or not isinstance(entry[team], dict):
            raise ValidationError(f"Missing {GUEST_PLAYER_NAME} stats for {team}",
                                  field='individual_stats')
        return entry[team]
    return entry


def _build_line(entry: dict, name: str, team: str, slot: int) -> PlayerLine:
    label = f"individual_stats[{name}]"
    return PlayerLine(
        player_name=name,
        team=team,
        slot=slot,
        cups_hit=_non_negative_int(entry.get('cups_hit'), f"{label}.cups_hit", required=True),
        ot_cups_hit=_non_negative_int(entry.get('ot_cups_hit'), f"{label}.ot_cups_hit") or 0,
        naked_laps_override=_non_negative_int(entry.get('naked_laps'), f"{label}.naked_laps"),
        errors=_non_negative_int(entry.get('errors'), f"{label}.errors"),
    )


def _decide_winner(scores: dict, ot_cups: dict, overtime: bool) -> str:
    t1, t2 = TEAMS
    if scores[t1] != scores[t2]:
        if overtime:
            raise ValidationError("Overtime games must have tied regulation scores",
                                  field='overtime')
        return t1 if scores[t1] > scores[t2] else t2
    if overtime and ot_cups[t1] != ot_cups[t2]:
        return t1 if ot_cups[t1] > ot_cups[t2] else t2
    raise ValidationError("Game cannot end in a tie", field='winner')


def _pick_scorecard(lines: list[PlayerLine], winner: str, requested: Optional[str]) -> str:
    winning = [line for line in lines if line.team == winner]
    best = max(line.total_cups for line in winning)
    leaders = [line.player_name for line in winning if line.total_cups == best]

    if requested is not None:
        if not isinstance(requested, str) or requested.strip() not in leaders:
            raise ValidationError(
                f"Scorecard player must be a top scorer on the winning team "
                f"({', '.join(leaders)})",
                field='scorecard_player'
            )
        return requested.strip()

    if len(leaders) > 1:
        raise ValidationError(
            f"Scorecard tie between {', '.join(leaders)}; choose one explicitly",
            field='scorecard_player'
        )
    return leaders[0]


def validate_game(data: dict, roster: Optional[set[str]] = None) -> Game:
    """Validate a submission and build an unsaved Game.

    Args:
        data: Raw payload (date, team1, team2, individual_stats and optionally
            winner, team1_score, team2_score, scorecard_player, overtime)
        roster: Known player names. Guest is always allowed. None skips the
            roster check.

    Returns:
        Game with id None and all derived fields filled in.

    Raises:
        ValidationError: naming the first violated constraint.
    """
    if not isinstance(data, dict):
        raise ValidationError("Game data must be an object")
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "", [], {})]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    game_date = _parse_date(data['date'])
    team1 = _parse_team(data['team1'], 'team1')
    team2 = _parse_team(data['team2'], 'team2')
    _check_lineups(team1, team2, roster)

    individual_stats = data['individual_stats']
    if not isinstance(individual_stats, dict):
        raise ValidationError("individual_stats must be an object", field='individual_stats')
    extra = sorted(set(individual_stats) - set(team1) - set(team2))
    if extra:
        raise ValidationError(f"Stats given for players not in the game: {', '.join(extra)}",
                              field='individual_stats')

    lines = []
    for team, names in zip(TEAMS, (team1, team2)):
        for slot, name in enumerate(names):
            entry = _stats_entry(individual_stats, name, team)
            lines.append(_build_line(entry, name, team, slot))

    overtime = bool(data.get('overtime', False))
    scores = {team: sum(l.cups_hit for l in lines if l.team == team) for team in TEAMS}
    ot_cups = {team: sum(l.ot_cups_hit for l in lines if l.team == team) for team in TEAMS}
    if not overtime and any(ot_cups.values()):
        raise ValidationError("Overtime cups given for a game without overtime",
                              field='overtime')

    for team in TEAMS:
        supplied = data.get(f"{team}_score")
        if supplied is not None and supplied != scores[team]:
            raise ValidationError(
                f"{team}_score {supplied} does not match the sum of cups hit ({scores[team]})",
                field=f"{team}_score"
            )

    winner = _decide_winner(scores, ot_cups, overtime)
    supplied_winner = data.get('winner')
    if supplied_winner is not None and supplied_winner != winner:
        raise ValidationError(f"Winner {supplied_winner!r} does not match the scores ({winner})",
                              field='winner')

    for line in lines:
        line.naked_laps = derive_naked_laps(line.cups_hit, line.team != winner,
                                            line.naked_laps_override)

    scorecard_player = _pick_scorecard(lines, winner, data.get('scorecard_player') or None)
    _logger.debug(f"Validated game on {game_date}: {winner} wins "
                  f"{scores['team1']}-{scores['team2']}, scorecard {scorecard_player}")

    return Game(
        id=None,
        date=game_date,
        team1=team1,
        team2=team2,
        winner=winner,
        team1_score=scores['team1'],
        team2_score=scores['team2'],
        scorecard_player=scorecard_player,
        lines=lines,
        overtime=overtime,
        team1_ot_cups=ot_cups['team1'],
        team2_ot_cups=ot_cups['team2'],
    )
