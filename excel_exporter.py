"""
Ceeps League - Excel Export
Exports the leaderboard and the game log to .xlsx files.
"""

import io
import re
import logging

import openpyxl

_logger = logging.getLogger(__name__)

LEADERBOARD_COLUMNS = [
    ('Rank', 'rank'),
    ('Player', 'player_name'),
    ('Games Played', 'games_played'),
    ('Wins', 'games_won'),
    ('Losses', 'games_lost'),
    ('Win %', 'win_ratio'),
    ('Cups / Game', 'cups_hit_avg'),
    ('Total Cups', 'total_cups_hit'),
    ('OT Cups', 'total_ot_cups_hit'),
    ('Scorecards', 'number_of_scorecards'),
    ('Naked Laps', 'naked_laps_run'),
]


class ExcelExporter:
    """Exports league data to an in-memory .xlsx file."""

    def _to_bytes(self, wb: openpyxl.Workbook) -> bytes:
        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        return buf.read()

    def export_leaderboard(self, leaderboard: list[dict], sort_by: str) -> bytes:
        """Build a one-sheet workbook from ranked leaderboard rows.

        Args:
            leaderboard: Rows as returned by rank_players
            sort_by: Metric the rows were ranked on, used in the title row

        Returns:
            Raw bytes of the .xlsx file.
        """
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Leaderboard"

        ws.append([f"Leaderboard ({sort_by})"])
        ws.append([header for header, _ in LEADERBOARD_COLUMNS])
        for row in leaderboard:
            values = []
            for _, key in LEADERBOARD_COLUMNS:
                value = row.get(key, '')
                if key == 'win_ratio':
                    value = round(value * 100, 1)
                elif key == 'cups_hit_avg':
                    value = round(value, 2)
                values.append(value)
            ws.append(values)

        _logger.info(f"Exported leaderboard ({len(leaderboard)} rows) to Excel")
        return self._to_bytes(wb)

    def export_games(self, games: list[dict]) -> bytes:
        """Build a workbook with one summary row per game and one row per player line.

        Args:
            games: Game dicts as returned by Game.to_dict()

        Returns:
            Raw bytes of the .xlsx file.
        """
        wb = openpyxl.Workbook()
        summary = wb.active
        summary.title = "Games"
        summary.append(['Game #', 'Date', 'Team 1', 'Team 2', 'Team 1 Cups',
                        'Team 2 Cups', 'Overtime', 'Winner', 'Scorecard'])

        lines = wb.create_sheet("Player Lines")
        lines.append(['Game #', 'Date', 'Team', 'Player', 'Cups Hit', 'OT Cups',
                      'Naked Laps', 'Errors'])

        for game in games:
            summary.append([
                game['id'],
                game['date'],
                ', '.join(game['team1']),
                ', '.join(game['team2']),
                game['team1_score'],
                game['team2_score'],
                'Yes' if game.get('overtime') else 'No',
                'Team 1' if game['winner'] == 'team1' else 'Team 2',
                game['scorecard_player'],
            ])
            for team in ('team1', 'team2'):
                for name in game[team]:
                    stats = game['individual_stats'].get(name, {})
                    # Guest on both teams is keyed per team
                    if team in stats and isinstance(stats[team], dict):
                        stats = stats[team]
                    lines.append([
                        game['id'],
                        game['date'],
                        'Team 1' if team == 'team1' else 'Team 2',
                        name,
                        stats.get('cups_hit', ''),
                        stats.get('ot_cups_hit', ''),
                        stats.get('naked_laps', ''),
                        stats.get('errors') if stats.get('errors') is not None else '',
                    ])

        _logger.info(f"Exported {len(games)} games to Excel")
        return self._to_bytes(wb)

    @staticmethod
    def safe_filename(title: str) -> str:
        """Convert a title to a safe filename (no spaces or parens)."""
        name = re.sub(r'[\s()]+', '_', title).strip('_')
        return f"{name}.xlsx"
