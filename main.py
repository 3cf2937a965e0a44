"""
Ceeps League
Scorekeeping and statistics tracker for the Ceeps beer pong league.

Features:
- Game submission, editing and deletion with validated scores
- Running per-player stats kept in step with the game log
- Leaderboard with deterministic tie-breaking
- Player roster and Hall of Fame records
- JSON API (Flask) and Excel export

Run with: python main.py serve
"""

import argparse
import logging
import sys

import config
from database import DatabaseManager
from errors import LeagueError
from excel_exporter import ExcelExporter
from league_service import LeagueService
from leaderboard import SORT_FIELDS
from web_server import LeagueServer

_logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ceeps league scorekeeper")
    parser.add_argument("--db", default=config.DB_PATH, help="Path to the SQLite database")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the JSON API server")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)

    rebuild = subparsers.add_parser(
        "rebuild-stats", help="Recompute player stats from the game log")
    rebuild.add_argument("players", nargs="*",
                         help="Only recompute these players (default: everyone)")

    export = subparsers.add_parser("export", help="Export league data to .xlsx")
    export.add_argument("what", choices=["leaderboard", "games"])
    export.add_argument("output", help="Destination .xlsx file")
    export.add_argument("--sort-by", default=config.DEFAULT_LEADERBOARD_SORT,
                        choices=sorted(SORT_FIELDS))
    return parser


def _rebuild_stats(service: LeagueService, players: list[str]) -> int:
    if players:
        result = service.recalculate_players(players)
    else:
        result = service.rebuild_all_stats()
    print(f"Recalculated stats for {result['players_recalculated']} players")
    return 0


def _export(service: LeagueService, what: str, output: str, sort_by: str) -> int:
    exporter = ExcelExporter()
    if what == "leaderboard":
        data = exporter.export_leaderboard(service.get_leaderboard(sort_by, None), sort_by)
    else:
        data = exporter.export_games(service.get_all_games())
    with open(output, "wb") as f:
        f.write(data)
    print(f"Wrote {output}")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    logging.basicConfig(level=config.LOG_LEVEL,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = _build_parser().parse_args(argv)
    command = args.command or "serve"

    if command == "serve":
        server = LeagueServer(args.db, getattr(args, "host", config.HOST),
                              getattr(args, "port", config.PORT))
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            _logger.info("Shutting down")
        return 0

    db = DatabaseManager(args.db)
    service = LeagueService(db)
    try:
        if command == "rebuild-stats":
            return _rebuild_stats(service, args.players)
        return _export(service, args.what, args.output, args.sort_by)
    except LeagueError as e:
        _logger.error(str(e))
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
