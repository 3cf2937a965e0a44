"""
Ceeps League - Database Manager
SQLite storage for games, per-player aggregates, the roster and the Hall of Fame.
"""

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Iterable
from dataclasses import dataclass, field
import logging

from config import GUEST_PLAYER_NAME, TEAMS, SQLITE_TIMEOUT_SECONDS
from errors import NotFoundError, StorageError

_db_logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _column_exists(cursor: sqlite3.Cursor, table: str, column: str) -> bool:
    """Check if a column exists in a table.

    Args:
        cursor: SQLite cursor
        table: Table name
        column: Column name

    Returns:
        True if column exists, False otherwise
    """
    cursor.execute(f"PRAGMA table_info({table})")
    columns = [row[1] for row in cursor.fetchall()]
    return column in columns


def _safe_add_column(cursor: sqlite3.Cursor, table: str, column: str,
                     column_def: str) -> bool:
    """Add a column to a table if it doesn't exist.

    Args:
        cursor: SQLite cursor
        table: Table name
        column: Column name
        column_def: Full column definition (e.g., "INTEGER DEFAULT 0")

    Returns:
        True if column was added, False if it already existed
    """
    if _column_exists(cursor, table, column):
        return False

    try:
        cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_def}")
        _db_logger.info(f"Added column {column} to {table}")
        return True
    except sqlite3.OperationalError as e:
        _db_logger.warning(f"Failed to add column {column} to {table}: {e}")
        return False


@dataclass
class PlayerLine:
    """One player's stat line within a single game."""
    player_name: str
    team: str  # 'team1' or 'team2'
    slot: int  # 0-3 position within the team
    cups_hit: int = 0
    ot_cups_hit: int = 0
    naked_laps: int = 0  # Effective count (override or rule-derived)
    naked_laps_override: Optional[int] = None  # None when not set by the submitter
    errors: Optional[int] = None

    @property
    def total_cups(self) -> int:
        return self.cups_hit + self.ot_cups_hit

    def to_dict(self) -> dict:
        return {
            'cups_hit': self.cups_hit,
            'ot_cups_hit': self.ot_cups_hit,
            'naked_laps': self.naked_laps,
            'naked_laps_override': self.naked_laps_override,
            'errors': self.errors,
        }


@dataclass
class Game:
    id: Optional[int]
    date: str
    team1: list[str]
    team2: list[str]
    winner: str  # 'team1' or 'team2'
    team1_score: int
    team2_score: int
    scorecard_player: str
    lines: list[PlayerLine] = field(default_factory=list)
    overtime: bool = False
    team1_ot_cups: int = 0
    team2_ot_cups: int = 0
    created_at: str = ""

    @property
    def participants(self) -> set[str]:
        """Tracked (non-Guest) player names in this game."""
        return {line.player_name for line in self.lines
                if line.player_name != GUEST_PLAYER_NAME}

    def line_for(self, player_name: str) -> Optional[PlayerLine]:
        for line in self.lines:
            if line.player_name == player_name:
                return line
        return None

    @property
    def individual_stats(self) -> dict:
        """Stat lines keyed by player name.

        A Guest on both teams is keyed by team under the 'Guest' entry.
        """
        guest_count = sum(1 for line in self.lines if line.player_name == GUEST_PLAYER_NAME)
        stats = {}
        for line in self.lines:
            if line.player_name == GUEST_PLAYER_NAME and guest_count > 1:
                stats.setdefault(GUEST_PLAYER_NAME, {})[line.team] = line.to_dict()
            else:
                stats[line.player_name] = line.to_dict()
        return stats

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'date': self.date,
            'team1': list(self.team1),
            'team2': list(self.team2),
            'winner': self.winner,
            'team1_score': self.team1_score,
            'team2_score': self.team2_score,
            'overtime': self.overtime,
            'team1_ot_cups': self.team1_ot_cups,
            'team2_ot_cups': self.team2_ot_cups,
            'scorecard_player': self.scorecard_player,
            'created_at': self.created_at,
            'individual_stats': self.individual_stats,
        }


@dataclass
class PlayerAggregate:
    player_name: str
    games_played: int = 0
    games_won: int = 0
    win_ratio: float = 0.0
    total_cups_hit: int = 0
    cups_hit_avg: float = 0.0
    total_ot_cups_hit: int = 0
    number_of_scorecards: int = 0
    naked_laps_run: int = 0
    game_ids: set[int] = field(default_factory=set)
    last_updated: str = ""
    pledge_class: Optional[int] = None  # From the roster, not stored with the aggregate

    @property
    def games_lost(self) -> int:
        return self.games_played - self.games_won

    def reset(self):
        """Zero every counter. game_ids is left alone."""
        self.games_played = 0
        self.games_won = 0
        self.total_cups_hit = 0
        self.total_ot_cups_hit = 0
        self.number_of_scorecards = 0
        self.naked_laps_run = 0
        self.refresh_ratios()

    def refresh_ratios(self):
        """Recompute derived ratios from the integer counters."""
        if self.games_played == 0:
            self.win_ratio = 0.0
            self.cups_hit_avg = 0.0
        else:
            self.win_ratio = self.games_won / self.games_played
            self.cups_hit_avg = self.total_cups_hit / self.games_played

    def to_dict(self, include_game_ids: bool = False) -> dict:
        data = {
            'player_name': self.player_name,
            'games_played': self.games_played,
            'games_won': self.games_won,
            'games_lost': self.games_lost,
            'win_ratio': self.win_ratio,
            'cups_hit_avg': self.cups_hit_avg,
            'total_cups_hit': self.total_cups_hit,
            'total_ot_cups_hit': self.total_ot_cups_hit,
            'number_of_scorecards': self.number_of_scorecards,
            'naked_laps_run': self.naked_laps_run,
            'last_updated': self.last_updated,
        }
        if include_game_ids:
            data['game_ids'] = sorted(self.game_ids)
        return data


@dataclass
class RosterPlayer:
    name: str
    pledge_class: Optional[int] = None
    created_at: str = ""


@dataclass
class HallOfFamePhoto:
    id: Optional[int]
    image_filename: str
    caption: str
    display_order: int = 0
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'image_filename': self.image_filename,
            'caption': self.caption,
            'display_order': self.display_order,
            'created_at': self.created_at,
        }


class DatabaseManager:
    def __init__(self, db_path: str = "ceeps.db"):
        self.db_path = db_path
        self.conn = None
        self._tx_depth = 0
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        if self.conn is None:
            directory = os.path.dirname(self.db_path)
            if directory and self.db_path != ":memory:":
                os.makedirs(directory, exist_ok=True)
            try:
                # Autocommit mode: writes go through transaction() explicitly
                self.conn = sqlite3.connect(self.db_path, timeout=SQLITE_TIMEOUT_SECONDS,
                                            isolation_level=None)
            except sqlite3.Error as e:
                raise StorageError(f"Could not open database {self.db_path}: {e}") from e
            self.conn.row_factory = sqlite3.Row
        return self.conn

    @contextmanager
    def transaction(self):
        """Run the block inside one BEGIN IMMEDIATE transaction.

        The write lock is taken up front, so a read-modify-write inside the
        block cannot interleave with another writer. Nested calls join the
        outer transaction. sqlite3 errors are re-raised as StorageError after
        rollback.
        """
        conn = self.get_connection()
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield conn.cursor()
            finally:
                self._tx_depth -= 1
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"Could not start transaction: {e}") from e

        self._tx_depth = 1
        try:
            yield conn.cursor()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            _db_logger.error(f"Transaction rolled back: {e}")
            raise StorageError(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._tx_depth = 0

    def _fetchall(self, query: str, params: Iterable = ()) -> list[sqlite3.Row]:
        try:
            return self.get_connection().execute(query, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def _fetchone(self, query: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        try:
            return self.get_connection().execute(query, tuple(params)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def init_database(self):
        """Initialize database tables."""
        with self.transaction() as cursor:
            # Game log
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS games (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    winner TEXT NOT NULL,
                    team1_score INTEGER NOT NULL,
                    team2_score INTEGER NOT NULL,
                    overtime INTEGER DEFAULT 0,
                    team1_ot_cups INTEGER DEFAULT 0,
                    team2_ot_cups INTEGER DEFAULT 0,
                    scorecard_player TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            ''')

            # One row per team slot; a Guest may hold a slot on each team
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS game_player_stats (
                    game_id INTEGER NOT NULL,
                    team TEXT NOT NULL,
                    slot INTEGER NOT NULL,
                    player_name TEXT NOT NULL,
                    cups_hit INTEGER NOT NULL DEFAULT 0,
                    ot_cups_hit INTEGER DEFAULT 0,
                    naked_laps INTEGER DEFAULT 0,
                    naked_laps_override INTEGER,
                    PRIMARY KEY (game_id, team, slot),
                    FOREIGN KEY (game_id) REFERENCES games(id)
                )
            ''')
            _safe_add_column(cursor, 'game_player_stats', 'errors', "INTEGER")

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_game_player_stats_player
                ON game_player_stats(player_name, game_id)
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_games_recent
                ON games(date DESC, created_at DESC, id DESC)
            ''')

            # Aggregated player stats
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS player_stats (
                    player_name TEXT PRIMARY KEY,
                    games_played INTEGER DEFAULT 0,
                    games_won INTEGER DEFAULT 0,
                    win_ratio REAL DEFAULT 0,
                    cups_hit_avg REAL DEFAULT 0,
                    total_cups_hit INTEGER DEFAULT 0,
                    number_of_scorecards INTEGER DEFAULT 0,
                    naked_laps_run INTEGER DEFAULT 0,
                    last_updated TEXT
                )
            ''')
            _safe_add_column(cursor, 'player_stats', 'total_ot_cups_hit', "INTEGER DEFAULT 0")

            # Games each aggregate was built from
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS player_stat_games (
                    player_name TEXT NOT NULL,
                    game_id INTEGER NOT NULL,
                    PRIMARY KEY (player_name, game_id)
                )
            ''')

            # Roster of known players (Guest is implicit)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS players (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            ''')
            _safe_add_column(cursor, 'players', 'pledge_class', "INTEGER")

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS hall_of_fame (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    image_filename TEXT NOT NULL,
                    caption TEXT NOT NULL,
                    display_order INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            ''')

    # ============ Roster Operations ============

    def get_roster(self) -> list[RosterPlayer]:
        """Get all roster players ordered by name."""
        rows = self._fetchall("SELECT * FROM players ORDER BY name")
        return [RosterPlayer(name=row['name'], pledge_class=row['pledge_class'],
                             created_at=row['created_at']) for row in rows]

    def roster_names(self) -> set[str]:
        return {row['name'] for row in self._fetchall("SELECT name FROM players")}

    def add_roster_player(self, name: str, pledge_class: Optional[int] = None) -> bool:
        """Add a player to the roster. Returns False if the name already exists."""
        with self.transaction() as cursor:
            cursor.execute(
                "INSERT OR IGNORE INTO players (name, pledge_class, created_at) VALUES (?, ?, ?)",
                (name, pledge_class, _now())
            )
            return cursor.rowcount > 0

    def remove_roster_player(self, name: str) -> bool:
        """Remove a player from the roster. Their aggregate row is kept."""
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM players WHERE name = ?", (name,))
            return cursor.rowcount > 0

    def replace_roster(self, names: list[str]):
        """Replace the roster with the given names, keeping pledge classes of survivors."""
        with self.transaction() as cursor:
            placeholders = ','.join('?' * len(names))
            if names:
                cursor.execute(f"DELETE FROM players WHERE name NOT IN ({placeholders})", names)
            else:
                cursor.execute("DELETE FROM players")
            now = _now()
            cursor.executemany(
                "INSERT OR IGNORE INTO players (name, created_at) VALUES (?, ?)",
                [(name, now) for name in names]
            )

    # ============ Game Operations ============

    def _insert_lines(self, cursor: sqlite3.Cursor, game_id: int, lines: list[PlayerLine]):
        cursor.executemany('''
            INSERT INTO game_player_stats
            (game_id, team, slot, player_name, cups_hit, ot_cups_hit,
             naked_laps, naked_laps_override, errors)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', [(game_id, line.team, line.slot, line.player_name, line.cups_hit,
               line.ot_cups_hit, line.naked_laps, line.naked_laps_override, line.errors)
              for line in lines])

    def create_game(self, game: Game) -> Game:
        """Persist a validated game with its stat lines. Returns the stored game."""
        created_at = _now()
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT INTO games
                (date, winner, team1_score, team2_score, overtime,
                 team1_ot_cups, team2_ot_cups, scorecard_player, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (game.date, game.winner, game.team1_score, game.team2_score,
                  1 if game.overtime else 0, game.team1_ot_cups, game.team2_ot_cups,
                  game.scorecard_player, created_at))
            game_id = cursor.lastrowid
            self._insert_lines(cursor, game_id, game.lines)
        game.id = game_id
        game.created_at = created_at
        _db_logger.info(f"Stored game {game_id} ({game.date})")
        return game

    def update_game(self, game_id: int, game: Game) -> tuple[Game, set[str], set[str]]:
        """Replace a game's fields and stat lines.

        Returns:
            Tuple of (stored game, old participants, new participants)
        """
        with self.transaction() as cursor:
            cursor.execute("SELECT created_at FROM games WHERE id = ?", (game_id,))
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Game {game_id} not found")
            cursor.execute('''
                SELECT DISTINCT player_name FROM game_player_stats
                WHERE game_id = ? AND player_name != ?
            ''', (game_id, GUEST_PLAYER_NAME))
            old_players = {r['player_name'] for r in cursor.fetchall()}

            cursor.execute('''
                UPDATE games SET
                    date = ?, winner = ?, team1_score = ?, team2_score = ?,
                    overtime = ?, team1_ot_cups = ?, team2_ot_cups = ?,
                    scorecard_player = ?
                WHERE id = ?
            ''', (game.date, game.winner, game.team1_score, game.team2_score,
                  1 if game.overtime else 0, game.team1_ot_cups, game.team2_ot_cups,
                  game.scorecard_player, game_id))
            cursor.execute("DELETE FROM game_player_stats WHERE game_id = ?", (game_id,))
            self._insert_lines(cursor, game_id, game.lines)

        game.id = game_id
        game.created_at = row['created_at']
        _db_logger.info(f"Updated game {game_id}")
        return game, old_players, game.participants

    def delete_game(self, game_id: int) -> set[str]:
        """Delete a game. Returns the tracked players who were in it."""
        with self.transaction() as cursor:
            cursor.execute("SELECT id FROM games WHERE id = ?", (game_id,))
            if cursor.fetchone() is None:
                raise NotFoundError(f"Game {game_id} not found")
            cursor.execute('''
                SELECT DISTINCT player_name FROM game_player_stats
                WHERE game_id = ? AND player_name != ?
            ''', (game_id, GUEST_PLAYER_NAME))
            players = {r['player_name'] for r in cursor.fetchall()}
            cursor.execute("DELETE FROM game_player_stats WHERE game_id = ?", (game_id,))
            cursor.execute("DELETE FROM games WHERE id = ?", (game_id,))
        _db_logger.info(f"Deleted game {game_id}")
        return players

    def _build_games(self, rows: list[sqlite3.Row]) -> list[Game]:
        """Attach stat lines to game rows using a single query."""
        if not rows:
            return []
        game_ids = [row['id'] for row in rows]
        placeholders = ','.join('?' * len(game_ids))
        line_rows = self._fetchall(
            f"SELECT * FROM game_player_stats WHERE game_id IN ({placeholders}) "
            f"ORDER BY game_id, team, slot",
            game_ids
        )
        lines_by_game = {gid: [] for gid in game_ids}
        for r in line_rows:
            lines_by_game[r['game_id']].append(PlayerLine(
                player_name=r['player_name'],
                team=r['team'],
                slot=r['slot'],
                cups_hit=r['cups_hit'],
                ot_cups_hit=r['ot_cups_hit'] or 0,
                naked_laps=r['naked_laps'] or 0,
                naked_laps_override=r['naked_laps_override'],
                errors=r['errors'],
            ))

        games = []
        for row in rows:
            lines = lines_by_game[row['id']]
            games.append(Game(
                id=row['id'],
                date=row['date'],
                team1=[line.player_name for line in lines if line.team == TEAMS[0]],
                team2=[line.player_name for line in lines if line.team == TEAMS[1]],
                winner=row['winner'],
                team1_score=row['team1_score'],
                team2_score=row['team2_score'],
                scorecard_player=row['scorecard_player'],
                lines=lines,
                overtime=bool(row['overtime']),
                team1_ot_cups=row['team1_ot_cups'] or 0,
                team2_ot_cups=row['team2_ot_cups'] or 0,
                created_at=row['created_at'],
            ))
        return games

    def find_game(self, game_id: int) -> Optional[Game]:
        """Get a game, or None if it does not exist."""
        row = self._fetchone("SELECT * FROM games WHERE id = ?", (game_id,))
        if row is None:
            return None
        return self._build_games([row])[0]

    def get_game(self, game_id: int) -> Game:
        """Get a game or raise NotFoundError."""
        game = self.find_game(game_id)
        if game is None:
            raise NotFoundError(f"Game {game_id} not found")
        return game

    def get_games(self, game_ids: Iterable[int]) -> dict[int, Game]:
        """Get several games in one query. Missing ids are absent from the result."""
        game_ids = list(game_ids)
        if not game_ids:
            return {}
        placeholders = ','.join('?' * len(game_ids))
        rows = self._fetchall(f"SELECT * FROM games WHERE id IN ({placeholders})", game_ids)
        return {game.id: game for game in self._build_games(rows)}

    def list_games(self, limit: int, offset: int = 0) -> list[Game]:
        """Get games newest first. The id key keeps pages stable on equal timestamps."""
        rows = self._fetchall('''
            SELECT * FROM games
            ORDER BY date DESC, created_at DESC, id DESC
            LIMIT ? OFFSET ?
        ''', (limit, offset))
        return self._build_games(rows)

    def count_games(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS total FROM games")
        return row['total'] or 0

    def game_ids_for_player(self, player_name: str) -> set[int]:
        """Ids of every game in the log that lists the player."""
        rows = self._fetchall(
            "SELECT DISTINCT game_id FROM game_player_stats WHERE player_name = ?",
            (player_name,)
        )
        return {row['game_id'] for row in rows}

    def logged_player_names(self) -> set[str]:
        """Every tracked player name appearing anywhere in the game log."""
        rows = self._fetchall(
            "SELECT DISTINCT player_name FROM game_player_stats WHERE player_name != ?",
            (GUEST_PLAYER_NAME,)
        )
        return {row['player_name'] for row in rows}

    # ============ Aggregate Operations ============

    def _row_to_aggregate(self, row: sqlite3.Row) -> PlayerAggregate:
        keys = row.keys()
        return PlayerAggregate(
            player_name=row['player_name'],
            games_played=row['games_played'] or 0,
            games_won=row['games_won'] or 0,
            win_ratio=row['win_ratio'] or 0.0,
            total_cups_hit=row['total_cups_hit'] or 0,
            cups_hit_avg=row['cups_hit_avg'] or 0.0,
            total_ot_cups_hit=row['total_ot_cups_hit'] or 0,
            number_of_scorecards=row['number_of_scorecards'] or 0,
            naked_laps_run=row['naked_laps_run'] or 0,
            last_updated=row['last_updated'] or "",
            pledge_class=row['pledge_class'] if 'pledge_class' in keys else None,
        )

    def get_aggregate(self, player_name: str) -> Optional[PlayerAggregate]:
        """Get a player's aggregate row with its game_ids, or None."""
        row = self._fetchone('''
            SELECT ps.*, p.pledge_class FROM player_stats ps
            LEFT JOIN players p ON p.name = ps.player_name
            WHERE ps.player_name = ?
        ''', (player_name,))
        if row is None:
            return None
        aggregate = self._row_to_aggregate(row)
        id_rows = self._fetchall(
            "SELECT game_id FROM player_stat_games WHERE player_name = ?", (player_name,)
        )
        aggregate.game_ids = {r['game_id'] for r in id_rows}
        return aggregate

    def get_all_aggregates(self) -> list[PlayerAggregate]:
        """Get every aggregate row (without game_ids), ordered by name."""
        rows = self._fetchall('''
            SELECT ps.*, p.pledge_class FROM player_stats ps
            LEFT JOIN players p ON p.name = ps.player_name
            ORDER BY ps.player_name
        ''')
        return [self._row_to_aggregate(row) for row in rows]

    def aggregate_names(self) -> set[str]:
        return {row['player_name'] for row in self._fetchall("SELECT player_name FROM player_stats")}

    def save_aggregate(self, aggregate: PlayerAggregate):
        """Write an aggregate row and replace its game_ids.

        Meant to be called inside transaction() together with the read the
        new values were computed from.
        """
        aggregate.last_updated = _now()
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT INTO player_stats
                (player_name, games_played, games_won, win_ratio, cups_hit_avg,
                 total_cups_hit, total_ot_cups_hit, number_of_scorecards,
                 naked_laps_run, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(player_name) DO UPDATE SET
                    games_played = excluded.games_played,
                    games_won = excluded.games_won,
                    win_ratio = excluded.win_ratio,
                    cups_hit_avg = excluded.cups_hit_avg,
                    total_cups_hit = excluded.total_cups_hit,
                    total_ot_cups_hit = excluded.total_ot_cups_hit,
                    number_of_scorecards = excluded.number_of_scorecards,
                    naked_laps_run = excluded.naked_laps_run,
                    last_updated = excluded.last_updated
            ''', (aggregate.player_name, aggregate.games_played, aggregate.games_won,
                  aggregate.win_ratio, aggregate.cups_hit_avg, aggregate.total_cups_hit,
                  aggregate.total_ot_cups_hit, aggregate.number_of_scorecards,
                  aggregate.naked_laps_run, aggregate.last_updated))
            cursor.execute("DELETE FROM player_stat_games WHERE player_name = ?",
                           (aggregate.player_name,))
            cursor.executemany(
                "INSERT INTO player_stat_games (player_name, game_id) VALUES (?, ?)",
                [(aggregate.player_name, gid) for gid in sorted(aggregate.game_ids)]
            )

    # ============ Hall of Fame ============

    def _row_to_photo(self, row: sqlite3.Row) -> HallOfFamePhoto:
        return HallOfFamePhoto(
            id=row['id'],
            image_filename=row['image_filename'],
            caption=row['caption'],
            display_order=row['display_order'] or 0,
            created_at=row['created_at'],
        )

    def list_photos(self) -> list[HallOfFamePhoto]:
        rows = self._fetchall('''
            SELECT * FROM hall_of_fame
            ORDER BY display_order ASC, created_at DESC, id DESC
        ''')
        return [self._row_to_photo(row) for row in rows]

    def get_photo(self, photo_id: int) -> HallOfFamePhoto:
        row = self._fetchone("SELECT * FROM hall_of_fame WHERE id = ?", (photo_id,))
        if row is None:
            raise NotFoundError(f"Photo {photo_id} not found")
        return self._row_to_photo(row)

    def add_photo(self, image_filename: str, caption: str, display_order: int = 0) -> int:
        """Add a Hall of Fame photo record. Returns photo ID."""
        with self.transaction() as cursor:
            cursor.execute('''
                INSERT INTO hall_of_fame (image_filename, caption, display_order, created_at)
                VALUES (?, ?, ?, ?)
            ''', (image_filename, caption, display_order, _now()))
            return cursor.lastrowid

    def update_photo(self, photo_id: int, caption: str, display_order: int = 0,
                     image_filename: Optional[str] = None) -> HallOfFamePhoto:
        """Update a photo's caption/order and optionally its image.

        Returns the photo as it was before the update so the caller can clean
        up a replaced image.
        """
        with self.transaction():
            old = self.get_photo(photo_id)
            self.conn.execute('''
                UPDATE hall_of_fame SET image_filename = ?, caption = ?, display_order = ?
                WHERE id = ?
            ''', (image_filename or old.image_filename, caption, display_order, photo_id))
        return old

    def delete_photo(self, photo_id: int) -> HallOfFamePhoto:
        """Delete a photo record. Returns the deleted photo."""
        with self.transaction():
            old = self.get_photo(photo_id)
            self.conn.execute("DELETE FROM hall_of_fame WHERE id = ?", (photo_id,))
        return old

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
