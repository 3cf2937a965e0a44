"""
Ceeps League - League Service
The operations the request layer calls: game submission/edit/delete, stats
queries, leaderboard, roster and Hall of Fame management.

Game writes are committed before any aggregate update starts, so a failure
in the stats step leaves a stored game whose players can be recomputed.
"""

from typing import Optional, Any
import logging

from config import (GUEST_PLAYER_NAME, DEFAULT_LEADERBOARD_SORT,
                    DEFAULT_LEADERBOARD_LIMIT, DEFAULT_RECENT_GAMES_LIMIT)
from database import DatabaseManager
from errors import ValidationError, NotFoundError, AggregateUpdateError
from game_rules import validate_game
from leaderboard import rank_players
from stats_engine import StatsEngine

_logger = logging.getLogger(__name__)


def _require_int(value: Any, field: str, minimum: Optional[int] = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field=field)
    return value


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Valid player name is required", field='name')
    return name.strip()


class LeagueService:
    def __init__(self, db: DatabaseManager):
        self.db = db
        self.stats = StatsEngine(db)

    def _validation_roster(self) -> Optional[set[str]]:
        """Names a submission may use, or None while no roster is configured."""
        roster = self.db.roster_names()
        if not roster:
            return None
        return roster | {GUEST_PLAYER_NAME}

    # ============ Games ============

    def submit_game(self, game_data: dict) -> dict:
        game = validate_game(game_data, self._validation_roster())
        stored = self.db.create_game(game)
        try:
            self.stats.apply_game(stored)
        except AggregateUpdateError as e:
            # The game is committed; only the listed players' stats are behind
            e.game_id = stored.id
            raise
        return {'success': True, 'game_id': stored.id}

    def update_game(self, game_id: int, game_data: dict) -> dict:
        game = validate_game(game_data, self._validation_roster())
        stored, old_players, new_players = self.db.update_game(game_id, game)
        try:
            self.stats.sync_game(stored, old_players, new_players)
        except AggregateUpdateError as e:
            e.game_id = stored.id
            raise
        return {'success': True, 'game_id': stored.id}

    def delete_game(self, game_id: int) -> dict:
        players = self.db.delete_game(game_id)
        try:
            self.stats.remove_game(game_id, players)
        except AggregateUpdateError as e:
            e.game_id = game_id
            raise
        return {'success': True}

    def get_game(self, game_id: int) -> dict:
        return self.db.get_game(game_id).to_dict()

    def get_all_games(self) -> list[dict]:
        total = self.db.count_games()
        if total == 0:
            return []
        return [game.to_dict() for game in self.db.list_games(total)]

    def get_recent_games(self, limit: int = DEFAULT_RECENT_GAMES_LIMIT, offset: int = 0,
                         include_total: bool = False):
        """Games newest first; a dict with the total count when include_total is set."""
        limit = _require_int(limit, 'limit', minimum=1)
        offset = _require_int(offset, 'offset')
        games = [game.to_dict() for game in self.db.list_games(limit, offset)]
        if include_total:
            return {'games': games, 'total': self.db.count_games()}
        return games

    # ============ Stats ============

    def get_player_stats(self, player_name: str) -> dict:
        aggregate = None
        if player_name != GUEST_PLAYER_NAME:
            aggregate = self.db.get_aggregate(player_name)
        if aggregate is None:
            raise NotFoundError(f"Player {player_name} not found")
        return aggregate.to_dict(include_game_ids=True)

    def get_leaderboard(self, sort_by: str = DEFAULT_LEADERBOARD_SORT,
                        limit: Optional[int] = DEFAULT_LEADERBOARD_LIMIT,
                        pledge_class: Optional[int] = None) -> list[dict]:
        aggregates = self.db.get_all_aggregates()
        if pledge_class is not None:
            aggregates = [a for a in aggregates if a.pledge_class == pledge_class]
        return rank_players(aggregates, sort_by, limit)

    def recalculate_players(self, player_names: list[str]) -> dict:
        if not isinstance(player_names, list) or not player_names:
            raise ValidationError("player_names must be a non-empty list", field='players')
        results = self.stats.rebuild_players(player_names)
        return {'success': True, 'players_recalculated': len(results)}

    def rebuild_all_stats(self) -> dict:
        results = self.stats.rebuild_all()
        return {'success': True, 'players_recalculated': len(results)}

    # ============ Roster ============

    def get_all_players(self) -> list[str]:
        """Roster names plus Guest, sorted. Falls back to players with stats."""
        names = {player.name for player in self.db.get_roster()}
        if not names:
            names = self.db.aggregate_names()
        names.add(GUEST_PLAYER_NAME)
        return sorted(names)

    def add_player(self, name: str, pledge_class: Optional[int] = None) -> dict:
        name = _clean_name(name)
        if name == GUEST_PLAYER_NAME:
            raise ValidationError(f"{GUEST_PLAYER_NAME} is always on the roster", field='name')
        if pledge_class is not None:
            pledge_class = _require_int(pledge_class, 'pledge_class')
        if not self.db.add_roster_player(name, pledge_class):
            raise ValidationError(f"Player {name} already exists in the roster", field='name')
        _logger.info(f"Added {name} to the roster")
        return {'success': True}

    def remove_player(self, name: str) -> dict:
        name = _clean_name(name)
        if name == GUEST_PLAYER_NAME:
            raise ValidationError(f"{GUEST_PLAYER_NAME} cannot be removed from the roster",
                                  field='name')
        if not self.db.remove_roster_player(name):
            raise NotFoundError(f"Player {name} not found in the roster")
        _logger.info(f"Removed {name} from the roster")
        return {'success': True}

    def set_roster(self, names: list[str]) -> dict:
        if not isinstance(names, list):
            raise ValidationError("Names must be a list", field='names')
        cleaned = []
        for name in names:
            if isinstance(name, str) and name.strip() and name.strip() != GUEST_PLAYER_NAME:
                if name.strip() not in cleaned:
                    cleaned.append(name.strip())
        if not cleaned:
            raise ValidationError("At least one player name is required", field='names')
        self.db.replace_roster(cleaned)
        return {'success': True}

    # ============ Hall of Fame ============

    def get_hall_of_fame(self) -> list[dict]:
        return [photo.to_dict() for photo in self.db.list_photos()]

    def _clean_photo_fields(self, caption: Any, display_order: Any) -> tuple[str, int]:
        if not isinstance(caption, str) or not caption.strip():
            raise ValidationError("Caption is required", field='caption')
        if display_order is None:
            display_order = 0
        display_order = _require_int(display_order, 'display_order', minimum=None)
        return caption.strip(), display_order

    def add_hall_of_fame_photo(self, image_filename: str, caption: str,
                               display_order: int = 0) -> dict:
        if not isinstance(image_filename, str) or not image_filename.strip():
            raise ValidationError("Image file required", field='image_filename')
        caption, display_order = self._clean_photo_fields(caption, display_order)
        photo_id = self.db.add_photo(image_filename.strip(), caption, display_order)
        return {'success': True, 'id': photo_id}

    def update_hall_of_fame_photo(self, photo_id: int, caption: str, display_order: int = 0,
                                  image_filename: Optional[str] = None) -> dict:
        """Update a photo record.

        'replaced_image' in the result names the old image when a new one
        was given, so the caller can remove the old file.
        """
        caption, display_order = self._clean_photo_fields(caption, display_order)
        if image_filename is not None and (not isinstance(image_filename, str)
                                           or not image_filename.strip()):
            raise ValidationError("image_filename cannot be empty", field='image_filename')
        new_image = image_filename.strip() if image_filename else None
        old = self.db.update_photo(photo_id, caption, display_order, new_image)
        replaced = old.image_filename if new_image and new_image != old.image_filename else None
        return {'success': True, 'replaced_image': replaced}

    def delete_hall_of_fame_photo(self, photo_id: int) -> dict:
        old = self.db.delete_photo(photo_id)
        return {'success': True, 'image_filename': old.image_filename}
