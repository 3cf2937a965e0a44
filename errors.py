"""
Ceeps League - Errors
Exception types shared by the store, the stats engine and the web layer.
"""

from typing import Optional


class LeagueError(Exception):
    """Base class for all league errors."""


class ValidationError(LeagueError):
    """A game submission (or other input) is malformed or inconsistent."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(LeagueError):
    """A referenced game, player or photo does not exist."""


class ConsistencyError(LeagueError):
    """A game listed in a player's game_ids no longer supports that player.

    Raised objects are logged and skipped during recompute, never propagated.
    """

    def __init__(self, player_name: str, game_id: int, reason: str):
        super().__init__(f"{player_name}: game {game_id} skipped ({reason})")
        self.player_name = player_name
        self.game_id = game_id
        self.reason = reason


class StorageError(LeagueError):
    """The underlying database failed."""


class AggregateUpdateError(StorageError):
    """Some player aggregates could not be updated for a game.

    Players not listed in failed_players were updated and committed.
    """

    def __init__(self, failed_players: dict, game_id: Optional[int] = None):
        names = ", ".join(sorted(failed_players))
        super().__init__(f"Failed to update stats for: {names}")
        # player name -> the exception raised for that player
        self.failed_players = failed_players
        # Set by the service once the game write itself has committed
        self.game_id = game_id
