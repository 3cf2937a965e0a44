"""
Ceeps League - Stats Engine
Keeps the per-player aggregate rows consistent with the game log.

Every player is updated in a transaction of their own. A failure while
updating one player never rolls back players that were already written; the
failed names are reported together once every player has been attempted.
"""

from typing import Optional, Callable, Iterable
import logging

from config import GUEST_PLAYER_NAME
from database import DatabaseManager, Game, PlayerAggregate
from errors import ConsistencyError, StorageError, AggregateUpdateError

_logger = logging.getLogger(__name__)


def accumulate(aggregate: PlayerAggregate, game: Game) -> bool:
    """Add one game's line for aggregate.player_name to the counters.

    Ratios are not touched; call refresh_ratios() once all games are in.

    Returns:
        False if the game does not list the player.
    """
    line = game.line_for(aggregate.player_name)
    if line is None:
        return False

    aggregate.games_played += 1
    if line.team == game.winner:
        aggregate.games_won += 1
    aggregate.total_cups_hit += line.cups_hit
    aggregate.total_ot_cups_hit += line.ot_cups_hit
    aggregate.naked_laps_run += line.naked_laps
    if game.scorecard_player == aggregate.player_name:
        aggregate.number_of_scorecards += 1
    aggregate.game_ids.add(game.id)
    return True


class StatsEngine:
    """Incremental and from-scratch maintenance of player aggregates."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # ============ Per-game entry points ============

    def apply_game(self, game: Game) -> dict[str, PlayerAggregate]:
        """Add a newly stored game to each tracked participant's aggregate.

        Safe to repeat: a player who already has the game recorded is
        recomputed from scratch instead of being incremented again.
        """
        return self._for_each_player(
            game.participants,
            lambda name: self._apply_to_player(game, name)
        )

    def remove_game(self, game_id: int, players: Iterable[str]) -> dict[str, PlayerAggregate]:
        """Drop a game from each player's game_ids and recompute them.

        Counters are rebuilt rather than decremented because the stored values
        of an edited or deleted game may differ from what was originally added.
        """
        return self._for_each_player(
            players,
            lambda name: self._replace_membership(name, game_id, keep=False)
        )

    def sync_game(self, game: Game, old_players: set[str],
                  new_players: set[str]) -> dict[str, PlayerAggregate]:
        """Bring aggregates in line with an edited game.

        Players who left the game lose its id, players who joined gain it, and
        the union of old and new participants is recomputed from scratch.
        """
        return self._for_each_player(
            set(old_players) | set(new_players),
            lambda name: self._replace_membership(name, game.id, keep=name in new_players)
        )

    # ============ Per-player entry points ============

    def recompute_from_scratch(self, player_name: str) -> Optional[PlayerAggregate]:
        """Rebuild a player's counters by replaying every game in game_ids.

        Games that no longer exist or no longer list the player are logged,
        skipped and pruned from game_ids. Running this twice in a row yields
        identical values.

        Returns:
            The rewritten aggregate, or None for Guest or a player with no row.
        """
        if player_name == GUEST_PLAYER_NAME:
            return None
        with self.db.transaction():
            aggregate = self.db.get_aggregate(player_name)
            if aggregate is None:
                return None
            return self._replay(aggregate)

    def rebuild_players(self, players: Iterable[str]) -> dict[str, PlayerAggregate]:
        """rebuild_from_log for several players, each independently.

        This is the repair for the names listed by an AggregateUpdateError:
        their game_ids may be missing the game that failed.
        """
        return self._for_each_player(players, self.rebuild_from_log)

    def rebuild_from_log(self, player_name: str) -> Optional[PlayerAggregate]:
        """Reset a player's game_ids from the game log, then replay.

        This covers a crash between a game write and its aggregate update,
        where the new game id never reached game_ids.
        """
        if player_name == GUEST_PLAYER_NAME:
            return None
        with self.db.transaction():
            game_ids = self.db.game_ids_for_player(player_name)
            aggregate = self.db.get_aggregate(player_name)
            if aggregate is None:
                if not game_ids:
                    return None
                aggregate = PlayerAggregate(player_name=player_name)
            aggregate.game_ids = game_ids
            return self._replay(aggregate)

    def rebuild_all(self) -> dict[str, PlayerAggregate]:
        """rebuild_from_log for every player with a row or a logged game."""
        names = self.db.aggregate_names() | self.db.logged_player_names()
        _logger.info(f"Rebuilding stats for {len(names)} players from the game log")
        return self._for_each_player(names, self.rebuild_from_log)

    # ============ Internals ============

    def _apply_to_player(self, game: Game, player_name: str) -> PlayerAggregate:
        with self.db.transaction():
            aggregate = self.db.get_aggregate(player_name)
            if aggregate is None:
                aggregate = PlayerAggregate(player_name=player_name)
            elif game.id in aggregate.game_ids:
                _logger.info(f"Game {game.id} already counted for {player_name}; recomputing")
                return self._replay(aggregate)

            accumulate(aggregate, game)
            aggregate.refresh_ratios()
            self.db.save_aggregate(aggregate)
            return aggregate

    def _replace_membership(self, player_name: str, game_id: int,
                            keep: bool) -> Optional[PlayerAggregate]:
        with self.db.transaction():
            aggregate = self.db.get_aggregate(player_name)
            if aggregate is None:
                if not keep:
                    return None
                aggregate = PlayerAggregate(player_name=player_name)
            if keep:
                aggregate.game_ids.add(game_id)
            else:
                aggregate.game_ids.discard(game_id)
            return self._replay(aggregate)

    def _replay(self, aggregate: PlayerAggregate) -> PlayerAggregate:
        """Recount an aggregate from its game_ids. Caller holds the transaction."""
        games = self.db.get_games(aggregate.game_ids)
        referenced = sorted(aggregate.game_ids)
        aggregate.reset()
        aggregate.game_ids = set()

        for game_id in referenced:
            game = games.get(game_id)
            if game is None:
                self._report(ConsistencyError(aggregate.player_name, game_id,
                                              "game no longer exists"))
            elif not accumulate(aggregate, game):
                self._report(ConsistencyError(aggregate.player_name, game_id,
                                              "player no longer in game"))

        aggregate.refresh_ratios()
        self.db.save_aggregate(aggregate)
        return aggregate

    def _report(self, problem: ConsistencyError):
        _logger.warning(f"Skipping stale game reference: {problem}")

    def _for_each_player(self, players: Iterable[str],
                         update: Callable[[str], Optional[PlayerAggregate]]
                         ) -> dict[str, PlayerAggregate]:
        """Run update for each tracked player, isolating storage failures.

        Raises:
            AggregateUpdateError: after all players were attempted, if any failed.
        """
        results = {}
        failed = {}
        for name in sorted(set(players)):
            if name == GUEST_PLAYER_NAME:
                continue
            try:
                aggregate = update(name)
            except StorageError as e:
                _logger.error(f"Stats update failed for {name}: {e}")
                failed[name] = e
                continue
            if aggregate is not None:
                results[name] = aggregate

        if failed:
            raise AggregateUpdateError(failed)
        return results
