"""
Shared fixtures: a throwaway SQLite league per test and game payload builders.
"""

import pytest

from database import DatabaseManager
from league_service import LeagueService
from stats_engine import StatsEngine

ROSTER = ["Alice", "Bob", "Carl", "Dee", "Eve", "Fay", "Gus", "Hal", "Ivy", "Jon"]

TEAM_A1 = ["Alice", "Bob", "Carl", "Dee"]
TEAM_A2 = ["Eve", "Fay", "Gus", "Hal"]


def build_payload(team1, team2, cups, date="2024-03-01", **extra):
    """Game payload with flat per-player cups."""
    payload = {
        "date": date,
        "team1": list(team1),
        "team2": list(team2),
        "individual_stats": {name: {"cups_hit": c} for name, c in cups.items()},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_payload():
    return build_payload


@pytest.fixture
def game_a_payload():
    """Alice/Bob/Carl/Dee beat Eve/Fay/Gus/Hal 55-40, Alice takes the scorecard."""
    cups = {"Alice": 14, "Bob": 14, "Carl": 14, "Dee": 13,
            "Eve": 10, "Fay": 10, "Gus": 10, "Hal": 10}
    return build_payload(TEAM_A1, TEAM_A2, cups, winner="team1",
                         team1_score=55, team2_score=40, scorecard_player="Alice")


@pytest.fixture
def game_b_payload():
    """Same lineups, team2 wins 46-20 and Hal takes the scorecard."""
    cups = {"Alice": 5, "Bob": 5, "Carl": 5, "Dee": 5,
            "Eve": 10, "Fay": 11, "Gus": 12, "Hal": 13}
    return build_payload(TEAM_A1, TEAM_A2, cups, date="2024-02-01")


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "league.db"))
    yield manager
    manager.close()


@pytest.fixture
def engine(db):
    return StatsEngine(db)


@pytest.fixture
def service(db):
    league = LeagueService(db)
    league.set_roster(ROSTER)
    return league


def stats_snapshot(service, names):
    """Player stats without the volatile last_updated field."""
    snapshot = {}
    for name in names:
        data = service.get_player_stats(name)
        data.pop("last_updated")
        snapshot[name] = data
    return snapshot
