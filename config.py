"""
Ceeps League - Configuration
Game rule constants and environment-driven settings.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# -- Game Rules --
GUEST_PLAYER_NAME = "Guest"
TEAM_SIZE = 4
TEAMS = ("team1", "team2")
# Losing-team players with this many cups or fewer run a naked lap
NAKED_LAP_CUP_THRESHOLD = 9

# -- Leaderboard / Listing Defaults --
DEFAULT_LEADERBOARD_SORT = "win_ratio"
DEFAULT_LEADERBOARD_LIMIT = 20
DEFAULT_RECENT_GAMES_LIMIT = 5

# -- Storage --
DB_PATH = os.getenv("CEEPS_DB_PATH", os.path.join("data", "ceeps.db"))
# Seconds a writer waits on a locked database before giving up
SQLITE_TIMEOUT_SECONDS = float(os.getenv("SQLITE_TIMEOUT_SECONDS", "10"))

# -- Web Server --
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
