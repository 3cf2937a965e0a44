"""
Ceeps League - Web Server
JSON API over the league service: game submission, recent games, player
stats, leaderboard, roster and Hall of Fame records.
"""

import threading
import time
import io
import atexit
import socket as _socket
import logging

from flask import Flask, jsonify, request, send_file
from werkzeug.serving import make_server

from config import (HOST, PORT, DEFAULT_LEADERBOARD_SORT, DEFAULT_LEADERBOARD_LIMIT,
                    DEFAULT_RECENT_GAMES_LIMIT)
from database import DatabaseManager
from errors import (LeagueError, ValidationError, NotFoundError, StorageError,
                    AggregateUpdateError)
from excel_exporter import ExcelExporter
from league_service import LeagueService

# Suppress Flask's default logging to keep console clean
log = logging.getLogger('werkzeug')
log.setLevel(logging.ERROR)

_logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Global reference for cleanup
_active_servers = []


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


class LeagueServer:
    """Web server exposing the league API."""

    def __init__(self, db_path: str, host: str = HOST, port: int = PORT):
        self.db_path = db_path  # Each request thread opens its own connection
        self.host = host
        self.port = port
        self.app = Flask(__name__)
        self.exporter = ExcelExporter()

        @self.app.after_request
        def add_no_cache_headers(response):
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            return response

        self.server_thread = None
        self.running = False
        self._werkzeug_server = None

        # Thread-local storage for database connections
        self._local = threading.local()

        _active_servers.append(self)

        self._setup_error_handlers()
        self._setup_routes()

    def _get_thread_service(self) -> LeagueService:
        """Get the LeagueService bound to this thread's database connection."""
        if getattr(self._local, 'service', None) is None:
            self._local.service = LeagueService(DatabaseManager(self.db_path))
        return self._local.service

    def _setup_error_handlers(self):
        @self.app.errorhandler(ValidationError)
        def handle_validation(e):
            return jsonify({'success': False, 'error': str(e), 'field': e.field}), 400

        @self.app.errorhandler(NotFoundError)
        def handle_not_found(e):
            return jsonify({'success': False, 'error': str(e)}), 404

        @self.app.errorhandler(AggregateUpdateError)
        def handle_aggregate_update(e):
            # The game write committed; report its id so clients do not resubmit
            _logger.error(f"Stats update incomplete on {request.path}: {e}")
            return jsonify({
                'success': False,
                'error': str(e),
                'game_id': e.game_id,
                'failed_players': sorted(e.failed_players),
            }), 500

        @self.app.errorhandler(StorageError)
        def handle_storage(e):
            _logger.error(f"Storage error on {request.path}: {e}")
            return jsonify({'success': False, 'error': f'Database error: {e}'}), 500

        @self.app.errorhandler(LeagueError)
        def handle_league_error(e):
            return jsonify({'success': False, 'error': str(e)}), 500

        @self.app.errorhandler(404)
        def handle_missing_route(e):
            return jsonify({'success': False, 'error': 'API endpoint not found'}), 404

    def _setup_routes(self):
        """Setup Flask routes."""

        # ============ Games ============

        @self.app.route('/api/submit-result', methods=['POST'])
        def submit_result():
            return jsonify(self._get_thread_service().submit_game(_json_body()))

        @self.app.route('/api/games/<int:game_id>', methods=['GET'])
        def get_game(game_id):
            return jsonify(self._get_thread_service().get_game(game_id))

        @self.app.route('/api/games/<int:game_id>', methods=['PUT'])
        def update_game(game_id):
            return jsonify(self._get_thread_service().update_game(game_id, _json_body()))

        @self.app.route('/api/games/<int:game_id>', methods=['DELETE'])
        def delete_game(game_id):
            return jsonify(self._get_thread_service().delete_game(game_id))

        @self.app.route('/api/recent-games')
        def recent_games():
            limit = request.args.get('limit', DEFAULT_RECENT_GAMES_LIMIT, type=int)
            offset = request.args.get('offset', 0, type=int)
            include_total = request.args.get('includeTotal', 'false') == 'true'
            return jsonify(self._get_thread_service().get_recent_games(
                limit, offset, include_total))

        # ============ Stats ============

        @self.app.route('/api/player-stats/<path:player_name>')
        def player_stats(player_name):
            return jsonify(self._get_thread_service().get_player_stats(player_name))

        @self.app.route('/api/leaderboard')
        def leaderboard():
            sort_by = request.args.get('sort_by', DEFAULT_LEADERBOARD_SORT)
            limit = request.args.get('limit', DEFAULT_LEADERBOARD_LIMIT, type=int)
            pledge_class = request.args.get('pledge_class', None, type=int)
            return jsonify(self._get_thread_service().get_leaderboard(
                sort_by, limit, pledge_class))

        @self.app.route('/api/players')
        def players():
            return jsonify(self._get_thread_service().get_all_players())

        # ============ Admin ============

        @self.app.route('/api/admin/players', methods=['POST'])
        def add_player():
            data = _json_body()
            return jsonify(self._get_thread_service().add_player(
                data.get('name'), data.get('pledge_class')))

        @self.app.route('/api/admin/players', methods=['PUT'])
        def set_roster():
            return jsonify(self._get_thread_service().set_roster(_json_body().get('names')))

        @self.app.route('/api/admin/players/<path:player_name>', methods=['DELETE'])
        def remove_player(player_name):
            return jsonify(self._get_thread_service().remove_player(player_name))

        @self.app.route('/api/admin/recalculate', methods=['POST'])
        def recalculate():
            data = request.get_json(silent=True) or {}
            service = self._get_thread_service()
            if data.get('players'):
                return jsonify(service.recalculate_players(data['players']))
            return jsonify(service.rebuild_all_stats())

        # ============ Hall of Fame ============

        @self.app.route('/api/hall-of-fame')
        def hall_of_fame():
            return jsonify(self._get_thread_service().get_hall_of_fame())

        @self.app.route('/api/admin/hall-of-fame', methods=['POST'])
        def add_photo():
            data = _json_body()
            return jsonify(self._get_thread_service().add_hall_of_fame_photo(
                data.get('image_filename'), data.get('caption'), data.get('display_order', 0)))

        @self.app.route('/api/admin/hall-of-fame/<int:photo_id>', methods=['PUT'])
        def update_photo(photo_id):
            data = _json_body()
            return jsonify(self._get_thread_service().update_hall_of_fame_photo(
                photo_id, data.get('caption'), data.get('display_order', 0),
                data.get('image_filename')))

        @self.app.route('/api/admin/hall-of-fame/<int:photo_id>', methods=['DELETE'])
        def delete_photo(photo_id):
            return jsonify(self._get_thread_service().delete_hall_of_fame_photo(photo_id))

        # ============ Exports ============

        @self.app.route('/api/export/leaderboard.xlsx')
        def export_leaderboard():
            sort_by = request.args.get('sort_by', DEFAULT_LEADERBOARD_SORT)
            rows = self._get_thread_service().get_leaderboard(sort_by, None)
            data = self.exporter.export_leaderboard(rows, sort_by)
            return send_file(io.BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True,
                             download_name=self.exporter.safe_filename(f"leaderboard {sort_by}"))

        @self.app.route('/api/export/games.xlsx')
        def export_games():
            games = self._get_thread_service().get_all_games()
            data = self.exporter.export_games(games)
            return send_file(io.BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True,
                             download_name="games.xlsx")

    # ============ Server lifecycle ============

    def start(self) -> tuple[bool, str]:
        """Start the web server in a background thread.

        Returns:
            Tuple of (success, message/URL)
        """
        if self.running:
            return False, "Server is already running"

        try:
            self._werkzeug_server = make_server(self.host, self.port, self.app, threaded=True)
        except OSError as e:
            return False, f"Failed to start server: {e}"

        if self not in _active_servers:
            _active_servers.append(self)

        self.running = True
        self.server_thread = threading.Thread(target=self._run_server, daemon=True)
        self.server_thread.start()

        # Wait for server to be ready (poll instead of blind sleep)
        deadline = time.time() + 5.0
        while time.time() < deadline:
            try:
                with _socket.create_connection(('127.0.0.1', self.port), timeout=0.2):
                    _logger.info(f"League API listening on port {self.port}")
                    return True, f"http://{self.host}:{self.port}"
            except OSError:
                time.sleep(0.1)

        self.stop()
        return False, "Server failed to start (port not responding)"

    def _run_server(self):
        """Serve requests until stop() (called in background thread)."""
        try:
            self._werkzeug_server.serve_forever()
        except OSError as e:
            _logger.error(f"Web server error: {e}")
        finally:
            self.running = False

    def serve_forever(self):
        """Run the server in the calling thread until interrupted."""
        self._werkzeug_server = make_server(self.host, self.port, self.app, threaded=True)
        self.running = True
        _logger.info(f"League API listening on http://{self.host}:{self.port}")
        try:
            self._werkzeug_server.serve_forever()
        finally:
            self.running = False
            self._werkzeug_server = None

    def stop(self):
        """Stop the web server."""
        self.running = False
        if self._werkzeug_server:
            self._werkzeug_server.shutdown()
            self._werkzeug_server = None

        if self in _active_servers:
            _active_servers.remove(self)

        service = getattr(self._local, 'service', None)
        if service is not None:
            service.db.close()
            self._local.service = None

    def is_running(self) -> bool:
        """Check if the server is running."""
        return self.running


def _cleanup_all_servers():
    """Cleanup function called on exit to stop all active servers."""
    for server in _active_servers[:]:  # Copy list to avoid modification during iteration
        server.stop()


# Register cleanup for normal exit
atexit.register(_cleanup_all_servers)
