"""
JSON API routes, exercised through Flask's test client.
"""

import io

import openpyxl
import pytest

from conftest import ROSTER
from errors import StorageError
from web_server import LeagueServer, _active_servers


@pytest.fixture
def server(tmp_path):
    league_server = LeagueServer(str(tmp_path / "web.db"))
    yield league_server
    league_server.stop()


@pytest.fixture
def client(server):
    test_client = server.app.test_client()
    response = test_client.put('/api/admin/players', json={'names': ROSTER})
    assert response.status_code == 200
    return test_client


def test_submit_and_fetch_game(client, game_a_payload):
    response = client.post('/api/submit-result', json=game_a_payload)
    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'game_id': 1}

    game = client.get('/api/games/1').get_json()
    assert game['team1_score'] == 55
    assert game['scorecard_player'] == "Alice"
    assert client.get('/api/games/1').headers['Cache-Control'].startswith('no-store')


def test_validation_error_is_400_with_field(client, game_a_payload):
    game_a_payload['winner'] = 'team2'
    response = client.post('/api/submit-result', json=game_a_payload)

    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert body['field'] == 'winner'


def test_stats_failure_reports_stored_game(server, client, game_a_payload, monkeypatch):
    db = server._get_thread_service().db
    original = db.save_aggregate

    def flaky_save(aggregate):
        if aggregate.player_name == "Eve":
            raise StorageError("database is locked")
        return original(aggregate)

    monkeypatch.setattr(db, "save_aggregate", flaky_save)
    response = client.post('/api/submit-result', json=game_a_payload)

    assert response.status_code == 500
    body = response.get_json()
    assert body['success'] is False
    assert body['game_id'] == 1
    assert body['failed_players'] == ["Eve"]
    assert client.get('/api/games/1').status_code == 200


def test_body_must_be_json_object(client):
    response = client.post('/api/submit-result', data="not json",
                           content_type='text/plain')
    assert response.status_code == 400


def test_edit_and_delete_game(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    edited = dict(game_a_payload)
    edited['team1'] = ["Alice", "Bob", "Carl", "Ivy"]
    stats = dict(game_a_payload['individual_stats'])
    stats['Ivy'] = stats.pop('Dee')
    edited['individual_stats'] = stats
    assert client.put('/api/games/1', json=edited).status_code == 200
    assert client.get('/api/player-stats/Ivy').get_json()['games_played'] == 1
    assert client.get('/api/player-stats/Dee').get_json()['games_played'] == 0

    assert client.delete('/api/games/1').get_json() == {'success': True}
    assert client.get('/api/games/1').status_code == 404
    assert client.get('/api/player-stats/Ivy').get_json()['games_played'] == 0


def test_recent_games(client, game_a_payload, game_b_payload):
    client.post('/api/submit-result', json=game_a_payload)
    client.post('/api/submit-result', json=game_b_payload)

    games = client.get('/api/recent-games?limit=1').get_json()
    assert [g['id'] for g in games] == [1]

    page = client.get('/api/recent-games?limit=1&offset=1&includeTotal=true').get_json()
    assert page['total'] == 2
    assert [g['id'] for g in page['games']] == [2]


def test_player_stats(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    alice = client.get('/api/player-stats/Alice').get_json()
    assert alice['win_ratio'] == 1.0
    assert alice['game_ids'] == [1]

    missing = client.get('/api/player-stats/Nobody')
    assert missing.status_code == 404
    assert missing.get_json()['success'] is False


def test_leaderboard(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    rows = client.get('/api/leaderboard?sort_by=total_cups&limit=2').get_json()
    assert [row['player_name'] for row in rows] == ["Alice", "Bob"]
    assert [row['rank'] for row in rows] == [1, 2]

    assert len(client.get('/api/leaderboard').get_json()) == 8
    assert client.get('/api/leaderboard?sort_by=elo').status_code == 400


def test_roster_routes(client):
    assert client.get('/api/players').get_json() == sorted(ROSTER + ["Guest"])

    response = client.post('/api/admin/players', json={'name': "Kim", 'pledge_class': 2024})
    assert response.get_json() == {'success': True}
    assert client.post('/api/admin/players', json={'name': "Kim"}).status_code == 400

    assert client.delete('/api/admin/players/Kim').status_code == 200
    assert client.delete('/api/admin/players/Kim').status_code == 404
    assert client.delete('/api/admin/players/Guest').status_code == 400


def test_recalculate(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    everyone = client.post('/api/admin/recalculate', json={}).get_json()
    assert everyone == {'success': True, 'players_recalculated': 8}

    some = client.post('/api/admin/recalculate', json={'players': ["Alice"]}).get_json()
    assert some == {'success': True, 'players_recalculated': 1}


def test_hall_of_fame_routes(client):
    created = client.post('/api/admin/hall-of-fame',
                          json={'image_filename': "a.jpg", 'caption': "Champs"}).get_json()
    photo_id = created['id']

    updated = client.put(f'/api/admin/hall-of-fame/{photo_id}',
                         json={'caption': "Champions", 'image_filename': "b.jpg"}).get_json()
    assert updated['replaced_image'] == "a.jpg"

    photos = client.get('/api/hall-of-fame').get_json()
    assert [p['caption'] for p in photos] == ["Champions"]

    deleted = client.delete(f'/api/admin/hall-of-fame/{photo_id}').get_json()
    assert deleted['image_filename'] == "b.jpg"
    assert client.delete(f'/api/admin/hall-of-fame/{photo_id}').status_code == 404


def test_leaderboard_export(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    response = client.get('/api/export/leaderboard.xlsx?sort_by=total_cups')
    assert response.status_code == 200
    assert 'leaderboard_total_cups.xlsx' in response.headers['Content-Disposition']

    ws = openpyxl.load_workbook(io.BytesIO(response.data))["Leaderboard"]
    assert ws["A1"].value == "Leaderboard (total_cups)"
    assert ws["B3"].value == "Alice"


def test_games_export(client, game_a_payload):
    client.post('/api/submit-result', json=game_a_payload)

    response = client.get('/api/export/games.xlsx')
    assert response.status_code == 200
    wb = openpyxl.load_workbook(io.BytesIO(response.data))
    assert wb.sheetnames == ["Games", "Player Lines"]


def test_unknown_route(client):
    response = client.get('/api/nope')
    assert response.status_code == 404
    assert response.get_json() == {'success': False, 'error': 'API endpoint not found'}


def test_stop_unregisters_server(tmp_path):
    league_server = LeagueServer(str(tmp_path / "other.db"))
    assert league_server in _active_servers
    league_server.stop()
    assert league_server not in _active_servers
    assert not league_server.is_running()
