import os
import sys
import pytest

# Ensure the backend root (containing the `taleon` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from taleon import create_app, db, socketio


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    # No outbound calls from tests
    GROQ_API_KEY = ''
    MAIL_USERNAME = ''
    MAIL_PASSWORD = ''
    DEFAULT_TURN_TIME_MIN = 10
    DEFAULT_MAX_ROUNDS = 5
    MIN_TURN_TIME_SEC = 60
    MIN_PLAYERS_TO_CONTINUE = 2


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import taleon.models  # noqa: F401
        db.create_all()
    # Requests push their own app context so Flask-Login state is per request
    yield application
    from taleon.services.games import timers
    timers._turn_timers.clear()
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def player(flask_app):
    """Factory: a logged-in test client per user, with the signup payload on ``.user``."""
    def _make(username):
        c = flask_app.test_client()
        res = c.post('/auth/signup', json={
            'username': username,
            'email': f'{username.lower()}@example.com',
            'password': 'password',
        })
        assert res.status_code == 201, res.get_json()
        c.user = res.get_json()
        return c
    return _make


@pytest.fixture()
def started_game(player):
    """Alice hosts, Bob joins, Alice starts: seats are Alice, Bob, AI_Buddy."""
    def _start(max_rounds=5, turn_time=None):
        alice = player('Alice')
        bob = player('Bob')
        body = {'player_name': 'Storyteller A', 'max_rounds': max_rounds}
        if turn_time:
            body['turn_time'] = turn_time
        code = alice.post('/room/create', json=body).get_json()['room_code']
        assert bob.post('/room/join', json={'room_code': code, 'player_name': 'B the Bard'}).status_code == 200
        res = alice.post('/game/start', json={'room_code': code})
        assert res.status_code == 201, res.get_json()
        return alice, bob, code, res.get_json()
    return _start


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _make(http_client):
        sio = socketio.test_client(flask_app, flask_test_client=http_client, namespace='/ws')
        clients.append(sio)
        return sio
    yield _make
    for sio in clients:
        try:
            sio.disconnect(namespace='/ws')
        except Exception:
            pass
