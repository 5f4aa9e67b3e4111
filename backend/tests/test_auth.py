import json
import re
from urllib.parse import parse_qs, urlparse

import pytest
from authlib.integrations.base_client import OAuthError
from flask import redirect

from taleon import db, oauth
from taleon.models import User
from taleon.services.games.turns import get_ai_user


def test_signup_returns_token_and_logs_in(client):
    res = client.post('/auth/signup', json={'username': 'Alice', 'email': 'Alice@Example.com', 'password': 'pw'})
    assert res.status_code == 201
    data = res.get_json()
    assert data['username'] == 'Alice'
    assert data['email'] == 'alice@example.com'
    assert data['token']

    me = client.get('/auth/me')
    assert me.status_code == 200
    assert me.get_json()['id'] == data['id']


def test_duplicate_email_rejected(client):
    body = {'username': 'Alice', 'email': 'alice@example.com', 'password': 'pw'}
    assert client.post('/auth/signup', json=body).status_code == 201
    res = client.post('/auth/signup', json={**body, 'username': 'Alice2'})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'User already exists'


def test_login_checks_password(flask_app, player):
    player('Alice')
    fresh = flask_app.test_client()
    assert fresh.post('/auth/login', json={'email': 'alice@example.com', 'password': 'nope'}).status_code == 401
    res = fresh.post('/auth/login', json={'email': 'alice@example.com', 'password': 'password'})
    assert res.status_code == 200
    assert res.get_json()['token']


def test_system_account_cannot_log_in(flask_app, client):
    with flask_app.app_context():
        get_ai_user()
        db.session.commit()
    res = client.post('/auth/login', json={'email': 'ai@system.local', 'password': 'anything'})
    assert res.status_code == 403


def test_bearer_token_authenticates(flask_app, player):
    alice = player('Alice')
    fresh = flask_app.test_client()
    assert fresh.get('/auth/me').status_code == 401
    res = fresh.get('/auth/me', headers={'Authorization': f"Bearer {alice.user['token']}"})
    assert res.status_code == 200
    assert res.get_json()['username'] == 'Alice'

    bad = fresh.get('/auth/me', headers={'Authorization': 'Bearer not-a-token'})
    assert bad.status_code == 401


def test_logout(player):
    alice = player('Alice')
    assert alice.post('/auth/logout').status_code == 200
    assert alice.get('/auth/me').status_code == 401


def test_password_reset_flow(flask_app, player, monkeypatch):
    player('Alice')
    sent = {}

    def fake_send(to, subject, body):
        sent.update(to=to, subject=subject, body=body)
        return True

    monkeypatch.setattr('taleon.api.auth.send_email', fake_send)
    fresh = flask_app.test_client()
    res = fresh.post('/auth/forgot-password', json={'email': 'alice@example.com'})
    assert res.status_code == 200
    assert sent['to'] == 'alice@example.com'
    token = re.search(r'/reset-password/([0-9a-f]+)', sent['body']).group(1)

    assert fresh.post('/auth/reset-password/deadbeef', json={'password': 'new'}).status_code == 400
    res = fresh.post(f'/auth/reset-password/{token}', json={'password': 'new-password'})
    assert res.status_code == 200

    # token is single use
    assert fresh.post(f'/auth/reset-password/{token}', json={'password': 'again'}).status_code == 400
    other = flask_app.test_client()
    assert other.post('/auth/login', json={'email': 'alice@example.com', 'password': 'new-password'}).status_code == 200


def test_forgot_password_unknown_email(client):
    assert client.post('/auth/forgot-password', json={'email': 'ghost@example.com'}).status_code == 404


def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    data = res.get_json()
    assert data['database'] == 'ok'
    assert data['ai_configured'] is False


def test_forgot_password_without_mail_setup(flask_app, player):
    player('Alice')
    res = flask_app.test_client().post('/auth/forgot-password', json={'email': 'alice@example.com'})
    assert res.status_code == 503
    assert res.get_json()['error'] == 'Email delivery is not configured'
    with flask_app.app_context():
        assert User.query.filter_by(email='alice@example.com').first().reset_token_hash is None


@pytest.fixture()
def google(flask_app, monkeypatch):
    """Enable Google sign-in and script the provider's answer."""
    flask_app.config.update(GOOGLE_CLIENT_ID='client-id', GOOGLE_CLIENT_SECRET='client-secret')
    client = oauth.create_client('google')

    def _answer(userinfo=None, error=None):
        def fake_token():
            if error:
                raise OAuthError(error=error)
            return {'access_token': 'access', 'userinfo': userinfo}
        monkeypatch.setattr(client, 'authorize_access_token', fake_token)
    return client, _answer


def _callback_query(res):
    assert res.status_code == 302
    location = urlparse(res.headers['Location'])
    return location, parse_qs(location.query)


def test_google_login_not_configured(client):
    assert client.get('/auth/google').status_code == 503
    assert client.get('/auth/google/callback').status_code == 503


def test_google_login_redirects_to_provider(client, google, monkeypatch):
    oauth_client, _ = google
    seen = {}

    def fake_redirect(redirect_uri):
        seen['redirect_uri'] = redirect_uri
        return redirect('https://accounts.google.com/o/oauth2/auth')
    monkeypatch.setattr(oauth_client, 'authorize_redirect', fake_redirect)

    res = client.get('/auth/google')
    assert res.status_code == 302
    assert seen['redirect_uri'].endswith('/auth/google/callback')


def test_google_callback_creates_account(flask_app, client, google):
    _, answer = google
    answer({'sub': 'g-100', 'email': 'Gina@Example.com', 'name': 'Gina'})

    location, query = _callback_query(client.get('/auth/google/callback'))
    assert location.path == '/auth-success'
    assert json.loads(query['user'][0])['username'] == 'Gina'

    me = flask_app.test_client().get('/auth/me', headers={'Authorization': f"Bearer {query['token'][0]}"})
    assert me.get_json()['email'] == 'gina@example.com'
    with flask_app.app_context():
        assert User.query.filter_by(google_id='g-100').first().username == 'Gina'


def test_google_callback_links_existing_email(flask_app, player, client, google):
    alice = player('Alice')
    _, answer = google
    answer({'sub': 'g-200', 'email': 'alice@example.com', 'name': 'Alice Liddell'})

    _, query = _callback_query(client.get('/auth/google/callback'))
    assert json.loads(query['user'][0])['id'] == alice.user['id']
    with flask_app.app_context():
        assert User.query.filter_by(google_id='g-200').first().id == alice.user['id']
        assert User.query.count() == 1


def test_google_callback_avoids_taken_username(player, client, google):
    player('Alice')
    _, answer = google
    answer({'sub': 'g-300', 'email': 'other.alice@example.com', 'name': 'Alice'})
    _, query = _callback_query(client.get('/auth/google/callback'))
    assert json.loads(query['user'][0])['username'] == 'Alice2'


def test_google_callback_rejected(client, google):
    _, answer = google
    answer(error='access_denied')
    location, query = _callback_query(client.get('/auth/google/callback'))
    assert location.path == '/login'
    assert query['error'] == ['google']
