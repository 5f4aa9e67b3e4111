import json
from datetime import datetime, timedelta, timezone
from smtplib import SMTPException
from urllib.parse import urlencode

from authlib.integrations.base_client import OAuthError
from flask import Blueprint, current_app, jsonify, redirect, request, url_for
from flask_login import current_user, login_required, login_user, logout_user

from taleon import db, oauth
from taleon.mailer import send_email
from taleon.models import User
from taleon.tokens import hash_reset_token, issue_token, new_reset_token

auth = Blueprint('auth', __name__)


def _auth_payload(user):
    payload = user.to_dict()
    payload['token'] = issue_token(user)
    return payload


def _clear_reset_token(user):
    user.reset_token_hash = None
    user.reset_token_expires = None
    db.session.commit()


def google_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get('GOOGLE_CLIENT_ID') and cfg.get('GOOGLE_CLIENT_SECRET'))


def _free_username(base: str) -> str:
    base = base.strip()[:56] or 'player'
    candidate, n = base, 1
    while User.query.filter_by(username=candidate).first():
        n += 1
        candidate = f"{base}{n}"
    return candidate


def _google_user(info) -> User:
    """Find the account for a Google profile, linking by email or creating one."""
    google_id = str(info['sub'])
    email = (info.get('email') or '').strip().lower() or None
    user = User.query.filter_by(google_id=google_id).first()
    if user:
        return user

    user = User.query.filter_by(email=email).first() if email else None
    if user:
        user.google_id = google_id
        current_app.logger.info(f"[auth] linked google account to user={user.id}")
    else:
        name = info.get('name') or (email or '').split('@')[0]
        user = User(username=_free_username(name), email=email, google_id=google_id)
        db.session.add(user)
    db.session.commit()
    return user


@auth.route('/signup', methods=['POST'])
def signup():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not all([username, email, password]):
        return jsonify({'error': 'Username, email and password are required'}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'User already exists'}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already taken'}), 400

    user = User(username=username, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    login_user(user, remember=True)
    current_app.logger.info(f"[auth] signup user={user.id}")
    return jsonify(_auth_payload(user)), 201


@auth.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    user = User.query.filter_by(email=email).first()
    if user and user.is_system:
        return jsonify({'error': 'System accounts cannot log in'}), 403
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify(_auth_payload(user))
    return jsonify({'error': 'Invalid credentials'}), 401


@auth.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})


@auth.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify(current_user.to_dict())


@auth.route('/forgot-password', methods=['POST'])
def forgot_password():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or user.is_system:
        return jsonify({'error': 'User not found'}), 404

    raw, hashed = new_reset_token()
    ttl = int(current_app.config.get('RESET_TOKEN_TTL_MIN', 10))
    user.reset_token_hash = hashed
    user.reset_token_expires = datetime.now(timezone.utc) + timedelta(minutes=ttl)
    db.session.commit()

    reset_url = f"{current_app.config['FRONTEND_URL'].rstrip('/')}/reset-password/{raw}"
    message = (
        "You are receiving this email because you (or someone else) has requested the reset of a password. "
        f"Open the following link to choose a new password: \n\n {reset_url}"
    )
    try:
        sent = send_email(user.email, 'Password reset token', message)
    except (SMTPException, OSError) as exc:
        current_app.logger.error(f"[auth] reset mail to user={user.id} failed: {exc}")
        _clear_reset_token(user)
        return jsonify({'error': 'Email could not be sent'}), 500
    if not sent:
        _clear_reset_token(user)
        return jsonify({'error': 'Email delivery is not configured'}), 503
    return jsonify({'message': 'Email sent'})


@auth.route('/reset-password/<string:token>', methods=['POST'])
def reset_password(token):
    data = request.get_json(silent=True) or {}
    password = data.get('password') or ''
    if not password:
        return jsonify({'error': 'Password is required'}), 400

    user = User.query.filter_by(reset_token_hash=hash_reset_token(token)).first()
    expires = user.reset_token_expires if user else None
    if expires is not None and expires.tzinfo is None:
        # SQLite hands back naive datetimes
        expires = expires.replace(tzinfo=timezone.utc)
    if not user or not expires or expires <= datetime.now(timezone.utc):
        return jsonify({'error': 'Invalid or expired token'}), 400

    user.set_password(password)
    _clear_reset_token(user)
    login_user(user, remember=True)
    return jsonify(_auth_payload(user))


@auth.route('/google', methods=['GET'])
def google_login():
    if not google_configured():
        return jsonify({'error': 'Google OAuth not configured'}), 503
    redirect_uri = current_app.config.get('GOOGLE_CALLBACK_URL') or url_for('auth.google_callback', _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@auth.route('/google/callback', methods=['GET'])
def google_callback():
    """
    Finishes the Google sign-in and sends the browser back to the frontend
    with a bearer token and the user in the query string.
    """
    if not google_configured():
        return jsonify({'error': 'Google OAuth not configured'}), 503
    frontend = current_app.config['FRONTEND_URL'].rstrip('/')
    failed = f"{frontend}/login?{urlencode({'error': 'google'})}"

    try:
        token = oauth.google.authorize_access_token()
    except OAuthError as exc:
        current_app.logger.warning(f"[auth] google callback rejected: {exc}")
        return redirect(failed)

    info = token.get('userinfo') or {}
    if not info.get('sub'):
        current_app.logger.warning("[auth] google callback without a profile id")
        return redirect(failed)

    user = _google_user(info)
    if user.is_system:
        return redirect(failed)
    login_user(user, remember=True)
    current_app.logger.info(f"[auth] google login user={user.id}")
    query = urlencode({'token': issue_token(user), 'user': json.dumps(user.to_dict())})
    return redirect(f"{frontend}/auth-success?{query}")
