"""Signed bearer tokens and password-reset tokens."""

import hashlib
import secrets
from typing import Optional, Tuple

from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

_AUTH_SALT = 'taleon-auth'


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=_AUTH_SALT)


def issue_token(user) -> str:
    return _serializer().dumps({'id': user.id})


def load_user_id(token: str) -> Optional[int]:
    """Return the user id carried by ``token``, or None if invalid or expired."""
    if not token:
        return None
    max_age = int(current_app.config.get('TOKEN_MAX_AGE_SEC', 30 * 24 * 3600))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        return None
    try:
        return int(data.get('id'))
    except (AttributeError, TypeError, ValueError):
        return None


def hash_reset_token(raw: str) -> str:
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def new_reset_token() -> Tuple[str, str]:
    """Return ``(raw, hashed)``; only the hash is stored."""
    raw = secrets.token_hex(20)
    return raw, hash_reset_token(raw)
