from flask import current_app, request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room
from taleon import socketio, db
from taleon.models import Game, Room, User
from taleon.services.games import timers
from taleon.services.games.turns import GameError, submit_turn
from taleon.tokens import load_user_id
from typing import Dict, Any, Optional

# room_code -> {sid: display name}
_presence: Dict[str, Dict[str, str]] = {}
# sid -> {'user_id', 'username'} once joinRoom has authenticated the socket
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _channel(room_code: str) -> str:
    return f"room:{room_code}"


def _list_users(room_code: str):
    return list(_presence.get(room_code, {}).values())


def _remove_presence(room_code: str, sid: str) -> Optional[str]:
    users = _presence.get(room_code)
    if not users:
        return None
    name = users.pop(sid, None)
    if not users:
        _presence.pop(room_code, None)
    return name


def _authenticate(token: Optional[str]) -> Optional[User]:
    if token:
        user_id = load_user_id(token)
        return db.session.get(User, user_id) if user_id is not None else None
    if current_user.is_authenticated:
        return current_user._get_current_object()
    return None


def _ctx_user() -> Optional[User]:
    ctx = _sid_to_ctx.get(_get_sid())
    if not ctx:
        return None
    return db.session.get(User, ctx['user_id'])


def _code(data) -> str:
    return ((data or {}).get('room_code') or '').strip().upper()


def _load_game(data) -> Optional[Game]:
    try:
        game_id = int((data or {}).get('game_id'))
    except (TypeError, ValueError):
        return None
    return db.session.get(Game, game_id)


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    sid = _get_sid()
    _sid_to_ctx.pop(sid, None)
    for room_code in [code for code, users in _presence.items() if sid in users]:
        name = _remove_presence(room_code, sid)
        emit('playerLeft', {
            'username': name or 'Player',
            'players': _list_users(room_code),
        }, to=_channel(room_code), namespace='/ws')


def handle_join_room(data):
    room_code = _code(data)
    token = (data or {}).get('token')
    if not room_code:
        emit('error', {'message': 'Room code is required'})
        return

    user = _authenticate(token)
    if not user:
        emit('error', {'message': 'Invalid authentication token'})
        return

    room = Room.query.filter_by(room_code=room_code).first()
    if not room or user.id not in room.player_ids:
        emit('error', {'message': 'You are not a member of this room'})
        return

    sid = _get_sid()
    username = (data or {}).get('username') or room.display_name(user)
    _sid_to_ctx[sid] = {'user_id': user.id, 'username': username}
    join_room(_channel(room_code))
    _presence.setdefault(room_code, {})[sid] = username
    emit('playerJoined', {
        'username': username,
        'players': _list_users(room_code),
    }, to=_channel(room_code))


def handle_leave_room(data):
    room_code = _code(data)
    if not room_code:
        return
    name = _remove_presence(room_code, _get_sid())
    leave_room(_channel(room_code))
    emit('playerLeft', {
        'username': name or 'Player',
        'players': _list_users(room_code),
    }, to=_channel(room_code))


def handle_typing(data):
    room_code = _code(data)
    if not room_code:
        return
    emit('typing', {'username': (data or {}).get('username') or 'Player'},
         to=_channel(room_code), include_self=False)


def handle_stop_typing(data):
    room_code = _code(data)
    if not room_code:
        return
    emit('stopTyping', {'username': (data or {}).get('username') or 'Player'},
         to=_channel(room_code), include_self=False)


def handle_start_game(data):
    room_code = _code(data)
    if not room_code:
        return
    if not _ctx_user():
        emit('error', {'message': 'Authentication required'})
        return

    game = _load_game(data)
    if not game or game.room_code != room_code:
        emit('error', {'message': 'Game not found'})
        return

    emit('gameStarted', {'game_id': game.id}, to=_channel(room_code))
    duration = (data or {}).get('turn_duration')
    duration_ms = int(duration) if isinstance(duration, (int, float)) and duration > 0 else None
    timers.schedule_turn_timer(current_app._get_current_object(), game.id, duration_ms)


def handle_submit_turn(data):
    user = _ctx_user()
    if not user:
        emit('errorMsg', {'message': 'Authentication required'})
        return

    game = _load_game(data)
    if not game or not game.is_active:
        emit('errorMsg', {'message': 'Game not found or inactive'})
        return

    try:
        submit_turn(game, user, (data or {}).get('content'))
    except GameError as exc:
        emit('errorMsg', {'message': exc.message})
        return

    timers.schedule_turn_timer(current_app._get_current_object(), game.id)


def handle_end_game(data):
    room_code = _code(data)
    if not room_code:
        return
    if not _ctx_user():
        emit('error', {'message': 'Authentication required'})
        return
    timers.cancel_turn_timer(room_code)
    emit('gameEnded', {'game_id': (data or {}).get('game_id'), 'room_code': room_code}, to=_channel(room_code))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('joinRoom', handle_join_room, namespace='/ws')
    socketio.on_event('leaveRoom', handle_leave_room, namespace='/ws')
    socketio.on_event('typing', handle_typing, namespace='/ws')
    socketio.on_event('stopTyping', handle_stop_typing, namespace='/ws')
    socketio.on_event('startGame', handle_start_game, namespace='/ws')
    socketio.on_event('submitTurn', handle_submit_turn, namespace='/ws')
    socketio.on_event('endGame', handle_end_game, namespace='/ws')
