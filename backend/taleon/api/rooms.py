from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from taleon.models import Room
from taleon.services.games.turns import GameError
from taleon.services.rooms import create_room, enter_room, leave_room

rooms = Blueprint('rooms', __name__)


def _positive_int(value):
    try:
        value = int(value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


@rooms.route('/create', methods=['POST'])
@login_required
def create():
    """
    Creates a room with the current user as host and first player.
    """
    data = request.get_json(silent=True) or {}
    room = create_room(
        current_user,
        player_name=data.get('player_name'),
        turn_time=_positive_int(data.get('turn_time')),
        max_rounds=_positive_int(data.get('max_rounds')),
    )
    return jsonify({
        'message': 'Room created successfully',
        'room_code': room.room_code,
        'host': current_user.username,
        'turn_time': room.turn_time,
        'max_rounds': room.max_rounds,
    }), 201


@rooms.route('/join', methods=['POST'])
@login_required
def join():
    data = request.get_json(silent=True) or {}
    room_code = (data.get('room_code') or '').strip().upper()
    if not room_code:
        return jsonify({'error': 'Room code is required'}), 400

    room = Room.query.filter_by(room_code=room_code).first()
    if not room:
        return jsonify({'error': 'Room not found'}), 404

    try:
        enter_room(room, current_user, data.get('player_name'))
    except GameError as exc:
        return jsonify({'error': exc.message}), exc.status_code

    active_game = None
    if room.game and room.game.is_active:
        active_game = {
            'game_id': room.game.id,
            'title': room.game.title,
            'genre': room.game.genre,
            'current_turn_index': room.game.current_turn_index,
        }

    return jsonify({
        'message': 'Joined room successfully',
        'room_code': room.room_code,
        'players': room.player_ids,
        'player_name': room.display_name(current_user),
        'active_game': active_game,
    })


@rooms.route('/<string:code>', methods=['GET'])
@login_required
def get_room(code):
    room = Room.query.filter_by(room_code=code.upper()).first()
    if not room:
        return jsonify({'error': 'Room not found'}), 404
    return jsonify(room.to_dict())


@rooms.route('/leave', methods=['POST'])
@login_required
def leave():
    """
    Removes the current user from a room. The host role moves to the next
    player; an empty room is closed.
    """
    data = request.get_json(silent=True) or {}
    room_code = (data.get('room_code') or '').strip().upper()
    room = Room.query.filter_by(room_code=room_code).first()
    if not room:
        return jsonify({'error': 'Room not found'}), 404

    if not room.member(current_user.id):
        return jsonify({'error': 'You are not in this room'}), 403

    leave_room(room, current_user.id)
    return jsonify({
        'message': 'Left room successfully',
        'players': room.player_ids,
        'host': room.host_id,
        'room_closed': not room.is_active,
    })
