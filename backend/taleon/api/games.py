from typing import Optional

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from taleon import db, socketio
from taleon.models import Game, GamePlayer, Room, AI_USERNAME
from taleon.services import ai
from taleon.services.games import timers
from taleon.services.games.judgement import judge_story
from taleon.services.games.turns import (
    GameError,
    commit_game,
    end_game,
    get_ai_user,
    play_ai_turn,
    record_verdict,
    remove_player,
    start_game,
    submit_turn,
)
from taleon.services.rooms import remove_member


games = Blueprint('games', __name__)

VERDICT_BUCKETS = ('WIN', 'LOSE', 'PENDING', 'ABANDONED')


def _error(exc: GameError):
    return jsonify({'error': exc.message}), exc.status_code


def _room_code(data) -> str:
    return (data.get('room_code') or '').strip().upper()


def _in_game(game: Game, room: Optional[Room] = None) -> bool:
    if current_user.id in game.player_ids or current_user.id == game.created_by_id:
        return True
    return bool(room and room.member(current_user.id))


def _turn_response(game: Game, room: Room, message: str, **extra):
    payload = {
        'message': message,
        'story': game.named_story(room),
        'current_turn_index': game.current_turn_index,
        'current_round': game.current_round,
        'judgement_ready': not game.is_active and not game.verdict,
    }
    payload.update(extra)
    return payload


@games.route('/start', methods=['POST'])
@login_required
def start():
    """
    Starts the room's game with the AI player seated after the humans.
    """
    data = request.get_json(silent=True) or {}
    room = Room.query.filter_by(room_code=_room_code(data)).first_or_404(description='Room not found')
    try:
        game = start_game(room, current_user)
    except GameError as exc:
        return _error(exc)

    return jsonify({
        'message': 'Game started with AI player',
        'game_id': game.id,
        'room_code': room.room_code,
        'title': game.title,
        'genre': game.genre,
        'turn_time_limit': game.turn_time_limit,
        'max_rounds': game.max_rounds,
        'players': game.named_players(room),
    }), 201


@games.route('/turn', methods=['POST'])
@login_required
def take_turn():
    """
    Submits the caller's turn. Called without text it only reports state,
    and when the AI seat is up it makes the AI play.
    """
    data = request.get_json(silent=True) or {}
    room_code = _room_code(data)
    if not room_code:
        return jsonify({'error': 'room_code is required'}), 400

    game = Game.query.filter_by(room_code=room_code).first()
    if not game or not game.is_active:
        return jsonify({'error': 'Game not found or inactive'}), 404
    if current_user.id not in game.player_ids:
        return jsonify({'error': 'You are not a player in this game'}), 403

    room = Room.query.filter_by(room_code=room_code).first()
    app = current_app._get_current_object()
    text = (data.get('text') or '').strip()

    try:
        if game.current_player_id == get_ai_user().id:
            entry = play_ai_turn(game)
            timers.restart_if_running(app, game)
            return jsonify(_turn_response(game, room, 'AI turn added', text=entry.content if entry else None)), 201

        if game.current_player_id != current_user.id:
            if text:
                return jsonify(_turn_response(game, room, 'Not your turn!', error='Not your turn!')), 403
            return jsonify(_turn_response(game, room, 'Waiting for another player', waiting=True))

        if not text:
            return jsonify(_turn_response(game, room, 'Awaiting your input', need_text=True))

        result = submit_turn(game, current_user, text)
    except GameError as exc:
        return _error(exc)

    timers.restart_if_running(app, game)
    ai_entry = result['ai_entry']
    return jsonify(_turn_response(game, room, 'Turn added', text=ai_entry.content if ai_entry else None)), 201


@games.route('/judgement', methods=['POST'])
@login_required
def judgement():
    data = request.get_json(silent=True) or {}
    room_code = _room_code(data)
    story = data.get('story')
    if not room_code and not isinstance(story, list):
        return jsonify({'error': 'room_code or story is required'}), 400

    game = None
    if room_code:
        game = Game.query.filter_by(room_code=room_code).first_or_404(description='Game not found')
        room = Room.query.filter_by(room_code=room_code).first_or_404(description='Room not found')
        if not _in_game(game, room):
            return jsonify({'error': 'You are not a player in this game'}), 403
        if not isinstance(story, list):
            story = game.named_story(room)

    result = judge_story(story or [])
    if game:
        try:
            record_verdict(game, result)
        except GameError as exc:
            return _error(exc)
    return jsonify(result)


@games.route('/roast', methods=['POST'])
@login_required
def roast():
    data = request.get_json(silent=True) or {}
    players = data.get('players') or []
    story = data.get('story') or []
    result = data.get('result') or 'LOSE'

    roasts = []
    for player in players:
        name = player if isinstance(player, str) else (player or {}).get('username') or (player or {}).get('name')
        if not name or str(name).lower() == AI_USERNAME.lower():
            continue
        roasts.append({'name': name, 'roast': ai.generate_roast_text(name, story, result)})
    return jsonify({'roasts': roasts})


def _my_games():
    return (
        Game.query.join(GamePlayer, GamePlayer.game_id == Game.id)
        .filter(GamePlayer.user_id == current_user.id)
        .order_by(Game.created_at.desc(), Game.id.desc())
        .all()
    )


@games.route('/archive', methods=['GET'])
@login_required
def archive():
    """
    Returns every game the user plays in, newest first, with verdict counts.
    """
    archives = []
    counts = {'ALL': 0, **{v: 0 for v in VERDICT_BUCKETS}}
    for g in _my_games():
        verdict = g.verdict or 'PENDING'
        counts['ALL'] += 1
        if verdict in counts:
            counts[verdict] += 1
        stamp = g.updated_at or g.created_at
        archives.append({
            'id': g.id,
            'date': f"{stamp:%B} {stamp.day}, {stamp.year}" if stamp else None,
            'verdict': verdict,
            'title': g.title or 'Untitled Tale',
            'genre': g.genre or 'custom',
            'story': g.named_story(),
        })

    current_app.logger.info(f"[archive] user={current_user.id} games={len(archives)} counts={counts}")
    return jsonify({
        'archives': archives,
        'filters': {'verdict_counts': counts},
        'pagination': {'total_games': len(archives)},
    })


@games.route('/by-room/<string:room_code>', methods=['GET'])
@login_required
def by_room(room_code):
    game = Game.query.filter_by(room_code=room_code.upper()).first_or_404(description='Game not found')
    return jsonify(game.to_dict())


@games.route('/my', methods=['GET'])
@login_required
def my_games():
    hosted, joined = [], []
    for g in _my_games():
        (hosted if g.created_by_id == current_user.id else joined).append(g.to_dict())
    return jsonify({'hosted_games': hosted, 'joined_games': joined})


@games.route('/<int:game_id>/turn', methods=['POST'])
@login_required
def add_turn_by_id(game_id):
    """
    Older clients address games by id; same rules as /turn but text is required.
    """
    data = request.get_json(silent=True) or {}
    content = (data.get('content') or '').strip()
    if not content:
        return jsonify({'error': 'Content is required'}), 400

    game = db.get_or_404(Game, game_id, description='Game not found')
    try:
        submit_turn(game, current_user, content)
    except GameError as exc:
        return _error(exc)
    timers.restart_if_running(current_app._get_current_object(), game)
    return jsonify(_turn_response(game, game.room, 'Turn added')), 201


@games.route('/<int:game_id>/end', methods=['POST'])
@login_required
def end(game_id):
    game = db.get_or_404(Game, game_id, description='Game not found')
    if not _in_game(game, game.room):
        return jsonify({'error': 'You are not a player in this game'}), 403
    try:
        end_game(game)
    except GameError as exc:
        return _error(exc)
    return jsonify({'message': 'Game ended', 'game': game.to_dict()})


@games.route('/leave', methods=['POST'])
@login_required
def leave():
    """
    Removes the current user from the game and its room. A game left with
    fewer than two players is closed.
    """
    data = request.get_json(silent=True) or {}
    room_code = _room_code(data)
    game = Game.query.filter_by(room_code=room_code).first_or_404(description='Game not found')
    room = Room.query.filter_by(room_code=room_code).first_or_404(description='Room not found')

    try:
        remove_player(game, current_user.id)
        remove_member(room, current_user.id)
        if not room.is_active:
            room.game = None
        commit_game()
        # the seat after the leaver may be the AI's
        play_ai_turn(game)
    except GameError as exc:
        return _error(exc)
    timers.restart_if_running(current_app._get_current_object(), game)

    socketio.emit('playerLeftGame', {
        'user_id': current_user.id,
        'players': room.player_ids,
        'game_ended': not game.is_active,
    }, to=f"room:{room_code}", namespace='/ws')

    return jsonify({
        'message': 'Left game successfully',
        'game_ended': not game.is_active,
        'room_closed': not room.is_active,
    })


@games.route('/<int:game_id>', methods=['GET'])
@login_required
def get_game(game_id):
    game = db.get_or_404(Game, game_id, description='Game not found')
    return jsonify(game.to_dict())
