import itertools
from typing import Dict, Optional

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from taleon import db, socketio
from taleon.models import Game

# room_code -> generation of the live timer; any other generation is stale
_turn_timers: Dict[str, int] = {}
_generations = itertools.count(1)


def timers_enabled(app) -> bool:
    return not app.config.get('TESTING') or bool(app.config.get('ENABLE_TURN_TIMER_IN_TESTS'))


def is_running(room_code: str) -> bool:
    return room_code in _turn_timers


def cancel_turn_timer(room_code: str) -> None:
    if _turn_timers.pop(room_code, None) is not None:
        current_app.logger.info(f"[timer-cancel] room={room_code}")


def schedule_turn_timer(app, game_id: int, duration_ms: Optional[int] = None) -> Optional[int]:
    """Start (or restart) the turn timer for the game's room.

    - Broadcasts ``turnStarted`` so clients can render a countdown
    - Keeps a single live timer per room; older ones abort when they wake
    - No background task in TESTING unless ENABLE_TURN_TIMER_IN_TESTS

    Returns the timer generation, or None when the game cannot take turns.
    """
    with app.app_context():
        game = db.session.get(Game, game_id)
        if not game or not game.is_active or not game.seats:
            if game:
                cancel_turn_timer(game.room_code)
            return None

        if duration_ms is None:
            duration_ms = int(game.turn_time_limit) * 1000
        room_code = game.room_code
        expected_len = len(game.story)
        expected_index = game.current_turn_index

        socketio.emit('turnStarted', {
            'game_id': game.id,
            'current_turn_index': expected_index,
            'player_id': game.current_player_id,
            'duration': duration_ms,
        }, to=f"room:{room_code}", namespace='/ws')

        generation = next(_generations)
        _turn_timers[room_code] = generation
        app.logger.info(
            f"[timer-set] game={game.id} room={room_code} index={expected_index} duration={duration_ms}ms gen={generation}"
        )

    if timers_enabled(app):
        socketio.start_background_task(
            _worker, app, game_id, room_code, generation, expected_len, expected_index, duration_ms
        )
    return generation


def restart_if_running(app, game: Game) -> None:
    if is_running(game.room_code):
        schedule_turn_timer(app, game.id)


def _worker(app, game_id, room_code, generation, expected_len, expected_index, duration_ms):
    socketio.sleep(duration_ms / 1000.0)
    fire_turn_timer(app, game_id, room_code, generation, expected_len, expected_index, duration_ms)


def fire_turn_timer(app, game_id: int, room_code: str, generation: int,
                    expected_len: int, expected_index: int, duration_ms: int):
    """Timer callback: skip the idle player's turn and schedule the next timer."""
    from taleon.services.games.turns import GameError, expire_turn

    with app.app_context():
        if _turn_timers.get(room_code) != generation:
            app.logger.info(f"[timer-abort] room={room_code} gen={generation} superseded")
            return None
        _turn_timers.pop(room_code, None)

        game = db.session.get(Game, game_id)
        if not game:
            return None
        app.logger.info(
            f"[timer-fire] game={game_id} expected_index={expected_index} actual_index={game.current_turn_index} "
            f"expected_len={expected_len} actual_len={len(game.story)}"
        )
        try:
            entry = expire_turn(game, expected_len, expected_index)
        except (GameError, StaleDataError):
            db.session.rollback()
            app.logger.info(f"[timer-abort] game={game_id} turn taken concurrently")
            entry = None

        game = db.session.get(Game, game_id)
        if game and game.is_active:
            schedule_turn_timer(app, game.id, duration_ms)
        return entry
