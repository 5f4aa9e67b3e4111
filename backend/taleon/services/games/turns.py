"""Turn rotation and game lifecycle.

A game's players sit in a fixed order (``GamePlayer.position``) with the AI
participant seated last. ``current_turn_index`` points at the seat whose turn
it is; every accepted entry moves it one seat forward, and each wrap to seat 0
starts a new round. Once the round count passes ``max_rounds`` the game is
closed and waits for judgement.
"""

from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from taleon import db, socketio
from taleon.models import AI_EMAIL, AI_USERNAME, Game, GamePlayer, Room, StoryEntry, User
from taleon.services import ai
from taleon.services.games import timers

SKIPPED_CONTENT = '[SKIPPED - timeout]'


class GameError(Exception):
    """A rejected game operation, carrying the HTTP status to report."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_ai_user() -> User:
    ai_user = User.query.filter_by(email=AI_EMAIL).first()
    if not ai_user:
        ai_user = User(username=AI_USERNAME, email=AI_EMAIL, is_system=True)
        db.session.add(ai_user)
        db.session.flush()
        current_app.logger.info(f"[ai-user] created {AI_USERNAME} id={ai_user.id}")
    return ai_user


def _emit(event: str, payload: Dict[str, Any], room_code: str) -> None:
    socketio.emit(event, payload, to=f"room:{room_code}", namespace='/ws')


def commit_game() -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise GameError('Game was updated by someone else, please retry', 409)


def turn_payload(game: Game, entry: StoryEntry) -> Dict[str, Any]:
    return {
        'game_id': game.id,
        'room_code': game.room_code,
        'turn': entry.to_dict(),
        'next_turn_index': game.current_turn_index,
        'current_round': game.current_round,
    }


def start_game(room: Room, user: User) -> Game:
    if not room.is_active:
        raise GameError('Room already closed', 400)
    if room.host_id != user.id:
        raise GameError('Only host can start the game', 403)
    if room.game_id or Game.query.filter_by(room_code=room.room_code).first():
        raise GameError('Game already started in this room', 400)

    ai_user = get_ai_user()
    meta = ai.generate_game_meta()
    cfg = current_app.config
    game = Game(
        title=meta['title'],
        description='AI-generated session',
        genre=ai.normalize_genre(meta['genre']),
        room_id=room.id,
        room_code=room.room_code,
        created_by_id=user.id,
        current_turn_index=0,
        current_round=1,
        max_rounds=room.max_rounds,
        turn_time_limit=max(int(cfg.get('MIN_TURN_TIME_SEC', 60)), int(room.turn_time or 10) * 60),
    )
    for position, user_id in enumerate(room.player_ids + [ai_user.id]):
        game.seats.append(GamePlayer(user_id=user_id, position=position))
    db.session.add(game)
    db.session.flush()
    room.game = game
    db.session.commit()
    current_app.logger.info(
        f"[start] game={game.id} room={room.room_code} players={game.player_ids} title={game.title!r}"
    )

    _emit('gameStarted', {
        'game_id': game.id,
        'room_code': room.room_code,
        'title': game.title,
        'genre': game.genre,
        'turn_time_limit': game.turn_time_limit,
        'max_rounds': game.max_rounds,
        'players': game.named_players(room),
    }, room.room_code)
    return game


def add_player(game: Game, user_id: int) -> bool:
    """Seat a late joiner at the end of the turn order."""
    if user_id in game.player_ids:
        return False
    game.seats.append(GamePlayer(user_id=user_id, position=len(game.seats)))
    current_app.logger.info(f"[seat] game={game.id} added user={user_id} at position={len(game.seats) - 1}")
    return True


def _append_entry(game: Game, user_id: int, content: str) -> StoryEntry:
    entry = StoryEntry(turn=len(game.story) + 1, user_id=user_id, content=content)
    game.story.append(entry)
    return entry


def _advance(game: Game) -> None:
    game.current_turn_index = (game.current_turn_index + 1) % len(game.seats)
    if game.current_turn_index == 0:
        game.current_round += 1
        current_app.logger.info(f"[round] game={game.id} round -> {game.current_round}/{game.max_rounds}")
        if game.current_round > game.max_rounds:
            game.is_active = False
            current_app.logger.info(f"[finish] game={game.id} max rounds reached, awaiting judgement")


def _broadcast_entry(game: Game, entry: StoryEntry, event: str = 'turnAdded') -> None:
    if event == 'turnSkipped':
        payload = {
            'game_id': game.id,
            'room_code': game.room_code,
            'skipped_turn': entry.to_dict(),
            'next_turn_index': game.current_turn_index,
        }
    else:
        payload = turn_payload(game, entry)
    _emit(event, payload, game.room_code)
    if not game.is_active:
        timers.cancel_turn_timer(game.room_code)
        _emit('gameEnded', {'game_id': game.id, 'room_code': game.room_code, 'reason': 'max_rounds'}, game.room_code)


def play_ai_turn(game: Game) -> Optional[StoryEntry]:
    """Let the AI write its entry if the turn is on the AI seat."""
    if not game.is_active:
        return None
    ai_user = get_ai_user()
    if game.current_player_id != ai_user.id:
        return None
    story_so_far = '\n'.join(e.content for e in game.story)
    text = ai.generate_story_text(story_so_far, game.genre)
    entry = _append_entry(game, ai_user.id, text)
    _advance(game)
    commit_game()
    current_app.logger.info(f"[turn] game={game.id} ai entry turn={entry.turn} next={game.current_turn_index}")
    _broadcast_entry(game, entry)
    return entry


def submit_turn(game: Game, user: User, text: Optional[str]) -> Dict[str, Any]:
    """Append ``user``'s entry and move the turn on, playing the AI seat if it is next.

    Returns the new entries and whether the game is now waiting for judgement.
    """
    if not game.is_active:
        raise GameError('Game not found or inactive', 404)
    if user.id not in game.player_ids:
        raise GameError('You are not a player in this game', 403)
    if game.current_player_id != user.id:
        raise GameError('Not your turn!', 403)
    content = (text or '').strip()
    if not content:
        raise GameError('Content is required', 400)

    entry = _append_entry(game, user.id, content)
    _advance(game)
    commit_game()
    current_app.logger.info(f"[turn] game={game.id} user={user.id} turn={entry.turn} next={game.current_turn_index}")
    _broadcast_entry(game, entry)

    entries: List[StoryEntry] = [entry]
    ai_entry = play_ai_turn(game)
    if ai_entry:
        entries.append(ai_entry)
    return {'entries': entries, 'ai_entry': ai_entry, 'judgement_ready': not game.is_active}


def expire_turn(game: Game, expected_story_len: int, expected_index: int) -> Optional[StoryEntry]:
    """Skip the current player's turn if nothing happened since the timer was set."""
    if not game.is_active or not game.seats:
        return None
    if len(game.story) != expected_story_len or game.current_turn_index != expected_index:
        return None
    if game.current_player_id == get_ai_user().id:
        # the AI seat writes instead of being skipped
        return play_ai_turn(game)
    entry = _append_entry(game, game.current_player_id, SKIPPED_CONTENT)
    _advance(game)
    commit_game()
    current_app.logger.info(f"[skip] game={game.id} turn={entry.turn} user={entry.user_id} next={game.current_turn_index}")
    _broadcast_entry(game, entry, event='turnSkipped')
    play_ai_turn(game)
    return entry


def close_game(game: Game) -> None:
    """Deactivate a game that lost its players.

    Games without any story are marked ABANDONED; the rest stay pending so
    they can still be judged.
    """
    if not game.is_active:
        return
    game.is_active = False
    if not game.story:
        game.verdict = 'ABANDONED'
        current_app.logger.info(f"[close] game={game.id} marked ABANDONED, no story content")
    else:
        current_app.logger.info(f"[close] game={game.id} kept PENDING with {len(game.story)} entries")
    timers.cancel_turn_timer(game.room_code)


def remove_player(game: Game, user_id: int) -> bool:
    """Drop ``user_id`` from the turn order, keeping the index on a valid seat.

    Returns True when the game was closed as a result.
    """
    seat = next((s for s in game.seats if s.user_id == user_id), None)
    if seat is None:
        raise GameError('You are not a player in this game', 403)

    removed_at = seat.position
    game.seats.remove(seat)
    for s in game.seats:
        if s.position > removed_at:
            s.position -= 1

    remaining = len(game.seats)
    if removed_at < game.current_turn_index:
        game.current_turn_index -= 1
    game.current_turn_index = game.current_turn_index % remaining if remaining else 0

    if remaining < int(current_app.config.get('MIN_PLAYERS_TO_CONTINUE', 2)):
        was_active = game.is_active
        close_game(game)
        return was_active
    return False


def record_verdict(game: Game, result: Dict[str, Any]) -> None:
    game.verdict = result.get('verdict')
    game.set_scores(result.get('scores'))
    game.is_active = False
    commit_game()
    timers.cancel_turn_timer(game.room_code)
    current_app.logger.info(f"[judgement] saved verdict={game.verdict} for game={game.id}")


def end_game(game: Game) -> None:
    game.is_active = False
    commit_game()
    timers.cancel_turn_timer(game.room_code)
    _emit('gameEnded', {'game_id': game.id, 'room_code': game.room_code}, game.room_code)
