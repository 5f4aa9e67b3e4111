from typing import Optional

from flask import current_app

from taleon import db
from taleon.models import Room, RoomPlayer, User
from taleon.services.games.turns import GameError, add_player, close_game


def _clean_name(player_name: Optional[str]) -> Optional[str]:
    name = (player_name or '').strip()
    return name[:64] or None


def create_room(host: User, player_name: Optional[str] = None,
                turn_time: Optional[int] = None, max_rounds: Optional[int] = None) -> Room:
    cfg = current_app.config
    room = Room(
        host_id=host.id,
        turn_time=turn_time or int(cfg.get('DEFAULT_TURN_TIME_MIN', 10)),
        max_rounds=max_rounds or int(cfg.get('DEFAULT_MAX_ROUNDS', 5)),
    )
    room.members.append(RoomPlayer(user_id=host.id, player_name=_clean_name(player_name)))
    db.session.add(room)
    db.session.commit()
    current_app.logger.info(f"[room] created {room.room_code} host={host.id}")
    return room


def enter_room(room: Room, user: User, player_name: Optional[str] = None) -> bool:
    """Add ``user`` to the room (and its running game). Returns False if already in."""
    if not room.is_active:
        raise GameError('Room is closed', 400)
    if room.member(user.id):
        return False

    room.members.append(RoomPlayer(user_id=user.id, player_name=_clean_name(player_name)))
    if room.game and room.game.is_active:
        add_player(room.game, user.id)
    db.session.commit()
    current_app.logger.info(f"[room] user={user.id} joined {room.room_code}")
    return True


def remove_member(room: Room, user_id: int) -> None:
    """Drop a member and its chosen name; hand the host role on or close the room."""
    m = room.member(user_id)
    if m is not None:
        room.members.remove(m)

    if room.host_id == user_id and room.members:
        room.host_id = room.members[0].user_id
        current_app.logger.info(f"[room] {room.room_code} host -> {room.host_id}")
    if not room.members:
        room.is_active = False
        current_app.logger.info(f"[room] {room.room_code} closed, no players left")


def leave_room(room: Room, user_id: int) -> None:
    remove_member(room, user_id)
    if room.game and len(room.members) < 2:
        close_game(room.game)
        room.game = None
    db.session.commit()
