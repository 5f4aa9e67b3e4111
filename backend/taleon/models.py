from taleon import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import string
import random

AI_USERNAME = 'AI_Buddy'
AI_EMAIL = 'ai@system.local'

GENRES = ('fantasy', 'horror', 'sci-fi', 'mystery', 'comedy', 'drama', 'adventure', 'romance', 'custom')


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    password_hash = db.Column(db.String(256), nullable=True)
    google_id = db.Column(db.String(128), unique=True, nullable=True, index=True)
    is_system = db.Column(db.Boolean, default=False, nullable=False)
    reset_token_hash = db.Column(db.String(64), nullable=True, index=True)
    reset_token_expires = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
        }


def generate_room_code(length=6):
    """Generate a unique, short room code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Room.query.filter_by(room_code=code).first():
            return code


class RoomPlayer(db.Model):
    """Membership of a user in a room, with the display name chosen on join."""
    __tablename__ = 'room_player'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    player_name = db.Column(db.String(64), nullable=True)
    user = db.relationship('User')

    __table_args__ = (db.UniqueConstraint('room_id', 'user_id', name='uq_room_player'),)

    @property
    def display_name(self):
        return self.player_name or self.user.username

    def to_dict(self):
        return {
            'id': self.user_id,
            'username': self.user.username,
            'player_name': self.display_name,
        }


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(8), unique=True, nullable=False, index=True)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', name='fk_room_game_id', use_alter=True), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    turn_time = db.Column(db.Integer, default=10, nullable=False)  # minutes
    max_rounds = db.Column(db.Integer, default=5, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    host = db.relationship('User', foreign_keys=[host_id])
    members = db.relationship('RoomPlayer', order_by='RoomPlayer.id', cascade='all, delete-orphan')
    game = db.relationship('Game', foreign_keys=[game_id], post_update=True)

    def __init__(self, **kwargs):
        super(Room, self).__init__(**kwargs)
        if not self.room_code:
            self.room_code = generate_room_code()

    @property
    def player_ids(self):
        return [m.user_id for m in self.members]

    @property
    def player_names(self):
        return {str(m.user_id): m.player_name for m in self.members if m.player_name}

    def member(self, user_id):
        return next((m for m in self.members if m.user_id == user_id), None)

    def display_name(self, user):
        """Chosen name for a user in this room, falling back to the username."""
        m = self.member(user.id)
        if m and m.player_name:
            return m.player_name
        return user.username

    def to_dict(self):
        return {
            'id': self.id,
            'room_code': self.room_code,
            'host': {'id': self.host_id, 'username': self.host.username if self.host else None},
            'players': [m.to_dict() for m in self.members],
            'player_names': self.player_names,
            'game_id': self.game_id,
            'is_active': self.is_active,
            'turn_time': self.turn_time,
            'max_rounds': self.max_rounds,
        }


class GamePlayer(db.Model):
    """Seat in a game's turn order. ``position`` is dense and zero-based."""
    __tablename__ = 'game_player'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    user = db.relationship('User')


class StoryEntry(db.Model):
    __tablename__ = 'story_entry'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    turn = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    user = db.relationship('User')

    def to_dict(self):
        return {
            'turn': self.turn,
            'user_id': self.user_id,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default='')
    genre = db.Column(db.String(32), default='custom', nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False)
    room_code = db.Column(db.String(8), unique=True, nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    current_turn_index = db.Column(db.Integer, default=0, nullable=False)
    current_round = db.Column(db.Integer, default=1, nullable=False)
    max_rounds = db.Column(db.Integer, default=5, nullable=False)
    turn_time_limit = db.Column(db.Integer, default=600, nullable=False)  # seconds
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    verdict = db.Column(db.String(16), nullable=True)  # WIN, LOSE, ABANDONED; NULL while pending
    scores = db.Column(db.Text, nullable=True)  # JSON-encoded {flow, creativity, vibe, immersion}
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    room = db.relationship('Room', foreign_keys=[room_id])
    created_by = db.relationship('User', foreign_keys=[created_by_id])
    seats = db.relationship('GamePlayer', order_by='GamePlayer.position', cascade='all, delete-orphan')
    story = db.relationship('StoryEntry', order_by='StoryEntry.turn', cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version}

    @property
    def player_ids(self):
        return [s.user_id for s in self.seats]

    @property
    def players(self):
        return [s.user for s in self.seats]

    @property
    def current_player_id(self):
        if not self.seats:
            return None
        return self.seats[self.current_turn_index].user_id

    @property
    def status(self):
        if self.is_active:
            return 'active'
        if self.verdict == 'ABANDONED':
            return 'abandoned'
        if self.verdict:
            return 'judged'
        return 'pending'

    def get_scores(self):
        try:
            return json.loads(self.scores) if self.scores else None
        except ValueError:
            return None

    def set_scores(self, scores):
        self.scores = json.dumps(scores) if scores is not None else None

    def named_story(self, room=None):
        """Story as ``[{player, text}]`` using the names chosen in the room."""
        room = room or self.room
        out = []
        for entry in self.story:
            name = room.display_name(entry.user) if room else entry.user.username
            out.append({'player': name, 'text': entry.content})
        return out

    def named_players(self, room=None):
        room = room or self.room
        return [
            {'id': u.id, 'username': room.display_name(u) if room else u.username}
            for u in self.players
        ]

    def to_dict(self, room=None):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'genre': self.genre,
            'room_code': self.room_code,
            'created_by': self.created_by_id,
            'players': self.named_players(room),
            'story': self.named_story(room),
            'current_turn_index': self.current_turn_index,
            'current_round': self.current_round,
            'max_rounds': self.max_rounds,
            'turn_time_limit': self.turn_time_limit,
            'is_active': self.is_active,
            'status': self.status,
            'verdict': self.verdict,
            'scores': self.get_scores(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
