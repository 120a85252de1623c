from datetime import datetime, timezone

from flask_login import UserMixin

from tictac import db, bcrypt
from tictac.board import SYMBOL_A, ENCODED_SIZE, empty_board, encode_board


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(256), nullable=True)
    avatar_url = db.Column(db.String(512), nullable=True)
    is_anonymous_user = db.Column('is_anonymous', db.Boolean, default=False, nullable=False)
    # Statistics are only changed through players.record_result
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    draws = db.Column(db.Integer, default=0, nullable=False)
    total_games = db.Column(db.Integer, default=0, nullable=False)
    win_rate = db.Column(db.Float, default=0.0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if self.is_anonymous_user or not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': str(self.id),
            'username': self.username,
            'avatarUrl': self.avatar_url,
            'isAnonymous': self.is_anonymous_user,
            'stats': {
                'wins': self.wins,
                'losses': self.losses,
                'draws': self.draws,
                'totalGames': self.total_games,
                'winRate': self.win_rate,
            },
        }


class GameSession(db.Model):
    __tablename__ = 'game_session'
    __table_args__ = (
        db.Index('ix_game_session_queue', 'status', 'is_public', 'created_at'),
    )
    id = db.Column(db.String(32), primary_key=True)
    code = db.Column(db.String(6), unique=True, nullable=False, index=True)
    player_a = db.Column(db.String(64), nullable=False, index=True)
    player_b = db.Column(db.String(64), nullable=True, index=True)
    board = db.Column(db.LargeBinary(ENCODED_SIZE), nullable=False, default=lambda: encode_board(empty_board()))
    current_turn = db.Column(db.String(1), nullable=False, default=SYMBOL_A)
    winner = db.Column(db.String(4), nullable=True)  # X, O, draw
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, active, finished
    finish_reason = db.Column(db.String(16), nullable=True)  # win, draw, forfeit
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    last_activity_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    moves = db.relationship('SessionMove', back_populates='session', order_by='SessionMove.seq',
                            cascade='all, delete-orphan')


class SessionMove(db.Model):
    __tablename__ = 'session_move'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'seq', name='uq_session_move_seq'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(32), db.ForeignKey('game_session.id'), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.String(64), nullable=False)
    cell = db.Column(db.Integer, nullable=False)
    symbol = db.Column(db.String(1), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    session = db.relationship('GameSession', back_populates='moves')
