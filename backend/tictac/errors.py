"""Session error kinds.

All of these are recoverable at the calling boundary; the REST and realtime
layers translate ``status`` and ``code`` into their own transport.
"""


class GameError(Exception):
    code = 'game_error'
    status = 400
    default_message = 'Game error'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class NotFound(GameError):
    code = 'not_found'
    status = 404
    default_message = 'Session not found'


class SelfJoin(GameError):
    code = 'self_join'
    status = 409
    default_message = 'Cannot join your own session'


class NotActive(GameError):
    code = 'not_active'
    status = 409
    default_message = 'Session is not active'


class NotYourTurn(GameError):
    code = 'not_your_turn'
    status = 409
    default_message = 'Not your turn'


class InvalidPosition(GameError):
    code = 'invalid_position'
    status = 400
    default_message = 'Invalid position'


class CellOccupied(GameError):
    code = 'cell_occupied'
    status = 409
    default_message = 'Position already taken'


class NotAParticipant(GameError):
    code = 'not_a_participant'
    status = 403
    default_message = 'Not a player in this session'


class StaleSession(Exception):
    """A compare-and-swap write lost against a concurrent writer."""
