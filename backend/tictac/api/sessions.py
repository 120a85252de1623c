from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from tictac.errors import GameError
from tictac.sessions.rules import ANONYMOUS

sessions = Blueprint('sessions', __name__)


def _engine():
    return current_app.extensions['session_engine']


def _gateway():
    return current_app.extensions['realtime_gateway']


def _participant_id():
    if current_user.is_authenticated:
        return str(current_user.id)
    return ANONYMOUS


@sessions.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), exc.status


@sessions.route('/create', methods=['POST'])
def create_session():
    """
    Creates a new session with the caller in the X slot.
    """
    data = request.get_json(silent=True) or {}
    result = _engine().create_session(_participant_id(), bool(data.get('isPublic', False)))
    return jsonify(result), 201


@sessions.route('/join', methods=['POST'])
def join_session():
    data = request.get_json(silent=True) or {}
    code = data.get('code')
    if not code:
        return jsonify({'error': 'Session code is required', 'code': 'bad_request'}), 400
    projection = _engine().join_session(code, _participant_id())
    # The creator is usually already subscribed and waiting for this
    _gateway().publish(projection['sessionId'])
    return jsonify(projection), 200


@sessions.route('/find', methods=['POST'])
def find_session():
    """
    Public matchmaking: join the oldest open public session, or open a new one.
    """
    participant_id = _participant_id()
    projection = _engine().find_public_session(participant_id)
    if projection is not None:
        _gateway().publish(projection['sessionId'])
        return jsonify({'matched': True, 'session': projection}), 200
    created = _engine().create_session(participant_id, True)
    current_app.logger.info(f"[matchmaking] no open session for {participant_id}; created {created['code']}")
    return jsonify({'matched': False, 'session': created, 'message': 'Created new public session'}), 201


@sessions.route('/public/count', methods=['GET'])
def public_count():
    kind = request.args.get('type', 'active')
    if kind not in ('active', 'waiting'):
        return jsonify({'error': 'type must be active or waiting', 'code': 'bad_request'}), 400
    return jsonify({'type': kind, 'count': _engine().count_public(kind)}), 200


@sessions.route('/history', methods=['GET'])
@login_required
def history():
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', 10, type=int)
    return jsonify(_engine().history(str(current_user.id), page, limit)), 200


@sessions.route('/invitations/<string:code>', methods=['GET'])
def invitation(code):
    inviter = _engine().pending_invitation(code)
    if inviter is None:
        return jsonify({'error': 'No pending invitation', 'code': 'not_found'}), 404
    return jsonify({'code': code.upper(), 'inviterId': inviter}), 200


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(_engine().get_projection(session_id)), 200


@sessions.route('/<string:session_id>/move', methods=['POST'])
def make_move(session_id):
    data = request.get_json(silent=True) or {}
    projection = _gateway().apply_move(_participant_id(), session_id, data.get('cellIndex'))
    return jsonify(projection), 200
