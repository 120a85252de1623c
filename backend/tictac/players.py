"""Participant directory and statistics.

Stats change in exactly one place, ``record_result``, which also recomputes
the derived win rate.
"""

from tictac import db
from tictac.models import User
from tictac.sessions.rules import ANONYMOUS, result_for

WAITING_SLOT = {'id': '', 'username': 'Waiting...', 'avatarUrl': None, 'isAnonymous': False}


def _load_user(participant_id):
    try:
        user_id = int(participant_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def describe_participant(participant_id):
    """Display info for a participant id, including the anonymous sentinel."""
    if participant_id is None:
        return dict(WAITING_SLOT)
    if participant_id == ANONYMOUS:
        return {'id': ANONYMOUS, 'username': 'Anonymous', 'avatarUrl': None, 'isAnonymous': True}
    user = _load_user(participant_id)
    if user is None:
        return {'id': participant_id, 'username': 'Unknown', 'avatarUrl': None, 'isAnonymous': True}
    return {
        'id': str(user.id),
        'username': user.username,
        'avatarUrl': user.avatar_url,
        'isAnonymous': user.is_anonymous_user,
    }


def recompute_win_rate(user):
    user.win_rate = (user.wins / user.total_games) * 100 if user.total_games else 0.0


def record_result(state):
    """Apply win/loss/draw tallies for every non-sentinel participant of a finished session.

    Draws count toward ``draws`` and ``total_games`` for both sides.
    """
    updated = []
    try:
        for participant_id in state.participants:
            if participant_id == ANONYMOUS:
                continue
            result = result_for(state, participant_id)
            user = _load_user(participant_id)
            if result is None or user is None:
                continue
            # Counters are incremented in SQL so concurrent sessions of the
            # same user do not lose updates
            column = {'win': User.wins, 'loss': User.losses, 'draw': User.draws}[result]
            User.query.filter_by(id=user.id).update(
                {User.total_games: User.total_games + 1, column: column + 1},
                synchronize_session=False,
            )
            updated.append(user.id)
        if not updated:
            return updated
        for user_id in updated:
            user = db.session.get(User, user_id, populate_existing=True)
            recompute_win_rate(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return updated
