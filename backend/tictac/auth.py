"""Signed bearer credentials for sockets and API clients."""

import logging

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from tictac import db
from tictac.models import User

logger = logging.getLogger(__name__)

_SALT = 'tictac-credential'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=_SALT)


def issue_credential(user):
    return _serializer().dumps({'uid': str(user.id), 'name': user.username})


def verify_credential(token):
    """Return ``{'participantId', 'displayName'}`` for a valid token, else None."""
    if not token or not isinstance(token, str):
        return None
    max_age = int(current_app.config.get('CREDENTIAL_MAX_AGE_SEC', 7 * 24 * 3600))
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("[credential-expired]")
        return None
    except BadSignature:
        logger.info("[credential-invalid]")
        return None
    if not isinstance(payload, dict) or 'uid' not in payload:
        return None
    return {'participantId': str(payload['uid']), 'displayName': payload.get('name') or 'Player'}


def load_user_from_request(request):
    """Flask-Login request loader for ``Authorization: Bearer <token>``."""
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    identity = verify_credential(header[len('Bearer '):].strip())
    if identity is None:
        return None
    try:
        return db.session.get(User, int(identity['participantId']))
    except ValueError:
        return None
