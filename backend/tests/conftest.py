import os
import sys
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

# Ensure the backend root (containing the `tictac` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from flask import g

from tictac import create_app, db, socketio, state_cache


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    REDIS_URL = None
    SESSION_CACHE_TTL_SEC = 3600
    PUBLIC_COUNT_CACHE_TTL_SEC = 8
    INVITATION_TTL_SEC = 300
    DISCONNECT_GRACE_SEC = 30
    # Tests drive grace expiry by hand through gateway.expire_grace
    ENABLE_FORFEIT_TIMERS = False
    CREDENTIAL_MAX_AGE_SEC = 3600
    SOCKETIO_NAMESPACE = '/ws'
    CODE_GENERATION_ATTEMPTS = 10


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the cache uses."""

    def __init__(self):
        self.values = {}
        self.ttls = {}
        self.hashes = {}

    def setex(self, key, ttl, value):
        self.values[key] = value.encode('utf-8') if isinstance(value, str) else value
        self.ttls[key] = ttl
        return True

    def get(self, key):
        return self.values.get(key)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value
        return 1

    def hdel(self, name, key):
        return 1 if self.hashes.get(name, {}).pop(key, None) is not None else 0

    def hexists(self, name, key):
        return key in self.hashes.get(name, {})


class BrokenRedis:
    """Every command fails the way an unreachable Redis does."""

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise RedisConnectionError('Connection refused')
        return _fail


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    @application.before_request
    def _forget_previous_login():
        # Test-client requests share the fixture app context, and with it g
        g.pop('_login_user', None)

    with application.app_context():
        import tictac.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    state_cache.client = None


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def engine(flask_app):
    return flask_app.extensions['session_engine']


@pytest.fixture()
def gateway(flask_app):
    return flask_app.extensions['realtime_gateway']


@pytest.fixture()
def fake_redis(flask_app):
    fake = FakeRedis()
    state_cache.client = fake
    yield fake
    state_cache.client = None


@pytest.fixture()
def make_user(flask_app):
    """Create a registered user; returns (participant_id, token)."""
    from tictac.auth import issue_credential
    from tictac.models import User

    def _make(username, anonymous=False):
        user = User(username=username, email=None if anonymous else f'{username}@example.com',
                    is_anonymous_user=anonymous)
        if not anonymous:
            user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return str(user.id), issue_credential(user)

    return _make


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect(token=None):
        auth = {'token': token} if token else None
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth=auth,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
