from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

from tictac.sessions.cache import StateCache
from tictac.presence import PresenceRegistry

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
state_cache = StateCache()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    state_cache.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Session engine and realtime gateway live on the app so handlers and
    # background timers can reach them through current_app
    from tictac.sessions.engine import SessionEngine
    from tictac.realtime import RealtimeGateway, register_socketio_handlers
    engine = SessionEngine(state_cache, flask_app.config)
    presence = PresenceRegistry(mirror=state_cache)
    gateway = RealtimeGateway(flask_app, engine, presence, socketio)
    flask_app.extensions['session_engine'] = engine
    flask_app.extensions['realtime_gateway'] = gateway

    from tictac.main import main
    flask_app.register_blueprint(main, url_prefix='/api')

    from tictac.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    from tictac.auth import load_user_from_request
    from tictac.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    login_manager.request_loader(load_user_from_request)

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, email=f'{u}@example.com')
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
