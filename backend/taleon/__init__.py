from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from authlib.integrations.flask_client import OAuth
from werkzeug.exceptions import HTTPException
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
oauth = OAuth()
dev_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(async_mode=None)


def _allowed_origins(config) -> list:
    origins = list(dev_origins)
    frontend = (config.get('FRONTEND_URL') or '').rstrip('/')
    if frontend and frontend not in origins:
        origins.append(frontend)
    return origins


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    allowed_origins = _allowed_origins(flask_app.config)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    oauth.init_app(flask_app)
    # client id and secret come from GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET
    oauth.register(
        'google',
        server_metadata_url=flask_app.config.get('GOOGLE_DISCOVERY_URL'),
        client_kwargs={'scope': 'openid email profile'},
    )
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from taleon.main import main
    flask_app.register_blueprint(main)

    from taleon.api.auth import auth
    flask_app.register_blueprint(auth, url_prefix='/auth')

    from taleon.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/room')

    from taleon.api.games import games
    flask_app.register_blueprint(games, url_prefix='/game')

    from taleon.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from taleon.models import User
    from taleon.tokens import load_user_id

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(request):
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return None
        user_id = load_user_id(header[len('Bearer '):].strip())
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not authorized, please log in'}), 401

    @flask_app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'error': exc.description}), exc.code

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        flask_app.logger.exception(f"[error] unhandled: {exc}")
        db.session.rollback()
        message = str(exc) if flask_app.debug else 'Internal server error'
        return jsonify({'error': message}), 500

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from taleon.services.games.turns import get_ai_user
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            ai_user = get_ai_user()
            db.session.commit()
            print(f'Database has been reset and seeded with {ai_user.username}!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
