from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Live room membership belongs to this app instance
    from quizroom.registry import RoomRegistry
    RoomRegistry(flask_app, socketio)

    # Import and register blueprints here
    from quizroom.main import main
    flask_app.register_blueprint(main)

    from quizroom.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from quizroom.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    # Flask-Login user loader
    from quizroom.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'message': 'Login required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quizroom.models import User, QuestionSet, Question
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed a facilitator
            user = User(username='facilitator')
            user.set_password('password')
            db.session.add(user)

            # Seed a sample question set
            qs = QuestionSet(name='General Knowledge', description='Sample questions')
            for text, options, answer in SAMPLE_QUESTIONS:
                qs.questions.append(Question(question_text=text, options=options, correct_answer=answer,
                                             category='General'))
            db.session.add(qs)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app


SAMPLE_QUESTIONS = [
    ('What is the capital of France?', ['Paris', 'Rome', 'Madrid', 'Berlin'], 'Paris'),
    ('How many continents are there?', ['5', '6', '7', '8'], '7'),
    ('Which planet is known as the Red Planet?', ['Venus', 'Mars', 'Jupiter', 'Mercury'], 'Mars'),
    ('What is the largest ocean?', ['Atlantic', 'Indian', 'Arctic', 'Pacific'], 'Pacific'),
    ('Who wrote "Romeo and Juliet"?', ['Dickens', 'Shakespeare', 'Austen', 'Tolstoy'], 'Shakespeare'),
]
