import os
import random
import sys
import pytest

# Ensure the project root (containing the `quizroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from quizroom import create_app, db, socketio
from quizroom.models import Question, QuestionSet, User
from quizroom.services.games import store
from quizroom.services.games.setup import create_game

NAMESPACE = '/ws'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    CORS_ORIGINS = []
    SOCKETIO_NAMESPACE = NAMESPACE
    GAME_ID_LENGTH = 6
    CORRECT_ANSWER_POINTS = 10
    WRONG_ANSWER_PENALTY = 5
    STORE_CONFLICT_RETRIES = 3
    REQUIRE_FACILITATOR_CHANNEL = True


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def facilitator(flask_app):
    user = User(username='facilitator')
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def question_set(flask_app):
    qs = QuestionSet(name='Capitals', description='World capitals')
    for i in range(5):
        qs.questions.append(Question(
            question_text=f'Question {i}?',
            options=[f'A{i}', f'B{i}', f'C{i}', f'D{i}'],
            correct_answer=f'A{i}',
            category='Geography',
        ))
    db.session.add(qs)
    db.session.commit()
    return qs


@pytest.fixture()
def make_game(question_set):
    def _make(number_of_teams=2, num_questions=3, client_name='Acme'):
        game = create_game(question_set, client_name=client_name, number_of_teams=number_of_teams,
                           num_questions=num_questions, rng=random.Random(7))
        return game.game_id
    return _make


@pytest.fixture()
def fresh():
    """Reload a game from the database, bypassing the session cache."""
    def _fresh(game_id):
        db.session.expire_all()
        return store.get(game_id)
    return _fresh


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace=NAMESPACE,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected(NAMESPACE):
                test_client.disconnect(namespace=NAMESPACE)
        except RuntimeError:
            pass


@pytest.fixture()
def file_app(tmp_path):
    """App on a SQLite file, so several threads can share one database."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'quizroom.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 10}}

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
