from quizroom import db
from quizroom.services.games.scoring import rank_teams
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
import json

LOBBY = 'lobby'
IN_PROGRESS = 'in-progress'
PAUSED = 'paused'
FINISHED = 'finished'
GAME_STATUSES = (LOBBY, IN_PROGRESS, PAUSED, FINISHED)

# Marks the current question as closed until the facilitator advances
ANSWERED = '__answered__'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    games = db.relationship('Game', back_populates='facilitator', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class QuestionSet(db.Model):
    __tablename__ = 'question_set'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    description = db.Column(db.Text, default='')
    questions = db.relationship('Question', back_populates='question_set',
                                order_by='Question.id', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description or '',
            'questionCount': len(self.questions),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    question_set_id = db.Column(db.Integer, db.ForeignKey('question_set.id'), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    question_text = db.Column(db.Text, nullable=False)
    options_json = db.Column(db.Text, nullable=False)  # JSON-encoded list of four strings
    correct_answer = db.Column(db.Text, nullable=False)
    question_set = db.relationship('QuestionSet', back_populates='questions')

    def __init__(self, options=None, **kwargs):
        super(Question, self).__init__(**kwargs)
        if options is not None:
            self.options = options

    @property
    def options(self):
        return json.loads(self.options_json) if self.options_json else []

    @options.setter
    def options(self, value):
        value = [str(v) for v in value]
        if len(value) != 4:
            raise ValueError('Each question must have exactly four options.')
        self.options_json = json.dumps(value)

    def validate(self):
        if not (self.question_text or '').strip():
            raise ValueError('Question text cannot be blank.')
        if self.correct_answer not in self.options:
            raise ValueError(f'The correct answer "{self.correct_answer}" is not one of the provided options.')

    def to_dict(self):
        return {
            'category': self.category,
            'questionText': self.question_text,
            'options': self.options,
            'correctAnswer': self.correct_answer,
        }


class Team(db.Model):
    __tablename__ = 'team'
    __table_args__ = (db.UniqueConstraint('game_pk', 'name', name='uq_team_game_name'),)
    id = db.Column(db.Integer, primary_key=True)
    game_pk = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    score = db.Column(db.Integer, nullable=False, default=0)
    is_ready = db.Column(db.Boolean, nullable=False, default=False)
    socket_id = db.Column(db.String(64), nullable=True)
    game = db.relationship('Game', back_populates='teams')

    def to_dict(self):
        return {
            'name': self.name,
            'score': self.score,
            'isReady': self.is_ready,
            'socketId': self.socket_id,
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(16), unique=True, nullable=False, index=True)
    client_name = db.Column(db.String(128), nullable=False)
    intervention_name = db.Column(db.String(128), nullable=True)
    batch_id = db.Column(db.String(64), nullable=True)
    number_of_teams = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=LOBBY)  # lobby, in-progress, paused, finished
    current_question_index = db.Column(db.Integer, nullable=False, default=-1)
    answering_team_name = db.Column(db.String(64), nullable=True)
    attempted_teams = db.Column(db.Text, nullable=True)  # JSON-encoded list of team names
    questions = db.Column(db.Text, nullable=False, default='[]')  # JSON snapshot, fixed at setup
    facilitator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    question_set_id = db.Column(db.Integer, db.ForeignKey('question_set.id'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    version = db.Column(db.Integer, nullable=False)

    teams = db.relationship('Team', back_populates='game', order_by='Team.position',
                            cascade='all, delete-orphan')
    facilitator = db.relationship('User', back_populates='games')

    __mapper_args__ = {'version_id_col': version}

    @property
    def question_list(self):
        return json.loads(self.questions) if self.questions else []

    @property
    def attempted(self):
        return json.loads(self.attempted_teams) if self.attempted_teams else []

    @attempted.setter
    def attempted(self, names):
        self.attempted_teams = json.dumps(list(names))

    @property
    def current_question(self):
        qs = self.question_list
        if 0 <= self.current_question_index < len(qs):
            return qs[self.current_question_index]
        return None

    def find_team(self, name):
        for team in self.teams:
            if team.name == name:
                return team
        return None

    def eligible_team_names(self):
        """Teams that have not yet used their attempt on the current question."""
        attempted = set(self.attempted)
        return [t.name for t in self.teams if t.name not in attempted]

    def to_dict(self, ranked=False):
        teams = rank_teams(self.teams) if ranked else list(self.teams)
        return {
            'gameId': self.game_id,
            'clientName': self.client_name,
            'interventionName': self.intervention_name,
            'batchId': self.batch_id,
            'numberOfTeams': self.number_of_teams,
            'status': self.status,
            'teams': [t.to_dict() for t in teams],
            'questions': self.question_list,
            'currentQuestionIndex': self.current_question_index,
            'answeringTeamName': self.answering_team_name,
            'attemptedTeams': self.attempted,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
