import json
import random
import string

from flask import current_app

from quizroom import db
from quizroom.models import Game, LOBBY


def generate_game_id(length=6, rng=random):
    """Generate a unique, short room code."""
    while True:
        code = ''.join(rng.choices(string.ascii_uppercase + string.digits, k=length))
        if not Game.query.filter_by(game_id=code).first():
            return code


def sample_questions(question_set, count, rng=random):
    """Draw ``count`` questions from the set without replacement.

    Returns plain dicts so the game keeps its own snapshot even if the set
    is edited later.
    """
    questions = list(question_set.questions)
    if not 1 <= count <= len(questions):
        raise ValueError(f'Question count must be between 1 and {len(questions)}')
    return [q.to_dict() for q in rng.sample(questions, count)]


def create_game(question_set, client_name, number_of_teams, num_questions,
                facilitator=None, intervention_name=None, batch_id=None, rng=random):
    """Create a lobby for ``number_of_teams`` teams with a random question subset."""
    if not client_name:
        raise ValueError('Client name is required')
    if number_of_teams < 1:
        raise ValueError('At least one team is required')
    selected = sample_questions(question_set, num_questions, rng=rng)
    game = Game(
        game_id=generate_game_id(int(current_app.config.get('GAME_ID_LENGTH', 6)), rng=rng),
        client_name=client_name,
        intervention_name=intervention_name,
        batch_id=batch_id,
        number_of_teams=number_of_teams,
        status=LOBBY,
        current_question_index=-1,
        questions=json.dumps(selected),
        question_set_id=question_set.id,
        facilitator=facilitator,
    )
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(
        f"[game-create] game={game.game_id} client={client_name} teams={number_of_teams} questions={len(selected)}"
    )
    return game
