from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from quizroom import db
from quizroom.exceptions import GameNotFound
from quizroom.models import Game, QuestionSet, FINISHED
from quizroom.services.games import store
from quizroom.services.games.setup import create_game as svc_create_game


games = Blueprint('games', __name__)


def _int_field(data, key):
    try:
        return int(data.get(key))
    except (TypeError, ValueError):
        return None


@games.route('/create', methods=['POST'])
@login_required
def create_game():
    """
    Creates a new game lobby for the logged-in facilitator.
    """
    data = request.get_json(silent=True) or {}
    client_name = (data.get('clientName') or '').strip()
    number_of_teams = _int_field(data, 'numTeams')
    num_questions = _int_field(data, 'numQuestions')
    question_set_id = _int_field(data, 'questionSetId')

    if not client_name or number_of_teams is None or num_questions is None or question_set_id is None:
        return jsonify({'error': 'clientName, numTeams, numQuestions and questionSetId are required'}), 400

    question_set = db.session.get(QuestionSet, question_set_id)
    if not question_set:
        return jsonify({'error': 'Question Set not found.'}), 404

    try:
        game = svc_create_game(
            question_set,
            client_name=client_name,
            number_of_teams=number_of_teams,
            num_questions=num_questions,
            facilitator=current_user,
            intervention_name=data.get('interventionName'),
            batch_id=data.get('batchId'),
        )
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    return jsonify({
        'message': 'New game created!',
        'gameId': game.game_id,
    }), 201


@games.route('/<string:game_id>/state', methods=['GET'])
def get_game_state(game_id):
    """
    Returns the full state of a game so a client can resynchronize.
    """
    try:
        game = store.get(game_id.upper())
    except GameNotFound:
        return jsonify({'error': 'Game not found'}), 404
    return jsonify(game.to_dict(ranked=game.status == FINISHED))


@games.route('/active', methods=['GET'])
@login_required
def get_active_games():
    """
    Returns the facilitator's games that have not finished.
    """
    active = Game.query.filter(Game.facilitator_id == current_user.id, Game.status != FINISHED) \
        .order_by(Game.created_at.desc()).all()
    return jsonify([{'gameId': g.game_id, 'clientName': g.client_name, 'status': g.status} for g in active]), 200


@games.route('/question-sets', methods=['GET'])
@login_required
def list_question_sets():
    """
    Lists the question sets a facilitator can build a game from.
    """
    sets = QuestionSet.query.order_by(QuestionSet.name).all()
    return jsonify([qs.to_dict() for qs in sets]), 200
