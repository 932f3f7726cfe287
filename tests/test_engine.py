import random
import threading

import pytest

from quizroom import db, protocol
from quizroom.exceptions import DuplicateTeam, GameNotFound, InvalidTransition, RoomFull
from quizroom.models import ANSWERED, FINISHED, IN_PROGRESS, LOBBY, PAUSED, Question, QuestionSet
from quizroom.services.games import engine, store
from quizroom.services.games.setup import create_game


def _event_names(transition):
    return [e.event for e in transition.events]


def _answer(game, correct=True):
    question = game.current_question
    if correct:
        return question['correctAnswer']
    return next(o for o in question['options'] if o != question['correctAnswer'])


@pytest.fixture()
def started(make_game, fresh):
    """A running two-team game on its first question."""
    game_id = make_game(number_of_teams=2, num_questions=3)
    engine.add_team(game_id, 'A')
    engine.add_team(game_id, 'B')
    engine.start(game_id)
    return game_id


# ---- lobby ----

def test_add_team_appends_in_order(make_game, fresh):
    game_id = make_game(number_of_teams=3)
    transition = engine.add_team(game_id, 'Red')
    engine.add_team(game_id, 'Blue')
    game = fresh(game_id)
    assert [t.name for t in game.teams] == ['Red', 'Blue']
    assert all(t.score == 0 and not t.is_ready for t in game.teams)
    assert _event_names(transition) == [protocol.UPDATE_GAME_STATE]


def test_add_team_duplicate_name(make_game):
    game_id = make_game()
    engine.add_team(game_id, 'Red')
    with pytest.raises(DuplicateTeam):
        engine.add_team(game_id, 'Red')


def test_capacity_allows_exactly_number_of_teams(make_game, fresh):
    game_id = make_game(number_of_teams=3)
    for name in ('A', 'B', 'C'):
        engine.add_team(game_id, name)
    with pytest.raises(RoomFull):
        engine.add_team(game_id, 'D')
    assert len(fresh(game_id).teams) == 3


def test_add_team_after_start_is_invalid(started):
    with pytest.raises(InvalidTransition):
        engine.add_team(started, 'Late')


def test_unknown_game_reports_not_found(flask_app):
    for op in (engine.start, engine.next_question, engine.end_game):
        with pytest.raises(GameNotFound):
            op('ZZZZZZ')
    with pytest.raises(GameNotFound):
        engine.attempt_answer('ZZZZZZ', 'A')


def test_set_ready(make_game, fresh):
    game_id = make_game()
    engine.add_team(game_id, 'Red')
    engine.set_ready(game_id, 'Red')
    assert fresh(game_id).find_team('Red').is_ready is True
    # repeating it or naming an unknown team changes nothing
    with pytest.raises(InvalidTransition):
        engine.set_ready(game_id, 'Red')
    with pytest.raises(InvalidTransition):
        engine.set_ready(game_id, 'Ghost')


def test_kick_team_only_in_lobby(make_game, fresh, started):
    game_id = make_game()
    engine.add_team(game_id, 'Red')
    engine.add_team(game_id, 'Blue')
    transition = engine.kick_team(game_id, 'Red')
    assert [t.name for t in fresh(game_id).teams] == ['Blue']
    assert transition.channel is None
    assert 'Red' not in [t['name'] for t in transition.events[-1].payload['teams']]

    with pytest.raises(InvalidTransition):
        engine.kick_team(started, 'A')


# ---- flow ----

def test_start_moves_to_first_question(make_game, fresh):
    game_id = make_game()
    transition = engine.start(game_id)
    game = fresh(game_id)
    assert game.status == IN_PROGRESS
    assert game.current_question_index == 0
    assert _event_names(transition) == [protocol.GAME_STARTED, protocol.NEW_QUESTION, protocol.UPDATE_GAME_STATE]
    with pytest.raises(InvalidTransition):
        engine.start(game_id)


def test_pause_and_resume(started, fresh):
    engine.pause(started)
    assert fresh(started).status == PAUSED
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(started, 'A')
    with pytest.raises(InvalidTransition):
        engine.next_question(started)
    engine.resume(started)
    assert fresh(started).status == IN_PROGRESS
    with pytest.raises(InvalidTransition):
        engine.resume(started)


def test_buzzer_first_attempt_wins(started, fresh):
    engine.attempt_answer(started, 'A')
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(started, 'B')
    assert fresh(started).answering_team_name == 'A'


def test_buzzer_unknown_team_is_ignored(started, fresh):
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(started, 'Ghost')
    assert fresh(started).answering_team_name is None


def test_interleaved_buzzers_exactly_one_lock(started, fresh):
    # Both callers read the game before either writes
    game_a = store.get(started)
    game_b = store.get(started)
    assert game_a.answering_team_name is None and game_b.answering_team_name is None
    results = []
    for team in ('A', 'B'):
        with store.transaction():
            results.append(store.compare_and_set(started, 'answering_team_name', None, team,
                                                 status=IN_PROGRESS, current_question_index=0))
    assert results == [True, False]
    assert fresh(started).answering_team_name == 'A'


def test_correct_answer_scores_and_closes_question(started, fresh):
    engine.attempt_answer(started, 'A')
    transition = engine.submit_answer(started, 'A', _answer(fresh(started)))
    game = fresh(started)
    assert game.find_team('A').score == 10
    assert game.find_team('B').score == 0
    assert game.answering_team_name == ANSWERED
    result = transition.events[0]
    assert result.event == protocol.ANSWER_RESULT
    assert result.payload == {'teamName': 'A', 'wasCorrect': True, 'openForNextAnswer': False}
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(started, 'B')


def test_wrong_answer_penalizes_and_reopens(started, fresh):
    engine.attempt_answer(started, 'A')
    transition = engine.submit_answer(started, 'A', _answer(fresh(started), correct=False))
    game = fresh(started)
    assert game.find_team('A').score == -5
    assert game.find_team('B').score == 0
    assert game.answering_team_name is None
    assert game.attempted == ['A']
    assert transition.events[0].payload['openForNextAnswer'] is True
    # A already used its attempt, B may still buzz
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(started, 'A')
    engine.attempt_answer(started, 'B')
    assert fresh(started).answering_team_name == 'B'


def test_submit_without_lock_is_ignored(started, fresh):
    with pytest.raises(InvalidTransition):
        engine.submit_answer(started, 'A', _answer(fresh(started)))
    engine.attempt_answer(started, 'A')
    with pytest.raises(InvalidTransition):
        engine.submit_answer(started, 'B', _answer(fresh(started)))
    assert fresh(started).find_team('B').score == 0


def test_answer_timeout_releases_lock(started, fresh):
    engine.attempt_answer(started, 'A')
    transition = engine.answer_timeout(started, 'A')
    game = fresh(started)
    assert game.answering_team_name is None
    assert game.attempted == ['A']
    assert game.find_team('A').score == 0
    assert transition.events[0].event == protocol.ANSWER_TIMEOUT
    assert transition.events[0].payload == {'teamName': 'A', 'openForNextAnswer': True}


def test_answer_timeout_reports_when_no_team_remains(started, fresh):
    engine.attempt_answer(started, 'A')
    engine.answer_timeout(started, 'A')
    engine.attempt_answer(started, 'B')
    transition = engine.answer_timeout(started, 'B')
    assert transition.events[0].payload['openForNextAnswer'] is False


def test_late_timeout_is_noop(started, fresh):
    engine.attempt_answer(started, 'A')
    engine.submit_answer(started, 'A', _answer(fresh(started)))
    with pytest.raises(InvalidTransition):
        engine.answer_timeout(started, 'A')
    game = fresh(started)
    assert game.answering_team_name == ANSWERED
    assert game.find_team('A').score == 10


def test_submit_after_timeout_is_noop(started, fresh):
    engine.attempt_answer(started, 'A')
    engine.answer_timeout(started, 'A')
    with pytest.raises(InvalidTransition):
        engine.submit_answer(started, 'A', _answer(fresh(started)))
    assert fresh(started).find_team('A').score == 0


def test_timeout_while_paused_reopens_question(started, fresh):
    engine.attempt_answer(started, 'A')
    engine.pause(started)
    with pytest.raises(InvalidTransition):
        engine.submit_answer(started, 'A', _answer(fresh(started)))

    transition = engine.answer_timeout(started, 'A')
    assert transition.events[0].payload == {'teamName': 'A', 'openForNextAnswer': True}
    game = fresh(started)
    assert game.status == PAUSED
    assert game.answering_team_name is None
    assert game.attempted == ['A']

    engine.resume(started)
    engine.attempt_answer(started, 'B')
    assert fresh(started).answering_team_name == 'B'


def test_answers_compare_without_surrounding_whitespace(flask_app, fresh):
    padded = QuestionSet(name='Padded', description='')
    padded.questions.append(Question(
        question_text='Capital of France?',
        options=[' Paris ', 'Rome', 'Madrid', 'Berlin'],
        correct_answer=' Paris ',
        category='Geography',
    ))
    db.session.add(padded)
    db.session.commit()
    game_id = create_game(padded, client_name='Acme', number_of_teams=1, num_questions=1,
                          rng=random.Random(1)).game_id
    engine.add_team(game_id, 'A')
    engine.start(game_id)
    engine.attempt_answer(game_id, 'A')

    message = protocol.parse_event('submitAnswer', {'gameId': game_id, 'teamName': 'A', 'answer': ' Paris '})
    transition = engine.submit_answer(message.game_id, message.team_name, message.answer)
    assert transition.events[0].payload['wasCorrect'] is True
    assert fresh(game_id).find_team('A').score == 10


def test_next_question_clears_lock_and_attempts(started, fresh):
    engine.attempt_answer(started, 'A')
    engine.submit_answer(started, 'A', _answer(fresh(started), correct=False))
    transition = engine.next_question(started)
    game = fresh(started)
    assert game.current_question_index == 1
    assert game.answering_team_name is None
    assert game.attempted == []
    assert _event_names(transition) == [protocol.NEW_QUESTION, protocol.UPDATE_GAME_STATE]
    assert transition.events[0].payload['questionIndex'] == 1


def test_exhausting_questions_finishes_once(started, fresh):
    engine.next_question(started)
    engine.next_question(started)
    transition = engine.next_question(started)
    assert fresh(started).status == FINISHED
    assert _event_names(transition) == [protocol.GAME_OVER, protocol.UPDATE_GAME_STATE]
    with pytest.raises(InvalidTransition):
        engine.next_question(started)
    with pytest.raises(InvalidTransition):
        engine.end_game(started)
    assert fresh(started).status == FINISHED


def test_end_game_is_idempotent(started, fresh):
    engine.attempt_answer(started, 'B')
    engine.submit_answer(started, 'B', _answer(fresh(started)))
    first = engine.end_game(started)
    ranking = [t['name'] for t in first.events[0].payload['teams']]
    with pytest.raises(InvalidTransition):
        engine.end_game(started)
    game = fresh(started)
    assert game.status == FINISHED
    assert ranking == ['B', 'A']
    assert game.find_team('B').score == 10
    # stored order is untouched by the ranking
    assert [t.name for t in game.teams] == ['A', 'B']


def test_end_game_from_lobby(make_game, fresh):
    game_id = make_game()
    engine.end_game(game_id)
    assert fresh(game_id).status == FINISHED


def test_ranking_is_stable_on_ties(make_game, fresh):
    game_id = make_game(number_of_teams=3)
    for name in ('A', 'B', 'C'):
        engine.add_team(game_id, name)
    engine.start(game_id)
    engine.attempt_answer(game_id, 'C')
    engine.submit_answer(game_id, 'C', _answer(fresh(game_id)))
    transition = engine.end_game(game_id)
    assert [t['name'] for t in transition.events[0].payload['teams']] == ['C', 'A', 'B']


def test_two_team_scenario(make_game, fresh):
    game_id = make_game(number_of_teams=2, num_questions=3)
    engine.add_team(game_id, 'A')
    engine.add_team(game_id, 'B')
    engine.start(game_id)

    # Q1: A correct, B locked out
    engine.attempt_answer(game_id, 'A')
    engine.submit_answer(game_id, 'A', _answer(fresh(game_id)))
    with pytest.raises(InvalidTransition):
        engine.attempt_answer(game_id, 'B')
    assert fresh(game_id).answering_team_name == ANSWERED

    # Q2: B wrong, then A correct
    engine.next_question(game_id)
    assert fresh(game_id).answering_team_name is None
    engine.attempt_answer(game_id, 'B')
    engine.submit_answer(game_id, 'B', _answer(fresh(game_id), correct=False))
    assert fresh(game_id).answering_team_name is None
    engine.attempt_answer(game_id, 'A')
    engine.submit_answer(game_id, 'A', _answer(fresh(game_id)))

    engine.next_question(game_id)
    transition = engine.next_question(game_id)
    game = fresh(game_id)
    assert game.status == FINISHED
    assert game.find_team('A').score == 20
    assert game.find_team('B').score == -5
    game_over = transition.events[0]
    assert game_over.event == protocol.GAME_OVER
    assert [t['name'] for t in game_over.payload['teams']] == ['A', 'B']


# ---- channels ----

def test_rebind_and_spectator_rules(started, make_game, fresh):
    assert engine.rebind_team(started, 'A').game_id == started
    with pytest.raises(InvalidTransition):
        engine.rebind_team(started, 'Ghost')
    assert engine.join_as_spectator(started, 'Watcher').game_id == started
    with pytest.raises(InvalidTransition):
        engine.join_as_spectator(started, 'A')

    lobby_id = make_game()
    with pytest.raises(InvalidTransition):
        engine.join_as_spectator(lobby_id, 'Watcher')

    engine.end_game(started)
    with pytest.raises(InvalidTransition):
        engine.rebind_team(started, 'A')


def test_disconnect_does_not_clear_rebound_channel(started, fresh):
    game = fresh(started)
    with store.transaction():
        store.bind_team_channel(game, 'A', 'sid-old')
    # reconnect lands before the old channel's disconnect is processed
    with store.transaction():
        store.bind_team_channel(game, 'A', 'sid-new')
    with pytest.raises(InvalidTransition):
        engine.on_channel_disconnect(started, 'A', 'sid-old')
    assert fresh(started).find_team('A').socket_id == 'sid-new'

    engine.on_channel_disconnect(started, 'A', 'sid-new')
    assert fresh(started).find_team('A').socket_id is None


# ---- concurrency ----

def test_concurrent_buzzers_only_one_wins(file_app, monkeypatch):
    qs = QuestionSet(name='Race', description='')
    qs.questions.append(Question(question_text='Fastest finger?', options=['A', 'B', 'C', 'D'],
                                 correct_answer='A', category='General'))
    db.session.add(qs)
    db.session.commit()
    game_id = create_game(qs, client_name='Acme', number_of_teams=2, num_questions=1,
                          rng=random.Random(3)).game_id
    engine.add_team(game_id, 'A')
    engine.add_team(game_id, 'B')
    engine.start(game_id)
    db.session.remove()

    real_compare_and_set = store.compare_and_set
    both_read = threading.Barrier(2, timeout=10)
    a_committed = threading.Event()

    def _compare_and_set(game_id, field, expected, new_value, **guards):
        # both buzzers have seen an open lock before either writes
        both_read.wait()
        if new_value == 'B':
            a_committed.wait(10)
        return real_compare_and_set(game_id, field, expected, new_value, **guards)

    monkeypatch.setattr(store, 'compare_and_set', _compare_and_set)
    outcomes = {}

    def _buzz(team):
        with file_app.app_context():
            try:
                engine.attempt_answer(game_id, team)
                outcomes[team] = 'won'
            except InvalidTransition:
                outcomes[team] = 'lost'
            finally:
                if team == 'A':
                    a_committed.set()

    threads = [threading.Thread(target=_buzz, args=(team,)) for team in ('A', 'B')]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert outcomes == {'A': 'won', 'B': 'lost'}
    db.session.expire_all()
    assert store.get(game_id).answering_team_name == 'A'
