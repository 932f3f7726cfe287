"""Game session state machine.

Statuses move lobby -> in-progress <-> paused, and any status may move to
finished, which is terminal. Every operation here is atomic against the
store: read-modify-write transitions run inside a transaction with an
optimistic version check (retried on conflict), and the buzzer lock is only
ever taken or released with a conditional update.

Operations raise ``GameNotFound`` for unknown rooms and ``InvalidTransition``
when a precondition does not hold; callers treat the latter as a silent
no-op. On success they return a ``Transition`` listing the events to send to
the room, always ending with the full state snapshot.
"""
from typing import List, NamedTuple, Optional

from flask import current_app

from quizroom import protocol
from quizroom.exceptions import DuplicateTeam, InvalidTransition, RoomFull, StoreConflict
from quizroom.models import ANSWERED, FINISHED, IN_PROGRESS, LOBBY, PAUSED, Game, Team
from . import store
from .scoring import answer_delta


class Transition(NamedTuple):
    game: Game
    events: List[protocol.Outbound]
    # Channel of a team removed by kick_team, if it had one
    channel: Optional[str] = None


def _log(message: str) -> None:
    current_app.logger.info(message)


def _mutate(game_id, apply):
    """Run ``apply(game)`` as one read-modify-write, retrying on conflict."""
    retries = int(current_app.config.get('STORE_CONFLICT_RETRIES', 3))
    attempt = 0
    while True:
        try:
            with store.transaction():
                game = store.get(game_id, for_update=True)
                result = apply(game)
                store.save(game)
            return game, result
        except StoreConflict:
            attempt += 1
            if attempt > retries:
                raise
            current_app.logger.warning(f"[store-conflict] game={game_id} attempt={attempt} retrying")


# ---- Membership ----

def add_team(game_id, team_name, sid=None) -> Transition:
    """Seat a new team in the lobby, bound to channel ``sid`` in the same write."""
    def _apply(game):
        if game.status != LOBBY:
            raise InvalidTransition(f"game {game_id} is {game.status}, not accepting teams")
        if game.find_team(team_name):
            raise DuplicateTeam(team_name)
        if len(game.teams) >= game.number_of_teams:
            raise RoomFull(game_id)
        position = max((t.position for t in game.teams), default=-1) + 1
        game.teams.append(Team(name=team_name, position=position, score=0, is_ready=False, socket_id=sid))

    game, _ = _mutate(game_id, _apply)
    _log(f"[team-join] game={game_id} team={team_name} teams={len(game.teams)}/{game.number_of_teams}")
    return Transition(game, [protocol.game_state(game)])


def rebind_team(game_id, team_name) -> Game:
    """Validate a reconnect; the registry performs the channel write."""
    game = store.get(game_id)
    if game.status == FINISHED:
        raise InvalidTransition(f"game {game_id} is finished")
    if not game.find_team(team_name):
        raise InvalidTransition(f"team {team_name} is not part of game {game_id}")
    return game


def join_as_spectator(game_id, name) -> Game:
    game = store.get(game_id)
    if game.status == LOBBY:
        raise InvalidTransition(f"game {game_id} is still in the lobby")
    if name and game.find_team(name) and game.status != FINISHED:
        raise InvalidTransition(f"{name} is a team of game {game_id}")
    return game


def set_ready(game_id, team_name) -> Transition:
    def _apply(game):
        team = game.find_team(team_name)
        if not team or team.is_ready or game.status == FINISHED:
            raise InvalidTransition(f"team {team_name} cannot be marked ready")
        team.is_ready = True

    game, _ = _mutate(game_id, _apply)
    _log(f"[team-ready] game={game_id} team={team_name}")
    return Transition(game, [protocol.game_state(game)])


def kick_team(game_id, team_name) -> Transition:
    def _apply(game):
        if game.status != LOBBY:
            raise InvalidTransition("teams can only be removed in the lobby")
        team = game.find_team(team_name)
        if not team:
            raise InvalidTransition(f"team {team_name} is not part of game {game_id}")
        channel = team.socket_id
        game.teams.remove(team)
        return channel

    game, channel = _mutate(game_id, _apply)
    _log(f"[team-kick] game={game_id} team={team_name} channel={channel}")
    return Transition(game, [protocol.game_state(game)], channel=channel)


def on_channel_disconnect(game_id, team_name, sid) -> Transition:
    """Clear a team's channel, unless a reconnect already replaced it."""
    with store.transaction():
        game = store.get(game_id)
        if not store.release_team_channel(game, team_name, sid):
            raise InvalidTransition(f"team {team_name} is no longer bound to {sid}")
    _log(f"[team-disconnect] game={game_id} team={team_name} sid={sid}")
    return Transition(game, [protocol.game_state(game)])


# ---- Game flow ----

def start(game_id) -> Transition:
    def _apply(game):
        if game.status != LOBBY:
            raise InvalidTransition(f"game {game_id} already started")
        game.status = IN_PROGRESS
        game.current_question_index = 0
        game.answering_team_name = None
        game.attempted = []

    game, _ = _mutate(game_id, _apply)
    _log(f"[game-start] game={game_id} teams={len(game.teams)} questions={len(game.question_list)}")
    return Transition(game, [
        protocol.game_started(game),
        protocol.new_question(game),
        protocol.game_state(game),
    ])


def pause(game_id) -> Transition:
    def _apply(game):
        if game.status != IN_PROGRESS:
            raise InvalidTransition(f"game {game_id} is not in progress")
        game.status = PAUSED

    game, _ = _mutate(game_id, _apply)
    _log(f"[game-pause] game={game_id} question={game.current_question_index}")
    return Transition(game, [protocol.game_state(game)])


def resume(game_id) -> Transition:
    def _apply(game):
        if game.status != PAUSED:
            raise InvalidTransition(f"game {game_id} is not paused")
        game.status = IN_PROGRESS

    game, _ = _mutate(game_id, _apply)
    _log(f"[game-resume] game={game_id} question={game.current_question_index}")
    return Transition(game, [protocol.game_state(game)])


def attempt_answer(game_id, team_name) -> Transition:
    """Buzz in. The first team whose conditional update lands holds the lock."""
    with store.transaction():
        game = store.get(game_id)
        if not game.find_team(team_name):
            current_app.logger.warning(f"[buzz-reject] game={game_id} unknown team={team_name}")
            raise InvalidTransition(f"team {team_name} is not part of game {game_id}")
        if game.status != IN_PROGRESS or game.answering_team_name is not None:
            raise InvalidTransition(f"buzzer unavailable in game {game_id}")
        if team_name in game.attempted:
            raise InvalidTransition(f"team {team_name} already attempted this question")
        won = store.compare_and_set(
            game_id, 'answering_team_name', None, team_name,
            status=IN_PROGRESS, current_question_index=game.current_question_index,
        )
        if not won:
            raise InvalidTransition(f"buzzer already taken in game {game_id}")
    _log(f"[buzz] game={game_id} team={team_name} question={game.current_question_index}")
    return Transition(game, [protocol.game_state(game)])


def _release_lock(game, team_name, new_value) -> bool:
    return store.compare_and_set(
        game.game_id, 'answering_team_name', team_name, new_value,
        status=game.status, current_question_index=game.current_question_index,
    )


def _matches(answer, correct_answer) -> bool:
    return answer.strip() == (correct_answer or '').strip()


def _mark_attempted(game, team_name) -> bool:
    """Record the team's attempt; returns whether any team may still answer."""
    attempted = game.attempted
    if team_name not in attempted:
        attempted.append(team_name)
    game.attempted = attempted
    return bool(game.eligible_team_names())


def submit_answer(game_id, team_name, answer) -> Transition:
    with store.transaction():
        game = store.get(game_id)
        if game.status != IN_PROGRESS or game.answering_team_name != team_name:
            raise InvalidTransition(f"team {team_name} does not hold the buzzer")
        question = game.current_question
        if question is None or not game.find_team(team_name):
            raise InvalidTransition(f"no active question for team {team_name}")
        was_correct = _matches(answer, question['correctAnswer'])
        if not _release_lock(game, team_name, ANSWERED if was_correct else None):
            raise InvalidTransition(f"buzzer for team {team_name} was already released")
        team = game.find_team(team_name)
        team.score += answer_delta(was_correct, current_app.config)
        open_for_next_answer = False
        if not was_correct:
            open_for_next_answer = _mark_attempted(game, team_name)
        store.save(game)
    _log(f"[answer] game={game_id} team={team_name} correct={was_correct} open={open_for_next_answer}")
    return Transition(game, [
        protocol.answer_result(team_name, was_correct, open_for_next_answer),
        protocol.game_state(game),
    ])


def answer_timeout(game_id, team_name) -> Transition:
    """Treat an expired answer window as a non-answer.

    Late timeouts, and timeouts that lose the race against submit_answer,
    no longer match the lock and are ignored. A timer that expires while the
    game is paused still releases the lock, so the question is open again on
    resume.
    """
    with store.transaction():
        game = store.get(game_id)
        if game.status not in (IN_PROGRESS, PAUSED) or game.answering_team_name != team_name:
            raise InvalidTransition(f"team {team_name} does not hold the buzzer")
        if not _release_lock(game, team_name, None):
            raise InvalidTransition(f"buzzer for team {team_name} was already released")
        open_for_next_answer = _mark_attempted(game, team_name)
        store.save(game)
    _log(f"[answer-timeout] game={game_id} team={team_name} open={open_for_next_answer}")
    return Transition(game, [
        protocol.answer_timeout(team_name, open_for_next_answer),
        protocol.game_state(game),
    ])


def next_question(game_id) -> Transition:
    def _apply(game):
        if game.status != IN_PROGRESS:
            raise InvalidTransition(f"game {game_id} is not in progress")
        game.current_question_index += 1
        game.answering_team_name = None
        game.attempted = []
        if game.current_question_index >= len(game.question_list):
            game.status = FINISHED
            return True
        return False

    game, finished = _mutate(game_id, _apply)
    if finished:
        _log(f"[game-over] game={game_id} questions exhausted")
        return Transition(game, [protocol.game_over(game), protocol.game_state(game)])
    _log(f"[next-question] game={game_id} question={game.current_question_index}")
    return Transition(game, [protocol.new_question(game), protocol.game_state(game)])


def end_game(game_id) -> Transition:
    def _apply(game):
        if game.status == FINISHED:
            raise InvalidTransition(f"game {game_id} already finished")
        game.status = FINISHED
        game.answering_team_name = None

    game, _ = _mutate(game_id, _apply)
    _log(f"[game-over] game={game_id} ended by facilitator")
    return Transition(game, [protocol.game_over(game), protocol.game_state(game)])
