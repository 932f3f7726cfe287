from functools import wraps
from typing import Callable

from flask import current_app, request

from quizroom import socketio, protocol
from quizroom.exceptions import (
    DuplicateTeam,
    GameNotFound,
    InvalidMessage,
    InvalidTransition,
    RoomFull,
    StoreUnavailable,
)
from quizroom.models import FINISHED, LOBBY
from quizroom.registry import FACILITATOR, SPECTATOR, TEAM, get_registry
from quizroom.services.games import engine, store

GAME_NOT_FOUND_MESSAGE = 'Game does not exist.'

# Generic text sent to the caller when the store fails; details stay in the log
STORE_ERROR_MESSAGES = {
    'facilitatorJoin': 'An error occurred while joining the lobby.',
    'teamJoin': 'An error occurred while trying to join the game.',
    'playerConnect': 'An error occurred while reconnecting to the game.',
    'teamReady': 'An error occurred while updating ready status.',
    'startGame': 'Could not start the game.',
    'endGame': 'An error occurred while ending the game.',
    'kickTeam': 'An error occurred while trying to kick the team.',
}
DEFAULT_STORE_ERROR = 'An error occurred while processing your request.'

# Events whose caller is told about an unknown game
JOIN_EVENTS = ('facilitatorJoin', 'teamJoin')


def _sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def socket_event(event_name: str) -> Callable:
    """Validate the payload and convert every failure into a unicast or a no-op.

    Unknown games and violated preconditions never reach other participants;
    store failures are logged and reported to the caller only.
    """
    def decorator(handler):
        @wraps(handler)
        def wrapper(data=None):
            sid = _sid()
            rooms = get_registry()
            log = current_app.logger
            try:
                message = protocol.parse_event(event_name, data)
                if message.facilitator_only:
                    _require_facilitator(message, sid)
                if message.team_only:
                    _require_team_channel(message, sid)
                handler(message, sid)
            except InvalidMessage as exc:
                log.warning(f"[invalid-message] sid={sid} {exc}")
            except GameNotFound as exc:
                log.info(f"[not-found] event={event_name} sid={sid} game={exc.game_id}")
                if event_name in JOIN_EVENTS:
                    rooms.unicast(sid, protocol.join_error(GAME_NOT_FOUND_MESSAGE))
            except InvalidTransition as exc:
                log.info(f"[ignored] event={event_name} sid={sid} reason={exc}")
            except (DuplicateTeam, RoomFull) as exc:
                log.info(f"[join-rejected] sid={sid} reason={exc}")
                rooms.unicast(sid, protocol.join_error(str(exc)))
            except StoreUnavailable:
                log.exception(f"[store-error] event={event_name} sid={sid}")
                rooms.unicast(sid, protocol.game_error(STORE_ERROR_MESSAGES.get(event_name, DEFAULT_STORE_ERROR)))
            except Exception:
                log.exception(f"[handler-error] event={event_name} sid={sid}")
                rooms.unicast(sid, protocol.game_error(DEFAULT_STORE_ERROR))
        return wrapper
    return decorator


def _require_facilitator(message, sid) -> None:
    if not current_app.config.get('REQUIRE_FACILITATOR_CHANNEL', True):
        return
    if not get_registry().is_facilitator(sid, message.game_id):
        current_app.logger.warning(
            f"[unauthorized] event={message.name} sid={sid} game={message.game_id} not the facilitator channel"
        )
        raise InvalidTransition('only the facilitator channel may control the game')


def _require_team_channel(message, sid) -> None:
    # Spectators, superseded channels and strangers may not act for a team
    if not get_registry().is_team_channel(sid, message.game_id, message.team_name):
        current_app.logger.warning(
            f"[unauthorized] event={message.name} sid={sid} game={message.game_id} "
            f"not the channel of team={message.team_name}"
        )
        raise InvalidTransition(f"channel is not bound to team {message.team_name}")


# ---- Joining ----

@socket_event('playerConnect')
def handle_player_connect(message, sid):
    engine.rebind_team(message.game_id, message.team_name)
    rooms = get_registry()
    handle = rooms.join(message.game_id, TEAM, sid, name=message.team_name)
    rooms.publish(message.game_id, [protocol.game_state(handle.game)])


@socket_event('facilitatorJoin')
def handle_facilitator_join(message, sid):
    rooms = get_registry()
    handle = rooms.join(message.game_id, FACILITATOR, sid)
    rooms.unicast(sid, protocol.game_state(handle.game))
    rooms.unicast(sid, protocol.facilitator_joined(message.game_id))


@socket_event('teamJoin')
def handle_team_join(message, sid):
    rooms = get_registry()
    game = store.get(message.game_id)
    if game.status == LOBBY:
        transition = engine.add_team(message.game_id, message.team_name, sid=sid)
        rooms.join(message.game_id, TEAM, sid, name=message.team_name, game=transition.game)
        rooms.publish(message.game_id, transition.events)
        return
    if game.status != FINISHED and game.find_team(message.team_name):
        engine.rebind_team(message.game_id, message.team_name)
        handle = rooms.join(message.game_id, TEAM, sid, name=message.team_name)
        rooms.publish(message.game_id, [protocol.game_state(handle.game)])
        return
    engine.join_as_spectator(message.game_id, message.team_name)
    handle = rooms.join(message.game_id, SPECTATOR, sid, name=message.team_name)
    rooms.unicast(sid, protocol.spectator_view(message.game_id))
    rooms.unicast(sid, protocol.game_state(handle.game))


@socket_event('teamReady')
def handle_team_ready(message, sid):
    transition = engine.set_ready(message.game_id, message.team_name)
    get_registry().publish(message.game_id, transition.events)


@socket_event('kickTeam')
def handle_kick_team(message, sid):
    rooms = get_registry()
    transition = engine.kick_team(message.game_id, message.team_name)
    if transition.channel:
        rooms.unicast(transition.channel, protocol.kicked())
        rooms.disconnect(transition.channel)
    rooms.publish(message.game_id, transition.events)


# ---- Game flow ----

@socket_event('startGame')
def handle_start_game(message, sid):
    transition = engine.start(message.game_id)
    get_registry().publish(message.game_id, transition.events)


@socket_event('pauseGame')
def handle_pause_game(message, sid):
    transition = engine.pause(message.game_id)
    get_registry().publish(message.game_id, transition.events)


@socket_event('resumeGame')
def handle_resume_game(message, sid):
    transition = engine.resume(message.game_id)
    get_registry().publish(message.game_id, transition.events)


@socket_event('answerAttempt')
def handle_answer_attempt(message, sid):
    transition = engine.attempt_answer(message.game_id, message.team_name)
    get_registry().publish(message.game_id, transition.events)


@socket_event('submitAnswer')
def handle_submit_answer(message, sid):
    transition = engine.submit_answer(message.game_id, message.team_name, message.answer)
    get_registry().publish(message.game_id, transition.events)


@socket_event('answerTimeout')
def handle_answer_timeout(message, sid):
    transition = engine.answer_timeout(message.game_id, message.team_name)
    get_registry().publish(message.game_id, transition.events)


@socket_event('nextQuestion')
def handle_next_question(message, sid):
    transition = engine.next_question(message.game_id)
    get_registry().publish(message.game_id, transition.events)


@socket_event('endGame')
def handle_end_game(message, sid):
    transition = engine.end_game(message.game_id)
    get_registry().publish(message.game_id, transition.events)


def handle_disconnect(reason=None):
    sid = _sid()
    rooms = get_registry()
    membership = rooms.leave(sid)
    if not membership or membership.role != TEAM:
        return
    try:
        transition = engine.on_channel_disconnect(membership.game_id, membership.name, sid)
    except (GameNotFound, InvalidTransition) as exc:
        current_app.logger.info(f"[disconnect-skip] game={membership.game_id} team={membership.name} reason={exc}")
        return
    except StoreUnavailable:
        current_app.logger.exception(f"[store-error] event=disconnect sid={sid}")
        return
    rooms.publish(membership.game_id, transition.events)


INBOUND_HANDLERS = {
    'playerConnect': handle_player_connect,
    'facilitatorJoin': handle_facilitator_join,
    'teamJoin': handle_team_join,
    'teamReady': handle_team_ready,
    'kickTeam': handle_kick_team,
    'startGame': handle_start_game,
    'pauseGame': handle_pause_game,
    'resumeGame': handle_resume_game,
    'answerAttempt': handle_answer_attempt,
    'submitAnswer': handle_submit_answer,
    'answerTimeout': handle_answer_timeout,
    'nextQuestion': handle_next_question,
    'endGame': handle_end_game,
}


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on the game namespace."""
    for event_name, handler in INBOUND_HANDLERS.items():
        socketio.on_event(event_name, handler, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
