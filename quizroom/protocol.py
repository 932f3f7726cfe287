"""Socket.IO message vocabulary.

Inbound events form a closed set: every event name maps to exactly one
pydantic model, and payloads are validated here before they reach the state
machine. Outbound events are built with the helpers at the bottom; the full
``updateGameState`` snapshot is the only event clients need for correctness,
the rest carry auxiliary context.
"""
from typing import Any, ClassVar, Dict, NamedTuple, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from quizroom.exceptions import InvalidMessage


class InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore', str_strip_whitespace=True)

    name: ClassVar[str] = ''
    facilitator_only: ClassVar[bool] = False
    # Only the channel bound to ``team_name`` may send it
    team_only: ClassVar[bool] = False

    game_id: str = Field(alias='gameId', min_length=1, max_length=16)

    @field_validator('game_id')
    @classmethod
    def _normalize_game_id(cls, value: str) -> str:
        return value.upper()


class TeamEvent(InboundEvent):
    team_name: str = Field(alias='teamName', min_length=1, max_length=64)


class PlayerConnect(TeamEvent):
    name = 'playerConnect'


class FacilitatorJoin(InboundEvent):
    name = 'facilitatorJoin'


class TeamJoin(TeamEvent):
    name = 'teamJoin'


class TeamReady(TeamEvent):
    name = 'teamReady'
    team_only = True


class StartGame(InboundEvent):
    name = 'startGame'
    facilitator_only = True


class PauseGame(InboundEvent):
    name = 'pauseGame'
    facilitator_only = True


class ResumeGame(InboundEvent):
    name = 'resumeGame'
    facilitator_only = True


class AnswerAttempt(TeamEvent):
    name = 'answerAttempt'
    team_only = True


class SubmitAnswer(TeamEvent):
    name = 'submitAnswer'
    team_only = True
    answer: str


class AnswerTimeout(TeamEvent):
    name = 'answerTimeout'
    team_only = True


class NextQuestion(InboundEvent):
    name = 'nextQuestion'
    facilitator_only = True


class EndGame(InboundEvent):
    name = 'endGame'
    facilitator_only = True


class KickTeam(TeamEvent):
    name = 'kickTeam'
    facilitator_only = True


INBOUND_EVENTS: Dict[str, Type[InboundEvent]] = {
    model.name: model for model in (
        PlayerConnect, FacilitatorJoin, TeamJoin, TeamReady, StartGame,
        PauseGame, ResumeGame, AnswerAttempt, SubmitAnswer, AnswerTimeout,
        NextQuestion, EndGame, KickTeam,
    )
}


def parse_event(event_name: str, data: Any) -> InboundEvent:
    """Validate a raw Socket.IO payload into its event model.

    Facilitator clients send a bare game id string for events that carry
    nothing else; that form is accepted for every event.
    """
    model = INBOUND_EVENTS.get(event_name)
    if model is None:
        raise InvalidMessage(event_name, 'unknown event')
    if isinstance(data, str):
        data = {'gameId': data}
    if not isinstance(data, dict):
        raise InvalidMessage(event_name, 'expected an object payload')
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = ', '.join('.'.join(str(p) for p in err['loc']) for err in exc.errors())
        raise InvalidMessage(event_name, f"invalid fields: {fields}") from exc


# ---- Outbound events ----

UPDATE_GAME_STATE = 'updateGameState'
GAME_STARTED = 'gameStarted'
NEW_QUESTION = 'newQuestion'
ANSWER_RESULT = 'answerResult'
ANSWER_TIMEOUT = 'answerTimeout'
GAME_OVER = 'gameOver'
JOIN_ERROR = 'joinError'
GAME_ERROR = 'gameError'
KICKED = 'kicked'
FACILITATOR_JOINED = 'facilitatorJoined'
SPECTATOR_VIEW = 'spectatorView'

KICKED_REASON = 'You have been removed from the game by the facilitator.'
SPECTATOR_MESSAGE = 'You are viewing as a spectator.'


class Outbound(NamedTuple):
    event: str
    payload: Any


def game_state(game) -> Outbound:
    return Outbound(UPDATE_GAME_STATE, game.to_dict())


def game_started(game) -> Outbound:
    return Outbound(GAME_STARTED, {'gameId': game.game_id})


def new_question(game) -> Outbound:
    return Outbound(NEW_QUESTION, {
        'question': game.current_question,
        'questionIndex': game.current_question_index,
    })


def answer_result(team_name: str, was_correct: bool, open_for_next_answer: bool) -> Outbound:
    return Outbound(ANSWER_RESULT, {
        'teamName': team_name,
        'wasCorrect': was_correct,
        'openForNextAnswer': open_for_next_answer,
    })


def answer_timeout(team_name: str, open_for_next_answer: bool) -> Outbound:
    return Outbound(ANSWER_TIMEOUT, {
        'teamName': team_name,
        'openForNextAnswer': open_for_next_answer,
    })


def game_over(game) -> Outbound:
    return Outbound(GAME_OVER, game.to_dict(ranked=True))


def join_error(message: str) -> Outbound:
    return Outbound(JOIN_ERROR, {'message': message})


def game_error(message: str) -> Outbound:
    return Outbound(GAME_ERROR, {'message': message})


def kicked(reason: Optional[str] = None) -> Outbound:
    return Outbound(KICKED, {'reason': reason or KICKED_REASON})


def facilitator_joined(game_id: str) -> Outbound:
    return Outbound(FACILITATOR_JOINED, {'gameId': game_id})


def spectator_view(game_id: str) -> Outbound:
    return Outbound(SPECTATOR_VIEW, {'gameId': game_id, 'message': SPECTATOR_MESSAGE})
