"""Errors raised by the store, the state machine and the message boundary.

Socket handlers translate each of these into a unicast event or a silent
no-op; none of them is ever broadcast to a room.
"""


class QuizRoomError(Exception):
    """Base class for all quiz room errors."""


class GameNotFound(QuizRoomError):
    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class InvalidTransition(QuizRoomError):
    """A precondition of the requested transition does not hold."""


class DuplicateTeam(QuizRoomError):
    def __init__(self, team_name):
        self.team_name = team_name
        super().__init__('A team with this name has already joined.')


class RoomFull(QuizRoomError):
    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__('This game is already full.')


class StoreUnavailable(QuizRoomError):
    """The backing store failed or timed out."""


class StoreConflict(StoreUnavailable):
    """A concurrent writer saved the game first."""


class InvalidMessage(QuizRoomError):
    def __init__(self, event, detail):
        self.event = event
        self.detail = detail
        super().__init__(f"Invalid {event} payload: {detail}")
