from typing import Iterable, List

CORRECT_ANSWER_POINTS = 10
WRONG_ANSWER_PENALTY = 5


def answer_delta(was_correct: bool, config=None) -> int:
    """Points applied to the submitting team for one answer.

    +CORRECT_ANSWER_POINTS for a correct answer, -WRONG_ANSWER_PENALTY
    otherwise. Scores may go negative. Values can be overridden through the
    app config keys of the same name.
    """
    config = config or {}
    if was_correct:
        return int(config.get('CORRECT_ANSWER_POINTS', CORRECT_ANSWER_POINTS))
    return -int(config.get('WRONG_ANSWER_PENALTY', WRONG_ANSWER_PENALTY))


def rank_teams(teams: Iterable) -> List:
    """Return teams ordered by descending score.

    sorted() is stable, so teams tied on score keep their join order. The
    input is never reordered in place.
    """
    return sorted(teams, key=lambda t: t.score, reverse=True)
