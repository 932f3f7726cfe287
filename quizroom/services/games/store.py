"""Store of record for game sessions.

All reads and writes of ``Game`` and ``Team`` rows made by the state machine
go through this module. Two write paths exist:

- ``save`` flushes an ORM read-modify-write guarded by the ``version``
  column; a concurrent writer makes it raise ``StoreConflict``.
- ``compare_and_set`` issues a single conditional ``UPDATE`` so the check and
  the write happen atomically inside the database. The buzzer lock relies on
  it.

Callers group work with ``transaction()``, which commits on success and
rolls back on any error, translating SQLAlchemy failures into
``StoreUnavailable``.
"""
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from quizroom import db
from quizroom.models import Game, Team
from quizroom.exceptions import GameNotFound, StoreConflict, StoreUnavailable

# Columns that may be swapped with compare_and_set
CAS_FIELDS = ('answering_team_name', 'status', 'current_question_index')


@contextmanager
def transaction():
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise StoreConflict(str(exc)) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable(str(exc)) from exc
    except Exception:
        db.session.rollback()
        raise


def get(game_id, for_update=False) -> Game:
    """Load a game by its room code or raise ``GameNotFound``.

    With ``for_update`` the row is locked until the surrounding transaction
    ends (a no-op on SQLite).
    """
    if not game_id:
        raise GameNotFound(game_id)
    query = Game.query.filter_by(game_id=game_id)
    if for_update:
        query = query.with_for_update()
    try:
        game = query.first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreUnavailable(str(exc)) from exc
    if not game:
        raise GameNotFound(game_id)
    return game


def save(game: Game) -> None:
    """Flush pending changes for ``game``; raises ``StoreConflict`` if stale."""
    game.updated_at = datetime.utcnow()
    db.session.add(game)
    try:
        db.session.flush()
    except (StaleDataError, IntegrityError) as exc:
        # A unique team name taken by a concurrent join lands here too
        raise StoreConflict(f"Game {game.game_id} was modified concurrently") from exc


def compare_and_set(game_id, field, expected, new_value, **guards) -> bool:
    """Atomically set ``field`` to ``new_value`` if it currently equals ``expected``.

    Extra keyword arguments add equality guards on other columns. Returns
    True when this caller performed the update, False when the stored value
    (or a guard) no longer matched.
    """
    if field not in CAS_FIELDS:
        raise ValueError(f"{field} does not support compare_and_set")
    column = getattr(Game, field)
    query = Game.query.filter(Game.game_id == game_id)
    query = query.filter(column.is_(None) if expected is None else column == expected)
    for name, value in guards.items():
        query = query.filter(getattr(Game, name) == value)
    updated = query.update({
        field: new_value,
        'version': Game.version + 1,
        'updated_at': datetime.utcnow(),
    }, synchronize_session=False)
    # Loaded instances still hold the old values and version
    db.session.expire_all()
    return updated == 1


def bind_team_channel(game: Game, team_name, sid) -> bool:
    """Point a team's channel reference at ``sid``, replacing any older one."""
    updated = Team.query.filter_by(game_pk=game.id, name=team_name).update(
        {'socket_id': sid}, synchronize_session=False)
    db.session.expire_all()
    return updated == 1


def release_team_channel(game: Game, team_name, sid) -> bool:
    """Clear a team's channel reference only if it still equals ``sid``."""
    updated = Team.query.filter_by(game_pk=game.id, name=team_name, socket_id=sid).update(
        {'socket_id': None}, synchronize_session=False)
    db.session.expire_all()
    return updated == 1
