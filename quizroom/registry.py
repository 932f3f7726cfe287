"""Room membership for live Socket.IO channels.

Each Flask app owns one ``RoomRegistry`` (stored in ``app.extensions``). It
maps channel ids (Socket.IO sids) to the game and role they joined as, and
routes outbound events either to a whole room or to a single channel. It is
the only component that writes a team's channel reference to the store.
"""
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

from flask import current_app
from flask_socketio import join_room, leave_room

from quizroom.exceptions import InvalidTransition
from quizroom.protocol import Outbound
from quizroom.services.games import store

FACILITATOR = 'facilitator'
TEAM = 'team'
SPECTATOR = 'spectator'
ROLES = (FACILITATOR, TEAM, SPECTATOR)


@dataclass
class Membership:
    sid: str
    game_id: str
    role: str
    name: Optional[str] = None


class RoomHandle(NamedTuple):
    game: object
    membership: Membership
    # Previous channel of a reconnecting team, now dropped from the room
    superseded: Optional[str] = None


def room_name(game_id: str) -> str:
    return f"game:{game_id}"


class RoomRegistry:
    def __init__(self, app=None, socketio=None):
        self.socketio = socketio
        self.namespace = '/'
        self._lock = threading.RLock()
        self._members: Dict[str, Membership] = {}
        self._rooms: Dict[str, Set[str]] = {}
        if app is not None:
            self.init_app(app, socketio)

    def init_app(self, app, socketio):
        self.socketio = socketio
        self.namespace = app.config.get('SOCKETIO_NAMESPACE', '/ws')
        app.extensions['quizroom_registry'] = self

    # ---- membership ----

    def join(self, game_id: str, role: str, sid: str, name: Optional[str] = None, game=None) -> RoomHandle:
        """Subscribe ``sid`` to the game's room under ``role``.

        Team joins also point the team's stored channel at ``sid``; a team
        that reconnects on a new channel replaces its old membership. Passing
        ``game`` means the channel was already written together with the team
        and only the room subscription is left to do.
        """
        if role not in ROLES:
            raise ValueError(f"unknown role {role}")
        if game is None and role == TEAM:
            with store.transaction():
                game = store.get(game_id)
                if not store.bind_team_channel(game, name, sid):
                    raise InvalidTransition(f"team {name} is not part of game {game_id}")
        elif game is None:
            game = store.get(game_id)

        with self._lock:
            self._forget(sid)
            superseded = None
            if role == TEAM:
                superseded = self.channel_for_team(game_id, name)
                if superseded:
                    self._forget(superseded)
            join_room(room_name(game_id), sid=sid, namespace=self.namespace)
            membership = Membership(sid=sid, game_id=game_id, role=role, name=name)
            self._members[sid] = membership
            self._rooms.setdefault(game_id, set()).add(sid)
        current_app.logger.info(
            f"[room-join] game={game_id} role={role} name={name} sid={sid} superseded={superseded}"
        )
        return RoomHandle(game, membership, superseded)

    def leave(self, sid: str) -> Optional[Membership]:
        with self._lock:
            return self._forget(sid)

    def _forget(self, sid: str) -> Optional[Membership]:
        membership = self._members.pop(sid, None)
        if membership is None:
            return None
        sids = self._rooms.get(membership.game_id)
        if sids is not None:
            sids.discard(sid)
            if not sids:
                del self._rooms[membership.game_id]
        leave_room(room_name(membership.game_id), sid=sid, namespace=self.namespace)
        return membership

    def membership(self, sid: str) -> Optional[Membership]:
        with self._lock:
            return self._members.get(sid)

    def members(self, game_id: str) -> List[Membership]:
        with self._lock:
            return [self._members[s] for s in self._rooms.get(game_id, ())]

    def channel_for_team(self, game_id: str, name: str) -> Optional[str]:
        with self._lock:
            for sid in self._rooms.get(game_id, ()):
                m = self._members[sid]
                if m.role == TEAM and m.name == name:
                    return sid
        return None

    def is_facilitator(self, sid: str, game_id: str) -> bool:
        m = self.membership(sid)
        return m is not None and m.role == FACILITATOR and m.game_id == game_id

    def is_team_channel(self, sid: str, game_id: str, name: str) -> bool:
        m = self.membership(sid)
        return m is not None and m.role == TEAM and m.game_id == game_id and m.name == name

    # ---- delivery ----

    def broadcast(self, game_id: str, outbound: Outbound) -> None:
        self.socketio.emit(outbound.event, outbound.payload, to=room_name(game_id), namespace=self.namespace)

    def publish(self, game_id: str, events: Iterable[Outbound]) -> None:
        for outbound in events:
            self.broadcast(game_id, outbound)

    def unicast(self, sid: str, outbound: Outbound) -> None:
        self.socketio.emit(outbound.event, outbound.payload, to=sid, namespace=self.namespace)

    def disconnect(self, sid: str) -> None:
        """Drop the channel's membership and close its connection."""
        self.leave(sid)
        current_app.logger.info(f"[room-disconnect] sid={sid}")
        self.socketio.server.disconnect(sid, namespace=self.namespace)


def get_registry() -> RoomRegistry:
    return current_app.extensions['quizroom_registry']
