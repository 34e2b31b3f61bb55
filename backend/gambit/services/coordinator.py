"""Event orchestration for rooms, matches and the secret escrow.

Each public method handles one inbound event from one connection. The room
lock is held for the whole event, broadcasts included, so two events for the
same room never interleave. Errors are raised as ``GambitError`` and never
broadcast; the transport acks them to the requester.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional

from gambit.errors import AlreadyStarted, EmptySecret, NotInRoom, RoomNotFound, VaultError
from gambit.models import Room, RoomStatus
from gambit.services.match import MatchStateMachine, MoveOutcome
from gambit.services.registry import RoomRegistry
from gambit.services.vault import SecretVault

logger = logging.getLogger(__name__)

ROOM_UPDATE = 'room_update'
MATCH_STARTED = 'match_started'
MOVE_APPLIED = 'move_applied'
MATCH_ENDED = 'match_ended'
SECRET_REVEALED = 'secret_revealed'


class Broadcaster(ABC):
    """Outbound side of the transport."""

    @abstractmethod
    def to_members(self, connection_ids: Iterable[str], event: str, payload: Any) -> None:
        pass

    @abstractmethod
    def to_connection(self, connection_id: str, event: str, payload: Any) -> None:
        pass


class SessionCoordinator:

    def __init__(
        self,
        registry: RoomRegistry,
        match: MatchStateMachine,
        vault: SecretVault,
        broadcaster: Broadcaster,
    ):
        self.registry = registry
        self.match = match
        self.vault = vault
        self.broadcaster = broadcaster

    # ---- inbound events ----

    def create_room(self, connection_id: str, display_name: Optional[str]) -> Dict[str, Any]:
        code = self.registry.create(display_name, connection_id)
        with self.registry.locked(code) as room:
            self._publish_room(room)
        return {'ok': True, 'code': code}

    def join_room(self, connection_id: str, code: str, display_name: Optional[str]) -> Dict[str, Any]:
        with self.registry.locked(code) as room:
            self.registry.join(room.code, connection_id, display_name)
            self._publish_room(room)
        return {'ok': True}

    def submit_secret(self, connection_id: str, code: str, secret: Optional[str]) -> Dict[str, Any]:
        with self.registry.locked(code) as room:
            if not room.has_player(connection_id):
                raise NotInRoom(room.code, connection_id)
            if room.status is not RoomStatus.WAITING:
                raise AlreadyStarted(f"Secrets are locked once the match in room {room.code} starts")
            if not secret or not str(secret).strip():
                raise EmptySecret()
            envelope = self.vault.encrypt(str(secret))
            self.registry.store_secret(room.code, connection_id, envelope)
            logger.info(f"[secret-stored] room={room.code} submitted={len(room.secrets)}")

            if self.match.can_start(room):
                self.match.start(room)
                self.broadcaster.to_members(room.connection_ids(), MATCH_STARTED, {
                    'position': self.match.render(room.position),
                    'white': room.players[0].connection_id,
                    'black': room.players[1].connection_id,
                })
            self._publish_room(room)
        return {'ok': True}

    def make_move(self, connection_id: str, code: str, move: Mapping[str, Any]) -> Dict[str, Any]:
        with self.registry.locked(code) as room:
            side = room.side_of(connection_id)
            if side is None:
                raise NotInRoom(room.code, connection_id)
            outcome = self.match.apply_move(room, move, side)

            members = room.connection_ids()
            self.broadcaster.to_members(members, MOVE_APPLIED, {
                'position': outcome.position,
                'move': outcome.move,
            })
            if outcome.finished:
                self.broadcaster.to_members(members, MATCH_ENDED, {
                    'reason': outcome.termination.value,
                    'winner': outcome.winner.value if outcome.winner else None,
                })
                self._reveal(room, outcome)
            self._publish_room(room)
        return {'ok': True}

    def room_info(self, code: str) -> Optional[Dict[str, Any]]:
        return self.registry.info(code)

    def leave_room(self, connection_id: str, code: str) -> Dict[str, Any]:
        with self.registry.locked(code) as room:
            if not room.has_player(connection_id):
                raise NotInRoom(room.code, connection_id)
            remaining = self.registry.leave(room.code, connection_id)
            if remaining is not None:
                self._publish_room(remaining)
        return {'ok': True}

    def disconnect(self, connection_id: str) -> List[str]:
        """Leave every room the connection is in. Returns the codes left."""
        left = []
        for code in self.registry.memberships(connection_id):
            try:
                self.leave_room(connection_id, code)
            except (RoomNotFound, NotInRoom):
                # room went away or membership changed since the scan
                continue
            left.append(code)
        return left

    # ---- helpers ----

    def _publish_room(self, room: Room) -> None:
        self.broadcaster.to_members(
            room.connection_ids(), ROOM_UPDATE, room.to_dict(self.match.render)
        )

    def _reveal(self, room: Room, outcome: MoveOutcome) -> None:
        """Send the loser's secret to the winner and nobody else.

        The match result is already final, so failures here are logged and
        never reported to players.
        """
        if outcome.winner is None or room.revealed:
            return
        room.revealed = True
        winner_id = room.connection_for(outcome.winner)
        loser_id = room.opponent_of(winner_id) if winner_id else None
        envelope = room.secrets.get(loser_id) if loser_id else None
        if envelope is None:
            logger.error(f"[reveal-skip] room={room.code} no secret envelope for the losing player")
            return
        try:
            secret = self.vault.decrypt(envelope)
        except VaultError as exc:
            logger.error(f"[reveal-failed] room={room.code}: {exc}", exc_info=True)
            return
        self.broadcaster.to_connection(winner_id, SECRET_REVEALED, {'secret': secret})
        logger.info(f"[reveal] room={room.code} winner={outcome.winner.value}")
