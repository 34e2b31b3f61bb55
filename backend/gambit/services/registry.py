"""Room membership and lifecycle.

The registry is the only writer of room membership. Each room carries a
reentrant lock; every operation runs under it, and callers that need several
steps to be atomic (the coordinator) hold ``locked(code)`` around them.
"""

import logging
import random
import string
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from gambit.errors import AllocationExhausted, NotInRoom, RoomFull, RoomNotFound
from gambit.models import (
    PlayerSlot,
    Room,
    RoomStatus,
    SecretEnvelope,
    clean_display_name,
    normalize_code,
)
from gambit.services.match import transition

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MIN_CODE_LENGTH = 4


class RoomStore:
    """In-process code -> room mapping with atomic insert and delete."""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def get(self, code: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(code)

    def insert_if_absent(self, room: Room) -> bool:
        with self._lock:
            if room.code in self._rooms:
                return False
            self._rooms[room.code] = room
            return True

    def delete(self, room: Room) -> None:
        with self._lock:
            if self._rooms.get(room.code) is room:
                del self._rooms[room.code]

    def rooms(self) -> List[Room]:
        with self._lock:
            return list(self._rooms.values())

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)


class RoomRegistry:

    def __init__(
        self,
        new_position: Callable[[], Any],
        render_position: Callable[[Any], str],
        store: Optional[RoomStore] = None,
        rng: Optional[random.Random] = None,
        code_length: int = MIN_CODE_LENGTH,
        max_attempts: int = 16,
        backoff: float = 0.005,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if code_length < MIN_CODE_LENGTH:
            raise ValueError(f"Room codes need at least {MIN_CODE_LENGTH} characters")
        self.store = store if store is not None else RoomStore()
        self._new_position = new_position
        self._render_position = render_position
        self._rng = rng or random.SystemRandom()
        self.code_length = code_length
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

    def _generate_code(self) -> str:
        return ''.join(self._rng.choices(CODE_ALPHABET, k=self.code_length))

    def create(self, display_name: Optional[str], connection_id: Optional[str] = None) -> str:
        """Allocate a fresh code and a room holding the creator as first player."""
        for attempt in range(self.max_attempts):
            room = Room(code=self._generate_code(), position=self._new_position())
            if connection_id is not None:
                room.players.append(PlayerSlot(connection_id, clean_display_name(display_name)))
            if self.store.insert_if_absent(room):
                logger.info(f"[room-created] code={room.code} attempts={attempt + 1}")
                return room.code
            logger.warning(f"[room-code-collision] code={room.code} attempt={attempt + 1}")
            if self.backoff:
                self._sleep(self.backoff * (2 ** attempt))
        raise AllocationExhausted(
            f"No free room code after {self.max_attempts} attempts"
        )

    def get(self, code: str) -> Room:
        room = self.store.get(normalize_code(code))
        if room is None:
            raise RoomNotFound(normalize_code(code))
        return room

    @contextmanager
    def locked(self, code: str) -> Iterator[Room]:
        room = self.get(code)
        with room.lock:
            # the room may have been destroyed while we waited for its lock
            if self.store.get(room.code) is not room:
                raise RoomNotFound(room.code)
            yield room

    def join(self, code: str, connection_id: str, display_name: Optional[str]) -> Room:
        with self.locked(code) as room:
            if room.has_player(connection_id):
                return room
            if room.is_full:
                raise RoomFull(room.code)
            room.players.append(PlayerSlot(connection_id, clean_display_name(display_name)))
            logger.info(f"[room-joined] code={room.code} players={len(room.players)}")
            return room

    def leave(self, code: str, connection_id: str) -> Optional[Room]:
        """Remove a player. Returns the room if it still exists."""
        with self.locked(code) as room:
            if not room.has_player(connection_id):
                return room
            room.players = [p for p in room.players if p.connection_id != connection_id]
            room.secrets.pop(connection_id, None)
            if not room.players:
                self.store.delete(room)
                logger.info(f"[room-destroyed] code={room.code}")
                return None
            if room.status is not RoomStatus.WAITING:
                logger.info(f"[match-reset] code={room.code} was={room.status.value}")
                transition(room, RoomStatus.WAITING)
            room.reset_match(self._new_position())
            return room

    def store_secret(self, code: str, connection_id: str, envelope: SecretEnvelope) -> Room:
        with self.locked(code) as room:
            if not room.has_player(connection_id):
                raise NotInRoom(room.code, connection_id)
            room.secrets[connection_id] = envelope
            return room

    def memberships(self, connection_id: str) -> List[str]:
        return [room.code for room in self.store.rooms() if room.has_player(connection_id)]

    def info(self, code: str) -> Optional[Dict[str, Any]]:
        try:
            with self.locked(code) as room:
                return room.to_dict(self._render_position)
        except RoomNotFound:
            return None
