import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

MAX_PLAYERS = 2
MAX_NAME_LENGTH = 32
DEFAULT_NAME = 'Guest'


class RoomStatus(str, Enum):
    WAITING = 'waiting'
    PLAYING = 'playing'
    FINISHED = 'finished'


class Side(str, Enum):
    """Seat of a player; the first entrant plays white."""
    WHITE = 'white'
    BLACK = 'black'

    @property
    def opposite(self) -> 'Side':
        return Side.BLACK if self is Side.WHITE else Side.WHITE

    @classmethod
    def for_seat(cls, index: int) -> 'Side':
        return cls.WHITE if index == 0 else cls.BLACK


class TerminationReason(str, Enum):
    CHECKMATE = 'checkmate'
    STALEMATE = 'stalemate'
    REPETITION = 'draw-by-repetition'
    INSUFFICIENT_MATERIAL = 'draw-by-insufficient-material'
    OTHER = 'other-terminal'

    @property
    def is_decisive(self) -> bool:
        return self is TerminationReason.CHECKMATE


@dataclass(frozen=True)
class SecretEnvelope:
    """Authenticated ciphertext of a player's secret. Never mutated; a new
    submission replaces the whole envelope."""
    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes
    format_version: int


@dataclass
class PlayerSlot:
    connection_id: str
    display_name: str


def clean_display_name(name: Any) -> str:
    name = str(name).strip() if name else ''
    return name[:MAX_NAME_LENGTH] if name else DEFAULT_NAME


def normalize_code(code: Any) -> str:
    return str(code).strip().upper() if code else ''


@dataclass
class Room:
    code: str
    position: Any
    players: List[PlayerSlot] = field(default_factory=list)
    secrets: Dict[str, SecretEnvelope] = field(default_factory=dict)
    status: RoomStatus = RoomStatus.WAITING
    winner_side: Optional[Side] = None
    termination: Optional[TerminationReason] = None
    revealed: bool = False
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    def has_player(self, connection_id: str) -> bool:
        return any(p.connection_id == connection_id for p in self.players)

    def side_of(self, connection_id: str) -> Optional[Side]:
        for index, player in enumerate(self.players):
            if player.connection_id == connection_id:
                return Side.for_seat(index)
        return None

    def connection_for(self, side: Side) -> Optional[str]:
        index = 0 if side is Side.WHITE else 1
        if index < len(self.players):
            return self.players[index].connection_id
        return None

    def opponent_of(self, connection_id: str) -> Optional[str]:
        for player in self.players:
            if player.connection_id != connection_id:
                return player.connection_id
        return None

    def connection_ids(self) -> List[str]:
        return [p.connection_id for p in self.players]

    def reset_match(self, position: Any) -> None:
        self.status = RoomStatus.WAITING
        self.position = position
        self.winner_side = None
        self.termination = None
        self.revealed = False

    def to_dict(self, render_position: Callable[[Any], str]) -> Dict[str, Any]:
        return RoomSnapshot.from_room(self, render_position).to_dict()


@dataclass(frozen=True)
class RoomSnapshot:
    """Read-only projection of a room; secrets are reduced to a flag."""
    code: str
    status: RoomStatus
    position: str
    players: List[Dict[str, Any]]
    winner: Optional[Side] = None
    termination: Optional[TerminationReason] = None

    @classmethod
    def from_room(cls, room: Room, render_position: Callable[[Any], str]) -> 'RoomSnapshot':
        players = []
        for index, p in enumerate(room.players):
            players.append({
                'id': p.connection_id,
                'name': p.display_name,
                'side': Side.for_seat(index).value,
                'has_secret': p.connection_id in room.secrets,
            })
        return cls(
            code=room.code,
            status=room.status,
            position=render_position(room.position),
            players=players,
            winner=room.winner_side,
            termination=room.termination,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'status': self.status.value,
            'position': self.position,
            'players': [dict(p) for p in self.players],
            'winner': self.winner.value if self.winner else None,
            'termination': self.termination.value if self.termination else None,
        }
