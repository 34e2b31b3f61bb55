import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from gambit.errors import AlreadyStarted, IllegalMove, InvalidStateTransition
from gambit.models import MAX_PLAYERS, Room, RoomStatus, Side, TerminationReason
from gambit.services.rules import RulesEngine

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    RoomStatus.WAITING: {RoomStatus.PLAYING},
    RoomStatus.PLAYING: {RoomStatus.WAITING, RoomStatus.FINISHED},
    # finished -> waiting only happens when one player leaves
    RoomStatus.FINISHED: {RoomStatus.WAITING},
}


def transition(room: Room, target: RoomStatus) -> None:
    if target not in _TRANSITIONS[room.status]:
        raise InvalidStateTransition(
            f"Room {room.code} cannot move from {room.status.value} to {target.value}"
        )
    logger.debug(f"[transition] room={room.code} {room.status.value} -> {target.value}")
    room.status = target


def winner_from_termination(reason: TerminationReason, side_to_move: Side) -> Optional[Side]:
    """Winner of a finished game, or None for a draw.

    A checkmated side is always the side to move after the mating move, so
    the winner is its opposite. Every other termination is a draw.
    """
    if reason is TerminationReason.CHECKMATE:
        return side_to_move.opposite
    return None


@dataclass(frozen=True)
class MoveOutcome:
    move: Dict[str, Any]
    position: str
    finished: bool = False
    termination: Optional[TerminationReason] = None
    winner: Optional[Side] = None


class MatchStateMachine:
    """Game phase of a room: waiting -> playing -> finished."""

    def __init__(self, rules: RulesEngine):
        self.rules = rules

    def new_position(self) -> Any:
        return self.rules.initial_position()

    def render(self, position: Any) -> str:
        return self.rules.render(position)

    def can_start(self, room: Room) -> bool:
        if len(room.players) != MAX_PLAYERS:
            return False
        return all(p.connection_id in room.secrets for p in room.players)

    def start(self, room: Room) -> None:
        if room.status is not RoomStatus.WAITING:
            raise AlreadyStarted(f"Match in room {room.code} is already {room.status.value}")
        if not self.can_start(room):
            raise InvalidStateTransition(
                f"Room {room.code} needs two players with secrets before starting"
            )
        transition(room, RoomStatus.PLAYING)
        room.position = self.rules.initial_position()
        room.winner_side = None
        room.termination = None
        room.revealed = False
        logger.info(f"[match-start] room={room.code}")

    def apply_move(self, room: Room, move: Mapping[str, Any], side: Optional[Side] = None) -> MoveOutcome:
        """Validate and play ``move``; room state is untouched when it is rejected."""
        if room.status is not RoomStatus.PLAYING:
            raise IllegalMove(f"Match in room {room.code} is not in progress")
        if side is not None and side is not self.rules.side_to_move(room.position):
            raise IllegalMove("Not your turn")

        verdict = self.rules.apply(room.position, move)
        if not verdict.legal:
            raise IllegalMove(verdict.error or 'Illegal move')

        room.position = verdict.position
        outcome = MoveOutcome(move=verdict.move, position=self.rules.render(room.position))
        if verdict.termination is None:
            return outcome

        winner = winner_from_termination(verdict.termination, verdict.side_to_move)
        transition(room, RoomStatus.FINISHED)
        room.termination = verdict.termination
        room.winner_side = winner
        logger.info(
            f"[match-end] room={room.code} reason={verdict.termination.value} "
            f"winner={winner.value if winner else None}"
        )
        return MoveOutcome(
            move=outcome.move,
            position=outcome.position,
            finished=True,
            termination=verdict.termination,
            winner=winner,
        )
