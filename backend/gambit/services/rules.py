"""Rules engine seam.

The match state machine only sees the ``RulesEngine`` interface: positions
are opaque handles, and ``apply`` must not mutate the position it is given.
``ChessRulesEngine`` implements it on top of python-chess.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import chess

from gambit.models import Side, TerminationReason


@dataclass(frozen=True)
class RulesVerdict:
    legal: bool
    position: Any = None
    move: Dict[str, Any] = field(default_factory=dict)
    side_to_move: Optional[Side] = None
    termination: Optional[TerminationReason] = None
    error: Optional[str] = None

    @classmethod
    def illegal(cls, error: str) -> 'RulesVerdict':
        return cls(legal=False, error=error)


class RulesEngine(ABC):
    """Interface consumed by the match state machine."""

    @abstractmethod
    def initial_position(self) -> Any:
        pass

    @abstractmethod
    def side_to_move(self, position: Any) -> Side:
        pass

    @abstractmethod
    def apply(self, position: Any, move: Mapping[str, Any]) -> RulesVerdict:
        pass

    @abstractmethod
    def render(self, position: Any) -> str:
        pass


def _side(color: chess.Color) -> Side:
    return Side.WHITE if color == chess.WHITE else Side.BLACK


class ChessRulesEngine(RulesEngine):

    def __init__(self, starting_fen: str = chess.STARTING_FEN):
        self.starting_fen = starting_fen

    def initial_position(self) -> chess.Board:
        return chess.Board(self.starting_fen)

    def side_to_move(self, position: chess.Board) -> Side:
        return _side(position.turn)

    def render(self, position: chess.Board) -> str:
        return position.fen()

    def apply(self, position: chess.Board, move: Mapping[str, Any]) -> RulesVerdict:
        try:
            parsed = self._parse(position, move)
        except ValueError:
            return RulesVerdict.illegal('Illegal move')
        if parsed is None or parsed not in position.legal_moves:
            return RulesVerdict.illegal('Illegal move')

        board = position.copy()
        san = board.san(parsed)
        mover = board.turn
        board.push(parsed)
        descriptor = {
            'from': chess.square_name(parsed.from_square),
            'to': chess.square_name(parsed.to_square),
            'promotion': chess.piece_symbol(parsed.promotion) if parsed.promotion else None,
            'san': san,
            'uci': parsed.uci(),
            'side': _side(mover).value,
        }
        return RulesVerdict(
            legal=True,
            position=board,
            move=descriptor,
            side_to_move=_side(board.turn),
            termination=self.termination(board),
        )

    @staticmethod
    def termination(board: chess.Board) -> Optional[TerminationReason]:
        if board.is_checkmate():
            return TerminationReason.CHECKMATE
        if board.is_stalemate():
            return TerminationReason.STALEMATE
        if board.is_insufficient_material():
            return TerminationReason.INSUFFICIENT_MATERIAL
        if board.is_repetition(3):
            return TerminationReason.REPETITION
        if board.is_fifty_moves():
            return TerminationReason.OTHER
        return None

    @staticmethod
    def _parse(board: chess.Board, move: Mapping[str, Any]) -> Optional[chess.Move]:
        if move.get('san'):
            return board.parse_san(str(move['san']))
        if move.get('uci'):
            return chess.Move.from_uci(str(move['uci']).lower())
        origin, target = move.get('from'), move.get('to')
        if not origin or not target:
            return None
        promotion = str(move.get('promotion') or '').lower()
        candidate = chess.Move.from_uci(f"{origin}{target}{promotion}".lower())
        if not promotion and candidate not in board.legal_moves:
            # Pawn reaching the last rank without a piece chosen promotes to a queen.
            queen = chess.Move(candidate.from_square, candidate.to_square, promotion=chess.QUEEN)
            if queen in board.legal_moves:
                return queen
        return candidate
