"""Rules engine adapter.

All legality, move execution and termination detection is delegated to
python-chess; this module only shapes the board into the small contract the
arbiter and the analysis pipeline consume.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

import chess

MoveSpec = Union[chess.Move, str]


class TerminalReason(str, Enum):
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    REPETITION = "draw-by-repetition"
    INSUFFICIENT_MATERIAL = "insufficient-material"
    OTHER_DRAW = "other-draw"
    NONE = "none"


@dataclass(frozen=True)
class MoveRecord:
    ply: int
    side: bool
    san: str
    uci: str

    @property
    def lan_pair(self) -> Tuple[str, str]:
        return self.uci[:2], self.uci[2:4]


def is_valid_move(board: chess.Board, move: chess.Move) -> bool:
    return move in board.legal_moves


def get_possible_moves(board: chess.Board, square: chess.Square) -> list:
    return [move for move in board.legal_moves if move.from_square == square]


def is_pawn_promotion_attempt(board: chess.Board, move: chess.Move) -> bool:
    piece = board.piece_at(move.from_square)
    if piece is None or piece.piece_type != chess.PAWN:
        return False

    queen_move = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)
    if not is_valid_move(board, queen_move):
        return False

    rank = chess.square_rank(move.to_square)
    return (piece.color == chess.WHITE and rank == 7) or (piece.color == chess.BLACK and rank == 0)


def terminal_reason(board: chess.Board) -> TerminalReason:
    if board.is_checkmate():
        return TerminalReason.CHECKMATE
    if board.is_stalemate():
        return TerminalReason.STALEMATE
    if board.is_insufficient_material():
        return TerminalReason.INSUFFICIENT_MATERIAL
    if board.is_fivefold_repetition() or board.can_claim_threefold_repetition():
        return TerminalReason.REPETITION
    if board.is_seventyfive_moves() or board.can_claim_fifty_moves() or board.is_variant_draw():
        return TerminalReason.OTHER_DRAW
    return TerminalReason.NONE


def parse_move(board: chess.Board, spec: MoveSpec) -> Optional[chess.Move]:
    """Resolve a move given as ``chess.Move``, UCI text or SAN text; ``None`` if illegal."""
    if isinstance(spec, chess.Move):
        return spec if is_valid_move(board, spec) else None

    text = spec.strip()
    if not text:
        return None
    try:
        move = chess.Move.from_uci(text)
    except ValueError:
        move = None
    if move is not None and is_valid_move(board, move):
        return move
    try:
        return board.parse_san(text)
    except ValueError:
        return None


def format_move_list(records: List[MoveRecord]) -> List[str]:
    """Numbered SAN pairs, e.g. ``["1. e4 e5", "2. Nf3"]``."""
    lines = []
    for index in range(0, len(records), 2):
        white = records[index].san
        black = records[index + 1].san if index + 1 < len(records) else ""
        lines.append(f"{index // 2 + 1}. {white} {black}".rstrip())
    return lines


class RulesEngine:
    """Authoritative board plus an append-only move history."""

    def __init__(self, fen: Optional[str] = None) -> None:
        self.board = chess.Board(fen) if fen else chess.Board()
        self._initial_fen = self.board.fen()
        self._history: List[MoveRecord] = []

    @property
    def history(self) -> List[MoveRecord]:
        return list(self._history)

    def san_history(self) -> List[str]:
        return [record.san for record in self._history]

    def initial_position(self) -> str:
        """FEN the game started from; ``reset`` returns here."""
        return self._initial_fen

    def current_side(self) -> bool:
        return self.board.turn

    def current_position(self) -> str:
        return self.board.fen()

    def legal_moves(self) -> List[str]:
        return [self.board.san(move) for move in self.board.legal_moves]

    def apply_move(self, spec: MoveSpec) -> Optional[MoveRecord]:
        move = parse_move(self.board, spec)
        if move is None:
            return None
        record = MoveRecord(
            ply=len(self._history),
            side=self.board.turn,
            san=self.board.san(move),
            uci=move.uci(),
        )
        self.board.push(move)
        self._history.append(record)
        return record

    def undo_last_move(self) -> Optional[MoveRecord]:
        if not self._history:
            return None
        self.board.pop()
        return self._history.pop()

    def is_terminal(self) -> bool:
        return self.board.is_game_over(claim_draw=True)

    def terminal_reason(self) -> TerminalReason:
        return terminal_reason(self.board)

    def result(self) -> str:
        """``1-0``, ``0-1``, ``1/2-1/2`` or ``*`` while the game is running."""
        return self.board.result(claim_draw=True)

    def reset(self) -> None:
        self.board.set_fen(self._initial_fen)
        self._history.clear()
