"""Post-game move classification.

The pipeline replays a finished game and, for every move the human made,
compares the evaluation of the resulting position with the evaluation after the
engine's preferred move from the same position.

Queries to the worker are asynchronous, so the replay is written as a generator
that yields one :class:`_Query` at a time and is resumed with the worker's
answer (``None`` when the worker produced nothing usable).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, Deque, Generator, List, Optional, Tuple

import chess

from engine_session import MATE_SCORE, EngineResult, EngineSession
from utils import ReportingLevel, debug_text, info_text

DEFAULT_ANALYSIS_DEPTH = 12
DEFAULT_LINE_LENGTH = 6

GOOD_THRESHOLD = 30
INACCURACY_THRESHOLD = 75
MISTAKE_THRESHOLD = 150


class MoveQuality(str, Enum):
    GOOD = "Good"
    INACCURACY = "Inaccuracy"
    MISTAKE = "Mistake"
    BLUNDER = "Blunder"


def classify_gap(gap: int) -> MoveQuality:
    gap = abs(gap)
    if gap <= GOOD_THRESHOLD:
        return MoveQuality.GOOD
    if gap <= INACCURACY_THRESHOLD:
        return MoveQuality.INACCURACY
    if gap <= MISTAKE_THRESHOLD:
        return MoveQuality.MISTAKE
    return MoveQuality.BLUNDER


@dataclass
class AnalysisEntry:
    move_number: int
    human_move: str
    engine_reply: Optional[str]
    quality: MoveQuality
    gap: int
    score: int
    best_line: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def best_line_text(self) -> str:
        pairs = [
            f"{self.best_line[index]}-{self.best_line[index + 1]}"
            for index in range(0, len(self.best_line) - 1, 2)
        ]
        return ", ".join(pairs) if pairs else "Not available"

    @property
    def score_text(self) -> str:
        return f"{self.score / 100:+.2f} pawns"

    def summary(self) -> str:
        reply = f" - {self.engine_reply}" if self.engine_reply else ""
        return (
            f"{self.move_number}. {self.human_move}{reply} - {self.quality.value} | "
            f"Best: {self.best_line_text} | Evaluation: {self.score_text}"
        )


@dataclass(frozen=True)
class _Query:
    fen: str
    max_line_length: int


AnalysisSteps = Generator[_Query, Optional[EngineResult], None]


def terminal_score(board: chess.Board) -> Optional[int]:
    """Score of a finished position for the side to move, ``None`` if play continues."""
    if board.is_checkmate():
        return -MATE_SCORE
    if board.is_game_over(claim_draw=True):
        return 0
    return None


def variation_to_san(board: chess.Board, moves: Tuple[str, ...]) -> Tuple[str, ...]:
    """Convert UCI moves to SAN, stopping at the first move that does not apply."""
    line_board = board.copy(stack=False)
    sans = []
    for uci in moves:
        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            break
        if move not in line_board.legal_moves:
            break
        sans.append(line_board.san(move))
        line_board.push(move)
    return tuple(sans)


class AnalysisPipeline:
    """Replays a game against a dedicated worker session and labels the human moves."""

    def __init__(
        self,
        engine: EngineSession,
        *,
        depth: int = DEFAULT_ANALYSIS_DEPTH,
        max_line_length: int = DEFAULT_LINE_LENGTH,
        reporting_level: ReportingLevel = ReportingLevel.BASIC,
    ) -> None:
        self.engine = engine
        self.depth = depth
        self.max_line_length = max_line_length
        self.reporting_level = reporting_level

        self.entries: List[AnalysisEntry] = []
        self._steps: Optional[AnalysisSteps] = None
        self._inbox: Deque[Optional[EngineResult]] = deque()
        self._pumping = False
        self._request_id: Optional[int] = None
        self._token = 0
        self._on_entry: Optional[Callable[[AnalysisEntry], None]] = None
        self._on_complete: Optional[Callable[[List[AnalysisEntry]], None]] = None

    @property
    def running(self) -> bool:
        return self._steps is not None

    def start(
        self,
        san_moves: List[str],
        human_color: bool,
        *,
        on_entry: Optional[Callable[[AnalysisEntry], None]] = None,
        on_complete: Optional[Callable[[List[AnalysisEntry]], None]] = None,
        start_fen: Optional[str] = None,
    ) -> None:
        """Replay ``san_moves`` from ``start_fen`` (the standard position by default)."""
        if self.running:
            self.cancel()
        self.entries = []
        self._on_entry = on_entry
        self._on_complete = on_complete
        self._steps = self._replay(list(san_moves), human_color, start_fen)
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"Analysing {len(san_moves)} half-moves"))

        try:
            query = next(self._steps)
        except StopIteration:
            self._finish()
            return
        self._issue(query)

    def cancel(self) -> None:
        if self._steps is None:
            return
        if self._request_id is not None and self.engine.outstanding_request_id == self._request_id:
            self.engine.cancel_outstanding()
        self._token += 1
        self._steps.close()
        self._steps = None
        self._request_id = None
        self._inbox.clear()

    # -- driver -----------------------------------------------------------

    def _issue(self, query: _Query) -> None:
        self._token += 1
        token = self._token
        self._request_id = None
        request_id = self.engine.request_principal_variation(
            query.fen,
            self.depth,
            query.max_line_length,
            partial(self._on_result, token),
            partial(self._on_failure, token),
        )
        if token == self._token:
            self._request_id = request_id

    def _on_result(self, token: int, result: EngineResult) -> None:
        if token != self._token:
            return
        self._deliver(result)

    def _on_failure(self, token: int, error: Exception) -> None:
        if token != self._token:
            return
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"Analysis stopped early: {error}"))
        self._deliver(None)

    def _deliver(self, answer: Optional[EngineResult]) -> None:
        # Answers may arrive synchronously from inside _issue; queue them so the
        # generator is only ever resumed from this loop.
        self._token += 1
        self._request_id = None
        self._inbox.append(answer)
        if self._pumping:
            return
        self._pumping = True
        try:
            while self._inbox and self._steps is not None:
                answer = self._inbox.popleft()
                try:
                    query = self._steps.send(answer)
                except StopIteration:
                    self._finish()
                    break
                self._issue(query)
        finally:
            self._pumping = False

    def _finish(self) -> None:
        self._steps = None
        self._request_id = None
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"Analysis complete: {len(self.entries)} move(s) classified"))
        if self._on_complete is not None:
            self._on_complete(list(self.entries))

    def _emit(self, entry: AnalysisEntry) -> None:
        self.entries.append(entry)
        if self.reporting_level >= ReportingLevel.VERBOSE:
            print(debug_text(entry.summary()))
        if self._on_entry is not None:
            self._on_entry(entry)

    # -- replay -----------------------------------------------------------

    def _evaluate(self, board: chess.Board, max_line_length: int):
        """Yield a worker query unless the position is already decided."""
        local = terminal_score(board)
        if local is not None:
            return local, None
        answer = yield _Query(board.fen(), max_line_length)
        if answer is None or answer.score is None:
            return None, None
        return answer.score, answer

    def _replay(
        self, san_moves: List[str], human_color: bool, start_fen: Optional[str] = None
    ) -> AnalysisSteps:
        board = chess.Board(start_fen) if start_fen else chess.Board()
        for index, san in enumerate(san_moves):
            try:
                move = board.parse_san(san)
            except ValueError:
                if self.reporting_level >= ReportingLevel.BASIC:
                    print(info_text(f"Unreadable move {san!r} at half-move {index + 1}"))
                return

            if board.turn != human_color:
                board.push(move)
                continue

            before = board.copy()
            move_number = board.fullmove_number
            board.push(move)
            after = board.copy()

            # Both scores are from the point of view of the side replying to the human.
            user_score, _ = yield from self._evaluate(after, 1)
            if user_score is None:
                return

            _, best = yield from self._evaluate_best(before)
            if best is None or not best.variation:
                return
            best_move = chess.Move.from_uci(best.variation[0])
            if best_move not in before.legal_moves:
                return

            if best_move == move:
                best_score = user_score
            else:
                alternative = before.copy()
                alternative.push(best_move)
                best_score, _ = yield from self._evaluate(alternative, 1)
                if best_score is None:
                    return

            gap = abs(best_score - user_score)
            engine_reply = san_moves[index + 1] if index + 1 < len(san_moves) else None
            self._emit(
                AnalysisEntry(
                    move_number=move_number,
                    human_move=san,
                    engine_reply=engine_reply,
                    quality=classify_gap(gap),
                    gap=gap,
                    score=-user_score,
                    best_line=variation_to_san(before, best.variation),
                )
            )

    def _evaluate_best(self, before: chess.Board):
        answer = yield _Query(before.fen(), self.max_line_length)
        if answer is None:
            return None, None
        return answer.score, answer
