"""Turn-taking between the human and the engine.

:class:`MoveArbiter` is the only component that applies moves to the rules
engine during play. It tracks whose turn it is, which engine search (if any) it
is waiting for, and whether the finished game has already been scored and
saved.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Protocol, Tuple

import chess

from chess_logic import MoveRecord, MoveSpec, RulesEngine, TerminalReason
from engine_session import EngineResult, EngineSession
from errors import EngineUnavailable, IllegalMoveRejected, PersistenceFailure
from rating import Outcome, RatingState
from skill import CandidatePolicy, pick_candidate
from utils import ReportingLevel, debug_text, error_text, info_text, run_in_background, schedule_later

if TYPE_CHECKING:
    from analysis import AnalysisEntry, AnalysisPipeline
    from backend import BackendClient

DEFAULT_REPLY_DELAY_MS = 250
MAX_ENGINE_RETRIES = 1
COLOR_NAME = {chess.WHITE: "White", chess.BLACK: "Black"}


class TurnOwner(str, Enum):
    HUMAN = "human"
    ENGINE = "engine"


class ArbiterState(str, Enum):
    AWAITING_HUMAN = "awaiting-human"
    ENGINE_SEARCHING = "engine-searching"
    GAME_OVER = "game-over"


class GameStatus(str, Enum):
    YOUR_TURN = "Your turn"
    ENGINE_THINKING = "Engine is thinking..."
    HUMAN_WON = "Congratulations! You won!"
    ENGINE_WON = "Game over, engine wins!"
    DRAW = "Game over, drawn position"
    ENGINE_ERROR = "Engine produced no move"


@dataclass
class SessionState:
    turn_owner: TurnOwner = TurnOwner.HUMAN
    engine_busy: bool = False
    game_over: bool = False
    game_recorded: bool = False


class _ArbiterUI(Protocol):
    """Hooks the arbiter calls back into; :class:`gui.ChessGUI` implements them."""

    def move_applied(self, record: MoveRecord, mover: TurnOwner) -> None:
        ...

    def move_rejected(self, error: IllegalMoveRejected) -> None:
        ...

    def position_changed(self) -> None:
        ...

    def status_changed(self, status: GameStatus) -> None:
        ...

    def rating_changed(self, rating: RatingState) -> None:
        ...

    def show_notice(self, message: str) -> None:
        ...


Scheduler = Callable[[int, Callable[[], None]], None]
Background = Callable[[Callable[[], Any], Callable[[Any], None]], None]


class MoveArbiter:
    """Coordinates human moves, engine searches and end-of-game bookkeeping."""

    def __init__(
        self,
        rules: RulesEngine,
        engine: EngineSession,
        *,
        ui: Optional[_ArbiterUI] = None,
        rating: Optional[RatingState] = None,
        backend: Optional["BackendClient"] = None,
        analysis: Optional["AnalysisPipeline"] = None,
        human_color: bool = chess.WHITE,
        variance_budget: int = 0,
        candidate_policy: CandidatePolicy = CandidatePolicy.BEST,
        reply_delay_ms: int = DEFAULT_REPLY_DELAY_MS,
        schedule: Optional[Scheduler] = None,
        background: Optional[Background] = None,
        rng: Optional[random.Random] = None,
        reporting_level: ReportingLevel = ReportingLevel.BASIC,
    ) -> None:
        self.rules = rules
        self.engine = engine
        self.ui = ui
        self.rating = rating or RatingState()
        self.backend = backend
        self.analysis = analysis
        self.human_color = human_color
        self.variance_budget = variance_budget
        self.candidate_policy = candidate_policy
        self.reply_delay_ms = reply_delay_ms
        self.reporting_level = reporting_level
        self._schedule = schedule or schedule_later
        self._background = background or run_in_background
        self._rng = rng or random.Random()

        self.session = SessionState()
        self._generation = 0
        self._expected_request_id: Optional[int] = None
        self._engine_failures = 0
        self.status = GameStatus.YOUR_TURN

    # -- derived state ----------------------------------------------------

    @property
    def state(self) -> ArbiterState:
        if self.session.game_over:
            return ArbiterState.GAME_OVER
        if self.session.turn_owner is TurnOwner.ENGINE:
            return ArbiterState.ENGINE_SEARCHING
        return ArbiterState.AWAITING_HUMAN

    @property
    def expected_request_id(self) -> Optional[int]:
        return self._expected_request_id

    def owner_of(self, side: bool) -> TurnOwner:
        return TurnOwner.HUMAN if side == self.human_color else TurnOwner.ENGINE

    # -- UI events --------------------------------------------------------

    def new_game(self, human_color: Optional[bool] = None) -> None:
        """Reset everything and start over; the engine opens when the human plays black."""
        if human_color is not None:
            self.human_color = human_color
        self._cancel_engine()
        self.rules.reset()
        self.session = SessionState()
        self._engine_failures = 0
        self.engine.new_game()
        self.engine.configure_strength(
            self.rating.strength_level, self.rating.search_depth, self.variance_budget
        )
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"New game: human plays {COLOR_NAME[self.human_color]}"))
        self._sync_turn()
        self._notify("position_changed")
        if self.state is ArbiterState.ENGINE_SEARCHING:
            self._schedule_engine_search()
        self._publish_status()

    def set_human_color(self, color: bool) -> None:
        self.new_game(color)

    def submit_human_move(self, spec: MoveSpec) -> Optional[MoveRecord]:
        text = spec.uci() if isinstance(spec, chess.Move) else str(spec)
        if self.state is not ArbiterState.AWAITING_HUMAN:
            self._reject(IllegalMoveRejected(text, "not your turn"))
            return None

        record = self.rules.apply_move(spec)
        if record is None:
            self._reject(IllegalMoveRejected(text))
            return None

        self._after_move(record, TurnOwner.HUMAN)
        return record

    def undo(self) -> int:
        """Take back the last two half-moves (one if only one exists); returns how many."""
        played = len(self.rules.history)
        if played == 0:
            return 0

        self._cancel_engine()
        steps = 2 if played >= 2 else 1
        for _ in range(steps):
            self.rules.undo_last_move()
        self.session.game_over = False
        self.session.game_recorded = False
        self._engine_failures = 0
        if self.reporting_level >= ReportingLevel.VERBOSE:
            print(debug_text(f"Undid {steps} half-move(s)"))

        self._sync_turn()
        self._notify("position_changed")
        if self.state is ArbiterState.ENGINE_SEARCHING:
            self._schedule_engine_search()
        self._publish_status()
        return steps

    def request_analysis(
        self,
        on_entry: Optional[Callable[["AnalysisEntry"], None]] = None,
        on_complete: Optional[Callable[[List["AnalysisEntry"]], None]] = None,
    ) -> bool:
        if self.analysis is None or not self.rules.history:
            return False
        self.analysis.start(
            self.rules.san_history(),
            self.human_color,
            on_entry=on_entry,
            on_complete=on_complete,
            start_fen=self.rules.initial_position(),
        )
        return True

    # -- engine replies ---------------------------------------------------

    def handle_engine_result(self, result: EngineResult) -> bool:
        """Apply an engine reply if it answers the search currently awaited."""
        if result.request_id != self._expected_request_id:
            if self.reporting_level >= ReportingLevel.VERBOSE:
                print(debug_text(f"Ignoring engine reply for request {result.request_id}"))
            return False
        self._expected_request_id = None
        self.session.engine_busy = False
        if self.state is not ArbiterState.ENGINE_SEARCHING:
            return False

        choice = pick_candidate(result, self.candidate_policy, self._rng)
        record = self.rules.apply_move(choice) if choice else None
        if record is None and result.move and choice != result.move:
            record = self.rules.apply_move(result.move)
        if record is None:
            self._engine_failed(f"engine move {choice!r} rejected by the rules engine")
            return False

        self._engine_failures = 0
        self._after_move(record, TurnOwner.ENGINE)
        return True

    def handle_engine_failure(self, error: Exception) -> None:
        request_id = getattr(error, "request_id", None)
        if request_id != self._expected_request_id:
            return
        self._expected_request_id = None
        self.session.engine_busy = False
        self._engine_failed(str(error))

    # -- terminal detection -----------------------------------------------

    def check_terminal(self) -> bool:
        """Mark the game over if the position is terminal; score and save it once."""
        if not self.rules.is_terminal():
            return False
        self.session.game_over = True
        self._record_outcome()
        self._publish_status()
        return True

    def human_outcome(self) -> Outcome:
        if self.rules.terminal_reason() is TerminalReason.CHECKMATE:
            mated_side = self.rules.current_side()
            return Outcome.LOSS if mated_side == self.human_color else Outcome.WIN
        return Outcome.DRAW

    def _record_outcome(self) -> None:
        if self.session.game_recorded:
            return
        self.session.game_recorded = True

        outcome = self.human_outcome()
        previous = self.rating
        self.rating = previous.after(outcome)
        if self.reporting_level >= ReportingLevel.BASIC:
            print(
                info_text(
                    f"Game over ({self.rules.terminal_reason().value}): {outcome.value}; "
                    f"rating {previous.rating} -> {self.rating.rating}, "
                    f"level {self.rating.strength_level}, depth {self.rating.search_depth}"
                )
            )
        self.engine.configure_strength(
            self.rating.strength_level, self.rating.search_depth, self.variance_budget
        )
        self._notify("rating_changed", self.rating)

        if self.backend is None:
            return
        # Snapshot on this thread; the worker only talks to the backend.
        backend = self.backend
        state = self.rating
        calls = [
            ("update rating", backend.update_rating, (state.rating,)),
            ("update engine strength", backend.update_strength, (state.strength_level, state.search_depth)),
            ("save game", backend.save_game, (self.rules.san_history(), self.rules.result(), state.rating)),
        ]
        self._background(partial(self._persist, calls), self._persisted)

    @staticmethod
    def _persist(calls) -> Tuple[List[str], bool]:
        """Run backend calls in order; returns the failure messages and whether the game was saved."""
        failures = []
        saved = False
        for action, call, args in calls:
            try:
                call(*args)
            except PersistenceFailure as exc:
                failures.append(f"Failed to {action}: {exc}")
            else:
                saved = saved or action == "save game"
        return failures, saved

    def _persisted(self, outcome: Tuple[List[str], bool]) -> None:
        failures, saved = outcome
        for message in failures:
            print(error_text(message))
            self._notify("show_notice", message)
        if saved:
            self._notify("show_notice", "Game saved!")

    # -- internals --------------------------------------------------------

    def _after_move(self, record: MoveRecord, mover: TurnOwner) -> None:
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"{record.san} ({record.uci}) by {mover.value}"))
        self._notify("move_applied", record, mover)
        self._sync_turn()
        if self.check_terminal():
            return
        if self.state is ArbiterState.ENGINE_SEARCHING:
            self._schedule_engine_search()
        self._publish_status()

    def _schedule_engine_search(self) -> None:
        generation = self._generation
        self._schedule(self.reply_delay_ms, lambda: self._start_engine_search(generation))

    def _start_engine_search(self, generation: int) -> None:
        if generation != self._generation:
            return
        if self.state is not ArbiterState.ENGINE_SEARCHING or self.session.engine_busy:
            return
        try:
            request_id = self.engine.request_best_move(
                self.rules.current_position(),
                self.rating.search_depth,
                self.handle_engine_result,
                self.handle_engine_failure,
            )
        except EngineUnavailable as exc:
            print(error_text(str(exc)))
            self._notify("show_notice", f"Engine unavailable: {exc}")
            return
        self._expected_request_id = request_id
        self.session.engine_busy = True

    def _cancel_engine(self) -> None:
        # Deferred searches scheduled under an older generation become no-ops.
        self._generation += 1
        if self.session.engine_busy or self._expected_request_id is not None:
            self.engine.cancel_outstanding()
        self._expected_request_id = None
        self.session.engine_busy = False

    def _engine_failed(self, reason: str) -> None:
        self._engine_failures += 1
        print(error_text(f"Engine failure: {reason}"))
        if self._engine_failures <= MAX_ENGINE_RETRIES and self.state is ArbiterState.ENGINE_SEARCHING:
            self._schedule_engine_search()
            return
        self.status = GameStatus.ENGINE_ERROR
        self._notify("status_changed", self.status)
        self._notify("show_notice", f"{GameStatus.ENGINE_ERROR.value}; undo or start a new game")

    def _reject(self, error: IllegalMoveRejected) -> None:
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"Move rejected: {error}"))
        self._notify("move_rejected", error)

    def _sync_turn(self) -> None:
        self.session.turn_owner = self.owner_of(self.rules.current_side())

    def _publish_status(self) -> None:
        if self.session.game_over:
            outcome = self.human_outcome()
            self.status = {
                Outcome.WIN: GameStatus.HUMAN_WON,
                Outcome.LOSS: GameStatus.ENGINE_WON,
                Outcome.DRAW: GameStatus.DRAW,
            }[outcome]
        elif self.session.turn_owner is TurnOwner.HUMAN:
            self.status = GameStatus.YOUR_TURN
        else:
            self.status = GameStatus.ENGINE_THINKING
        self._notify("status_changed", self.status)

    def _notify(self, hook: str, *args) -> None:
        if self.ui is not None:
            getattr(self.ui, hook)(*args)
