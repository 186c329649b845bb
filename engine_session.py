"""UCI worker session.

One :class:`EngineSession` owns one engine process. Outbound commands are plain
UCI lines; inbound lines are parsed into the small event set
``ReadyAck | Progress | Result`` and correlated with the search that produced
them.

Every ``go`` is recorded in an in-flight queue. The UCI protocol guarantees one
``bestmove`` per ``go`` (stopped searches included), so the head of that queue
always names the search an inbound line belongs to. A reply whose search is no
longer the outstanding one is dropped, whatever order things arrive in.
"""

from __future__ import annotations

import re
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from errors import EngineTimeout, EngineUnavailable, ProtocolParseError, StaleReplyDiscarded
from skill import SkillSettings
from utils import (
    ReportingLevel,
    debug_text,
    error_text,
    info_text,
    received_text,
    schedule_later,
    sending_text,
)

MATE_SCORE = 10000
DEFAULT_SEARCH_DEPTH = 5
START_TIMEOUT_MS = 5000
READY_TIMEOUT_MS = 5000
SHUTDOWN_TIMEOUT_MS = 2000

EngineProcess = Any
Scheduler = Callable[[int, Callable[[], None]], None]

_UCI_MOVE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")


# ---------------------------------------------------------------------------
# Protocol events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadyAck:
    pass


@dataclass(frozen=True)
class Progress:
    rank: int = 1
    depth: Optional[int] = None
    score: Optional[int] = None
    moves: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Result:
    move: str
    ponder: Optional[str] = None


EngineEvent = Union[ReadyAck, Progress, Result]


def mate_to_score(moves: int) -> int:
    # "mate 0" means the side to move is already mated.
    return MATE_SCORE if moves > 0 else -MATE_SCORE


def _parse_bestmove(line: str, tokens: List[str]) -> Result:
    if len(tokens) < 2 or not _UCI_MOVE.match(tokens[1]):
        raise ProtocolParseError(line)
    ponder = None
    if len(tokens) >= 4 and tokens[2] == "ponder" and _UCI_MOVE.match(tokens[3]):
        ponder = tokens[3]
    return Result(move=tokens[1], ponder=ponder)


def _parse_info(line: str, tokens: List[str]) -> Optional[Progress]:
    if len(tokens) > 1 and tokens[1] == "string":
        return None

    rank = 1
    depth = None
    score = None
    moves: Tuple[str, ...] = ()
    index = 1
    try:
        while index < len(tokens):
            key = tokens[index]
            if key == "pv":
                moves = tuple(tokens[index + 1:])
                break
            if key == "depth":
                depth = int(tokens[index + 1])
                index += 2
            elif key == "multipv":
                rank = int(tokens[index + 1])
                index += 2
            elif key == "score":
                kind, value = tokens[index + 1], int(tokens[index + 2])
                if kind == "cp":
                    score = value
                elif kind == "mate":
                    score = mate_to_score(value)
                else:
                    raise ProtocolParseError(line)
                index += 3
            else:
                index += 1
    except (IndexError, ValueError) as exc:
        raise ProtocolParseError(line) from exc

    if score is None and not moves:
        return None
    if any(not _UCI_MOVE.match(move) for move in moves):
        raise ProtocolParseError(line)
    return Progress(rank=rank, depth=depth, score=score, moves=moves)


def parse_engine_line(line: str) -> Optional[EngineEvent]:
    """Parse one worker line.

    Returns ``None`` for lines that carry nothing the session tracks (``id``,
    ``option``, ``uciok``, ``info string`` ...). Raises
    :class:`ProtocolParseError` for ``bestmove``/``info`` lines that are
    malformed.
    """
    tokens = line.split()
    if not tokens:
        return None
    head = tokens[0]
    if head == "readyok":
        return ReadyAck()
    if head == "bestmove":
        return _parse_bestmove(line, tokens)
    if head == "info":
        return _parse_info(line, tokens)
    return None


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineRequest:
    request_id: int
    position: str
    depth: int
    max_line_length: Optional[int] = None

    def commands(self) -> List[str]:
        return [f"position fen {self.position}", f"go depth {self.depth}"]


@dataclass(frozen=True)
class CandidateLine:
    rank: int
    moves: Tuple[str, ...]
    score: Optional[int] = None


@dataclass
class EngineResult:
    request_id: int
    move: Optional[str]
    score: Optional[int] = None
    lines: List[CandidateLine] = field(default_factory=list)
    ponder: Optional[str] = None
    depth: Optional[int] = None
    timed_out: bool = False

    @property
    def variation(self) -> Tuple[str, ...]:
        if self.lines and self.lines[0].moves:
            return self.lines[0].moves
        return (self.move,) if self.move else ()


ResultCallback = Callable[[EngineResult], None]
FailureCallback = Callable[[Exception], None]


@dataclass
class _PendingSearch:
    request: EngineRequest
    on_result: ResultCallback
    on_failure: Optional[FailureCallback] = None
    lines: Dict[int, CandidateLine] = field(default_factory=dict)
    score: Optional[int] = None
    depth: Optional[int] = None

    def absorb(self, progress: Progress) -> None:
        # Later progress replaces earlier progress of the same rank.
        if progress.rank == 1:
            if progress.depth is not None:
                self.depth = progress.depth
            if progress.score is not None:
                self.score = progress.score
        if progress.moves:
            self.lines[progress.rank] = CandidateLine(progress.rank, progress.moves, progress.score)

    def build_result(self, move: str, ponder: Optional[str] = None, *, timed_out: bool = False) -> EngineResult:
        limit = self.request.max_line_length
        lines = []
        for rank in sorted(self.lines):
            line = self.lines[rank]
            moves = line.moves[:limit] if limit is not None else line.moves
            lines.append(CandidateLine(rank, moves, line.score))
        return EngineResult(
            request_id=self.request.request_id,
            move=move,
            score=self.score,
            lines=lines,
            ponder=ponder,
            depth=self.depth,
            timed_out=timed_out,
        )


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------


def engine_command(path: str) -> List[str]:
    """Command line for an engine; Python scripts run under the current interpreter."""
    if path.endswith(".py"):
        return [sys.executable, path]
    return [path]


def create_engine_process():
    from PySide6.QtCore import QProcess  # Local import keeps the core usable without Qt

    proc = QProcess()
    proc.setProcessChannelMode(QProcess.MergedChannels)
    return proc


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class EngineSession:
    """Drives one UCI worker with at most one outstanding search."""

    def __init__(
        self,
        process: EngineProcess,
        command: Optional[List[str]] = None,
        *,
        label: str = "Engine",
        reporting_level: ReportingLevel = ReportingLevel.BASIC,
        ready_timeout_ms: int = READY_TIMEOUT_MS,
        search_timeout_ms: Optional[int] = None,
        schedule: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._process = process
        self._command = list(command) if command else []
        self.label = label
        self.reporting_level = reporting_level
        self.ready_timeout_ms = ready_timeout_ms
        self.search_timeout_ms = search_timeout_ms
        self._schedule = schedule or schedule_later
        self._clock = clock

        self._next_request_id = 1
        self._in_flight: Deque[int] = deque()
        self._pending: Optional[_PendingSearch] = None
        self._ready = False
        self._closed = False
        self.strength: Optional[SkillSettings] = None

    @property
    def ready(self) -> bool:
        return self._ready and not self._closed

    @property
    def busy(self) -> bool:
        return self._pending is not None

    @property
    def outstanding_request_id(self) -> Optional[int]:
        return self._pending.request.request_id if self._pending else None

    # -- lifecycle --------------------------------------------------------

    def initialize(self) -> None:
        if self._closed:
            raise EngineUnavailable(f"{self.label} has been shut down")
        if self._command:
            program, *arguments = self._command
            self._process.start(program, arguments)
            if not self._process.waitForStarted(START_TIMEOUT_MS):
                raise EngineUnavailable(f"{self.label} failed to start: {' '.join(self._command)}")

        self._ready = False
        self._send("uci")
        self._send("isready")
        deadline = self._clock() + self.ready_timeout_ms / 1000.0
        while True:
            self.pump()
            if self._ready:
                break
            remaining_ms = int((deadline - self._clock()) * 1000)
            if remaining_ms <= 0 or not self._process.waitForReadyRead(remaining_ms):
                raise EngineUnavailable(
                    f"{self.label} did not answer readyok within {self.ready_timeout_ms} ms"
                )
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"{self.label} ready"))

    def new_game(self) -> None:
        self._ensure_open()
        self.cancel_outstanding()
        self._send("ucinewgame")

    def configure_strength(self, level: int, depth: int, variance_budget: int = 0) -> None:
        self._ensure_open()
        settings = SkillSettings.clamped(level, depth, variance_budget)
        for command in settings.commands():
            self._send(command)
        self.strength = settings

    def shutdown(self) -> None:
        if self._closed:
            return
        self.cancel_outstanding()
        self._send("quit")
        self._process.closeWriteChannel()
        if not self._process.waitForFinished(SHUTDOWN_TIMEOUT_MS):
            if self.reporting_level >= ReportingLevel.VERBOSE:
                print(debug_text(f"{self.label} unresponsive; forcing termination"))
            self._process.kill()
            self._process.waitForFinished(1000)
        self._closed = True
        self._ready = False

    # -- searches ---------------------------------------------------------

    def request_best_move(
        self,
        position: str,
        depth: Optional[int],
        on_result: ResultCallback,
        on_failure: Optional[FailureCallback] = None,
    ) -> int:
        if depth is None:
            depth = self.strength.depth if self.strength else DEFAULT_SEARCH_DEPTH
        return self._start_search(position, depth, None, on_result, on_failure)

    def request_principal_variation(
        self,
        position: str,
        depth: int,
        max_line_length: int,
        on_result: ResultCallback,
        on_failure: Optional[FailureCallback] = None,
    ) -> int:
        return self._start_search(position, depth, max(1, max_line_length), on_result, on_failure)

    def cancel_outstanding(self) -> Optional[int]:
        """Stop the outstanding search; its eventual ``bestmove`` is discarded."""
        pending = self._pending
        if pending is None:
            return None
        self._pending = None
        self._send("stop")
        if self.reporting_level >= ReportingLevel.VERBOSE:
            print(debug_text(f"{self.label} search {pending.request.request_id} canceled"))
        return pending.request.request_id

    def _start_search(
        self,
        position: str,
        depth: int,
        max_line_length: Optional[int],
        on_result: ResultCallback,
        on_failure: Optional[FailureCallback],
    ) -> int:
        self._ensure_open()
        if self._pending is not None:
            self.cancel_outstanding()

        request = EngineRequest(self._next_request_id, position, depth, max_line_length)
        self._next_request_id += 1
        for command in request.commands():
            self._send(command)
        self._in_flight.append(request.request_id)
        self._pending = _PendingSearch(request, on_result, on_failure)

        if self.search_timeout_ms:
            self._schedule(self.search_timeout_ms, partial(self._on_search_timeout, request.request_id))
        return request.request_id

    def _on_search_timeout(self, request_id: int) -> None:
        pending = self._pending
        if pending is None or pending.request.request_id != request_id:
            return
        self._pending = None
        self._send("stop")
        best = pending.lines.get(1)
        if self.reporting_level >= ReportingLevel.BASIC:
            print(info_text(f"{self.label} search {request_id} timed out after {self.search_timeout_ms} ms"))
        if best is not None and best.moves:
            pending.on_result(pending.build_result(best.moves[0], timed_out=True))
        else:
            self._fail(pending, EngineTimeout(request_id, self.search_timeout_ms))

    # -- inbound ----------------------------------------------------------

    def pump(self) -> List[EngineEvent]:
        """Drain every complete line the process has buffered."""
        events = []
        while self._process.canReadLine():
            line = bytes(self._process.readLine()).decode(errors="replace").strip()
            if not line:
                continue
            try:
                event = self.handle_line(line)
            except Exception as exc:  # a failing callback must not stop the drain
                print(error_text(f"[{self.label}] Failed to handle {line!r}: {exc}"))
                continue
            if event is not None:
                events.append(event)
        return events

    def handle_line(self, line: str) -> Optional[EngineEvent]:
        if self.reporting_level >= ReportingLevel.VERBOSE:
            print(received_text(f"[{self.label}] {line}"))

        owner = self._in_flight[0] if self._in_flight else None
        try:
            event = parse_engine_line(line)
        except ProtocolParseError as exc:
            exc.request_id = owner
            if self.reporting_level >= ReportingLevel.BASIC:
                print(info_text(f"[{self.label}] {exc}"))
            if line.startswith("bestmove"):
                self._complete(owner, error=exc)
            return None

        if isinstance(event, ReadyAck):
            self._ready = True
        elif isinstance(event, Progress):
            if self._pending is not None and owner == self._pending.request.request_id:
                self._pending.absorb(event)
        elif isinstance(event, Result):
            self._complete(owner, result=event)
        return event

    def _complete(
        self,
        owner: Optional[int],
        *,
        result: Optional[Result] = None,
        error: Optional[ProtocolParseError] = None,
    ) -> None:
        if self._in_flight:
            self._in_flight.popleft()
        pending = self._pending
        if pending is None or owner != pending.request.request_id:
            stale = StaleReplyDiscarded(owner)
            if self.reporting_level >= ReportingLevel.VERBOSE:
                print(debug_text(f"[{self.label}] {stale}"))
            return

        self._pending = None
        if error is not None:
            self._fail(pending, error)
            return
        pending.on_result(pending.build_result(result.move, result.ponder))

    def _fail(self, pending: _PendingSearch, error: Exception) -> None:
        if pending.on_failure is not None:
            pending.on_failure(error)

    # -- outbound ---------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise EngineUnavailable(f"{self.label} has been shut down")

    def _send(self, command: str) -> None:
        if self.reporting_level >= ReportingLevel.VERBOSE:
            print(sending_text(f"[{self.label}] {command}"))
        self._process.write((command + "\n").encode())
        self._process.waitForBytesWritten()
