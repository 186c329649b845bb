import sys

import pytest

import engine_session
from engine_session import (
    EngineSession,
    Progress,
    ReadyAck,
    Result,
    engine_command,
    parse_engine_line,
)
from errors import EngineTimeout, EngineUnavailable, ProtocolParseError
from utils import ReportingLevel

START_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


def make_session(process, scheduler=None, **kwargs):
    session = EngineSession(
        process,
        reporting_level=ReportingLevel.QUIET,
        schedule=scheduler or (lambda delay, callback: None),
        **kwargs,
    )
    session.initialize()
    return session


class Collector:
    def __init__(self) -> None:
        self.results = []
        self.failures = []

    def on_result(self, result) -> None:
        self.results.append(result)

    def on_failure(self, error) -> None:
        self.failures.append(error)


# -- parsing ---------------------------------------------------------------


def test_parse_readyok_and_bestmove() -> None:
    assert parse_engine_line("readyok") == ReadyAck()
    assert parse_engine_line("bestmove e2e4 ponder e7e5") == Result("e2e4", "e7e5")
    assert parse_engine_line("bestmove a7a8q") == Result("a7a8q")


def test_parse_info_with_multipv_and_pv() -> None:
    event = parse_engine_line("info depth 10 seldepth 14 multipv 2 score cp 35 nodes 999 pv e2e4 e7e5")
    assert event == Progress(rank=2, depth=10, score=35, moves=("e2e4", "e7e5"))


@pytest.mark.parametrize("line, score", [("info depth 9 score mate 3 pv d1h5", 10000), ("info depth 9 score mate -2 pv g1f3", -10000)])
def test_parse_mate_scores_map_to_sentinel(line, score) -> None:
    assert parse_engine_line(line).score == score


@pytest.mark.parametrize(
    "line",
    ["id name Stockfish", "uciok", "option name Hash type spin", "info string NNUE enabled", "info depth 3", ""],
)
def test_parse_ignores_untracked_lines(line) -> None:
    assert parse_engine_line(line) is None


@pytest.mark.parametrize(
    "line",
    [
        "bestmove",
        "bestmove (none)",
        "bestmove e9e4",
        "info depth x score cp 10",
        "info depth 5 score cp",
        "info depth 5 score wdl 10 pv e2e4",
        "info depth 5 score cp 10 pv e2e4 castle",
    ],
)
def test_parse_malformed_lines_raise(line) -> None:
    with pytest.raises(ProtocolParseError) as excinfo:
        parse_engine_line(line)
    assert excinfo.value.line == line


def test_engine_command_runs_python_scripts_with_interpreter() -> None:
    assert engine_command("engines/demo.py") == [sys.executable, "engines/demo.py"]
    assert engine_command("/usr/bin/stockfish") == ["/usr/bin/stockfish"]


# -- lifecycle -------------------------------------------------------------


def test_initialize_handshake(process) -> None:
    session = make_session(process)
    assert process.written[:2] == ["uci", "isready"]
    assert session.ready is True


def test_initialize_starts_command(make_process) -> None:
    proc = make_process()
    EngineSession(proc, ["stockfish"], reporting_level=ReportingLevel.QUIET).initialize()
    assert proc.started == ("stockfish", [])


def test_initialize_fails_when_process_does_not_start(make_process) -> None:
    proc = make_process(starts=False)
    session = EngineSession(proc, ["missing-engine"], reporting_level=ReportingLevel.QUIET)
    with pytest.raises(EngineUnavailable):
        session.initialize()


def test_initialize_fails_without_readyok(make_process) -> None:
    proc = make_process(auto_ready=False)
    session = EngineSession(proc, reporting_level=ReportingLevel.QUIET, ready_timeout_ms=50)
    with pytest.raises(EngineUnavailable):
        session.initialize()
    assert session.ready is False


def test_configure_strength_sends_options(process) -> None:
    session = make_session(process)
    session.configure_strength(20, 99, 1)
    assert process.sent("setoption") == [
        "setoption name Skill Level value 20",
        "setoption name Skill Level Maximum Error value 0",
        "setoption name Skill Level Probability value 128",
        "setoption name MultiPV value 2",
    ]
    assert session.strength.depth == 15


def test_new_game_sends_ucinewgame(process) -> None:
    session = make_session(process)
    session.new_game()
    assert process.written[-1] == "ucinewgame"


def test_shutdown_quits_and_closes(process) -> None:
    session = make_session(process)
    session.shutdown()
    assert process.written[-1] == "quit"
    assert process.killed is False
    assert session.ready is False
    with pytest.raises(EngineUnavailable):
        session.request_best_move(START_FEN, 5, lambda result: None)


def test_shutdown_kills_unresponsive_process(process) -> None:
    session = make_session(process)
    process.waitForFinished = lambda msecs=0: process.killed
    session.shutdown()
    assert process.killed is True


# -- searches --------------------------------------------------------------


def test_request_best_move_delivers_result(process) -> None:
    session = make_session(process)
    collector = Collector()
    request_id = session.request_best_move(START_FEN, 7, collector.on_result, collector.on_failure)

    assert process.written[-2:] == [f"position fen {START_FEN}", "go depth 7"]
    assert session.busy is True
    assert session.outstanding_request_id == request_id

    process.feed(
        "info depth 6 score cp 12 pv d2d4 d7d5",
        "info depth 7 score cp 25 pv e2e4 e7e5",
        "bestmove e2e4 ponder e7e5",
    )
    session.pump()

    [result] = collector.results
    assert result.request_id == request_id
    assert result.move == "e2e4"
    assert result.ponder == "e7e5"
    assert result.score == 25
    assert result.depth == 7
    assert result.variation == ("e2e4", "e7e5")
    assert session.busy is False


def test_request_best_move_without_depth_uses_configured_depth(process) -> None:
    session = make_session(process)
    session.configure_strength(3, 8)
    session.request_best_move(START_FEN, None, lambda result: None)
    assert process.written[-1] == "go depth 8"


def test_principal_variation_is_truncated(process) -> None:
    session = make_session(process)
    collector = Collector()
    session.request_principal_variation(START_FEN, 12, 2, collector.on_result)
    process.feed("info depth 12 score cp 30 pv e2e4 e7e5 g1f3 b8c6", "bestmove e2e4")
    session.pump()
    assert collector.results[0].variation == ("e2e4", "e7e5")


def test_multipv_lines_are_ranked(process) -> None:
    session = make_session(process)
    collector = Collector()
    session.request_best_move(START_FEN, 5, collector.on_result)
    process.feed(
        "info depth 5 multipv 2 score cp 10 pv d2d4",
        "info depth 5 multipv 1 score cp 20 pv e2e4",
        "bestmove e2e4",
    )
    session.pump()
    result = collector.results[0]
    assert [line.rank for line in result.lines] == [1, 2]
    assert result.lines[1].moves == ("d2d4",)
    assert result.score == 20


def test_cancel_outstanding_sends_stop(process) -> None:
    session = make_session(process)
    assert session.cancel_outstanding() is None
    request_id = session.request_best_move(START_FEN, 5, lambda result: None)
    assert session.cancel_outstanding() == request_id
    assert process.written[-1] == "stop"
    assert session.busy is False


def test_reply_to_superseded_search_is_discarded(process) -> None:
    session = make_session(process)
    first = Collector()
    second = Collector()
    session.request_best_move(START_FEN, 5, first.on_result)
    second_id = session.request_best_move(START_FEN, 5, second.on_result)
    assert "stop" in process.written

    process.feed(
        "info depth 3 score cp -90 pv a2a3",
        "bestmove a2a3",
        "info depth 5 score cp 20 pv e2e4",
        "bestmove e2e4",
    )
    session.pump()

    assert first.results == []
    [result] = second.results
    assert result.request_id == second_id
    assert result.move == "e2e4"
    assert result.score == 20


def test_reply_after_cancel_is_discarded(process) -> None:
    session = make_session(process)
    collector = Collector()
    session.request_best_move(START_FEN, 5, collector.on_result, collector.on_failure)
    session.cancel_outstanding()
    process.feed("bestmove e2e4")
    session.pump()
    assert collector.results == []
    assert collector.failures == []


def test_malformed_bestmove_fails_the_request(process) -> None:
    session = make_session(process)
    collector = Collector()
    request_id = session.request_best_move(START_FEN, 5, collector.on_result, collector.on_failure)
    process.feed("bestmove (none)")
    session.pump()
    [error] = collector.failures
    assert isinstance(error, ProtocolParseError)
    assert error.request_id == request_id
    assert session.busy is False


def test_malformed_info_line_is_skipped(process) -> None:
    session = make_session(process)
    collector = Collector()
    session.request_best_move(START_FEN, 5, collector.on_result, collector.on_failure)
    process.feed("info depth five score cp 1", "bestmove g1f3")
    session.pump()
    assert collector.failures == []
    assert collector.results[0].move == "g1f3"


def test_pump_keeps_draining_when_a_callback_raises(process) -> None:
    session = make_session(process)

    def explode(result):
        raise RuntimeError("boom")

    session.request_best_move(START_FEN, 5, explode)
    process.feed("bestmove e2e4", "readyok")
    events = session.pump()
    assert not process.lines
    assert events == [ReadyAck()]


def test_search_timeout_returns_best_progress(process, scheduler) -> None:
    session = make_session(process, scheduler, search_timeout_ms=1000)
    collector = Collector()
    session.request_best_move(START_FEN, 20, collector.on_result, collector.on_failure)
    [(delay, _)] = scheduler.calls
    assert delay == 1000

    process.feed("info depth 9 score cp 40 pv c2c4 e7e5")
    session.pump()
    scheduler.run_all()

    [result] = collector.results
    assert result.timed_out is True
    assert result.move == "c2c4"
    assert process.written[-1] == "stop"

    process.feed("bestmove c2c4")
    session.pump()
    assert len(collector.results) == 1


def test_search_timeout_without_progress_fails(process, scheduler) -> None:
    session = make_session(process, scheduler, search_timeout_ms=500)
    collector = Collector()
    request_id = session.request_best_move(START_FEN, 20, collector.on_result, collector.on_failure)
    scheduler.run_all()
    [error] = collector.failures
    assert isinstance(error, EngineTimeout)
    assert error.request_id == request_id


def test_search_timeout_ignored_after_completion(process, scheduler) -> None:
    session = make_session(process, scheduler, search_timeout_ms=500)
    collector = Collector()
    session.request_best_move(START_FEN, 5, collector.on_result, collector.on_failure)
    process.feed("bestmove e2e4")
    session.pump()
    scheduler.run_all()
    assert len(collector.results) == 1
    assert collector.failures == []


def test_mate_score_constant() -> None:
    assert engine_session.mate_to_score(0) == -engine_session.MATE_SCORE
    assert engine_session.mate_to_score(4) == engine_session.MATE_SCORE
