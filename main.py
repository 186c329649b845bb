# MAIN
import argparse
import os
import sys
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import chess

from analysis import DEFAULT_ANALYSIS_DEPTH, DEFAULT_LINE_LENGTH, AnalysisPipeline
from arbiter import DEFAULT_REPLY_DELAY_MS, MoveArbiter
from backend import DEFAULT_BACKEND_URL, BackendClient
from chess_logic import RulesEngine
from engine_session import READY_TIMEOUT_MS, EngineSession, create_engine_process, engine_command
from errors import EngineUnavailable, PersistenceFailure
from rating import RatingState
from skill import MAX_VARIANCE_BUDGET, CandidatePolicy
from utils import ReportingLevel, center_on_screen, error_text, info_text

DEFAULT_ENGINE = "stockfish"
COLOR_CHOICES = {"white": chess.WHITE, "black": chess.BLACK}


@dataclass
class SessionConfig:
    engine: str = DEFAULT_ENGINE
    backend_url: str = DEFAULT_BACKEND_URL
    offline: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    human_color: bool = chess.WHITE
    reply_delay_ms: int = DEFAULT_REPLY_DELAY_MS
    search_timeout_ms: Optional[int] = None
    ready_timeout_ms: int = READY_TIMEOUT_MS
    analysis_depth: int = DEFAULT_ANALYSIS_DEPTH
    analysis_line_length: int = DEFAULT_LINE_LENGTH
    variance_budget: int = 0
    candidate_policy: CandidatePolicy = CandidatePolicy.BEST
    reporting_level: ReportingLevel = ReportingLevel.BASIC


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Play an adaptive UCI engine and track your rating")
    parser.add_argument(
        "--engine",
        default=DEFAULT_ENGINE,
        help="UCI engine executable; .py scripts run under the current interpreter",
    )
    parser.add_argument("--backend", default=DEFAULT_BACKEND_URL, help="Account backend base URL")
    parser.add_argument("--offline", action="store_true", help="Play without the account backend")
    parser.add_argument("--username", help="Backend account name")
    parser.add_argument("--password", help="Backend account password")
    parser.add_argument("--color", choices=sorted(COLOR_CHOICES), default="white", help="Side the human plays")
    parser.add_argument(
        "--reply-delay",
        type=int,
        default=DEFAULT_REPLY_DELAY_MS,
        help="Milliseconds to wait before the engine starts its reply",
    )
    parser.add_argument(
        "--search-timeout",
        type=int,
        default=None,
        help="Abort an engine search after this many milliseconds",
    )
    parser.add_argument(
        "--ready-timeout",
        type=int,
        default=READY_TIMEOUT_MS,
        help="Milliseconds to wait for the engine handshake",
    )
    parser.add_argument("--analysis-depth", type=int, default=DEFAULT_ANALYSIS_DEPTH)
    parser.add_argument("--analysis-line-length", type=int, default=DEFAULT_LINE_LENGTH)
    parser.add_argument(
        "--variance",
        type=int,
        default=0,
        help=f"Extra candidate lines the engine reports (0-{MAX_VARIANCE_BUDGET})",
    )
    parser.add_argument(
        "--candidate-policy",
        choices=[policy.value for policy in CandidatePolicy],
        default=CandidatePolicy.BEST.value,
        help="How the engine's move is chosen among its candidate lines",
    )
    parser.add_argument("-dev", action="store_true", help="Enable debug mode")
    return parser.parse_args(argv)


def build_config(args) -> SessionConfig:
    return SessionConfig(
        engine=args.engine,
        backend_url=args.backend,
        offline=args.offline,
        username=args.username,
        password=args.password,
        human_color=COLOR_CHOICES[args.color],
        reply_delay_ms=max(0, args.reply_delay),
        search_timeout_ms=args.search_timeout if args.search_timeout and args.search_timeout > 0 else None,
        ready_timeout_ms=max(1, args.ready_timeout),
        analysis_depth=max(1, args.analysis_depth),
        analysis_line_length=max(1, args.analysis_line_length),
        variance_budget=max(0, min(MAX_VARIANCE_BUDGET, args.variance)),
        candidate_policy=CandidatePolicy(args.candidate_policy),
        reporting_level=ReportingLevel.VERBOSE if args.dev else ReportingLevel.BASIC,
    )


def resolve_engine_path(engine: str, script_dir: str) -> str:
    """Relative paths to bundled scripts are resolved next to this file."""
    if os.path.isabs(engine) or os.path.exists(engine):
        return engine
    candidate = os.path.join(script_dir, engine)
    return candidate if os.path.exists(candidate) else engine


def connect_backend(config: SessionConfig) -> Tuple[Optional[BackendClient], RatingState]:
    """Log in (or resume a session) and return the player's stored rating.

    Any backend failure degrades to offline play with the new-player defaults.
    """
    if config.offline:
        return None, RatingState()

    client = BackendClient(config.backend_url)
    try:
        if config.username and config.password:
            profile = client.login(config.username, config.password)
        else:
            profile = client.fetch_user()
    except PersistenceFailure as exc:
        print(error_text(f"Backend unavailable, playing offline: {exc}"))
        return None, RatingState()

    if config.reporting_level >= ReportingLevel.BASIC:
        print(
            info_text(
                f"Logged in as {profile.username}: rating {profile.rating}, "
                f"level {profile.strength_level}, depth {profile.search_depth}"
            )
        )
    return client, profile.rating_state()


def start_session(config: SessionConfig, path: str, label: str) -> Tuple[EngineSession, Any]:
    proc = create_engine_process()
    session = EngineSession(
        proc,
        engine_command(path),
        label=label,
        reporting_level=config.reporting_level,
        ready_timeout_ms=config.ready_timeout_ms,
        search_timeout_ms=config.search_timeout_ms,
    )
    proc.readyReadStandardOutput.connect(session.pump)
    session.initialize()
    return session, proc


def main(argv=None):
    config = build_config(parse_args(argv))
    script_dir = os.path.dirname(os.path.abspath(__file__))
    engine_path = resolve_engine_path(config.engine, script_dir)

    from PySide6.QtWidgets import QApplication, QMessageBox
    from gui import ChessGUI

    app = QApplication(sys.argv)

    backend, rating = connect_backend(config)
    try:
        engine, _ = start_session(config, engine_path, "Engine")
        analysis_engine, _ = start_session(config, engine_path, "Analysis")
    except EngineUnavailable as exc:
        print(error_text(str(exc)))
        QMessageBox.critical(None, "Engine unavailable", str(exc))
        return 1

    rules = RulesEngine()
    pipeline = AnalysisPipeline(
        analysis_engine,
        depth=config.analysis_depth,
        max_line_length=config.analysis_line_length,
        reporting_level=config.reporting_level,
    )
    gui = ChessGUI(rules.board, human_color=config.human_color, reporting_level=config.reporting_level)
    arbiter = MoveArbiter(
        rules,
        engine,
        ui=gui,
        rating=rating,
        backend=backend,
        analysis=pipeline,
        human_color=config.human_color,
        variance_budget=config.variance_budget,
        candidate_policy=config.candidate_policy,
        reply_delay_ms=config.reply_delay_ms,
        reporting_level=config.reporting_level,
    )

    def choose_color(color: bool) -> None:
        gui.set_human_color(color)
        arbiter.set_human_color(color)

    gui.move_callback = arbiter.submit_human_move
    gui.undo_callback = arbiter.undo
    gui.new_game_callback = arbiter.new_game
    gui.color_callback = choose_color
    gui.analysis_callback = lambda: arbiter.request_analysis(gui.analysis_entry, gui.analysis_finished)

    def shutdown():
        pipeline.cancel()
        for session in (engine, analysis_engine):
            try:
                session.shutdown()
            except EngineUnavailable as exc:
                print(error_text(str(exc)))
        if backend is not None and config.username:
            try:
                backend.logout()
            except PersistenceFailure as exc:
                print(error_text(f"Logout failed: {exc}"))

    app.aboutToQuit.connect(shutdown)

    gui.rating_changed(arbiter.rating)
    gui.show()
    center_on_screen(gui)
    arbiter.new_game()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
