# GUI
from typing import Callable, Dict, List, Optional

import chess
from PySide6.QtCore import QSize, Qt
from PySide6.QtGui import QColor, QFont, QPalette
from PySide6.QtWidgets import (
    QApplication,
    QDialog,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

import chess_logic
import utils
from analysis import AnalysisEntry
from arbiter import GameStatus, TurnOwner
from chess_logic import MoveRecord
from errors import IllegalMoveRejected
from rating import RatingState

SQUARE_SIZE = 52
PROMOTION_PIECES = (chess.QUEEN, chess.ROOK, chess.BISHOP, chess.KNIGHT)
GAME_OVER_STATUSES = (GameStatus.HUMAN_WON, GameStatus.ENGINE_WON, GameStatus.DRAW)

BOARD_COLORS = {
    "light": "#eeeed2",
    "dark": "#769656",
    "selected": "#f6f669",
    "last_move": "#baca44",
    "check": "#e06666",
}

WINDOW_STYLE = """
QMainWindow, QDialog { background-color: #262421; }
QLabel { color: #e8e6e3; }
QLabel#status { font-size: 17px; font-weight: bold; }
QLabel#rating, QLabel#info { color: #a7a6a2; font-size: 12px; }
QLabel#moves, QLabel#analysis { font-family: monospace; font-size: 12px; }
QPushButton[role="action"] {
    background-color: #3c3a37;
    color: #e8e6e3;
    border: 1px solid #4b4946;
    border-radius: 5px;
    padding: 5px 9px;
}
QPushButton[role="action"]:hover { background-color: #4b4946; }
"""


class PromotionDialog(QDialog):
    """Offers the four promotion pieces as glyph buttons."""

    def __init__(self, color: bool, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Promote pawn to")
        self.chosen_piece: Optional[int] = None

        row = QHBoxLayout(self)
        row.setContentsMargins(12, 12, 12, 12)
        for piece_type in PROMOTION_PIECES:
            glyph = utils.get_piece_unicode(chess.Piece(piece_type, color))
            button = QPushButton(glyph)
            button.setFont(QFont("Segoe UI Symbol", 26))
            button.setFixedSize(QSize(SQUARE_SIZE, SQUARE_SIZE))
            button.clicked.connect(lambda _=False, p=piece_type: self.choose(p))
            row.addWidget(button)

    def choose(self, piece_type: int) -> None:
        self.chosen_piece = piece_type
        self.accept()


class ChessGUI(QMainWindow):
    """Board window; forwards user actions to callbacks and renders arbiter events."""

    def __init__(
        self,
        board: chess.Board,
        *,
        human_color: bool = chess.WHITE,
        reporting_level: utils.ReportingLevel = utils.ReportingLevel.BASIC,
        move_callback: Optional[Callable[[chess.Move], object]] = None,
        undo_callback: Optional[Callable[[], object]] = None,
        new_game_callback: Optional[Callable[[], object]] = None,
        color_callback: Optional[Callable[[bool], object]] = None,
        analysis_callback: Optional[Callable[[], object]] = None,
    ):
        super().__init__()
        self.board = board
        self.human_color = human_color
        self.reporting_level = reporting_level
        self.move_callback = move_callback
        self.undo_callback = undo_callback
        self.new_game_callback = new_game_callback
        self.color_callback = color_callback
        self.analysis_callback = analysis_callback

        self.selected_square: Optional[int] = None
        self.board_enabled = True
        self.move_lines: List[str] = []
        self.analysis_lines: List[str] = []
        self.grid_buttons: Dict[tuple, QPushButton] = {}
        self.squares: Dict[int, QPushButton] = {}

        self.use_dark_palette()
        self.setStyleSheet(WINDOW_STYLE)
        self.setWindowTitle("SkillFish")
        self.setMinimumSize(460, 760)

        central = QWidget(self)
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(10, 10, 10, 10)
        layout.setSpacing(6)
        self._build_header(layout)
        self._build_board(layout)
        self._build_controls(layout)
        self._build_panels(layout)

        self.apply_orientation()
        self.update_board()

    def use_dark_palette(self):
        app = QApplication.instance()
        if app is None:
            return
        if app.style().objectName().lower() != "fusion":
            QApplication.setStyle("Fusion")
        palette = app.palette()
        for role, color in (
            (QPalette.Window, "#262421"),
            (QPalette.WindowText, "#e8e6e3"),
            (QPalette.Button, "#3c3a37"),
            (QPalette.ButtonText, "#e8e6e3"),
        ):
            palette.setColor(role, QColor(color))
        app.setPalette(palette)

    # -- layout -----------------------------------------------------------

    def _label(self, name: str, text: str = "", align=Qt.AlignCenter) -> QLabel:
        label = QLabel(text)
        label.setObjectName(name)
        label.setAlignment(align)
        return label

    def _build_header(self, layout):
        self.status_indicator = self._label("status", GameStatus.YOUR_TURN.value)
        self.rating_indicator = self._label("rating")
        self.info_indicator = self._label("info", "Game Started")
        for label in (self.status_indicator, self.rating_indicator, self.info_indicator):
            layout.addWidget(label)

    def _build_board(self, layout):
        board_widget = QWidget()
        grid = QGridLayout(board_widget)
        grid.setSpacing(0)
        grid.setContentsMargins(0, 0, 0, 0)

        coordinate_font = QFont("Segoe UI", 10)
        self.file_labels = [QLabel() for _ in range(8)]
        self.rank_labels = [QLabel() for _ in range(8)]
        for index in range(8):
            for label, cell in ((self.file_labels[index], (8, index + 1)), (self.rank_labels[index], (index, 0))):
                label.setFont(coordinate_font)
                label.setAlignment(Qt.AlignCenter)
                grid.addWidget(label, *cell)

        piece_font = QFont("Segoe UI Symbol", 30)
        for row in range(8):
            for col in range(8):
                button = QPushButton()
                button.setFixedSize(QSize(SQUARE_SIZE, SQUARE_SIZE))
                button.setFont(piece_font)
                button.setFocusPolicy(Qt.NoFocus)
                button.clicked.connect(self.on_square_clicked)
                grid.addWidget(button, row, col + 1)
                self.grid_buttons[(row, col)] = button
        layout.addWidget(board_widget, alignment=Qt.AlignHCenter)

    def _action_button(self, text: str, handler) -> QPushButton:
        button = QPushButton(text)
        button.setProperty("role", "action")
        button.setCursor(Qt.PointingHandCursor)
        button.setFocusPolicy(Qt.NoFocus)
        button.clicked.connect(handler)
        return button

    def _build_controls(self, layout):
        row = QHBoxLayout()
        row.setSpacing(8)
        for text, handler in (
            ("New Game", self.new_game),
            ("Undo", self.undo_move),
            ("Play White", lambda: self.choose_color(chess.WHITE)),
            ("Play Black", lambda: self.choose_color(chess.BLACK)),
        ):
            row.addWidget(self._action_button(text, handler))
        row.addStretch(1)
        layout.addLayout(row)

        self.analyze_button = self._action_button("Analyze", self.request_analysis)
        self.analyze_button.setVisible(False)
        layout.addWidget(self.analyze_button)

    def _build_panels(self, layout):
        top_left = Qt.AlignLeft | Qt.AlignTop
        self.move_list_label = self._label("moves", align=top_left)
        self.analysis_label = self._label("analysis", align=top_left)
        self.analysis_label.setWordWrap(True)
        self.analysis_label.setVisible(False)
        layout.addWidget(self.move_list_label)
        layout.addWidget(self.analysis_label)
        layout.addStretch(1)

    # -- board rendering --------------------------------------------------

    def apply_orientation(self):
        """Map grid cells to squares so the human's pieces sit at the bottom."""
        white_bottom = self.human_color == chess.WHITE
        self.squares = {}
        for (row, col), button in self.grid_buttons.items():
            file_index, rank_index = (col, 7 - row) if white_bottom else (7 - col, row)
            self.squares[chess.square(file_index, rank_index)] = button
        for index in range(8):
            file_index = index if white_bottom else 7 - index
            rank_index = 7 - index if white_bottom else index
            self.file_labels[index].setText(chess.FILE_NAMES[file_index])
            self.rank_labels[index].setText(chess.RANK_NAMES[rank_index])

    def update_board(self):
        last = self.board.move_stack[-1] if self.board.move_stack else None
        recent = {last.from_square, last.to_square} if last else set()
        for square, button in self.squares.items():
            piece = self.board.piece_at(square)
            button.setText(utils.get_piece_unicode(piece) if piece else "")
            button.setStyleSheet(self.square_style(square, recent))

    def square_style(self, square, recent=()):
        light = (chess.square_file(square) + chess.square_rank(square)) % 2 == 1
        background = BOARD_COLORS["light" if light else "dark"]
        piece = self.board.piece_at(square)
        if square == self.selected_square:
            background = BOARD_COLORS["selected"]
        elif piece and piece.piece_type == chess.KING and self.board.is_attacked_by(not piece.color, square):
            background = BOARD_COLORS["check"]
        elif square in recent:
            background = BOARD_COLORS["last_move"]
        return f"background-color: {background}; color: #000000; border: none;"

    def refresh_move_list(self):
        self.move_lines = chess_logic.format_move_list(self._records())
        self.move_list_label.setText("\n".join(self.move_lines))

    def _records(self) -> List[MoveRecord]:
        replay = self.board.root()
        records = []
        for ply, move in enumerate(self.board.move_stack):
            records.append(MoveRecord(ply, replay.turn, replay.san(move), move.uci()))
            replay.push(move)
        return records

    # -- user input -------------------------------------------------------

    def on_square_clicked(self):
        if not self.board_enabled:
            return
        button = self.sender()
        square = next(sq for sq, candidate in self.squares.items() if candidate is button)
        piece = self.board.piece_at(square)

        if square == self.selected_square:
            self.selected_square = None
        elif piece is not None and piece.color == self.board.turn:
            self.selected_square = square
        elif self.selected_square is not None:
            origin, self.selected_square = self.selected_square, None
            self.attempt_move(chess.Move(origin, square))
        self.update_board()

    def attempt_move(self, move):
        if chess_logic.is_pawn_promotion_attempt(self.board, move):
            piece_type = self.get_promotion_choice()
            if piece_type is None:
                return
            move = chess.Move(move.from_square, move.to_square, promotion=piece_type)
        if self.move_callback:
            self.move_callback(move)

    def get_promotion_choice(self) -> Optional[int]:
        dialog = PromotionDialog(self.board.turn, self)
        if dialog.exec() and dialog.chosen_piece is not None:
            return dialog.chosen_piece
        if self.reporting_level >= utils.ReportingLevel.VERBOSE:
            print(utils.debug_text("Promotion cancelled"))
        return None

    def new_game(self):
        if self.new_game_callback:
            self.new_game_callback()

    def undo_move(self):
        if self.undo_callback:
            self.undo_callback()

    def choose_color(self, color: bool):
        if self.color_callback:
            self.color_callback(color)

    def request_analysis(self):
        if not self.analysis_callback:
            return
        self.analysis_lines = []
        self.analysis_label.setText("Move Analysis:")
        self.analysis_label.setVisible(True)
        self.move_list_label.setVisible(False)
        self.analysis_callback()

    # -- arbiter hooks ----------------------------------------------------

    def move_applied(self, record: MoveRecord, mover: TurnOwner) -> None:
        self.selected_square = None
        self.update_board()
        self.refresh_move_list()

    def move_rejected(self, error: IllegalMoveRejected) -> None:
        self.selected_square = None
        self.update_board()
        self.set_info_message(f"Move rejected: {error.move}")

    def position_changed(self) -> None:
        self.selected_square = None
        self.analysis_label.setVisible(False)
        self.move_list_label.setVisible(True)
        self.update_board()
        self.refresh_move_list()

    def set_human_color(self, color: bool) -> None:
        self.human_color = color
        self.apply_orientation()
        self.update_board()

    def status_changed(self, status: GameStatus) -> None:
        self.status_indicator.setText(status.value)
        self.board_enabled = status is GameStatus.YOUR_TURN
        self.analyze_button.setVisible(status in GAME_OVER_STATUSES)

    def rating_changed(self, rating: RatingState) -> None:
        self.rating_indicator.setText(
            f"Rating {rating.rating} | Engine level {rating.strength_level} | Depth {rating.search_depth}"
        )

    def show_notice(self, message: str) -> None:
        self.set_info_message(message)

    def set_info_message(self, message: str) -> None:
        self.info_indicator.setText(message)

    def analysis_entry(self, entry: AnalysisEntry) -> None:
        self.analysis_lines.append(entry.summary())
        self.analysis_label.setText("\n".join(["Move Analysis:", *self.analysis_lines]))

    def analysis_finished(self, entries: List[AnalysisEntry]) -> None:
        if not entries:
            self.analysis_label.setText("Move Analysis:\nNo analysis available.")
