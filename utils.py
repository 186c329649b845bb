import math
import threading
from enum import IntEnum


class ReportingLevel(IntEnum):
    QUIET = 0
    BASIC = 1
    VERBOSE = 2


def color_text(text, color_code):
    return f"\033[{color_code}m{text}\033[0m"

def debug_text(text):
    return f"{color_text('DEBUG', '31')} {text}"

def info_text(text):
    return f"{color_text('INFO', '34')}  {text}"

def error_text(text):
    return f"{color_text('ERROR', '31')} {text}"

def sending_text(text):
    return f"{color_text('SENDING  ', '32')} {text}"

def received_text(text):
    return f"{color_text('RECEIVED ', '35')} {text}"


def round_half_up(value: float) -> int:
    # Ties round towards +infinity, e.g. 9.5 -> 10 and -0.5 -> 0.
    return int(math.floor(value + 0.5))


def clamp(value, minimum, maximum):
    return max(minimum, min(maximum, value))


def schedule_later(delay_ms, callback):
    """Run ``callback`` on the Qt event loop after ``delay_ms`` milliseconds."""
    from PySide6.QtCore import QTimer  # Local import keeps the core usable without Qt

    QTimer.singleShot(max(0, int(delay_ms)), callback)


_main_thread_relay = None


def _relay():
    # Built on first use from the Qt thread, so queued calls land back on it.
    global _main_thread_relay
    if _main_thread_relay is None:
        from PySide6.QtCore import QObject, Signal, Slot

        class MainThreadRelay(QObject):
            deliver = Signal(object)

            def __init__(self):
                super().__init__()
                self.deliver.connect(self.run)

            @Slot(object)
            def run(self, callback):
                callback()

        _main_thread_relay = MainThreadRelay()
    return _main_thread_relay


def run_in_background(work, on_done):
    """Run ``work()`` on a worker thread, then ``on_done(result)`` on the Qt thread."""
    relay = _relay()

    def target():
        result = work()
        relay.deliver.emit(lambda: on_done(result))

    threading.Thread(target=target, daemon=True).start()


def get_piece_unicode(piece):
    piece_unicode = {
        'K': '♔', 'Q': '♕', 'R': '♖', 'B': '♗', 'N': '♘', 'P': '♙',
        'k': '♚', 'q': '♛', 'r': '♜', 'b': '♝', 'n': '♞', 'p': '♟'
    }
    return piece_unicode[piece.symbol()]

def center_on_screen(window):
    from PySide6.QtWidgets import QApplication

    screen = QApplication.primaryScreen()
    screen_geometry = screen.geometry()
    window_size = window.size()
    x = (screen_geometry.width() - window_size.width()) / 2 + screen_geometry.left()
    y = (screen_geometry.height() - window_size.height()) / 2 + screen_geometry.top()
    window.move(int(x), int(y))
