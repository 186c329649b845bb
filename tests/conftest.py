from collections import deque

import pytest


class DummyProcess:
    """Stands in for a QProcess running a UCI engine."""

    def __init__(self, *, auto_ready: bool = True, starts: bool = True) -> None:
        self.auto_ready = auto_ready
        self.starts = starts
        self.written = []
        self.lines = deque()
        self.started = None
        self.finished = False
        self.killed = False

    def start(self, program, arguments) -> None:
        self.started = (program, list(arguments))

    def waitForStarted(self, msecs: int = 30000) -> bool:
        return self.starts

    def write(self, data: bytes) -> None:
        command = data.decode().strip()
        self.written.append(command)
        if command == "isready" and self.auto_ready:
            self.lines.append("readyok")
        elif command == "quit":
            self.finished = True

    def waitForBytesWritten(self, msecs: int = 30000) -> bool:
        return True

    def canReadLine(self) -> bool:
        return bool(self.lines)

    def readLine(self) -> bytes:
        return (self.lines.popleft() + "\n").encode()

    def waitForReadyRead(self, msecs: int = 30000) -> bool:
        return bool(self.lines)

    def closeWriteChannel(self) -> None:
        pass

    def waitForFinished(self, msecs: int = 30000) -> bool:
        return self.finished

    def kill(self) -> None:
        self.killed = True
        self.finished = True

    def feed(self, *lines: str) -> None:
        self.lines.extend(lines)

    def sent(self, prefix: str) -> list:
        return [line for line in self.written if line.startswith(prefix)]


class CollectingScheduler:
    """Collects deferred callbacks so tests decide when they fire."""

    def __init__(self) -> None:
        self.calls = []

    def __call__(self, delay_ms, callback) -> None:
        self.calls.append((delay_ms, callback))

    def run_all(self) -> int:
        ran = 0
        while self.calls:
            _, callback = self.calls.pop(0)
            callback()
            ran += 1
        return ran


@pytest.fixture()
def process():
    return DummyProcess()


@pytest.fixture()
def scheduler():
    return CollectingScheduler()


@pytest.fixture()
def make_process():
    return DummyProcess
