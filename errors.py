"""Exception taxonomy shared by the engine session, arbiter and backend client."""

from __future__ import annotations

from typing import Optional


class ChessSessionError(Exception):
    """Base class for every error raised by the game session stack."""


class EngineUnavailable(ChessSessionError):
    """The search worker could not be started or never reported ``readyok``."""


class ProtocolParseError(ChessSessionError):
    """A worker line could not be understood."""

    def __init__(self, line: str, request_id: Optional[int] = None) -> None:
        super().__init__(f"Unparseable engine line: {line!r}")
        self.line = line
        self.request_id = request_id


class EngineTimeout(ChessSessionError):
    """A search ran past its deadline without producing any candidate line."""

    def __init__(self, request_id: int, timeout_ms: int) -> None:
        super().__init__(f"Search {request_id} produced no move within {timeout_ms} ms")
        self.request_id = request_id
        self.timeout_ms = timeout_ms


class IllegalMoveRejected(ChessSessionError):
    def __init__(self, move: str, reason: str = "illegal move") -> None:
        super().__init__(f"{move}: {reason}")
        self.move = move
        self.reason = reason


class StaleReplyDiscarded(ChessSessionError):
    """Marker for a reply that arrived after its request was canceled or superseded."""

    def __init__(self, request_id: Optional[int]) -> None:
        super().__init__(f"Discarded reply for request {request_id}")
        self.request_id = request_id


class PersistenceFailure(ChessSessionError):
    """A backend call failed or answered ``success: false``."""


class AuthenticationRequired(PersistenceFailure):
    """The backend answered 401."""
