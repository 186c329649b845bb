"""Client for the account/persistence backend.

The backend is a small JSON API keyed on a session cookie; ``requests.Session``
carries the cookie between calls once :meth:`BackendClient.login` succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from errors import AuthenticationRequired, PersistenceFailure
from rating import DEFAULT_DEPTH, DEFAULT_LEVEL, DEFAULT_RATING, RatingState

DEFAULT_BACKEND_URL = "http://localhost:8080"
REQUEST_TIMEOUT = 5.0


@dataclass
class UserProfile:
    username: str
    rating: int = DEFAULT_RATING
    strength_level: int = DEFAULT_LEVEL
    search_depth: int = DEFAULT_DEPTH

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "UserProfile":
        # Missing or non-numeric fields fall back to the values new accounts start with.
        def number(key: str, default: int) -> int:
            value = data.get(key)
            return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else default

        return cls(
            username=str(data.get("username") or "guest"),
            rating=number("rating", DEFAULT_RATING) or DEFAULT_RATING,
            strength_level=number("stockfishLevel", DEFAULT_LEVEL),
            search_depth=number("stockfishDepth", DEFAULT_DEPTH),
        )

    def rating_state(self) -> RatingState:
        return RatingState(self.rating, self.strength_level, self.search_depth)


class BackendClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def login(self, username: str, password: str) -> UserProfile:
        data = self._request("POST", "/login", {"username": username, "password": password})
        return UserProfile.from_payload(data)

    def signup(self, username: str, password: str) -> None:
        """Create an account; a taken name comes back as a 400 with a ``msg``."""
        self._request("POST", "/signup", {"username": username, "password": password})

    def logout(self) -> None:
        self._request("POST", "/logout")

    def fetch_user(self) -> UserProfile:
        return UserProfile.from_payload(self._request("GET", "/user"))

    def update_rating(self, rating: int) -> None:
        self._expect_success(self._request("POST", "/update_rating", {"rating": int(rating)}))

    def update_strength(self, level: int, depth: int) -> None:
        payload = {"stockfishLevel": int(level), "stockfishDepth": int(depth)}
        self._expect_success(self._request("POST", "/update_stockfish", payload))

    def save_game(self, moves: List[str], result: str, rating: int) -> None:
        if result not in ("1-0", "0-1", "1/2-1/2"):
            raise PersistenceFailure(f"Refusing to save unfinished game (result {result!r})")
        payload = {"moves": list(moves), "result": result, "rating": int(rating)}
        self._expect_success(self._request("POST", "/save_game", payload))

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceFailure(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 401:
            raise AuthenticationRequired(f"{method} {path}: not authenticated")
        try:
            data = response.json()
        except ValueError as exc:
            raise PersistenceFailure(f"{method} {path}: invalid JSON reply") from exc
        if not isinstance(data, dict):
            raise PersistenceFailure(f"{method} {path}: unexpected reply {data!r}")
        if not response.ok:
            message = data.get("msg") or f"HTTP {response.status_code}"
            raise PersistenceFailure(f"{method} {path}: {message}")
        return data

    @staticmethod
    def _expect_success(data: Dict[str, Any]) -> None:
        if not data.get("success"):
            raise PersistenceFailure(data.get("msg") or "Unknown error")
