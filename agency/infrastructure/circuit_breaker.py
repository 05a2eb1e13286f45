from __future__ import annotations

import time
from threading import Lock


class StoreCircuitBreaker:
    """Counts consecutive remote store failures and opens for a cool-down.

    While open, repositories skip the remote call and go straight to the
    local cache. After `open_seconds` a single probe call is let through
    (half open); its outcome closes or re-opens the circuit.
    """

    def __init__(self, *, failure_threshold: int = 3, open_seconds: float = 30.0, enabled: bool = True) -> None:
        self._lock = Lock()
        self._enabled = bool(enabled)
        self._failure_threshold = self._clamp_int(failure_threshold, 3, 1, 1000)
        self._open_seconds = self._clamp_float(open_seconds, 30.0, 0.0, 3600.0)

        self._state = "closed"
        self._opened_at = 0.0
        self._consecutive_failures = 0
        self._probe_in_flight = False

    @staticmethod
    def _clamp_float(value, default: float, minimum: float, maximum: float) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            parsed = default
        return max(minimum, min(maximum, parsed))

    @staticmethod
    def _clamp_int(value, default: int, minimum: int, maximum: int) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            parsed = default
        return max(minimum, min(maximum, parsed))

    @classmethod
    def from_config(cls, config) -> "StoreCircuitBreaker":
        return cls(
            failure_threshold=config.get("STORE_BREAKER_FAILURE_THRESHOLD", 3),
            open_seconds=config.get("STORE_BREAKER_OPEN_SECONDS", 30.0),
            enabled=config.get("STORE_BREAKER_ENABLED", True),
        )

    def _open(self, now: float) -> None:
        self._state = "open"
        self._opened_at = now
        self._probe_in_flight = False

    def _close(self) -> None:
        self._state = "closed"
        self._opened_at = 0.0
        self._consecutive_failures = 0
        self._probe_in_flight = False

    def before_call(self) -> tuple[bool, str]:
        now = time.monotonic()
        with self._lock:
            if not self._enabled:
                return True, "disabled"

            if self._state == "open":
                if (now - self._opened_at) >= self._open_seconds:
                    self._state = "half_open"
                    self._probe_in_flight = False
                else:
                    return False, "open"

            if self._state == "half_open":
                if self._probe_in_flight:
                    return False, "half_open"
                self._probe_in_flight = True
                return True, "half_open"

            return True, "closed"

    def record_success(self) -> None:
        with self._lock:
            if not self._enabled:
                return
            self._close()

    def record_failure(self) -> None:
        now = time.monotonic()
        with self._lock:
            if not self._enabled:
                return
            if self._state == "half_open":
                self._open(now)
                return
            if self._state == "open":
                return
            self._consecutive_failures += 1
            if self._consecutive_failures >= self._failure_threshold:
                self._open(now)

    def snapshot(self) -> dict:
        now = time.monotonic()
        with self._lock:
            opened_seconds_ago = 0.0
            if self._state == "open" and self._opened_at > 0.0:
                opened_seconds_ago = max(0.0, now - self._opened_at)
            return {
                "state": self._state,
                "enabled": self._enabled,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self._failure_threshold,
                "opened_seconds_ago": round(opened_seconds_ago, 2),
            }
