from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterator, Set

from agency.errors import DuplicateTransitionError


class TransitionGuard:
    """Rejects a second transition on the same entity while the first is still running.

    The guard never blocks: a concurrent caller gets `transition_in_progress`
    immediately instead of waiting and re-applying a stale decision.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._held: Set[str] = set()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        wanted = str(key or "").strip()
        with self._lock:
            if wanted in self._held:
                raise DuplicateTransitionError(
                    code="transition_in_progress",
                    message_key="transition_in_progress",
                    details=f"transition already running for {wanted}",
                    payload={"entity_id": wanted},
                )
            self._held.add(wanted)
        try:
            yield
        finally:
            with self._lock:
                self._held.discard(wanted)

    def is_held(self, key: str) -> bool:
        with self._lock:
            return str(key or "").strip() in self._held
