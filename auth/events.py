"""
auth/events.py -- Auth state change notifications.

Observers register a callback with AuthStateNotifier.subscribe() and get back
a zero-argument function that removes it again. The auth routes publish an
AuthEvent after every successful sign-up, sign-in (password or Google), and
sign-out.

A failing subscriber is logged and skipped; it never breaks the request that
triggered the event or the subscribers after it.

Layer rule: no imports from api/, library/, or cache/.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("snippetvault.auth.events")

SIGNED_UP = "signed_up"
SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class AuthEvent:
    kind: str  # SIGNED_UP | SIGNED_IN | SIGNED_OUT
    user_id: int | None
    email: str | None = None
    method: str = "password"  # "password" | "google" | "api"


Subscriber = Callable[[AuthEvent], None]


class AuthStateNotifier:
    """Fan-out of auth events to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback and return a function that unregisters it.

        Calling the returned function more than once is harmless.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: AuthEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Auth subscriber %r failed on %s", callback, event.kind)

    def __len__(self) -> int:
        return len(self._subscribers)


def initialize_user_document(user_store) -> Subscriber:
    """Return a subscriber that seeds default preferences on first sign-in."""

    def _on_event(event: AuthEvent) -> None:
        if event.kind in (SIGNED_UP, SIGNED_IN) and event.user_id is not None:
            if user_store.ensure_preferences(event.user_id):
                logger.info("Initialized preferences for user_id=%s", event.user_id)

    return _on_event
