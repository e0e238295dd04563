"""Token-correlated request/response channel for external decisions.

The scanner thread calls :meth:`DecisionBroker.request`, which hands a
:class:`ConfirmationRequest` to the listener (the GUI bridge or the
console) and blocks until :meth:`DecisionBroker.respond` is called with
the same token.  Several requests may be outstanding at once; each one
is resumed only by its own token.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

log = logging.getLogger(__name__)

# Request kinds
SERIES = "series"
EPISODES = "episodes"

# Sentinel that means "no response yet" -- distinct from None which
# means "cancelled".
_NO_RESULT = object()


@dataclass(frozen=True)
class ConfirmationRequest:
    token: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


class DecisionBroker:
    """Suspends pipeline branches until a correlated decision arrives.

    Args:
        listener: Called with each ConfirmationRequest.  It may answer
                  synchronously (from inside the call) or later from any
                  thread.
        timeout:  Seconds to wait before treating a request as cancelled.
                  ``None`` waits indefinitely.
    """

    def __init__(
        self,
        listener: Callable[[ConfirmationRequest], None] | None = None,
        timeout: float | None = None,
    ):
        self._listener = listener
        self.timeout = timeout or None
        self._condition = threading.Condition()
        self._pending: dict[str, Any] = {}

    def set_listener(self, listener: Callable[[ConfirmationRequest], None] | None) -> None:
        self._listener = listener

    @property
    def pending_tokens(self) -> list[str]:
        """Tokens still waiting for a response."""
        with self._condition:
            return [t for t, r in self._pending.items() if r is _NO_RESULT]

    def request(self, kind: str, payload: dict[str, Any]) -> Any:
        """Emit a request and block until its response (None = cancelled)."""
        token = uuid.uuid4().hex
        with self._condition:
            self._pending[token] = _NO_RESULT

        listener = self._listener
        if listener is None:
            log.warning("No decision listener; treating %s request as cancelled", kind)
            with self._condition:
                self._pending.pop(token, None)
            return None

        log.debug("Awaiting %s decision %s", kind, token)
        try:
            listener(ConfirmationRequest(token=token, kind=kind, payload=payload))
        except Exception:
            log.exception("Decision listener failed for %s request", kind)
            with self._condition:
                self._pending.pop(token, None)
            return None

        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        with self._condition:
            while self._pending[token] is _NO_RESULT:
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning("%s decision %s timed out; cancelling", kind, token)
                    self._pending[token] = None
                    break
                self._condition.wait(remaining)
            return self._pending.pop(token)

    def respond(self, token: str, response: Any) -> bool:
        """Resume the branch waiting on *token*.  Returns False if none is."""
        with self._condition:
            if self._pending.get(token, None) is not _NO_RESULT:
                log.warning("Ignoring response for unknown or answered token %s", token)
                return False
            self._pending[token] = response
            self._condition.notify_all()
        return True

    def cancel(self, token: str) -> bool:
        return self.respond(token, None)

    def cancel_all(self) -> None:
        """Resolve every outstanding request as cancelled."""
        with self._condition:
            for token, response in self._pending.items():
                if response is _NO_RESULT:
                    self._pending[token] = None
            self._condition.notify_all()
