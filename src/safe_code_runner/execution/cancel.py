from __future__ import annotations

import threading
from typing import Callable

from ..logging_config import get_logger

DEADLINE_REASON = "deadline"


class CancelToken:
    """One-shot cancellation signal shared between a run and its watchers.

    Callbacks registered before or after cancellation run exactly once.

    Example:
        ```python
        token = CancelToken()
        token.add_callback(lambda reason: print("cancelled:", reason))
        token.cancel("deadline")
        ```
    """

    def __init__(self) -> None:
        """Create an uncancelled token.

        Example:
            ```python
            token = CancelToken()
            ```
        """
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        """Return True once `cancel` has been called.

        Example:
            ```python
            assert not CancelToken().cancelled
            ```
        """
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return the reason passed to the first `cancel` call.

        Example:
            ```python
            token.reason  # "deadline"
            ```
        """
        return self._reason

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Register a callback; runs immediately if already cancelled.

        Example:
            ```python
            token.add_callback(lambda reason: proc.kill())
            ```
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
            reason = self._reason or ""
        self._invoke(callback, reason)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the token; return False if it was already cancelled.

        Example:
            ```python
            token.cancel("shutdown")
            ```
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._invoke(callback, reason)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or `timeout` elapses.

        Example:
            ```python
            fired = token.wait(0.5)
            ```
        """
        return self._event.wait(timeout)

    @staticmethod
    def _invoke(callback: Callable[[str], None], reason: str) -> None:
        try:
            callback(reason)
        except Exception:
            get_logger(__name__).exception("cancel_callback_failed", reason=reason)


class Deadline:
    """Timer that cancels a token when a time budget runs out.

    Leaving the context first disarms the timer.

    Example:
        ```python
        with Deadline(2.0, token):
            proc.wait()
        ```
    """

    def __init__(self, seconds: float, token: CancelToken) -> None:
        """Prepare a timer for `seconds` against `token`.

        Example:
            ```python
            deadline = Deadline(0.5, CancelToken())
            ```
        """
        self._seconds = max(0.0, seconds)
        self._token = token
        self._timer = threading.Timer(self._seconds, self._fire)
        self._timer.daemon = True

    def __enter__(self) -> "Deadline":
        self._timer.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._timer.cancel()

    @property
    def expired(self) -> bool:
        """Return True when this deadline cancelled the token.

        Example:
            ```python
            if deadline.expired: ...
            ```
        """
        return self._token.reason == DEADLINE_REASON

    def _fire(self) -> None:
        self._token.cancel(DEADLINE_REASON)
