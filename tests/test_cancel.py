from __future__ import annotations

import threading
import time

from structlog.testing import capture_logs

from safe_code_runner.execution.cancel import DEADLINE_REASON, CancelToken, Deadline


def test_callbacks_run_once_with_reason() -> None:
    token = CancelToken()
    seen: list[str] = []
    token.add_callback(seen.append)

    assert token.cancel("shutdown") is True
    assert token.cancel("again") is False
    assert seen == ["shutdown"]
    assert token.cancelled
    assert token.reason == "shutdown"


def test_late_callback_runs_immediately() -> None:
    token = CancelToken()
    token.cancel("stop")
    seen: list[str] = []

    token.add_callback(seen.append)

    assert seen == ["stop"]


def test_failing_callback_is_logged_and_others_still_run() -> None:
    token = CancelToken()
    seen: list[str] = []

    def _boom(reason: str) -> None:
        raise RuntimeError("kill failed")

    token.add_callback(_boom)
    token.add_callback(seen.append)
    with capture_logs() as logs:
        token.cancel("deadline")

    assert seen == ["deadline"]
    assert any(entry["event"] == "cancel_callback_failed" for entry in logs)


def test_wait_returns_when_cancelled_from_another_thread() -> None:
    token = CancelToken()
    threading.Timer(0.05, token.cancel, args=("external",)).start()

    assert token.wait(5.0) is True
    assert token.reason == "external"


def test_deadline_fires() -> None:
    token = CancelToken()
    with Deadline(0.05, token) as deadline:
        assert token.wait(5.0)

    assert deadline.expired
    assert token.reason == DEADLINE_REASON


def test_deadline_disarmed_on_exit() -> None:
    token = CancelToken()
    with Deadline(0.2, token) as deadline:
        pass
    time.sleep(0.4)

    assert not token.cancelled
    assert not deadline.expired
