from __future__ import annotations

import os
import shutil
import subprocess
import threading
import time
from pathlib import Path

import psutil
import pytest

from safe_code_runner.execution.cancel import CancelToken
from safe_code_runner.execution.process import (
    BoundedCapture,
    kill_process_tree,
    normalize_exit_code,
    run_process,
    truncate_output,
)
from safe_code_runner.policy import TRUNCATION_MARKER

pytestmark = pytest.mark.skipif(
    not all(shutil.which(tool) for tool in ("sh", "cat", "sleep", "yes", "head")),
    reason="POSIX shell utilities not on PATH",
)


def _run(argv: list[str], tmp_path: Path, **kwargs):
    kwargs.setdefault("timeout_seconds", 5.0)
    kwargs.setdefault("output_limit", 1_000)
    return run_process(argv, cwd=tmp_path, env={"PATH": os.environ.get("PATH", os.defpath)}, **kwargs)


def _gone(pid: int, within: float = 3.0) -> bool:
    deadline = time.monotonic() + within
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


def test_captures_stdout_and_exit_code(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "echo hello; echo oops >&2; exit 7"], tmp_path)

    assert outcome.stdout == "hello"
    assert outcome.stderr == "oops"
    assert outcome.exit_code == 7
    assert not outcome.timed_out
    assert not outcome.cancelled


def test_stdin_reaches_the_child(tmp_path: Path) -> None:
    outcome = _run(["cat"], tmp_path, stdin="line one\nline two\n")

    assert outcome.stdout == "line one\nline two"
    assert outcome.exit_code == 0


def test_unread_stdin_does_not_break_the_run(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "echo done"], tmp_path, stdin="x" * 500_000)

    assert outcome.stdout == "done"
    assert outcome.exit_code == 0


def test_signal_death_uses_shell_convention(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "kill -9 $$"], tmp_path)

    assert outcome.exit_code == 137


def test_deadline_kills_the_child(tmp_path: Path) -> None:
    started = time.monotonic()
    outcome = _run(["sleep", "30"], tmp_path, timeout_seconds=0.3)

    assert outcome.timed_out
    assert not outcome.cancelled
    assert time.monotonic() - started < 5.0


def test_deadline_kills_grandchildren(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "sleep 30 & echo $!; wait"], tmp_path, timeout_seconds=0.3)

    assert outcome.timed_out
    assert _gone(int(outcome.stdout))


def test_background_jobs_are_swept_after_normal_exit(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "sleep 30 & echo $!"], tmp_path)

    assert outcome.exit_code == 0
    assert not outcome.timed_out
    assert _gone(int(outcome.stdout))


def test_trailing_blank_flood_is_not_truncation(tmp_path: Path) -> None:
    outcome = _run(["sh", "-c", "echo hi; yes '' | head -c 10000"], tmp_path, output_limit=100)

    assert outcome.stdout == "hi"
    assert not outcome.stdout_truncated


def test_endless_output_is_bounded(tmp_path: Path) -> None:
    outcome = _run(["yes"], tmp_path, timeout_seconds=0.5, output_limit=100)

    assert outcome.timed_out
    assert outcome.stdout_truncated
    assert outcome.stdout.endswith(TRUNCATION_MARKER)
    assert len(outcome.stdout) <= 100 + len(TRUNCATION_MARKER)


def test_external_cancel_is_not_a_timeout(tmp_path: Path) -> None:
    token = CancelToken()
    threading.Timer(0.2, token.cancel, args=("shutdown",)).start()

    outcome = _run(["sleep", "30"], tmp_path, timeout_seconds=10.0, token=token)

    assert outcome.cancelled
    assert not outcome.timed_out
    assert outcome.elapsed_ms < 5_000


def test_missing_binary_propagates(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        _run(["no-such-binary-for-safe-code-runner"], tmp_path)


def test_kill_process_tree_on_reaped_pid() -> None:
    proc = subprocess.Popen(["true"], start_new_session=True)
    proc.wait()

    assert kill_process_tree(proc.pid, grace_seconds=0.5) is True


def test_truncate_output() -> None:
    assert truncate_output("abc  \n\n", 10) == ("abc", False)
    assert truncate_output("x" * 20, 10) == ("x" * 10 + TRUNCATION_MARKER, True)
    assert truncate_output("short", 10, overflowed=True) == ("short" + TRUNCATION_MARKER, True)


def test_normalize_exit_code() -> None:
    assert normalize_exit_code(-9) == 137
    assert normalize_exit_code(-15) == 143
    assert normalize_exit_code(3) == 3


def test_bounded_capture_drops_past_cap() -> None:
    capture = BoundedCapture(limit_chars=2)
    capture.feed(b"abcdef")
    capture.feed(b"ghijk")

    assert capture.text() == "abcdefgh"
    assert capture.overflowed
    assert capture.dropped_bytes == 3


def test_bounded_capture_ignores_dropped_whitespace() -> None:
    capture = BoundedCapture(limit_chars=10)
    capture.feed(b"hello" + b"\n" * 100)

    assert not capture.overflowed
    assert capture.dropped_bytes == 65
    assert truncate_output(capture.text(), 10, overflowed=capture.overflowed) == ("hello", False)

    capture.feed(b"late output")
    assert capture.overflowed
