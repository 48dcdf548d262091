from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Any, Mapping, Sequence

import psutil

from ..logging_config import get_logger
from ..policy import TRUNCATION_MARKER
from .cancel import CancelToken, Deadline
from .types import ProcessOutcome

_READ_CHUNK = 64 * 1024


class BoundedCapture:
    """Byte sink that stores at most enough bytes for `limit_chars` characters.

    Bytes past the cap are counted and dropped, so the pipe keeps draining
    without memory growing. `overflowed` is only set when a dropped chunk
    carries something other than whitespace, which output stripping would
    discard anyway.

    Example:
        ```python
        capture = BoundedCapture(limit_chars=10)
        capture.feed(b"hello")
        ```
    """

    def __init__(self, limit_chars: int) -> None:
        """Allow up to four UTF-8 bytes per character.

        Example:
            ```python
            capture = BoundedCapture(10_000)
            ```
        """
        self._limit_bytes = max(1, limit_chars) * 4
        self._chunks: list[bytes] = []
        self._size = 0
        self.overflowed = False
        self.dropped_bytes = 0

    def feed(self, data: bytes) -> None:
        """Keep what fits under the cap and count the rest.

        Example:
            ```python
            capture.feed(chunk)
            ```
        """
        room = self._limit_bytes - self._size
        if room > 0:
            kept = data[:room]
            self._chunks.append(kept)
            self._size += len(kept)
            data = data[len(kept):]
        if data:
            self.dropped_bytes += len(data)
            if not data.isspace():
                self.overflowed = True

    def text(self) -> str:
        """Decode the kept bytes, replacing a split trailing character.

        Example:
            ```python
            out = capture.text()
            ```
        """
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def truncate_output(text: str, limit: int, *, overflowed: bool = False) -> tuple[str, bool]:
    """Strip trailing whitespace and cap `text` at `limit` characters.

    Example:
        ```python
        out, cut = truncate_output("x" * 20, 10)  # ("xxxxxxxxxx\\n... (output truncated)", True)
        ```
    """
    text = text.rstrip()
    if overflowed or len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER, True
    return text, False


def normalize_exit_code(returncode: int) -> int:
    """Map signal deaths (negative codes) to the shell's 128 + N form.

    Example:
        ```python
        assert normalize_exit_code(-9) == 137
        ```
    """
    if returncode < 0:
        return 128 - returncode
    return returncode


def kill_process_tree(pid: int, *, grace_seconds: float = 2.0, log: Any | None = None) -> bool:
    """Kill a session leader, its process group and every known descendant.

    Descendants are snapshotted first so members that moved to another
    group are still reached. Returns False, after logging, when anything
    survives the grace period.

    Example:
        ```python
        kill_process_tree(proc.pid, grace_seconds=1.0)
        ```
    """
    log = log if log is not None else get_logger(__name__)
    try:
        descendants = psutil.Process(pid).children(recursive=True)
    except psutil.Error:
        descendants = []

    try:
        os.killpg(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError as exc:
        log.warning("process_group_kill_denied", pid=pid, error=str(exc))

    for child in descendants:
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as exc:
            log.warning("descendant_kill_denied", pid=child.pid, error=str(exc))

    _, alive = psutil.wait_procs(descendants, timeout=grace_seconds)
    survivors = [proc.pid for proc in alive if _is_running(proc)]
    if survivors:
        log.error("process_tree_survivors", pid=pid, survivors=survivors)
        return False
    return True


def _is_running(proc: psutil.Process) -> bool:
    try:
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _apply_memory_limit(pid: int, memory_limit_mb: int, log: Any) -> None:
    limit = memory_limit_mb * 1024 * 1024
    try:
        psutil.Process(pid).rlimit(psutil.RLIMIT_AS, (limit, limit))
    except (AttributeError, ValueError, OSError, psutil.Error) as exc:
        log.warning("memory_limit_not_applied", pid=pid, memory_limit_mb=memory_limit_mb, error=str(exc))


def _pump(stream: IO[bytes], capture: BoundedCapture) -> None:
    try:
        while True:
            chunk = stream.read1(_READ_CHUNK)  # type: ignore[attr-defined]
            if not chunk:
                break
            capture.feed(chunk)
    except (OSError, ValueError):
        # Pipe closed underneath us after the grace period.
        return


def _feed_stdin(stream: IO[bytes], data: bytes, log: Any) -> None:
    try:
        if data:
            stream.write(data)
            stream.flush()
    except (BrokenPipeError, ConnectionResetError):
        log.debug("stdin_not_consumed", size=len(data))
    except (OSError, ValueError) as exc:
        log.debug("stdin_write_failed", error=str(exc))
    finally:
        try:
            stream.close()
        except OSError:
            pass


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout_seconds: float,
    output_limit: int,
    stdin: str = "",
    token: CancelToken | None = None,
    memory_limit_mb: int = 0,
    kill_grace_seconds: float = 2.0,
    log: Any | None = None,
) -> ProcessOutcome:
    """Run one child process to a terminal state within `timeout_seconds`.

    The child starts in its own session. A `Deadline` cancels `token` when
    the budget runs out and the token's callback kills the whole process
    tree; external cancellation of `token` does the same. After a normal
    exit the group is swept so background children do not survive the call.
    `OSError` from spawning (e.g. a missing binary) propagates.

    Example:
        ```python
        outcome = run_process(
            ["python3", "main.py"],
            cwd=Path("/tmp/run"),
            env={"PATH": "/usr/bin"},
            timeout_seconds=2.0,
            output_limit=10_000,
            stdin="5\\n",
        )
        ```
    """
    log = log if log is not None else get_logger(__name__)
    token = token if token is not None else CancelToken()
    started = time.monotonic()

    proc = subprocess.Popen(
        list(argv),
        cwd=str(cwd),
        env=dict(env),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
        close_fds=True,
    )
    assert proc.stdin is not None and proc.stdout is not None and proc.stderr is not None

    if memory_limit_mb:
        _apply_memory_limit(proc.pid, memory_limit_mb, log)

    stdout_capture = BoundedCapture(output_limit)
    stderr_capture = BoundedCapture(output_limit)
    workers = [
        threading.Thread(target=_pump, args=(proc.stdout, stdout_capture), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, stderr_capture), daemon=True),
        threading.Thread(target=_feed_stdin, args=(proc.stdin, stdin.encode("utf-8"), log), daemon=True),
    ]
    for worker in workers:
        worker.start()

    killed = threading.Event()

    def _on_cancel(reason: str) -> None:
        if proc.poll() is not None:
            return
        killed.set()
        log.info("process_cancelled", pid=proc.pid, reason=reason)
        kill_process_tree(proc.pid, grace_seconds=kill_grace_seconds, log=log)

    token.add_callback(_on_cancel)
    with Deadline(timeout_seconds, token) as deadline:
        try:
            returncode = proc.wait(timeout=timeout_seconds + kill_grace_seconds)
        except subprocess.TimeoutExpired:
            log.error("process_wait_overrun", pid=proc.pid, timeout_seconds=timeout_seconds)
            killed.set()
            kill_process_tree(proc.pid, grace_seconds=kill_grace_seconds, log=log)
            proc.kill()
            returncode = proc.wait()
        timed_out = killed.is_set() and (deadline.expired or not token.cancelled)

    if not killed.is_set():
        kill_process_tree(proc.pid, grace_seconds=kill_grace_seconds, log=log)

    for worker in workers:
        worker.join(kill_grace_seconds)
    for worker, stream in zip(workers, (proc.stdout, proc.stderr)):
        # A reader still blocked means an escaped descendant holds the pipe;
        # closing under it would block on the buffer lock.
        if worker.is_alive():
            log.error("output_pipe_held_open", pid=proc.pid)
            continue
        try:
            stream.close()
        except OSError:
            pass

    stdout, stdout_cut = truncate_output(stdout_capture.text(), output_limit, overflowed=stdout_capture.overflowed)
    stderr, stderr_cut = truncate_output(stderr_capture.text(), output_limit, overflowed=stderr_capture.overflowed)
    return ProcessOutcome(
        stdout=stdout,
        stderr=stderr,
        exit_code=normalize_exit_code(returncode),
        timed_out=timed_out,
        cancelled=killed.is_set() and not timed_out,
        stdout_truncated=stdout_cut,
        stderr_truncated=stderr_cut,
        elapsed_ms=int((time.monotonic() - started) * 1000),
    )
