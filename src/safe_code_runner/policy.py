from __future__ import annotations

import tempfile
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

TIMEOUT_EXIT_CODE = 124
TRUNCATION_MARKER = "\n... (output truncated)"


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the normalized policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        raise ValueError(f"Policy file not found: {path}")
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings policy field.

    Example:
        ```python
        patterns = _list_of_str([r"\\bgetattr\\("], "extra_deny_patterns.python")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _deny_table(value: Any) -> dict[str, tuple[str, ...]]:
    """Normalize the `extra_deny_patterns` table into language -> patterns.

    Example:
        ```python
        table = _deny_table({"python": [r"\\bgetattr\\("]})
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("'extra_deny_patterns' must be a TOML table")
    return {
        str(language): tuple(_list_of_str(patterns, f"extra_deny_patterns.{language}"))
        for language, patterns in value.items()
    }


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("default_timeout_ms", 10_000))
DEFAULT_MAX_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("max_timeout_ms", 60_000))
DEFAULT_MAX_CODE_LENGTH = int(_DEFAULT_POLICY_RAW.get("max_code_length", 100_000))
DEFAULT_MAX_STDIN_LENGTH = int(_DEFAULT_POLICY_RAW.get("max_stdin_length", 1_000_000))
DEFAULT_MAX_OUTPUT_LENGTH = int(_DEFAULT_POLICY_RAW.get("max_output_length", 10_000))
DEFAULT_COMPILE_SHARE = float(_DEFAULT_POLICY_RAW.get("compile_share", 0.5))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", 0))
DEFAULT_KILL_GRACE_SECONDS = float(_DEFAULT_POLICY_RAW.get("kill_grace_seconds", 2.0))
DEFAULT_SCRATCH_ROOT = str(_DEFAULT_POLICY_RAW.get("scratch_root", ""))


@dataclass(frozen=True, slots=True)
class RunnerPolicy:
    """Engine limits shared by every run of one engine.

    The policy is read-only once built; engines resolve `scratch_root`
    a single time at construction.

    Example:
        ```python
        policy = RunnerPolicy(default_timeout_ms=5_000, max_output_length=2_000)
        ```
    """

    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_timeout_ms: int = DEFAULT_MAX_TIMEOUT_MS
    max_code_length: int = DEFAULT_MAX_CODE_LENGTH
    max_stdin_length: int = DEFAULT_MAX_STDIN_LENGTH
    max_output_length: int = DEFAULT_MAX_OUTPUT_LENGTH
    compile_share: float = DEFAULT_COMPILE_SHARE
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    scratch_root: str = DEFAULT_SCRATCH_ROOT
    extra_deny_patterns: dict[str, tuple[str, ...]] = field(default_factory=dict)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            RunnerPolicy(compile_share=0.5)
            ```
        """
        if self.default_timeout_ms <= 0 or self.max_timeout_ms <= 0:
            raise ValueError("timeouts must be positive")
        if self.default_timeout_ms > self.max_timeout_ms:
            raise ValueError("default_timeout_ms must not exceed max_timeout_ms")
        if self.max_code_length <= 0:
            raise ValueError("max_code_length must be positive")
        if self.max_stdin_length < 0:
            raise ValueError("max_stdin_length must not be negative")
        if self.max_output_length <= 0:
            raise ValueError("max_output_length must be positive")
        if not 0.0 < self.compile_share < 1.0:
            raise ValueError("compile_share must be between 0 and 1 (exclusive)")
        if self.memory_limit_mb < 0:
            raise ValueError("memory_limit_mb must not be negative")
        if self.kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be positive")

    def resolved_scratch_root(self) -> Path:
        """Return the scratch root, falling back to a fixed temp sub-directory.

        Example:
            ```python
            root = RunnerPolicy().resolved_scratch_root()
            ```
        """
        if self.scratch_root.strip():
            return Path(self.scratch_root).expanduser().resolve()
        return Path(tempfile.gettempdir()).resolve() / "safe-code-runner"

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        return cls(
            default_timeout_ms=int(raw.get("default_timeout_ms", DEFAULT_TIMEOUT_MS)),
            max_timeout_ms=int(raw.get("max_timeout_ms", DEFAULT_MAX_TIMEOUT_MS)),
            max_code_length=int(raw.get("max_code_length", DEFAULT_MAX_CODE_LENGTH)),
            max_stdin_length=int(raw.get("max_stdin_length", DEFAULT_MAX_STDIN_LENGTH)),
            max_output_length=int(raw.get("max_output_length", DEFAULT_MAX_OUTPUT_LENGTH)),
            compile_share=float(raw.get("compile_share", DEFAULT_COMPILE_SHARE)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            kill_grace_seconds=float(raw.get("kill_grace_seconds", DEFAULT_KILL_GRACE_SECONDS)),
            scratch_root=str(raw.get("scratch_root", DEFAULT_SCRATCH_ROOT)),
            extra_deny_patterns=_deny_table(raw.get("extra_deny_patterns")),
            config_path=config_path,
        )


class Outcome(str, Enum):
    """Terminal classification of one run."""

    OK = "ok"
    VALIDATION_ERROR = "validation_error"
    SECURITY_VIOLATION = "security_violation"
    TOOLCHAIN_MISSING = "toolchain_missing"
    COMPILE_ERROR = "compile_error"
    TIMEOUT = "timeout"
    RUNTIME_ERROR = "runtime_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(slots=True)
class ExecutionResult:
    """Normalized execution result returned by `execute`.

    Example:
        ```python
        result = ExecutionResult(stdout="hi", stderr=None, exit_code=0, elapsed_ms=12)
        ```
    """

    stdout: str
    stderr: str | None
    exit_code: int
    elapsed_ms: int = 0
    status: Outcome = Outcome.OK
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def ok(self) -> bool:
        """Return True when the program ran and exited 0.

        Example:
            ```python
            assert result.ok
            ```
        """
        return self.status is Outcome.OK

    @property
    def timed_out(self) -> bool:
        """Return True when the run was cut by its deadline.

        Example:
            ```python
            assert not result.timed_out
            ```
        """
        return self.status is Outcome.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        """Render the wire form consumed by HTTP callers.

        Example:
            ```python
            payload = result.to_dict()  # {"stdout": "hi", "exitCode": 0, ...}
            ```
        """
        payload: dict[str, Any] = {
            "stdout": self.stdout,
            "exitCode": self.exit_code,
            "elapsedMs": self.elapsed_ms,
            "status": self.status.value,
        }
        if self.stderr:
            payload["stderr"] = self.stderr
        return payload
