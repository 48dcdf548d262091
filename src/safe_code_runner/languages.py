from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable


class Language(str, Enum):
    """Closed set of languages the engine can run."""

    PYTHON = "python"
    CPP = "cpp"
    JAVASCRIPT = "javascript"
    GO = "go"

    @classmethod
    def parse(cls, value: "str | Language") -> "Language":
        """Return the member for an exact language name.

        Example:
            ```python
            lang = Language.parse("python")
            ```
        """
        if isinstance(value, Language):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported language: {value}") from None


@dataclass(frozen=True, slots=True)
class BuildStep:
    """One command of a compile phase.

    `strict_stderr` steps fail on any diagnostic output, not just a
    non-zero exit.

    Example:
        ```python
        step = BuildStep(["g++", "main.cpp", "-o", "main"], strict_stderr=True)
        ```
    """

    argv: list[str]
    strict_stderr: bool = True


_CommandBuilder = Callable[[str, Path], list[str]]
_StepBuilder = Callable[[str, Path], tuple[BuildStep, ...]]
_EnvBuilder = Callable[[Path], dict[str, str]]


def _no_steps(tool: str, workspace: Path) -> tuple[BuildStep, ...]:
    """Return an empty build for interpreted languages.

    Example:
        ```python
        assert _no_steps("python3", Path("/tmp/run")) == ()
        ```
    """
    return ()


def _no_env(workspace: Path) -> dict[str, str]:
    """Return no extra environment.

    Example:
        ```python
        assert _no_env(Path("/tmp/run")) == {}
        ```
    """
    return {}


@dataclass(frozen=True, slots=True)
class LanguageDriver:
    """Per-language capabilities consumed by the engine pipeline.

    Example:
        ```python
        driver = driver_for(Language.GO)
        steps = driver.compile_steps("/usr/bin/go", Path("/tmp/run"))
        ```
    """

    language: Language
    source_name: str
    toolchain_candidates: tuple[str, ...]
    install_hint: str
    run_command: _CommandBuilder
    compile_steps: _StepBuilder = _no_steps
    extra_env: _EnvBuilder = _no_env
    artifact_name: str | None = None
    extensions: tuple[str, ...] = field(default_factory=tuple)
    default_timeout_floor_ms: int = 0

    @property
    def needs_compile(self) -> bool:
        """Return True when the language has a build phase.

        Example:
            ```python
            assert driver_for(Language.CPP).needs_compile
            ```
        """
        return self.artifact_name is not None


def _python_run(tool: str, workspace: Path) -> list[str]:
    return [tool, str(workspace / "main.py")]


def _javascript_run(tool: str, workspace: Path) -> list[str]:
    return [tool, str(workspace / "main.js")]


def _binary_run(tool: str, workspace: Path) -> list[str]:
    return [str(workspace / "main")]


def _cpp_build(tool: str, workspace: Path) -> tuple[BuildStep, ...]:
    return (
        BuildStep([tool, "main.cpp", "-o", "main", "-std=c++17", "-O2"]),
    )


def _go_build(tool: str, workspace: Path) -> tuple[BuildStep, ...]:
    # `go mod init` always reports on stderr, so only its exit code counts.
    return (
        BuildStep([tool, "mod", "init", "temp_module"], strict_stderr=False),
        BuildStep([tool, "build", "-o", "main", "main.go"]),
    )


def _go_env(workspace: Path) -> dict[str, str]:
    # Every build artifact stays inside the workspace.
    return {
        "GOCACHE": str(workspace / ".gocache"),
        "GOPATH": str(workspace / ".gopath"),
        "GOTMPDIR": str(workspace / "tmp"),
        "GOPROXY": "off",
        "GOSUMDB": "off",
        "GO111MODULE": "on",
        "GOTOOLCHAIN": "local",
        "CGO_ENABLED": "0",
    }


_DRIVERS: dict[Language, LanguageDriver] = {
    Language.PYTHON: LanguageDriver(
        language=Language.PYTHON,
        source_name="main.py",
        toolchain_candidates=("python3", "python"),
        install_hint=(
            "Python interpreter is not installed or not in PATH.\n\n"
            "Install Python 3 from https://www.python.org/downloads/ and make sure "
            "`python3 --version` works for the user running the engine."
        ),
        run_command=_python_run,
        extensions=(".py",),
    ),
    Language.CPP: LanguageDriver(
        language=Language.CPP,
        source_name="main.cpp",
        toolchain_candidates=("g++", "clang++"),
        install_hint=(
            "No C++ compiler found. Install g++ (e.g. `apt install g++`) or clang++ "
            "and make sure it is on PATH.\n\nAfter installation, verify with: g++ --version"
        ),
        run_command=_binary_run,
        compile_steps=_cpp_build,
        artifact_name="main",
        extensions=(".cpp", ".cc", ".cxx"),
    ),
    Language.JAVASCRIPT: LanguageDriver(
        language=Language.JAVASCRIPT,
        source_name="main.js",
        toolchain_candidates=("node", "nodejs"),
        install_hint=(
            "Node.js is not installed or not in PATH.\n\n"
            "Install Node.js from https://nodejs.org/ and verify with: node --version"
        ),
        run_command=_javascript_run,
        extensions=(".js", ".mjs"),
    ),
    Language.GO: LanguageDriver(
        language=Language.GO,
        source_name="main.go",
        toolchain_candidates=("go",),
        install_hint=(
            "Go compiler is not installed or not in PATH.\n\n"
            "To install Go:\n"
            "1. Download from https://golang.org/dl/\n"
            "2. Install the Go compiler\n"
            "3. Add Go to your system PATH\n"
            "4. Restart the engine host\n\n"
            "After installation, verify with: go version"
        ),
        run_command=_binary_run,
        compile_steps=_go_build,
        extra_env=_go_env,
        artifact_name="main",
        default_timeout_floor_ms=30_000,
        extensions=(".go",),
    ),
}


def driver_for(language: Language) -> LanguageDriver:
    """Return the driver for a supported language.

    Example:
        ```python
        driver = driver_for(Language.PYTHON)
        ```
    """
    return _DRIVERS[language]


def all_drivers() -> list[LanguageDriver]:
    """Return every driver in declaration order.

    Example:
        ```python
        names = [d.language.value for d in all_drivers()]
        ```
    """
    return list(_DRIVERS.values())


def language_for_path(path: str | Path) -> Language:
    """Infer a language from a source file extension.

    Example:
        ```python
        assert language_for_path("solution.go") is Language.GO
        ```
    """
    suffix = Path(path).suffix.lower()
    for driver in _DRIVERS.values():
        if suffix in driver.extensions:
            return driver.language
    raise ValueError(f"Cannot infer language from extension '{suffix or path}'")
