from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass

from ..errors import ExecutionFailure
from ..languages import Language, LanguageDriver
from ..policy import Outcome

_VERSION_ARGS: dict[Language, list[str]] = {
    Language.PYTHON: ["--version"],
    Language.CPP: ["--version"],
    Language.JAVASCRIPT: ["--version"],
    Language.GO: ["version"],
}


@dataclass(frozen=True, slots=True)
class Toolchain:
    """Resolved compiler or interpreter for one language.

    Example:
        ```python
        tool = Toolchain(Language.GO, "go", "/usr/local/go/bin/go")
        ```
    """

    language: Language
    name: str
    path: str


def find_toolchain(driver: LanguageDriver) -> Toolchain | None:
    """Return the first candidate binary found on PATH, if any.

    Example:
        ```python
        tool = find_toolchain(driver_for(Language.CPP))
        ```
    """
    for candidate in driver.toolchain_candidates:
        resolved = shutil.which(candidate)
        if resolved is not None:
            return Toolchain(driver.language, candidate, resolved)
    return None


def require_toolchain(driver: LanguageDriver) -> Toolchain:
    """Resolve the toolchain or fail the run with the install hint.

    Example:
        ```python
        tool = require_toolchain(driver_for(Language.PYTHON))
        ```
    """
    tool = find_toolchain(driver)
    if tool is None:
        raise ExecutionFailure(Outcome.TOOLCHAIN_MISSING, driver.install_hint)
    return tool


def toolchain_version(tool: Toolchain, timeout_seconds: float = 5.0) -> str | None:
    """Return the first line of the toolchain's version banner.

    Example:
        ```python
        version = toolchain_version(tool)  # "go version go1.22.3 linux/amd64"
        ```
    """
    try:
        probe = subprocess.run(
            [tool.path, *_VERSION_ARGS[tool.language]],
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if probe.returncode != 0:
        return None
    banner = (probe.stdout or probe.stderr).strip()
    return banner.splitlines()[0] if banner else None
