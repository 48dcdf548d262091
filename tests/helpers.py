from __future__ import annotations

from pathlib import Path

import pytest

from safe_code_runner.execution.toolchain import find_toolchain
from safe_code_runner.languages import Language, driver_for


def requires_toolchain(language: Language) -> pytest.MarkDecorator:
    tool = find_toolchain(driver_for(language))
    return pytest.mark.skipif(tool is None, reason=f"{language.value} toolchain not on PATH")


def leftover_workspaces(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return sorted(path for path in root.iterdir() if path.name.startswith("run-"))
