from __future__ import annotations

import sys

import pytest

from safe_code_runner import Language, Outcome
from safe_code_runner.errors import ExecutionFailure
from safe_code_runner.execution import toolchain
from safe_code_runner.execution.toolchain import Toolchain, find_toolchain, require_toolchain, toolchain_version
from safe_code_runner.languages import driver_for


def test_candidates_are_tried_in_order(monkeypatch: pytest.MonkeyPatch) -> None:
    paths = {"python": "/opt/bin/python"}
    monkeypatch.setattr(toolchain.shutil, "which", paths.get)

    tool = find_toolchain(driver_for(Language.PYTHON))

    assert tool == Toolchain(Language.PYTHON, "python", "/opt/bin/python")


def test_missing_toolchain_carries_install_hint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(toolchain.shutil, "which", lambda name: None)

    with pytest.raises(ExecutionFailure) as excinfo:
        require_toolchain(driver_for(Language.GO))

    assert excinfo.value.outcome is Outcome.TOOLCHAIN_MISSING
    assert "Go compiler is not installed" in excinfo.value.message


def test_version_banner_first_line() -> None:
    version = toolchain_version(Toolchain(Language.PYTHON, "python", sys.executable))

    assert version is not None
    assert version.startswith("Python 3")


def test_version_of_missing_binary_is_none() -> None:
    tool = Toolchain(Language.CPP, "g++", "/nonexistent/bin/g++")

    assert toolchain_version(tool) is None
