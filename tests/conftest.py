from __future__ import annotations

from pathlib import Path

import pytest

from safe_code_runner import LocalEngine, RunnerPolicy


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def engine(scratch_root: Path) -> LocalEngine:
    return LocalEngine(policy=RunnerPolicy(scratch_root=str(scratch_root), default_timeout_ms=10_000))


@pytest.fixture
def small_output_engine(scratch_root: Path) -> LocalEngine:
    return LocalEngine(policy=RunnerPolicy(scratch_root=str(scratch_root), max_output_length=1_000))
