from __future__ import annotations

import stat
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from safe_code_runner.execution import workspace as workspace_module
from safe_code_runner.execution.workspace import Workspace


def test_workspaces_are_unique_and_private(tmp_path: Path) -> None:
    first = Workspace.create(tmp_path)
    second = Workspace.create(tmp_path)

    assert first.path != second.path
    assert first.path.parent == tmp_path
    assert first.path.name.startswith("run-")
    assert stat.S_IMODE(first.path.stat().st_mode) == 0o700
    assert first.remove() and second.remove()


def test_source_is_written_utf8(tmp_path: Path) -> None:
    with Workspace.create(tmp_path, "abc") as ws:
        source = ws.write_source("main.py", "print('héllo')")
        assert source.read_text(encoding="utf-8") == "print('héllo')"

    assert not (tmp_path / "run-abc").exists()


def test_removed_when_body_raises(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        with Workspace.create(tmp_path, "boom") as ws:
            (ws.path / "nested").mkdir()
            (ws.path / "nested" / "artifact").write_bytes(b"\x7fELF")
            raise RuntimeError("compile exploded")

    assert list(tmp_path.iterdir()) == []


def test_names_are_never_reused(tmp_path: Path) -> None:
    Workspace.create(tmp_path, "same")

    with pytest.raises(FileExistsError):
        Workspace.create(tmp_path, "same")


def test_remove_is_idempotent(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path)

    assert ws.remove() is True
    assert ws.remove() is True


def test_removal_failure_is_logged(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _stuck_rmtree(path, onexc=None):
        onexc(None, str(path), PermissionError("busy"))

    monkeypatch.setattr(workspace_module.shutil, "rmtree", _stuck_rmtree)
    with capture_logs() as logs:
        ws = Workspace.create(tmp_path)
        removed = ws.remove()

    assert removed is False
    failures = [entry for entry in logs if entry["event"] == "workspace_cleanup_failed"]
    assert failures and "busy" in failures[0]["errors"][0]


def test_private_tmp_dir_is_created(tmp_path: Path) -> None:
    with Workspace.create(tmp_path, "tmpdir") as ws:
        assert ws.tmp_dir == ws.path / "tmp"
        assert ws.tmp_dir.is_dir()


def test_read_only_directories_are_removed(tmp_path: Path) -> None:
    ws = Workspace.create(tmp_path)
    locked = ws.path / "locked"
    locked.mkdir()
    (locked / "f").write_text("x", encoding="utf-8")
    sealed = ws.path / "sealed"
    (sealed / "inner").mkdir(parents=True)
    locked.chmod(0o500)
    sealed.chmod(0o000)

    assert ws.remove() is True
    assert not ws.path.exists()


def test_failed_first_pass_is_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    real_rmtree = workspace_module.shutil.rmtree
    calls: list[str] = []

    def _flaky_rmtree(path, onexc=None):
        calls.append(str(path))
        if len(calls) == 1:
            onexc(None, str(path), PermissionError("read-only directory"))
            return
        real_rmtree(path, onexc=onexc)

    monkeypatch.setattr(workspace_module.shutil, "rmtree", _flaky_rmtree)
    ws = Workspace.create(tmp_path)
    with capture_logs() as logs:
        removed = ws.remove()

    assert removed is True
    assert len(calls) == 2
    assert not any(entry["event"] == "workspace_cleanup_failed" for entry in logs)
