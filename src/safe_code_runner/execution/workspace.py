from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import Any

from ..logging_config import get_logger

TMP_DIR_NAME = "tmp"


def _unlock_tree(root: Path) -> None:
    """Give the owner full access to every directory under `root`.

    Symlinks are skipped so nothing outside the tree is touched.

    Example:
        ```python
        _unlock_tree(Path("/tmp/safe-code-runner/run-abc"))
        ```
    """
    os.chmod(root, 0o700)
    for current, dirnames, _ in os.walk(root):
        for name in dirnames:
            target = os.path.join(current, name)
            if os.path.islink(target):
                continue
            try:
                os.chmod(target, 0o700)
            except OSError:
                continue


class Workspace:
    """Per-run scratch directory, exclusively owned and always removed.

    Names come from a fresh UUID and the directory is created with
    `exist_ok=False`, so a name is never shared or reused. A private
    `tmp/` sub-directory serves as the child's TMPDIR.

    Example:
        ```python
        with Workspace.create(Path("/tmp/safe-code-runner")) as ws:
            ws.write_source("main.py", "print('hi')")
        ```
    """

    def __init__(self, path: Path, log: Any | None = None) -> None:
        """Wrap an existing directory.

        Example:
            ```python
            ws = Workspace(Path("/tmp/safe-code-runner/run-abc"))
            ```
        """
        self.path = path
        self._log = log if log is not None else get_logger(__name__)

    @classmethod
    def create(cls, root: Path, run_id: str | None = None, log: Any | None = None) -> "Workspace":
        """Create a uniquely named workspace under `root`.

        Example:
            ```python
            ws = Workspace.create(Path("/tmp/safe-code-runner"))
            ```
        """
        name = f"run-{run_id or uuid.uuid4().hex}"
        path = root / name
        path.mkdir(mode=0o700, parents=False, exist_ok=False)
        workspace = cls(path, log)
        workspace.tmp_dir.mkdir(mode=0o700)
        workspace._log.debug("workspace_created", path=str(path))
        return workspace

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.remove()

    @property
    def tmp_dir(self) -> Path:
        """Return the run's private temp directory.

        Example:
            ```python
            env["TMPDIR"] = str(ws.tmp_dir)
            ```
        """
        return self.path / TMP_DIR_NAME

    def write_source(self, name: str, code: str) -> Path:
        """Write the submission into the workspace.

        Example:
            ```python
            src = ws.write_source("main.go", "package main\\nfunc main() {}")
            ```
        """
        target = self.path / name
        target.write_text(code, encoding="utf-8")
        return target

    def remove(self) -> bool:
        """Delete the workspace tree; log and return False on failure.

        A first failed pass (a directory the program made read-only)
        restores owner permissions on the tree and tries once more.

        Example:
            ```python
            removed = ws.remove()
            ```
        """
        errors: list[str] = []

        def _on_error(func: Any, path: str, exc: BaseException) -> None:
            if isinstance(exc, FileNotFoundError):
                return
            errors.append(f"{path}: {exc}")

        if not self.path.exists():
            return True
        shutil.rmtree(self.path, onexc=_on_error)
        if self.path.exists():
            self._log.debug("workspace_unlock_retry", path=str(self.path), errors=errors)
            errors.clear()
            try:
                _unlock_tree(self.path)
            except OSError as exc:
                errors.append(f"{self.path}: {exc}")
            shutil.rmtree(self.path, onexc=_on_error)
        if errors or self.path.exists():
            self._log.error("workspace_cleanup_failed", path=str(self.path), errors=errors)
            return False
        return True
