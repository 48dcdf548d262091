from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from safe_code_runner import ExecutionResult, LexicalScreen, Outcome
from scr import cli


class _FakeEngine:
    requests: list = []
    result = ExecutionResult(stdout="hello", stderr=None, exit_code=0, elapsed_ms=12)

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.screen = LexicalScreen()

    def execute(self, request):
        self.__class__.requests.append(request)
        return self.__class__.result


@pytest.fixture(autouse=True)
def _patch_engine(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "LocalEngine", _FakeEngine)
    _FakeEngine.requests = []
    _FakeEngine.result = ExecutionResult(stdout="hello", stderr=None, exit_code=0, elapsed_ms=12)


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "hello.py"
    path.write_text("print('hello')\n", encoding="utf-8")
    return path


def test_cli_run_prints_summary(source: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(source), "--stdin", "abc", "--timeout-ms", "2500"])
    output = capsys.readouterr().out

    assert code == 0
    assert "hello" in output
    assert "Run Summary" in output
    (request,) = _FakeEngine.requests
    assert request.language == "python"
    assert request.options.stdin == "abc"
    assert request.options.timeout_ms == 2_500


def test_cli_run_exit_code_mirrors_result(source: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _FakeEngine.result = ExecutionResult(
        stdout="",
        stderr="Execution timed out after 500 ms",
        exit_code=124,
        status=Outcome.TIMEOUT,
    )

    code = cli.main(["run", str(source)])
    output = capsys.readouterr().out

    assert code == 124
    assert "timed out" in output


def test_cli_run_json(source: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(source), "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert payload == {"stdout": "hello", "exitCode": 0, "elapsedMs": 12, "status": "ok"}


def test_cli_run_stdin_file(source: Path, tmp_path: Path) -> None:
    stdin_file = tmp_path / "input.txt"
    stdin_file.write_text("3 4\n", encoding="utf-8")

    assert cli.main(["run", str(source), "--stdin-file", str(stdin_file)]) == 0
    assert _FakeEngine.requests[0].options.stdin == "3 4\n"


def test_cli_explicit_language_overrides_extension(tmp_path: Path) -> None:
    path = tmp_path / "solution.txt"
    path.write_text("console.log(1)", encoding="utf-8")

    assert cli.main(["run", str(path), "--language", "javascript"]) == 0
    assert _FakeEngine.requests[0].language == "javascript"


def test_cli_unknown_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")

    code = cli.main(["run", str(path)])
    output = capsys.readouterr().out

    assert code == 2
    assert "Cannot infer language" in output
    assert _FakeEngine.requests == []


def test_cli_screen_clean(source: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["screen", str(source)])

    assert code == 0
    assert "No deny-list matches." in capsys.readouterr().out


def test_cli_screen_reports_matches(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "evil.js"
    path.write_text("const cp = require('child_process');\n", encoding="utf-8")

    code = cli.main(["screen", str(path)])
    output = capsys.readouterr().out

    assert code == 1
    assert "js-require-child-process" in output
    assert _FakeEngine.requests == []


def test_cli_languages_marks_missing_toolchains(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(cli, "find_toolchain", lambda driver: None)

    code = cli.main(["languages"])
    output = capsys.readouterr().out

    assert code == 0
    assert "Supported Languages" in output
    assert "missing" in output
    for name in ("python", "cpp", "javascript", "go"):
        assert name in output


def test_cli_subcommand_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Run one source file through the full pipeline." in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m scr languages" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "safe-code-runner CLI" in help_text
