from __future__ import annotations

import argparse
import json
from functools import partial
from pathlib import Path
from typing import Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_code_runner import ExecutionOptions, ExecutionResult, Language, LocalEngine, Outcome, execute
from safe_code_runner.execution.toolchain import find_toolchain, toolchain_version
from safe_code_runner.languages import all_drivers, language_for_path
from safe_code_runner.logging_config import configure_logging

_CONSOLE = Console(no_color=False)

_STATUS_STYLES = {
    Outcome.OK: "green",
    Outcome.RUNTIME_ERROR: "yellow",
    Outcome.TIMEOUT: "yellow",
}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m scr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running and screening submissions.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-runner CLI\n"
            "Compile and run untrusted python, cpp, javascript and go sources\n"
            "with a hard time budget, bounded output and no leftover files.\n"
            "The deny-list screen is a speed bump, not a sandbox."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr run hello.py\n"
            "  python -m scr run solution.cpp --stdin-file input.txt --timeout-ms 4000\n"
            "  python -m scr run main.go --json\n"
            "  python -m scr languages\n"
            "  python -m scr screen suspicious.js"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for engine events written to stderr (default: WARNING).",
    )
    parser.add_argument(
        "--policy-file",
        help=(
            "TOML policy overriding engine limits.\n"
            "Example: --policy-file ./policy.toml"
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one source file.",
        description=(
            "Run one source file through the full pipeline.\n"
            "The process exit code mirrors the run's exit code (124 on timeout)."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scr run hello.py\n"
            "  python -m scr run main.js --stdin '3 4' --timeout-ms 500"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("path", help="Source file to run.")
    run_cmd.add_argument(
        "-l",
        "--language",
        choices=[language.value for language in Language],
        help="Language of the file (default: inferred from the extension).",
    )
    stdin_group = run_cmd.add_mutually_exclusive_group()
    stdin_group.add_argument("--stdin", help="Text piped to the program's standard input.")
    stdin_group.add_argument("--stdin-file", help="File piped to the program's standard input.")
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Wall-clock budget for compile and run together (default: policy value).",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the wire-form result as JSON instead of panels.",
    )

    sub.add_parser(
        "languages",
        help="List supported languages and their toolchains.",
        description="Show each supported language, whether it compiles, and the toolchain found on PATH.",
        formatter_class=_HELP_FORMATTER,
    )

    screen_cmd = sub.add_parser(
        "screen",
        help="Check a file against the deny-list without running it.",
        description=(
            "Scan a source file with the lexical deny-list only.\n"
            "Exit code is 1 when any rule matches."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    screen_cmd.add_argument("path", help="Source file to scan.")
    screen_cmd.add_argument(
        "-l",
        "--language",
        choices=[language.value for language in Language],
        help="Language of the file (default: inferred from the extension).",
    )

    return parser


def build_engine(args: argparse.Namespace) -> LocalEngine:
    """Create a LocalEngine from global CLI flags.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    return LocalEngine(policy_file=args.policy_file)


def _resolve_language(args: argparse.Namespace) -> Language:
    """Return the explicit language or infer it from the file name.

    Example:
        ```python
        language = _resolve_language(args)
        ```
    """
    if args.language:
        return Language(args.language)
    return language_for_path(args.path)


def _print_result(result: ExecutionResult) -> None:
    """Render a run result as rich panels.

    Example:
        ```python
        _print_result(result)
        ```
    """
    style = _STATUS_STYLES.get(result.status, "red")
    if result.stdout:
        _CONSOLE.print(Panel(result.stdout, title="stdout", border_style="cyan"))
    if result.stderr:
        _CONSOLE.print(Panel(result.stderr, title="stderr", border_style=style))
    table = Table(title="Run Summary")
    table.add_column("Status", style=style)
    table.add_column("Exit Code")
    table.add_column("Elapsed (ms)")
    table.add_row(result.status.value, str(result.exit_code), str(result.elapsed_ms))
    _CONSOLE.print(table)


def _print_languages() -> None:
    """Render the driver table with resolved toolchains.

    Example:
        ```python
        _print_languages()
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("Compiled")
    table.add_column("Toolchain", style="magenta")
    table.add_column("Version")
    for driver in all_drivers():
        tool = find_toolchain(driver)
        if tool is None:
            table.add_row(driver.language.value, "yes" if driver.needs_compile else "no", "[red]missing[/red]", "-")
            continue
        table.add_row(
            driver.language.value,
            "yes" if driver.needs_compile else "no",
            tool.path,
            toolchain_version(tool) or "unknown",
        )
    _CONSOLE.print(table)


def _command_run(args: argparse.Namespace) -> int:
    """Handle `scr run`.

    Example:
        ```python
        code = _command_run(args)
        ```
    """
    language = _resolve_language(args)
    code = Path(args.path).read_text(encoding="utf-8")
    stdin = args.stdin or ""
    if args.stdin_file:
        stdin = Path(args.stdin_file).read_text(encoding="utf-8")
    engine = build_engine(args)
    result = execute(
        code,
        language,
        ExecutionOptions(timeout_ms=args.timeout_ms, stdin=stdin),
        engine=engine,
    )
    if args.json:
        _CONSOLE.print_json(json.dumps(result.to_dict()))
    else:
        _print_result(result)
    return result.exit_code


def _command_screen(args: argparse.Namespace) -> int:
    """Handle `scr screen`.

    Example:
        ```python
        code = _command_screen(args)
        ```
    """
    language = _resolve_language(args)
    code = Path(args.path).read_text(encoding="utf-8")
    violations = build_engine(args).screen.scan(code, language)
    if not violations:
        _CONSOLE.print(Panel.fit("No deny-list matches.", style="bold green"))
        return 0
    table = Table(title=f"Deny-list matches ({language.value})")
    table.add_column("Line", style="cyan")
    table.add_column("Rule", style="magenta")
    table.add_column("Match")
    table.add_column("Reason")
    for violation in violations:
        table.add_row(str(violation.line), violation.rule.name, violation.match, violation.rule.description)
    _CONSOLE.print(table)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level)

    try:
        if args.command == "run":
            return _command_run(args)
        if args.command == "languages":
            _print_languages()
            return 0
        if args.command == "screen":
            return _command_screen(args)
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {exc}", border_style="red"))
        return 2

    parser.error("Unhandled command")
