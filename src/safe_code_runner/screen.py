"""
Lexical deny-list screen for submitted source.

This is a speed bump, not a sandbox: it matches source text against known
signatures of process spawning, raw OS access, dynamic evaluation and FFI
escapes. Anything assembled at runtime (``getattr(__builtins__, "ev" + "al")``,
``require("child_" + "process")``) passes straight through. Untrusted input
still needs OS-level isolation (container, VM, seccomp) around the engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from .errors import ExecutionFailure
from .languages import Language
from .policy import Outcome


@dataclass(frozen=True, slots=True)
class DenyRule:
    """Named source signature that blocks a run.

    Example:
        ```python
        rule = DenyRule("py-eval", re.compile(r"\\beval\\("), "dynamic evaluation via eval()")
        ```
    """

    name: str
    pattern: re.Pattern[str]
    description: str


@dataclass(frozen=True, slots=True)
class Violation:
    """One deny-list match inside a submission.

    Example:
        ```python
        violation = Violation(rule, line=3, match="eval(")
        ```
    """

    rule: DenyRule
    line: int
    match: str

    def describe(self) -> str:
        """Return a one-line message for callers.

        Example:
            ```python
            message = violation.describe()
            ```
        """
        return f"line {self.line}: {self.rule.description} [{self.rule.name}]"


def _rule(name: str, pattern: str, description: str) -> DenyRule:
    return DenyRule(name, re.compile(pattern, re.MULTILINE), description)


DEFAULT_RULES: dict[Language, tuple[DenyRule, ...]] = {
    Language.PYTHON: (
        _rule("py-import-os", r"import\s+os\s*$", "import of the os module"),
        _rule("py-import-subprocess", r"import\s+subprocess\s*$", "import of the subprocess module"),
        _rule("py-import-sys", r"import\s+sys\s*$", "import of the sys module"),
        _rule(
            "py-import-native",
            r"^\s*import\s+(?:[\w.]+(?:\s+as\s+\w+)?\s*,\s*)*(?:os|sys|subprocess|socket|ctypes|importlib|pty)\b",
            "import of an OS, process, socket or FFI module",
        ),
        _rule(
            "py-from-native",
            r"^\s*from\s+(?:os|sys|subprocess|socket|ctypes|importlib|pty)\b",
            "import from an OS, process, socket or FFI module",
        ),
        _rule("py-dunder-import", r"__import__", "dynamic import via __import__"),
        _rule("py-eval", r"\beval\(", "dynamic evaluation via eval()"),
        _rule("py-exec", r"\bexec\(", "dynamic evaluation via exec()"),
        _rule("py-open-etc", r"open\(\s*['\"]/etc/", "access to /etc"),
        _rule("py-open-proc", r"open\(\s*['\"]/proc/", "access to /proc"),
    ),
    Language.CPP: (
        _rule("cpp-windows-h", r"#include\s*<windows\.h>", "Windows API header"),
        _rule("cpp-process-h", r"#include\s*<process\.h>", "process control header"),
        _rule("cpp-system", r"\bsystem\s*\(", "shell invocation via system()"),
        _rule("cpp-exec", r"\bexec(?:l|lp|le|v|vp|vpe|ve)?\s*\(", "process replacement via exec*()"),
        _rule("cpp-fork", r"\b(?:fork|vfork)\s*\(", "process creation via fork()"),
        _rule("cpp-popen", r"\bpopen\s*\(", "shell pipe via popen()"),
        _rule("cpp-create-process", r"CreateProcess", "process creation via CreateProcess"),
        _rule("cpp-shell-execute", r"ShellExecute", "process creation via ShellExecute"),
    ),
    Language.JAVASCRIPT: (
        _rule(
            "js-require-child-process",
            r"require\(\s*['\"](?:node:)?child_process['\"]",
            "child_process module",
        ),
        _rule("js-require-fs", r"require\(\s*['\"](?:node:)?fs(?:/promises)?['\"]", "fs module"),
        _rule(
            "js-import-native",
            r"\bfrom\s+['\"](?:node:)?(?:child_process|fs|fs/promises)['\"]|\bimport\(\s*['\"](?:node:)?(?:child_process|fs)['\"]",
            "child_process or fs module import",
        ),
        _rule("js-exec", r"(?<![\w$.])exec\(", "process execution via exec()"),
        _rule("js-spawn", r"\bspawn\(", "process creation via spawn()"),
        _rule("js-eval", r"\beval\(", "dynamic evaluation via eval()"),
        _rule("js-function-constructor", r"\bFunction\(", "dynamic evaluation via Function()"),
        _rule("js-process-binding", r"\bprocess\.binding\b", "native bindings via process.binding"),
    ),
    Language.GO: (
        _rule("go-os-exec", r"os\.Exec", "process execution via os.Exec"),
        _rule("go-start-process", r"os\.StartProcess", "process creation via os.StartProcess"),
        _rule("go-exec-command", r"exec\.Command", "process creation via exec.Command"),
        _rule("go-syscall", r"\bsyscall\.", "raw syscall access"),
        _rule("go-unsafe", r"\bunsafe\.", "unsafe memory access"),
        _rule("go-reflect", r"\breflect\.", "reflection"),
        _rule("go-runtime", r"\bruntime\.", "runtime control"),
        _rule("go-cgo-call", r"\bC\.", "cgo call"),
        _rule("go-import-c", r"import\s+_?\s*[\"']C[\"']", "cgo import"),
        _rule("go-import-unsafe", r"import\s+[\"']?unsafe", "import of unsafe"),
        _rule("go-import-syscall", r"import\s+[\"']?syscall", "import of syscall"),
        _rule(
            "go-import-block",
            r"^\s*_?\s*\"(?:C|unsafe|syscall|os/exec)\"\s*$",
            "import of C, unsafe, syscall or os/exec",
        ),
    ),
}


class LexicalScreen:
    """Per-language deny-list applied before any process is spawned.

    Example:
        ```python
        screen = LexicalScreen(extra_patterns={"python": [r"\\bgetattr\\("]})
        violations = screen.scan("print(1)", Language.PYTHON)
        ```
    """

    def __init__(self, extra_patterns: Mapping[str, tuple[str, ...] | list[str]] | None = None) -> None:
        """Compile the default rules plus any policy-supplied patterns.

        Example:
            ```python
            screen = LexicalScreen()
            ```
        """
        rules = {language: list(items) for language, items in DEFAULT_RULES.items()}
        for raw_language, patterns in (extra_patterns or {}).items():
            language = Language.parse(raw_language)
            for index, pattern in enumerate(patterns):
                try:
                    compiled = re.compile(pattern, re.MULTILINE)
                except re.error as exc:
                    raise ValueError(f"Invalid deny pattern for {language.value}: {pattern!r} ({exc})") from exc
                rules[language].append(
                    DenyRule(f"{language.value}-policy-{index}", compiled, f"policy pattern {pattern!r}")
                )
        self._rules: dict[Language, tuple[DenyRule, ...]] = {
            language: tuple(items) for language, items in rules.items()
        }

    def rules_for(self, language: Language) -> tuple[DenyRule, ...]:
        """Return the active rules for one language.

        Example:
            ```python
            names = [rule.name for rule in screen.rules_for(Language.GO)]
            ```
        """
        return self._rules[language]

    def scan(self, code: str, language: Language) -> list[Violation]:
        """Return every deny-list match in `code`, in rule order.

        Example:
            ```python
            violations = screen.scan("import os\\n", Language.PYTHON)
            ```
        """
        violations: list[Violation] = []
        for rule in self._rules[language]:
            for match in rule.pattern.finditer(code):
                line = code.count("\n", 0, match.start()) + 1
                violations.append(Violation(rule, line, match.group(0).strip()))
        return violations

    def check(self, code: str, language: Language) -> None:
        """Raise a security failure on the first deny-list match.

        Example:
            ```python
            screen.check("print('ok')", Language.PYTHON)
            ```
        """
        violations = self.scan(code, language)
        if violations:
            raise ExecutionFailure(
                Outcome.SECURITY_VIOLATION,
                f"Dangerous code detected: {violations[0].describe()}",
            )
