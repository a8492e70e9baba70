"""
Post-write compiler diagnostics for planrunner.

WHAT THIS FILE DOES:
-------------------
After a file is written, run the language's own checker on it, and if it
reports errors, ask the LLM for a fixed version and write that back. Repeat
until the file checks clean or the attempt budget runs out.

    checker = CompilerErrorChecker(fix_attempts=3)
    content = await checker.check_and_fix(ctx, "src/app.py", content)

CHECKERS:
--------
    typescript/javascript  npx tsc --noEmit      file(l,c): error TSxxxx: msg
    python                 python -m py_compile  File "...", line N
    java                   javac                 file:l: error: msg
    go                     go vet                file:l:c: msg
    rust                   cargo check           file:l:c: error[...]: msg
    cpp / c                g++ / gcc -fsyntax-only  file:l:c: error: msg

The check runs through the shell collaborator, so it is subject to the same
allow-list as plan commands. A check that can't run yields no diagnostics.

Diagnostics never fail a step: every problem is logged and the latest
content is returned.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from providers import collect_stream
from recovery import extract_fixed_content, strip_ansi
from schemas import LogType


logger = logging.getLogger("planrunner.diagnostics")

DEFAULT_FIX_ATTEMPTS = 3
MAX_ERRORS_IN_PROMPT = 10


# =============================================================================
# LANGUAGES
# =============================================================================

EXTENSION_LANGUAGES = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "java": "java",
    "go": "go",
    "rs": "rust",
    "cpp": "cpp",
    "c": "c",
    "h": "c",
    "html": "html",
    "css": "css",
    "json": "json",
    "md": "markdown",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "sh": "shell",
    "sql": "sql",
    "vue": "vue",
    "svelte": "svelte",
}

SUPPORTED_LANGUAGES = [
    "typescript", "javascript", "python", "java", "go", "rust", "cpp", "c",
]


def get_language_from_extension(file_path: str) -> str:
    """Language id for a path, "plaintext" when the extension is unknown."""
    name = file_path.replace("\\", "/").split("/")[-1]
    if "." not in name:
        return "plaintext"
    return EXTENSION_LANGUAGES.get(name.rsplit(".", 1)[-1].lower(), "plaintext")


# =============================================================================
# CHECK COMMANDS AND OUTPUT PARSERS
# =============================================================================

@dataclass
class Diagnostic:
    """One problem reported by a checker."""
    line: int
    column: int
    message: str
    severity: str = "error"

    def describe(self) -> str:
        return f"Line {self.line}:{self.column} - {self.message}"


def _parse_typescript(output: str, file_path: str) -> list[Diagnostic]:
    diagnostics = []
    for match in re.finditer(
        r"\((\d+),(\d+)\):\s*(error|warning)\s+(TS\d+:\s*.+)", output
    ):
        diagnostics.append(Diagnostic(
            line=int(match.group(1)),
            column=int(match.group(2)),
            message=match.group(4).strip(),
            severity=match.group(3),
        ))
    if diagnostics:
        return diagnostics

    # --pretty output: file:l:c - error TSxxxx: msg
    for match in re.finditer(
        r":(\d+):(\d+)\s+-\s+(error|warning)\s+(TS\d+:\s*.+)", output
    ):
        diagnostics.append(Diagnostic(
            line=int(match.group(1)),
            column=int(match.group(2)),
            message=match.group(4).strip(),
            severity=match.group(3),
        ))
    return diagnostics


def _parse_python(output: str, file_path: str) -> list[Diagnostic]:
    diagnostics = []
    lines = output.split("\n")
    for i, line in enumerate(lines):
        match = re.search(r'File "[^"]+", line (\d+)', line)
        if not match:
            continue
        message = ""
        for candidate in lines[i + 1:]:
            if re.match(r"\s*\w*(Error|Exception)\b", candidate):
                message = candidate.strip()
                break
        if not message and i + 1 < len(lines):
            message = lines[i + 1].strip()
        diagnostics.append(Diagnostic(line=int(match.group(1)), column=0, message=message))
    return diagnostics


def _parse_java(output: str, file_path: str) -> list[Diagnostic]:
    return [
        Diagnostic(line=int(match.group(1)), column=0, message=match.group(2).strip())
        for match in re.finditer(r":(\d+):\s*error:\s*(.+)", output)
    ]


def _parse_go(output: str, file_path: str) -> list[Diagnostic]:
    return [
        Diagnostic(
            line=int(match.group(1)),
            column=int(match.group(2)),
            message=match.group(3).strip(),
        )
        for match in re.finditer(r"\.go:(\d+):(\d+):\s*(.+)", output)
    ]


def _parse_gcc_style(output: str, file_path: str) -> list[Diagnostic]:
    """gcc, g++ and cargo --message-format=short share this shape."""
    return [
        Diagnostic(
            line=int(match.group(1)),
            column=int(match.group(2)),
            message=match.group(4).strip(),
            severity=match.group(3),
        )
        for match in re.finditer(
            r":(\d+):(\d+):\s*(error|warning)(?:\[[^\]]*\])?:\s*(.+)", output
        )
    ]


Parser = Callable[[str, str], list[Diagnostic]]

CHECKERS: dict[str, tuple[str, Parser]] = {
    "typescript": ('npx tsc --noEmit --skipLibCheck --pretty false --jsx preserve "{path}"', _parse_typescript),
    "javascript": ('npx tsc --noEmit --skipLibCheck --pretty false --allowJs --checkJs --jsx preserve "{path}"', _parse_typescript),
    "python": ('python -m py_compile "{path}"', _parse_python),
    "java": ('javac "{path}"', _parse_java),
    "go": ('go vet "{path}"', _parse_go),
    "rust": ("cargo check --message-format=short", _parse_gcc_style),
    "cpp": ('g++ -fsyntax-only "{path}"', _parse_gcc_style),
    "c": ('gcc -fsyntax-only "{path}"', _parse_gcc_style),
}


def build_check_prompt(
    file_path: str,
    language: str,
    errors: list[Diagnostic],
    content: str,
) -> str:
    """Prompt asking for a corrected file, with at most ten errors listed."""
    listed = "\n".join(e.describe() for e in errors[:MAX_ERRORS_IN_PROMPT])
    return (
        f"The following {language} file has compiler errors.\n\n"
        f"File: {file_path}\n\n"
        f"Errors:\n{listed}\n\n"
        f"Current content:\n```{language}\n{content}\n```\n\n"
        f"Fix every error and respond with JSON only, in this format:\n"
        f'{{"fixedContent": "<the complete corrected file>"}}'
    )


# =============================================================================
# CHECKER
# =============================================================================

class CompilerErrorChecker:
    """
    Runs a language checker on a written file and LLM-fixes what it reports.

    ctx is the handler's StepContext (shell, filesystem, chat, logging).
    """

    def __init__(
        self,
        fix_attempts: int = DEFAULT_FIX_ATTEMPTS,
        supported_languages: Optional[list[str]] = None,
    ):
        self.fix_attempts = fix_attempts
        self.supported_languages = (
            supported_languages if supported_languages is not None
            else list(SUPPORTED_LANGUAGES)
        )

    def supports(self, file_path: str) -> bool:
        language = get_language_from_extension(file_path)
        return language in self.supported_languages and language in CHECKERS

    async def check(self, ctx, file_path: str) -> list[Diagnostic]:
        """Run the checker for file_path and parse what it printed."""
        language = get_language_from_extension(file_path)
        if language not in CHECKERS:
            return []

        template, parser = CHECKERS[language]
        result = await ctx.shell.execute(template.format(path=file_path), ctx.project_path)

        output = strip_ansi("\n".join(
            part for part in (result.stderr, result.stdout) if part
        )).strip()

        if result.success and "error" not in output.lower():
            return []
        if not output:
            # The checker didn't run (not allow-listed, not installed)
            logger.debug(f"No checker output for {file_path}: {result.error}")
            return []

        return parser(output, file_path)

    async def check_and_fix(self, ctx, file_path: str, content: str) -> str:
        """
        Check a freshly written file and fix it up to fix_attempts times.

        Returns the final content (the input content if nothing changed).
        """
        if not self.supports(file_path):
            return content

        language = get_language_from_extension(file_path)

        try:
            for attempt in range(1, self.fix_attempts + 1):
                ctx.log(
                    LogType.INFO,
                    f"Checking {file_path} for {language} errors (attempt {attempt}/{self.fix_attempts})",
                    file_path=file_path,
                )

                diagnostics = await self.check(ctx, file_path)
                errors = [d for d in diagnostics if d.severity == "error"]
                if not errors:
                    ctx.log(LogType.SUCCESS, f"No errors in {file_path}", file_path=file_path)
                    return content

                ctx.log(
                    LogType.WARNING,
                    f"{len(errors)} error(s) found in {file_path}",
                    file_path=file_path,
                    details="\n".join(e.describe() for e in errors[:5]),
                )

                if ctx.chat is None:
                    ctx.log(
                        LogType.WARNING,
                        "No chat model configured, leaving errors in place",
                        file_path=file_path,
                    )
                    return content

                reply = await collect_stream(ctx.chat.complete(
                    build_check_prompt(file_path, language, errors, content), []
                ))
                fixed = extract_fixed_content(reply)
                if not fixed or fixed == content:
                    ctx.log(LogType.INFO, f"No fix proposed for {file_path}", file_path=file_path)
                    return content

                written = await ctx.file_system.write(file_path, ctx.project_path, fixed)
                if not written.success:
                    ctx.log(
                        LogType.ERROR,
                        f"Failed to write fixes to {file_path}",
                        file_path=file_path,
                        details=written.error,
                    )
                    return content

                ctx.log(LogType.SUCCESS, f"Applied fixes to {file_path}", file_path=file_path)
                content = fixed

            ctx.log(
                LogType.ERROR,
                f"Fix attempts exhausted for {file_path}",
                file_path=file_path,
                details=f"{self.fix_attempts} attempts made",
            )
        except (httpx.HTTPError, OSError, ValueError) as e:
            logger.error(f"Error check failed for {file_path}: {e}")
            ctx.log(
                LogType.ERROR,
                f"Error check failed for {file_path}",
                file_path=file_path,
                details=str(e),
            )

        return content
