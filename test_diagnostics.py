"""
Post-write compiler check tests: language detection, output parsers and the
check -> fix -> re-check loop.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from conftest import PROJECT, FakeChat, FakeFileSystem, FakeShell, make_plan
from diagnostics import (
    CHECKERS,
    CompilerErrorChecker,
    build_check_prompt,
    get_language_from_extension,
)
from handlers import StepContext
from schemas import CommandResult, LogType


TS_COMMAND = CHECKERS["typescript"][0].format(path="src/lib/api.ts")
TS_ERROR = "src/lib/api.ts(3,7): error TS2322: Type 'string' is not assignable to type 'number'."


def make_ctx(fs, shell, store, config, chat=None):
    return StepContext(
        step_index=0,
        description="src/lib/api.ts 생성",
        plan=make_plan(),
        project_path=PROJECT,
        store=store,
        file_system=fs,
        shell=shell,
        config=config,
        chat=chat,
    )


# =============================================================================
# LANGUAGES AND PARSERS
# =============================================================================

def test_language_from_extension():
    assert get_language_from_extension("src/App.tsx") == "typescript"
    assert get_language_from_extension("main.go") == "go"
    assert get_language_from_extension("src\\lib\\util.PY") == "python"
    assert get_language_from_extension("Makefile") == "plaintext"
    assert get_language_from_extension("notes.xyz") == "plaintext"


def test_supported_languages_filter():
    checker = CompilerErrorChecker(supported_languages=["python"])
    assert checker.supports("app/main.py")
    assert not checker.supports("src/App.tsx")
    # known language without a checker command
    assert not CompilerErrorChecker().supports("styles/site.css")


def test_typescript_parser():
    _, parse = CHECKERS["typescript"]
    [diagnostic] = parse(TS_ERROR, "src/lib/api.ts")
    assert (diagnostic.line, diagnostic.column) == (3, 7)
    assert diagnostic.message.startswith("TS2322:")
    assert diagnostic.describe().startswith("Line 3:7 - TS2322")


def test_python_parser():
    output = (
        '  File "app/main.py", line 4\n'
        "    def broken(:\n"
        "               ^\n"
        "SyntaxError: invalid syntax\n"
    )
    _, parse = CHECKERS["python"]
    [diagnostic] = parse(output, "app/main.py")
    assert diagnostic.line == 4
    assert diagnostic.message == "SyntaxError: invalid syntax"


def test_gcc_style_parser_keeps_severity():
    output = (
        "main.c:5:10: warning: unused variable 'x'\n"
        "main.c:9:1: error: expected ';' before '}' token\n"
    )
    _, parse = CHECKERS["c"]
    diagnostics = parse(output, "main.c")
    assert [(d.line, d.severity) for d in diagnostics] == [(5, "warning"), (9, "error")]


def test_check_prompt_lists_at_most_ten_errors():
    _, parse = CHECKERS["typescript"]
    errors = parse("\n".join(
        f"a.ts({n},1): error TS1005: ';' expected." for n in range(1, 15)
    ), "a.ts")
    prompt = build_check_prompt("a.ts", "typescript", errors, "const a = 1")
    assert "Line 10:1" in prompt
    assert "Line 11:1" not in prompt
    assert '"fixedContent"' in prompt


# =============================================================================
# CHECK AND FIX
# =============================================================================

@pytest.mark.asyncio
async def test_clean_file_is_left_alone(store, fast_config):
    fs, shell, chat = FakeFileSystem(), FakeShell(), FakeChat()
    ctx = make_ctx(fs, shell, store, fast_config, chat=chat)

    content = await CompilerErrorChecker().check_and_fix(ctx, "src/lib/api.ts", "export const a = 1;")

    assert content == "export const a = 1;"
    assert shell.calls == [TS_COMMAND]
    assert chat.prompts == []
    assert fs.writes == []


@pytest.mark.asyncio
async def test_errors_are_fixed_and_rechecked(store, fast_config):
    fs = FakeFileSystem()
    shell = FakeShell().on(TS_COMMAND, CommandResult(success=False, stdout=TS_ERROR))
    fixed = "export const count: number = 1;\n"
    chat = FakeChat(json.dumps({"fixedContent": fixed}))
    ctx = make_ctx(fs, shell, store, fast_config, chat=chat)

    content = await CompilerErrorChecker().check_and_fix(
        ctx, "src/lib/api.ts", "export const count: number = '1';\n"
    )

    assert content == fixed
    assert shell.calls == [TS_COMMAND, TS_COMMAND]
    assert fs.files["src/lib/api.ts"] == fixed
    assert "Line 3:7 - TS2322" in chat.prompts[0]


@pytest.mark.asyncio
async def test_attempts_are_bounded(store, fast_config):
    fs = FakeFileSystem()
    shell = FakeShell().on(TS_COMMAND, *[CommandResult(success=False, stdout=TS_ERROR)] * 2)
    chat = FakeChat(
        json.dumps({"fixedContent": "export const v1 = 1;"}),
        json.dumps({"fixedContent": "export const v2 = 2;"}),
    )
    ctx = make_ctx(fs, shell, store, fast_config, chat=chat)

    content = await CompilerErrorChecker(fix_attempts=2).check_and_fix(
        ctx, "src/lib/api.ts", "export const v0 = 0;"
    )

    assert content == "export const v2 = 2;"
    assert len(shell.calls) == 2
    assert len(chat.prompts) == 2
    assert store.entries(0)[-1].type == LogType.ERROR
    assert "exhausted" in store.entries(0)[-1].message


@pytest.mark.asyncio
async def test_errors_without_chat_are_reported_only(store, fast_config):
    fs = FakeFileSystem()
    shell = FakeShell().on(TS_COMMAND, CommandResult(success=False, stdout=TS_ERROR))
    ctx = make_ctx(fs, shell, store, fast_config)

    content = await CompilerErrorChecker().check_and_fix(ctx, "src/lib/api.ts", "x")

    assert content == "x"
    assert fs.writes == []
    assert any(e.type == LogType.WARNING and "1 error(s)" in e.message for e in store.entries(0))


@pytest.mark.asyncio
async def test_missing_checker_counts_as_clean(store, fast_config):
    shell = FakeShell().on(TS_COMMAND, CommandResult(success=False, error="Command not allowed: npx"))
    ctx = make_ctx(FakeFileSystem(), shell, store, fast_config, chat=FakeChat())

    assert await CompilerErrorChecker().check(ctx, "src/lib/api.ts") == []
