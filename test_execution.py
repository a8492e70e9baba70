"""
Execution engine tests.

These drive execute_step end to end: classification, handler fallthrough,
the step state machine, the error boundary and the append-only log.
"""

import shutil
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from conftest import PROJECT, FakeChat, FakeFileSystem, FakeShell, make_plan
from diagnostics import CompilerErrorChecker
from execution import ExecutionEngine, StepExecutionContext, create_engine
from execution_log import ExecutionStore
from schemas import CommandResult, FailureKind, LogType, StepStatus
from shell import ShellExecutor
from workspace import ProjectFileSystem


BLOG_PLAN = dict(
    packages=["react-icons", "axios"],
    filesToCreate=[
        {"path": "src/components/PostList.tsx"},
        {"path": "src/components/PostForm.tsx"},
    ],
    executionOrder=[
        "1. 패키지 설치 (react-icons, axios)",
        "2. 컴포넌트 생성 (PostList.tsx, PostForm.tsx)",
        "3. 개발 서버 실행 (npm run dev)",
    ],
)


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    project = tempfile.mkdtemp(prefix="planrunner_test_")
    yield Path(project)
    shutil.rmtree(project, ignore_errors=True)


def make_engine(fs, shell, config, chat=None):
    return ExecutionEngine(file_system=fs, shell=shell, chat=chat, config=config)


# =============================================================================
# DISPATCH
# =============================================================================

@pytest.mark.asyncio
async def test_execute_step_records_result_and_status(fs, shell, store, fast_config):
    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(0, plan.steps[0], context)

    assert result.success
    assert shell.calls == ["npm install react-icons axios"]
    assert store.status(0) == StepStatus.SUCCEEDED
    assert store.result(0) == result
    assert store.entries(0)[0].message.startswith("Step started")


@pytest.mark.asyncio
async def test_unclassifiable_step_fails(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(), store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(0, "Celebrate", context)

    assert not result.success
    assert result.failure == FailureKind.CLASSIFICATION
    assert result.message == "Cannot execute this step: Celebrate"
    assert store.status(0) == StepStatus.FAILED


@pytest.mark.asyncio
async def test_handler_passing_falls_through_to_fallback(fs, shell, store, fast_config):
    plan = make_plan(tasks=[{"type": "create", "target": "a.ts"}])
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(
        3, "Tune the config/app.yaml configuration", context
    )

    assert result.success
    assert fs.files == {"config/app.yaml": "# Configuration\n"}


@pytest.mark.asyncio
async def test_generate_step_creates_each_listed_file(fs, shell, store, fast_config):
    plan = make_plan(filesToCreate=[{"path": "src/A.tsx"}, {"path": "src/B.tsx"}])
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(
        0, "Generate components (A.tsx, B.tsx)", context
    )

    assert result.success
    assert fs.written_paths() == ["src/A.tsx", "src/B.tsx"]
    assert result.message.startswith("2 files created.")


@pytest.mark.asyncio
async def test_env_step_mentioning_a_server_reaches_env_handler(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(), store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(
        0, "Set PORT=4000 for the server in .env", context
    )

    assert result.success
    assert fs.files[".env"] == "PORT=4000\n"
    assert shell.calls == []


@pytest.mark.asyncio
async def test_command_step_without_a_command_falls_through_to_analysis(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(), store=store)
    engine = make_engine(fs, shell, fast_config, chat=FakeChat("Dependencies are current."))

    result = await engine.execute_step(0, "Run a review of the project dependencies", context)

    assert result.success
    assert shell.calls == []
    assert store.analysis(0) == "Dependencies are current."


@pytest.mark.asyncio
async def test_information_step_through_engine(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(), store=store)
    engine = make_engine(fs, shell, fast_config, chat=FakeChat("Uses the App Router."))

    result = await engine.execute_step(5, "의존성 분석", context)

    assert result.success
    assert store.analysis(5) == "Uses the App Router."


@pytest.mark.asyncio
async def test_port_conflict_scenario(fs, store, fast_config):
    shell = FakeShell().on(
        "npm run dev",
        CommandResult(success=False, stderr="listen EADDRINUSE: address already in use :::3000"),
    )
    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(2, plan.steps[2], context)

    assert shell.calls == ["npm run dev", "kill-port-process 3000", "npm run dev"]
    assert result.success


# =============================================================================
# STATE AND LOG
# =============================================================================

@pytest.mark.asyncio
async def test_reexecution_only_grows_the_log(fs, store, fast_config):
    shell = FakeShell().on(
        "npm install react-icons axios",
        CommandResult(success=False, stderr="npm ERR! network"),
    )
    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)
    engine = make_engine(fs, shell, fast_config)

    first = await engine.execute_step(0, plan.steps[0], context)
    after_first = len(store.entries(0))
    second = await engine.execute_step(0, plan.steps[0], context)
    after_second = len(store.entries(0))

    assert not first.success
    assert second.success
    assert after_second > after_first > 0
    assert store.status(0) == StepStatus.SUCCEEDED
    assert store.result(0) == second


@pytest.mark.asyncio
async def test_step_already_executing_is_rejected(fs, shell, store, fast_config):
    store.set_status(0, StepStatus.EXECUTING)
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(**BLOG_PLAN), store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(0, "패키지 설치", context)

    assert not result.success
    assert "already executing" in result.message
    assert shell.calls == []


@pytest.mark.asyncio
async def test_missing_project_path(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=None, plan=make_plan(**BLOG_PLAN), store=store)

    result = await make_engine(fs, shell, fast_config).execute_step(0, "패키지 설치", context)

    assert not result.success
    assert store.status(0) == StepStatus.PENDING
    assert shell.calls == []


@pytest.mark.asyncio
async def test_exceptions_are_caught_at_the_step_boundary(shell, store, fast_config):
    class ExplodingFileSystem(FakeFileSystem):
        async def write(self, path, project_root, content):
            raise RuntimeError("disk on fire")

    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    result = await make_engine(ExplodingFileSystem(), shell, fast_config).execute_step(
        1, plan.steps[1], context
    )

    assert not result.success
    assert result.failure == FailureKind.UNEXPECTED
    assert "disk on fire" in result.message
    assert store.status(1) == StepStatus.FAILED
    assert any(e.type == LogType.ERROR and "disk on fire" in e.message for e in store.entries(1))


@pytest.mark.asyncio
async def test_listeners_see_every_entry(fs, shell, fast_config):
    store = ExecutionStore()
    seen = []
    store.add_listener(lambda index, entry: seen.append((index, entry.message)))
    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    await make_engine(fs, shell, fast_config).execute_step(0, plan.steps[0], context)

    assert [message for _, message in seen] == [e.message for e in store.entries(0)]
    assert {index for index, _ in seen} == {0}


# =============================================================================
# PLAN RUNS AND WIRING
# =============================================================================

@pytest.mark.asyncio
async def test_execute_plan_runs_steps_in_order(fs, shell, store, fast_config):
    plan = make_plan(**BLOG_PLAN)
    context = StepExecutionContext(project_path=PROJECT, plan=plan, store=store)

    results = await make_engine(fs, shell, fast_config).execute_plan(context)

    assert list(results) == [0, 1, 2]
    assert all(r.success for r in results.values())
    assert shell.calls == ["npm install react-icons axios", "npm run dev"]
    assert fs.written_paths() == ["src/components/PostList.tsx", "src/components/PostForm.tsx"]


@pytest.mark.asyncio
async def test_execute_plan_rejects_unknown_steps(fs, shell, store, fast_config):
    context = StepExecutionContext(project_path=PROJECT, plan=make_plan(**BLOG_PLAN), store=store)
    with pytest.raises(ValueError):
        await make_engine(fs, shell, fast_config).execute_plan(context, indices=[0, 7])
    assert shell.calls == []


def test_create_engine_wires_defaults(fast_config):
    fast_config.recovery.fix_attempts = 2
    engine = create_engine(fast_config)

    assert isinstance(engine.file_system, ProjectFileSystem)
    assert isinstance(engine.shell, ShellExecutor)
    assert isinstance(engine.error_checker, CompilerErrorChecker)
    assert engine.error_checker.fix_attempts == 2
    assert engine.chat is None


@pytest.mark.asyncio
async def test_create_step_on_real_filesystem(temp_project, store, fast_config):
    shell = FakeShell()
    content = "export default function PostList() {\r\n  return <ul />;\r\n}\r\n"
    plan = make_plan(
        filesToCreate=[{"path": "src/components/PostList.tsx"}],
        codeBlocks=[{"filePath": "src/components/PostList.tsx", "content": content}],
    )
    engine = create_engine(fast_config, shell=shell)
    context = StepExecutionContext(project_path=str(temp_project), plan=plan, store=store)

    result = await engine.execute_step(0, "컴포넌트 생성 (PostList.tsx)", context)

    written = temp_project / "src" / "components" / "PostList.tsx"
    assert result.success
    assert written.read_text(encoding="utf-8") == content.replace("\r\n", "\n")
    # the post-write check ran through the shell
    assert shell.calls and shell.calls[0].startswith("npx tsc --noEmit")
