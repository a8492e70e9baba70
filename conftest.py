"""
Shared test fixtures: in-memory collaborators for the engine.

FakeFileSystem, FakeShell and FakeChat implement the same async contracts as
ProjectFileSystem, ShellExecutor and ChatClient, and record every call so
tests can assert on what the engine did.
"""

import sys
from pathlib import Path
from typing import Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from config import Config, TimingConfig
from execution_log import ExecutionStore
from providers import sse_frame, SSE_DONE
from schemas import (
    CommandResult,
    PlanDocument,
    ProjectStructure,
    ReadResult,
    WriteResult,
)


PROJECT = "/tmp/planrunner-project"


class FakeFileSystem:
    """Dict-backed filesystem."""

    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files = dict(files or {})
        self.writes: list[tuple[str, str]] = []
        self.reads: list[str] = []
        self.failing: set[str] = set()
        self.structure = ProjectStructure(
            project_type="Next.js",
            tree_text="├── package.json\n└── src/",
            config_files={"package.json": '{"dependencies": {"next": "15.0.0"}}'},
        )

    async def read(self, path: str, project_root: str) -> ReadResult:
        self.reads.append(path)
        if path not in self.files:
            raise FileNotFoundError(f"File not found: {path}")
        return ReadResult(content=self.files[path])

    async def write(self, path: str, project_root: str, content: str) -> WriteResult:
        self.writes.append((path, content))
        if path in self.failing:
            return WriteResult(success=False, error="disk full")
        self.files[path] = content
        return WriteResult(success=True, message=f"Saved {path}")

    def describe_structure(self, project_root: str) -> ProjectStructure:
        return self.structure

    def written_paths(self) -> list[str]:
        return [path for path, _ in self.writes]


class FakeShell:
    """
    Scripted shell.

    on(command, *results) queues results for a command; unscripted commands
    succeed with stdout "ok".
    """

    def __init__(self):
        self.calls: list[str] = []
        self.responses: dict[str, list[CommandResult]] = {}

    def on(self, command: str, *results: CommandResult) -> "FakeShell":
        self.responses.setdefault(command, []).extend(results)
        return self

    async def execute(self, command: str, project_root: str) -> CommandResult:
        self.calls.append(command)
        queued = self.responses.get(command)
        if queued:
            return queued.pop(0)
        return CommandResult(success=True, stdout="ok")


class FakeChat:
    """Replies with canned text, streamed as SSE frames in small chunks."""

    def __init__(self, *replies: str):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, prompt: str, history: Optional[list] = None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        for i in range(0, len(reply), 7):
            yield sse_frame(reply[i:i + 7])
        yield f"data: {SSE_DONE}\n\n"


def make_plan(**plan_fields) -> PlanDocument:
    """
    A plan document from camelCase plan fields.

    tasks and codeBlocks go to planning; everything else to planning.plan.
    """
    tasks = plan_fields.pop("tasks", [])
    code_blocks = plan_fields.pop("codeBlocks", [])
    return PlanDocument.model_validate({
        "metadata": {"userRequest": "Build a blog", "projectPath": PROJECT},
        "planning": {
            "analysis": "A small blog",
            "plan": plan_fields,
            "tasks": tasks,
            "codeBlocks": code_blocks,
        },
    })


@pytest.fixture
def fast_config():
    """Default config with every delay set to zero."""
    return Config(timing=TimingConfig(
        file_delay=0, command_delay=0, port_release_wait=0, rebuild_wait=0,
    ))


@pytest.fixture
def fs():
    return FakeFileSystem()


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def store():
    return ExecutionStore()
