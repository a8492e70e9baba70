"""
Pydantic schemas for planrunner.

WHY THIS FILE EXISTS:
--------------------
The engine consumes a plan that an upstream LLM planning phase produced as
JSON. That JSON is loosely shaped: camelCase keys, missing lists, nulls where
a list was expected. Rather than poking at raw dicts all over the engine we
validate it once, here, into typed and immutable objects.

The second half of the file holds the records the engine itself produces:
log entries, step results, and the results reported back by the filesystem
and shell collaborators.

THE CENTRAL INVARIANT:
---------------------
PlanBody.execution_order is a list of human-readable sentences such as

    "3.1 컴포넌트 생성 (PostList.tsx, PostForm.tsx)"

There is no foreign key from a step into tasks, code blocks or the file
lists. Every step has to be re-resolved by text heuristics each time it runs
(see resolution.py).
"""

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# PLAN SCHEMAS (input, read-only)
# =============================================================================
# Field aliases match the JSON the planner writes; snake_case names work too.

class _PlanModel(BaseModel):
    """Base for plan models: camelCase aliases, immutable once loaded."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PlanMetadata(_PlanModel):
    """Where the plan came from."""
    user_request: Optional[str] = Field(
        default=None,
        alias="userRequest",
        description="The original request the plan answers"
    )
    created_at: Optional[str] = Field(
        default=None,
        alias="createdAt",
        description="When the plan was generated"
    )
    project_path: Optional[str] = Field(
        default=None,
        alias="projectPath",
        description="Project the plan was generated for"
    )


class FileDescriptor(_PlanModel):
    """
    An intended file creation or modification.

    Carries no content. Content comes from code blocks, tasks or a template.
    """
    path: str = Field(description="File path relative to the project root")
    reason: Optional[str] = Field(default=None, description="Why the file is touched")
    purpose: Optional[str] = Field(default=None, description="What a new file is for")
    changes: Optional[str] = Field(default=None, description="What changes in an existing file")
    file_exists: Optional[bool] = Field(
        default=None,
        alias="fileExists",
        description="Whether the planner saw the file on disk"
    )


class Task(_PlanModel):
    """
    A structured task record.

    Secondary source of truth, consulted when descriptor or code block
    resolution fails. The planner uses the types install, create, modify and
    command; other values are kept but no handler acts on them.
    """
    type: str = Field(description="install, create, modify or command")
    description: Optional[str] = Field(default=None)
    target: Optional[str] = Field(default=None, description="File path for create/modify")
    command: Optional[str] = Field(default=None, description="Shell command for install/command")
    content: Optional[str] = Field(default=None, description="File content for create/modify")


class CodeBlock(_PlanModel):
    """An LLM-produced (file path, content) pair. Primary source of file content."""
    file_path: str = Field(alias="filePath")
    language: Optional[str] = Field(default=None)
    content: Optional[str] = Field(default=None)


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class PlanBody(_PlanModel):
    """The plan proper: what to install, which files to touch, and the steps."""
    action_type: Optional[str] = Field(default=None, alias="actionType")
    packages: list[str] = Field(default_factory=list)
    files_to_create: list[FileDescriptor] = Field(default_factory=list, alias="filesToCreate")
    files_to_modify: list[FileDescriptor] = Field(default_factory=list, alias="filesToModify")
    execution_order: list[str] = Field(
        default_factory=list,
        alias="executionOrder",
        description="Ordered, human-readable step descriptions"
    )
    server_status: Optional[str] = Field(default=None, alias="serverStatus")
    needs_verification: list[str] = Field(default_factory=list, alias="needsVerification")

    @field_validator(
        "packages", "files_to_create", "files_to_modify",
        "execution_order", "needs_verification",
        mode="before"
    )
    @classmethod
    def lists_may_be_null(cls, v: Any) -> Any:
        return _none_to_list(v)


class Planning(_PlanModel):
    """Output of the planning phase."""
    analysis: Optional[str] = Field(default=None)
    questions: list[str] = Field(default_factory=list)
    is_clear: Optional[bool] = Field(default=None, alias="isClear")
    ready_to_execute: Optional[bool] = Field(default=None, alias="readyToExecute")
    plan: PlanBody = Field(default_factory=PlanBody)
    tasks: list[Task] = Field(default_factory=list)
    code_blocks: list[CodeBlock] = Field(default_factory=list, alias="codeBlocks")

    @field_validator("questions", "tasks", "code_blocks", mode="before")
    @classmethod
    def lists_may_be_null(cls, v: Any) -> Any:
        return _none_to_list(v)

    @field_validator("plan", mode="before")
    @classmethod
    def plan_may_be_null(cls, v: Any) -> Any:
        return {} if v is None else v


class PlanDocument(_PlanModel):
    """
    The whole plan document, passed to the engine wholesale.

    The engine never writes back to it. The properties below are shortcuts
    for the parts the handlers read most.
    """
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)
    planning: Planning = Field(default_factory=Planning)

    @field_validator("metadata", "planning", mode="before")
    @classmethod
    def sections_may_be_null(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def steps(self) -> list[str]:
        return self.planning.plan.execution_order

    @property
    def packages(self) -> list[str]:
        return self.planning.plan.packages

    @property
    def files_to_create(self) -> list[FileDescriptor]:
        return self.planning.plan.files_to_create

    @property
    def files_to_modify(self) -> list[FileDescriptor]:
        return self.planning.plan.files_to_modify

    @property
    def tasks(self) -> list[Task]:
        return self.planning.tasks

    @property
    def code_blocks(self) -> list[CodeBlock]:
        return self.planning.code_blocks


# =============================================================================
# EXECUTION LOG SCHEMAS
# =============================================================================

class LogType(str, Enum):
    """Kind of an execution log entry (drives the UI styling)."""
    INFO = "info"
    COMMAND = "command"
    FILE = "file"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class ExecutionLogEntry(BaseModel):
    """
    One structured event in a step's log.

    Entries are appended and never removed. They are keyed by step index in
    the ExecutionStore.
    """
    timestamp: datetime = Field(default_factory=datetime.now)
    type: LogType = Field(description="Entry kind")
    message: str = Field(description="Short human-readable message")
    command: Optional[str] = Field(default=None, description="Shell command, for command entries")
    file_path: Optional[str] = Field(default=None, description="File concerned, if any")
    details: Optional[str] = Field(default=None, description="Longer output or error text")


# =============================================================================
# STEP SCHEMAS
# =============================================================================

class StepStatus(str, Enum):
    """Caller-visible state of a step."""
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a step failed."""
    CLASSIFICATION = "classification"          # no handler took the step
    RESOLUTION = "resolution"                  # target or content not found
    WRITE = "write"                            # filesystem reported failure
    COMMAND = "command"                        # shell reported failure
    RECOVERY_EXHAUSTED = "recovery_exhausted"  # the one retry failed too
    ANALYSIS = "analysis"                      # empty or failed LLM reply
    UNEXPECTED = "unexpected"                  # exception caught at the boundary


class StepResult(BaseModel):
    """Terminal outcome of one execute_step call."""
    success: bool
    message: str
    failure: Optional[FailureKind] = Field(
        default=None,
        description="Failure category when success is False"
    )


class ActionKind(str, Enum):
    """What a step asks for, as decided by the classifier."""
    INSTALL = "install"
    CREATE = "create"
    MODIFY = "modify"
    COMMAND = "command"
    TASK = "task"
    ENV_VAR = "env_var"
    CONFIG_FILE = "config_file"
    INFORMATION = "information"


# =============================================================================
# COLLABORATOR RESULT SCHEMAS
# =============================================================================

class ReadResult(BaseModel):
    """File content returned by the filesystem collaborator."""
    content: str = ""


class WriteResult(BaseModel):
    """Outcome of a file write."""
    success: bool
    message: str = ""
    error: Optional[str] = None


class CommandResult(BaseModel):
    """
    Outcome of a shell command.

    A non-zero exit, a rejected command and a spawn error all come back as
    success=False; the engine never sees an exception for those.
    """
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    details: Optional[str] = None
    message: Optional[str] = None
    exit_code: Optional[int] = None

    def failure_text(self) -> str:
        """The text recovery inspects: stderr, else stdout, else details."""
        return self.stderr or self.stdout or self.details or ""

    def error_parts(self, labelled: bool = False) -> list[str]:
        """Non-empty error fields, optionally prefixed with their names."""
        fields = [
            ("error", self.error),
            ("details", self.details),
            ("stderr", self.stderr),
            ("stdout", self.stdout),
        ]
        return [
            f"{name}: {value}" if labelled else value
            for name, value in fields
            if value
        ]


class ProjectStructure(BaseModel):
    """Project overview used as context for analysis prompts."""
    project_type: str = "Unknown"
    tree_text: str = ""
    config_files: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# RESOLUTION SCHEMAS
# =============================================================================

class ResolvedContent(BaseModel):
    """File content plus where it came from (logged for every write)."""
    content: str
    source: str = Field(description="e.g. 'codeBlocks[2] (src/App.tsx)' or 'template (tsx/jsx)'")


class BuildError(BaseModel):
    """One `./path:line:col` occurrence in compiler output."""
    line: int
    column: int
    message: str = ""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def load_plan(path: Path) -> PlanDocument:
    """
    Load a plan document from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If the JSON doesn't have the plan shape
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Plan file not found: {path}")

    data = json.loads(path.read_text(encoding="utf-8"))
    return PlanDocument.model_validate(data)
