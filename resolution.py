"""
Resolution strategy for planrunner.

WHAT THIS FILE DOES:
-------------------
A plan step is a sentence, not an identifier. This module turns the sentence
back into concrete things to act on:

    extract_file_names()  "3.1 컴포넌트 생성 (PostList.tsx, PostForm.tsx)"
                          -> ["PostList.tsx", "PostForm.tsx"]
    resolve_targets()     names -> FileDescriptors from the plan
                          (or synthesized ones when nothing matches)
    ContentResolver       FileDescriptor -> ResolvedContent(content, source)
    extract_commands()    "개발 서버 실행 (npm run dev)" -> ["npm run dev"]
    extract_packages()    "패키지 설치 (react-icons, axios)"
                          -> ["react-icons", "axios"]

THE CONTENT CHAIN:
-----------------
Content comes from the first stage that has something substantial (at least
min_content_length non-blank characters):

    CodeBlockStage  exact filePath, then suffix/basename fuzzy match
    TaskStage       create/modify task whose target matches the file
    TemplateStage   component boilerplate for .tsx/.jsx, "// name" otherwise

The chain prefers producing some file over failing. Every result carries its
source ("codeBlocks[2] (src/App.tsx)", "tasks[0] (App.tsx)", "template
(tsx/jsx)") so the log shows where the content came from.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from schemas import (
    CodeBlock,
    FileDescriptor,
    PlanDocument,
    ResolvedContent,
    Task,
)


MIN_CONTENT_LENGTH = 10

FILE_EXTENSIONS = (
    "ts|tsx|js|jsx|json|css|md|py|java|go|rs|cpp|c|h|hpp|sql|"
    "yaml|yml|xml|sh|bash|zsh|txt|html|vue|svelte"
)
_EXT = rf"\.(?:{FILE_EXTENSIONS})(?![A-Za-z0-9])"
_PATH_CHARS = r"[A-Za-z0-9_\-./]"

# "src/App.tsx 생성", "App.tsx create"
FILE_NEAR_VERB = re.compile(
    rf"({_PATH_CHARS}+{_EXT})\s*(?:생성|create|수정|modify|update|만들기)",
    re.IGNORECASE,
)
# any "dir/.../file.ext"
NESTED_FILE_PATH = re.compile(
    rf"((?:[A-Za-z0-9_\-.]+/)+[A-Za-z0-9_\-.]+{_EXT})",
    re.IGNORECASE,
)
# "something 생성" (last resort, may not carry an extension)
NAME_NEAR_VERB = re.compile(
    rf"({_PATH_CHARS}+)\s*(?:생성|create|수정|modify|update)",
    re.IGNORECASE,
)
# any "file.ext"
ANY_FILE = re.compile(rf"({_PATH_CHARS}+{_EXT})", re.IGNORECASE)

PARENTHETICAL = re.compile(r"\(([^)]+)\)")
FILE_LIKE = re.compile(r"^[A-Za-z0-9_\-./@\[\]]+$")

KNOWN_BINARIES = [
    "npm", "yarn", "pnpm", "node", "next", "npx",
    "java", "javac", "python", "python3", "pip", "pip3", "py",
    "go", "rustc", "cargo", "gcc", "g++", "clang", "clang++", "make", "cmake",
    "mvn", "gradle", "dotnet", "dart", "flutter", "php", "ruby", "rails",
    "bundle", "rake", "perl", "swift", "kotlin", "scala", "sbt",
    "tsc", "ts-node", "deno", "bun",
]

COMMAND_PATTERNS = [
    re.compile(r"\b" + pattern, re.IGNORECASE | re.ASCII) for pattern in [
        r"(npm\s+run\s+\w+)", r"(npm\s+test)", r"(yarn\s+\w+)", r"(pnpm\s+run\s+\w+)",
        r"(node\s+[\w./]+)", r"(npx\s+[\w\-]+(?:\s+[\w\-]+)*)",
        r"(python3?\s+-m\s+[\w.]+)", r"(python3?\s+[\w./]+\.py)",
        r"(pip3?\s+install\s+[\w\-]+(?:\s+[\w\-]+)*)",
        r"(javac?\s+[\w./]+)", r"(mvn\s+[\w\-]+)", r"(gradle\s+[\w\-]+)",
        r"(go\s+(?:run|build|test)(?:\s+[\w./]+)?)",
        r"(cargo\s+(?:run|build|test))", r"(rustc\s+[\w./]+)",
        r"(g\+\+\s+[\w./]+)", r"(gcc\s+[\w./]+)",
        r"(clang\+\+\s+[\w./]+)", r"(clang\s+[\w./]+)",
        r"(cmake\s+[\w./\-]+)", r"(make(?:\s+[\w\-]+)?)(?=\s|$|\))",
    ]
]

PACKAGE_NAME = re.compile(r"^@?[A-Za-z0-9][\w@/.\-^~]*$")


def basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1] if path else ""


def is_substantial(content: Optional[str], min_length: int = MIN_CONTENT_LENGTH) -> bool:
    return bool(content) and len(content.strip()) >= min_length


def parenthetical_items(description: str) -> list[str]:
    """Comma-separated items of the first parenthetical group."""
    match = PARENTHETICAL.search(description)
    if not match:
        return []
    return [item.strip() for item in match.group(1).split(",") if item.strip()]


# =============================================================================
# TARGET RESOLUTION
# =============================================================================

def extract_path_candidates(description: str) -> list[str]:
    """Path-like names from the step text, most specific pattern first."""
    candidates = []
    for pattern in (FILE_NEAR_VERB, NESTED_FILE_PATH, NAME_NEAR_VERB):
        match = pattern.search(description)
        if match:
            name = match.group(1).strip()
            if name and name not in candidates:
                candidates.append(name)
    return candidates


def extract_file_names(
    description: str,
    tasks: list[Task],
    files: list[FileDescriptor],
    step_index: int,
) -> list[str]:
    """
    Names of the files a step talks about.

    Tried in order until one yields something: the parenthetical list, a
    path-like pattern, task targets whose basename appears in the text, and
    finally the file at the step's index in the plan (else the first file).
    """
    names = [
        item for item in parenthetical_items(description)
        if FILE_LIKE.match(item)
    ]
    if names:
        return names

    candidates = extract_path_candidates(description)
    if candidates:
        return candidates[:1]

    names = [
        basename(task.target)
        for task in tasks
        if task.type in ("create", "modify")
        and task.target
        and basename(task.target) in description
    ]
    if names:
        return names

    if files:
        fallback = files[step_index] if step_index < len(files) else files[0]
        return [basename(fallback.path) or fallback.path]

    return []


def match_descriptor(name: str, files: list[FileDescriptor]) -> Optional[FileDescriptor]:
    """
    Find the plan file a name refers to.

    exact path -> path ends with name -> name ends with path ->
    same basename (or basename inside the path) -> bare containment.
    """
    for f in files:
        if f.path == name:
            return f
    for f in files:
        if f.path.endswith(name):
            return f
    for f in files:
        if name.endswith(f.path):
            return f

    name_only = basename(name)
    for f in files:
        if basename(f.path) == name_only or (name_only and name_only in f.path):
            return f

    for f in files:
        if name in f.path or f.path in name:
            return f

    return None


def resolve_targets(
    description: str,
    tasks: list[Task],
    files: list[FileDescriptor],
    step_index: int,
) -> list[FileDescriptor]:
    """One FileDescriptor per extracted name; unmatched names are synthesized."""
    targets = []
    for name in extract_file_names(description, tasks, files, step_index):
        matched = match_descriptor(name, files)
        if matched is None:
            matched = FileDescriptor(
                path=name,
                reason="extracted from step description",
                purpose="file creation",
                file_exists=False,
            )
        targets.append(matched)
    return targets


def resolve_modify_target(
    description: str,
    tasks: list[Task],
    files: list[FileDescriptor],
    step_index: int,
) -> Optional[FileDescriptor]:
    """
    The single file a modify step refers to.

    Only files already listed for modification qualify; nothing is
    synthesized.
    """
    for candidate in extract_path_candidates(description):
        matched = match_descriptor(candidate, files)
        if matched is not None:
            return matched

    for task in tasks:
        if task.type not in ("modify", "create") or not task.target:
            continue
        if task.target in description or basename(task.target) in description:
            for f in files:
                if f.path == task.target:
                    return f

    if not files:
        return None
    return files[step_index] if step_index < len(files) else files[0]


# =============================================================================
# CONTENT RESOLUTION
# =============================================================================

class ContentStage(ABC):
    """One link of the content chain."""

    @abstractmethod
    def resolve(
        self,
        path: str,
        plan: PlanDocument,
        min_length: int,
    ) -> Optional[ResolvedContent]:
        pass


class CodeBlockStage(ContentStage):
    """Content from the plan's code blocks."""

    def __init__(self, fuzzy: bool = True):
        self.fuzzy = fuzzy

    def find(self, path: str, blocks: list[CodeBlock]) -> Optional[int]:
        for i, block in enumerate(blocks):
            if block.file_path == path:
                return i
        if not self.fuzzy:
            return None
        for i, block in enumerate(blocks):
            if (
                block.file_path.endswith(path)
                or path.endswith(block.file_path)
                or basename(block.file_path) == basename(path)
            ):
                return i
        return None

    def resolve(self, path, plan, min_length):
        index = self.find(path, plan.code_blocks)
        if index is None:
            return None
        block = plan.code_blocks[index]
        if not is_substantial(block.content, min_length):
            return None
        return ResolvedContent(
            content=block.content,
            source=f"codeBlocks[{index}] ({block.file_path})",
        )


class TaskStage(ContentStage):
    """Content carried by a create/modify task."""

    def find(self, path: str, tasks: list[Task]) -> Optional[int]:
        file_tasks = [
            (i, t) for i, t in enumerate(tasks)
            if t.type in ("create", "modify") and t.target
        ]
        for i, task in file_tasks:
            if (
                task.target == path
                or task.target.endswith(path)
                or path.endswith(task.target)
                or basename(task.target) == basename(path)
            ):
                return i
        name_only = basename(path)
        for i, task in file_tasks:
            if name_only and name_only in task.target:
                return i
        return None

    def resolve(self, path, plan, min_length):
        index = self.find(path, plan.tasks)
        if index is None:
            return None
        task = plan.tasks[index]
        if not is_substantial(task.content, min_length):
            return None
        return ResolvedContent(
            content=task.content,
            source=f"tasks[{index}] ({task.target})",
        )


def component_template(name: str) -> str:
    """Minimal default-exported React component."""
    return (
        f"export default function {name}() {{\n"
        f"  return (\n"
        f"    <div>\n"
        f"      <h1>{name}</h1>\n"
        f"    </div>\n"
        f"  );\n"
        f"}}\n"
    )


def template_for(path: str) -> ResolvedContent:
    """Boilerplate for a file nobody supplied content for."""
    file_name = basename(path) or "file"
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""

    if ext in ("tsx", "jsx"):
        component = re.sub(r"\.(tsx|jsx)$", "", file_name, flags=re.IGNORECASE) or "Component"
        return ResolvedContent(
            content=component_template(component),
            source="template (tsx/jsx)",
        )

    kind = "ts/js" if ext in ("ts", "js") else "other"
    return ResolvedContent(content=f"// {file_name}\n", source=f"template ({kind})")


class TemplateStage(ContentStage):
    """Always produces something."""

    def resolve(self, path, plan, min_length):
        return template_for(path)


class ContentResolver:
    """
    Runs content stages in order and returns the first hit.

    Usage:
        resolver = ContentResolver([CodeBlockStage(), TaskStage(), TemplateStage()])
        resolved = resolver.resolve("src/App.tsx", plan)
    """

    def __init__(
        self,
        stages: Optional[list[ContentStage]] = None,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ):
        self.stages = stages if stages is not None else [
            CodeBlockStage(), TaskStage(), TemplateStage(),
        ]
        self.min_content_length = min_content_length

    def resolve(self, path: str, plan: PlanDocument) -> Optional[ResolvedContent]:
        for stage in self.stages:
            resolved = stage.resolve(path, plan, self.min_content_length)
            if resolved is not None:
                return resolved
        return None


# =============================================================================
# COMMANDS AND PACKAGES
# =============================================================================

def _starts_with_known_binary(text: str) -> bool:
    first = text.split()[0] if text.split() else ""
    return first.lower() in KNOWN_BINARIES


def _dedupe(items: list[str]) -> list[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def extract_commands(description: str, tasks: list[Task]) -> list[str]:
    """
    Shell commands a step asks for.

    Tried in order until one yields something: parenthetical commands that
    start with a known binary, ecosystem command patterns in the text,
    command tasks related to the text, and keyword inference.
    """
    commands = [
        match.group(1).strip()
        for match in PARENTHETICAL.finditer(description)
        if _starts_with_known_binary(match.group(1).strip())
    ]
    if commands:
        return _dedupe(commands)

    for pattern in COMMAND_PATTERNS:
        match = pattern.search(description)
        if match:
            commands.append(match.group(1).strip())
    if commands:
        return _dedupe(commands)

    lowered = description.lower()
    for task in tasks:
        if task.type != "command" or not task.command:
            continue
        command = task.command
        related = (
            command in description
            or ("개발 서버" in lowered and ("dev" in command or "run" in command))
            or ("빌드" in lowered and ("build" in command or "compile" in command))
            or ("테스트" in lowered and "test" in command)
        )
        if related:
            commands.append(command)
    if commands:
        return _dedupe(commands)

    if "개발 서버" in lowered or "서버" in lowered or re.search(r"\bdev", lowered):
        commands.append("npm run dev")
    if "빌드" in lowered or re.search(r"\bbuild", lowered):
        commands.append("npm run build")
    if "테스트" in lowered or re.search(r"\btest", lowered):
        commands.append("npm test")

    return _dedupe(commands)


def extract_packages(description: str, plan: PlanDocument) -> list[str]:
    """The plan's package list, else package-like names in the parenthetical."""
    if plan.packages:
        return list(plan.packages)
    return [item for item in parenthetical_items(description) if PACKAGE_NAME.match(item)]
