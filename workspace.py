"""
Project filesystem for planrunner.

WHAT THIS FILE DOES:
-------------------
Reads and writes files inside the target project and describes its shape.
This is the only place the engine touches the project's files.

    fs = ProjectFileSystem()
    await fs.write("src/App.tsx", "/path/to/project", content)
    text = (await fs.read("src/App.tsx", "/path/to/project")).content
    structure = fs.describe_structure("/path/to/project")

PATH SAFETY:
-----------
Every path is resolved relative to the project root and must stay inside it.
"../../etc/passwd" raises ValueError before anything is read or written.

LINE ENDINGS:
------------
Written content is normalized to LF (CRLF and lone CR become \\n) and stored
as UTF-8. Parent directories are created as needed.
"""

import json
import logging
from pathlib import Path

from schemas import ProjectStructure, ReadResult, WriteResult


logger = logging.getLogger("planrunner.workspace")


# Directories and files left out of the structure tree
IGNORE_PATTERNS = [
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".DS_Store",
    ".env",
    ".cache",
    "coverage",
    ".vscode",
    ".idea",
    "__pycache__",
    ".venv",
    "planning",
]

# Files worth showing an LLM when it analyses the project
CONFIG_FILES = [
    "package.json",
    "tsconfig.json",
    "next.config.js",
    "next.config.ts",
    "vite.config.js",
    "vite.config.ts",
    "webpack.config.js",
    "tailwind.config.js",
    "tailwind.config.ts",
    "pyproject.toml",
    "requirements.txt",
    "go.mod",
    "Cargo.toml",
    "pom.xml",
    "README.md",
    ".env",
    ".env.local",
]


def normalize_newlines(content: str) -> str:
    """CRLF and CR to LF."""
    return content.replace("\r\n", "\n").replace("\r", "\n")


def detect_project_type(config_files: dict[str, str]) -> str:
    """Best-effort framework/language label from the project's config files."""
    package_json = config_files.get("package.json")
    if package_json:
        try:
            data = json.loads(package_json)
        except json.JSONDecodeError:
            data = {}
        dependencies = {
            **(data.get("dependencies") or {}),
            **(data.get("devDependencies") or {}),
        }
        for dependency, label in [
            ("next", "Next.js"),
            ("react", "React"),
            ("vue", "Vue"),
            ("@angular/core", "Angular"),
            ("svelte", "Svelte"),
        ]:
            if dependency in dependencies:
                return label
        return "Node.js"

    if "pyproject.toml" in config_files or "requirements.txt" in config_files:
        return "Python"
    if "go.mod" in config_files:
        return "Go"
    if "Cargo.toml" in config_files:
        return "Rust"
    if "pom.xml" in config_files:
        return "Java"
    return "Unknown"


class ProjectFileSystem:
    """
    Filesystem collaborator scoped per call to a project root.

    The methods are coroutines so the engine can await them uniformly with
    the shell and chat collaborators.
    """

    def __init__(self, max_depth: int = 5):
        self.max_depth = max_depth

    def _resolve_path(self, path: str, project_root: str) -> Path:
        """
        Resolve a path within the project, preventing directory traversal.

        Raises:
            ValueError: If path attempts to escape the project
        """
        root = Path(project_root).expanduser().resolve()

        # Remove leading slashes to treat as relative
        path = path.lstrip("/")
        full_path = (root / path).resolve()

        try:
            full_path.relative_to(root)
        except ValueError:
            raise ValueError(f"Path '{path}' attempts to escape the project")

        return full_path

    async def read(self, path: str, project_root: str) -> ReadResult:
        """
        Read a UTF-8 text file from the project.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the path escapes the project
        """
        full_path = self._resolve_path(path, project_root)

        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        return ReadResult(content=full_path.read_text(encoding="utf-8"))

    async def write(self, path: str, project_root: str, content: str) -> WriteResult:
        """
        Write content to a file in the project, creating parent directories.

        Raises:
            ValueError: If the path escapes the project
        """
        full_path = self._resolve_path(path, project_root)

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(normalize_newlines(content), encoding="utf-8")
        except OSError as e:
            logger.error(f"Write failed for {path}: {e}")
            return WriteResult(success=False, error=str(e))

        logger.debug(f"Wrote {len(content)} characters to {path}")
        return WriteResult(success=True, message=f"Saved {path}")

    def describe_structure(self, project_root: str) -> ProjectStructure:
        """Tree text, project type and key config files of a project."""
        root = Path(project_root).expanduser()
        if not root.is_dir():
            return ProjectStructure()

        lines: list[str] = []
        self._build_tree(root, "", lines, 0)

        config_files = {}
        for name in CONFIG_FILES:
            candidate = root / name
            if candidate.is_file():
                try:
                    config_files[name] = candidate.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue

        return ProjectStructure(
            project_type=detect_project_type(config_files),
            tree_text="\n".join(lines),
            config_files=config_files,
        )

    def _build_tree(
        self,
        path: Path,
        prefix: str,
        lines: list[str],
        depth: int,
    ) -> None:
        """Build tree representation recursively."""
        if depth >= self.max_depth:
            return

        children = sorted([
            p for p in path.iterdir()
            if not any(pattern in p.name for pattern in IGNORE_PATTERNS)
        ], key=lambda p: (not p.is_dir(), p.name.lower()))

        for i, child in enumerate(children):
            is_last = i == len(children) - 1
            connector = "└── " if is_last else "├── "

            if child.is_dir():
                lines.append(f"{prefix}{connector}{child.name}/")
                new_prefix = prefix + ("    " if is_last else "│   ")
                self._build_tree(child, new_prefix, lines, depth + 1)
            else:
                lines.append(f"{prefix}{connector}{child.name}")
