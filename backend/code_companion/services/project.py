"""Project profile scanning and prompt context formatting."""

from __future__ import annotations

import ast
import re
import tomllib
from pathlib import Path

from code_companion.core.logging import get_logger
from code_companion.db.store import KnowledgeStore
from code_companion.models.entities import ProjectProfile
from code_companion.utils.time import utc_now

logger = get_logger(__name__)

CONTEXT_UNAVAILABLE = "Project architecture context unavailable."

_REQUIREMENT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*")
_SKIPPED_DIRS = {"__pycache__", "tests", "node_modules", ".git", ".venv", "venv"}
_GRAPH_SKIPPED_DIRS = {"__pycache__", "node_modules", ".git", ".venv", "venv", "build", "dist"}


def _requirement_name(requirement: str) -> str | None:
    match = _REQUIREMENT_NAME_RE.match(requirement.strip())
    return match.group(0).lower() if match else None


def scan_tech_stack(root: Path) -> dict[str, list[str]]:
    """Read declared dependencies from ``pyproject.toml`` under ``root``."""
    backend: list[str] = []
    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        with pyproject.open("rb") as fh:
            data = tomllib.load(fh)
        project = data.get("project", {})
        requirements = list(project.get("dependencies", []))
        for extra in project.get("optional-dependencies", {}).values():
            requirements.extend(extra)
        for requirement in requirements:
            name = _requirement_name(requirement)
            if name and name not in backend:
                backend.append(name)
    else:
        logger.warning("pyproject.toml not found under %s during tech stack scan", root)
    return {
        "backend": backend,
        "database": ["SQLite"],
        "infra": ["Docker"] if (root / "Dockerfile").exists() else [],
    }


def _describe_package(directory: Path) -> str:
    for candidate in sorted(directory.glob("*.py")):
        try:
            docstring = ast.get_docstring(ast.parse(candidate.read_text(encoding="utf-8")))
        except (OSError, SyntaxError, UnicodeDecodeError):
            continue
        if docstring:
            return docstring.splitlines()[0].rstrip(".")
    return "Python modules"


def scan_directory_structure(root: Path) -> dict[str, str]:
    """Map each source package directory to a one-line description."""
    structure: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_dir() or _SKIPPED_DIRS.intersection(path.relative_to(root).parts):
            continue
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        if not any(path.glob("*.py")):
            continue
        structure[path.relative_to(root).as_posix()] = _describe_package(path)
    return structure


def architecture_overview(project_name: str, tech_stack: dict[str, list[str]]) -> str:
    backend = ", ".join(tech_stack.get("backend", [])) or "Python"
    return (
        f"{project_name} analyzes repository history (pull requests, commits, tickets) with "
        "retrieval-augmented generation. "
        f"The backend is built with {backend} and persists to {', '.join(tech_stack.get('database', []))}. "
        "GitHub webhooks and background sync jobs keep the knowledge base current."
    )


def module_name(relative: Path) -> str:
    """Dotted module path for a file relative to the scan root (``pkg/__init__.py`` is ``pkg``)."""
    parts = list(relative.with_suffix("").parts)
    if parts and parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def _resolve_relative(package: str, level: int, module: str | None) -> str:
    base = package.split(".") if package else []
    if level > 1:
        base = base[: len(base) - (level - 1)] if level - 1 <= len(base) else []
    return ".".join([*base, module] if module else base)


def extract_imports(source: str, module: str, is_package: bool = False) -> list[str]:
    """Modules imported by ``source``, relative imports resolved against ``module``.

    ``from pkg import name`` records both ``pkg`` and ``pkg.name`` since the
    name may itself be a submodule.
    """
    tree = ast.parse(source)
    package = module if is_package else module.rpartition(".")[0]
    imports: list[str] = []

    def add(name: str) -> None:
        if name and name not in imports:
            imports.append(name)

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                add(alias.name)
        elif isinstance(node, ast.ImportFrom):
            base = _resolve_relative(package, node.level, node.module) if node.level else node.module or ""
            add(base)
            for alias in node.names:
                if alias.name != "*":
                    add(f"{base}.{alias.name}" if base else alias.name)
    return imports


def scan_import_graph(root: Path) -> dict[str, list[str]]:
    """Map every ``.py`` file under ``root`` (posix path) to the modules it imports."""
    graph: dict[str, list[str]] = {}
    for path in sorted(root.rglob("*.py")):
        relative = path.relative_to(root)
        if any(part in _GRAPH_SKIPPED_DIRS or part.startswith(".") for part in relative.parts[:-1]):
            continue
        try:
            source = path.read_text(encoding="utf-8")
            graph[relative.as_posix()] = extract_imports(
                source, module_name(relative), is_package=path.name == "__init__.py"
            )
        except (OSError, SyntaxError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Skipping %s in import graph: %s", relative, exc)
    return graph


def _imports_module(imports: list[str], module: str) -> bool:
    return any(name == module or name.startswith(f"{module}.") for name in imports)


class ProjectService:
    """Scans the configured project root into a profile and an import graph."""

    def __init__(self, store: KnowledgeStore, project_name: str, root: Path) -> None:
        self.store = store
        self.project_name = project_name
        self.root = root

    def scan(self) -> ProjectProfile:
        logger.info("Updating project profile from %s", self.root)
        tech_stack = scan_tech_stack(self.root)
        profile = ProjectProfile(
            project_name=self.project_name,
            tech_stack=tech_stack,
            directory_structure=scan_directory_structure(self.root),
            architecture_overview=architecture_overview(self.project_name, tech_stack),
            last_scanned_at=utc_now(),
        )
        self.store.upsert_project_profile(profile)
        self.build_graph()
        return profile

    def build_graph(self) -> int:
        graph = scan_import_graph(self.root)
        written = self.store.upsert_codebase_nodes(graph)
        logger.info("Codebase graph built with %s files", written)
        return written

    def context(self) -> str:
        profile = self.store.get_project_profile(self.project_name)
        if profile is None:
            return CONTEXT_UNAVAILABLE
        return format_project_context(profile)

    def get_related_files(self, file: str) -> list[str]:
        """Modules imported by ``file``; empty when the file was never scanned."""
        node = self.store.get_codebase_node(file)
        return list(node.imports) if node else []

    def get_dependents(self, file: str) -> list[str]:
        """Scanned files that import ``file``'s module or something inside it.

        Matching accepts any dotted suffix of two or more parts, so
        ``src/app/models.py`` is found through ``app.models`` as well as
        ``src.app.models``.
        """
        parts = module_name(Path(file)).split(".")
        candidates = {".".join(parts[start:]) for start in range(len(parts) - 1)} or {".".join(parts)}
        candidates.discard("")
        return [
            node.file
            for node in self.store.list_codebase_nodes()
            if node.file != file and any(_imports_module(node.imports, module) for module in candidates)
        ]

def format_project_context(profile: ProjectProfile) -> str:
    stack = "\n".join(
        f"- {label}: {', '.join(profile.tech_stack.get(key, [])) or 'N/A'}"
        for key, label in (("backend", "Backend"), ("database", "Database"), ("infra", "Infrastructure"))
    )
    structure = "\n".join(f"- {path}: {description}" for path, description in profile.directory_structure.items())
    return (
        "## Project Architecture Context:\n"
        f"{profile.architecture_overview}\n\n"
        f"### Technology Stack:\n{stack}\n\n"
        f"### Directory Structure & Modules:\n{structure}\n"
    )


__all__ = [
    "CONTEXT_UNAVAILABLE",
    "ProjectService",
    "architecture_overview",
    "extract_imports",
    "format_project_context",
    "module_name",
    "scan_import_graph",
    "scan_directory_structure",
    "scan_tech_stack",
]
