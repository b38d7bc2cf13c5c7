import posixpath
import re
from typing import Literal

from pydantic import BaseModel

from sitesmith.errors import PathError


# Directories never surfaced from a project tree
IGNORED_DIRS = {"node_modules", ".next", ".git", ".vercel"}

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class FileNode(BaseModel):
    name: str
    path: str
    type: Literal["file", "folder"]
    children: list["FileNode"] | None = None


FileNode.model_rebuild()


def shell_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


def normalize_relative_path(raw: object) -> str:
    """Normalize a project-relative path or raise PathError.

    Returns "" for the project root itself ("", ".", "./").
    """
    if not isinstance(raw, str):
        raise PathError("Path must be a string")
    if "\0" in raw:
        raise PathError("Path contains invalid characters")

    candidate = raw.replace("\\", "/").strip()
    if not candidate:
        return ""
    if candidate.startswith("/") or _DRIVE_RE.match(candidate):
        raise PathError("Absolute paths are not allowed")

    normalized = posixpath.normpath(candidate)
    if normalized == ".." or normalized.startswith("../"):
        raise PathError("Path traversal is not allowed")
    return "" if normalized == "." else normalized


def resolve_project_path(project_dir: str, relative_path: str) -> str:
    root = posixpath.normpath(project_dir)
    full = posixpath.normpath(posixpath.join(root, relative_path)) if relative_path else root
    if full != root and not full.startswith(root.rstrip("/") + "/"):
        raise PathError("Resolved path is outside project root")
    return full


def looks_binary(content: str) -> bool:
    return "\0" in content


def file_priority(path: str) -> int:
    """Rank files so the entry page and layout land in the edit context first."""
    if path == "app/page.tsx":
        return 0
    if path == "app/layout.tsx":
        return 1
    if path == "app/globals.css":
        return 2
    if path.startswith("components/"):
        return 3
    if path.startswith("app/"):
        return 4
    if path.startswith("lib/"):
        return 5
    return 8


def sort_by_priority(paths: list[str]) -> list[str]:
    return sorted(paths, key=lambda p: (file_priority(p), p))


def is_ignored(rel: str) -> bool:
    for part in rel.split("/"):
        if part in IGNORED_DIRS:
            return True
        if part.startswith("."):
            return True
    return False


def build_file_tree(
    entries: list[tuple[str, str]], base_path: str = ""
) -> list[FileNode]:
    """Build a nested tree from `find -printf '%y\\t%P\\n'` style entries.

    Each entry is (kind, path relative to ``base_path``) where kind is "d" for
    directories and anything else for files.
    """
    roots: list[FileNode] = []
    folders: dict[str, FileNode] = {}

    def parent_children(rel: str) -> list[FileNode]:
        parent = posixpath.dirname(rel)
        if not parent:
            return roots
        node = folders.get(parent)
        if node is None:
            node = FileNode(
                name=posixpath.basename(parent),
                path=posixpath.join(base_path, parent) if base_path else parent,
                type="folder",
                children=[],
            )
            folders[parent] = node
            parent_children(parent).append(node)
        return node.children  # type: ignore[return-value]

    for kind, rel in sorted(entries, key=lambda e: e[1]):
        rel = rel.strip("/")
        if not rel or is_ignored(rel):
            continue
        full = posixpath.join(base_path, rel) if base_path else rel
        if kind == "d":
            if rel in folders:
                continue
            node = FileNode(name=posixpath.basename(rel), path=full, type="folder", children=[])
            folders[rel] = node
        else:
            node = FileNode(name=posixpath.basename(rel), path=full, type="file")
        parent_children(rel).append(node)
    return roots


def flatten_file_paths(nodes: list[FileNode]) -> list[str]:
    paths: list[str] = []

    def visit(node: FileNode) -> None:
        if node.type == "file":
            paths.append(node.path)
            return
        for child in node.children or []:
            visit(child)

    for node in nodes:
        visit(node)
    return sorted(paths)
