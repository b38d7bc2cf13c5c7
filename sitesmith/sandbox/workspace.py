import logging
import posixpath
from typing import Protocol

from vercel.sandbox import AsyncSandbox as Sandbox

from sitesmith.errors import WorkspaceError
from sitesmith.sandbox.utils import (
    IGNORED_DIRS,
    FileNode,
    build_file_tree,
    resolve_project_path,
    shell_quote,
)


logger = logging.getLogger("sitesmith.sandbox")

MAX_TREE_DEPTH = 8


class Workspace(Protocol):
    """File access to one remote project, scoped under its project root."""

    async def list(self, path: str = "", depth: int = MAX_TREE_DEPTH) -> list[FileNode]: ...

    async def read(self, path: str) -> str | None:
        """Return the file content, or None when the file does not exist."""
        ...

    async def write(self, path: str, content: str) -> None: ...

    async def delete(self, path: str) -> None: ...


class SandboxWorkspace:
    """Workspace backed by a Vercel sandbox, rooted at a project directory."""

    def __init__(self, sandbox: Sandbox, project_dir: str) -> None:
        self._sandbox = sandbox
        self.project_dir = posixpath.normpath(project_dir)

    @classmethod
    async def connect(cls, sandbox_id: str, project_dir_name: str) -> "SandboxWorkspace":
        sandbox = await Sandbox.get(sandbox_id=sandbox_id)
        return cls(sandbox, posixpath.join(sandbox.sandbox.cwd, project_dir_name))

    @property
    def sandbox_id(self) -> str:
        return self._sandbox.sandbox_id

    async def _run(self, script: str) -> tuple[int, str]:
        cmd = await self._sandbox.run_command(
            "bash", ["-lc", f"cd {shell_quote(self.project_dir)} && {script}"]
        )
        out = await cmd.stdout()
        exit_code = getattr(cmd, "exit_code", 0)
        return (exit_code if exit_code is not None else 0), (out or "")

    async def list(self, path: str = "", depth: int = MAX_TREE_DEPTH) -> list[FileNode]:
        depth = min(max(depth, 0), MAX_TREE_DEPTH)
        folder = resolve_project_path(self.project_dir, path)
        prune = " -o ".join(f"-name {shell_quote(name)}" for name in sorted(IGNORED_DIRS))
        exit_code, out = await self._run(
            f"cd {shell_quote(folder)} && "
            f"find . -mindepth 1 -maxdepth {depth + 1} \\( {prune} \\) -prune "
            "-o -printf '%y\\t%P\\n' 2>/dev/null"
        )
        if exit_code != 0:
            logger.warning("list failed path=%r exit=%d", path, exit_code)
            return []
        entries: list[tuple[str, str]] = []
        for line in out.splitlines():
            try:
                kind, rel = line.split("\t", 1)
            except ValueError:
                continue
            entries.append((kind, rel))
        return build_file_tree(entries, base_path=path)

    async def read(self, path: str) -> str | None:
        full = resolve_project_path(self.project_dir, path)
        exit_code, out = await self._run(f"cat -- {shell_quote(full)} 2>/dev/null")
        if exit_code != 0:
            return None
        return out

    async def write(self, path: str, content: str) -> None:
        full = resolve_project_path(self.project_dir, path)
        parent = posixpath.dirname(full)
        if parent != self.project_dir:
            exit_code, _ = await self._run(f"mkdir -p -- {shell_quote(parent)}")
            if exit_code != 0:
                raise WorkspaceError(f"Failed to create directory for {path}")
        try:
            await self._sandbox.write_files([{"path": full, "content": content.encode("utf-8")}])
        except Exception as e:
            raise WorkspaceError(f"Failed to write {path}: {e}") from e

    async def delete(self, path: str) -> None:
        full = resolve_project_path(self.project_dir, path)
        quoted = shell_quote(full)
        exit_code, _ = await self._run(f"if [ -d {quoted} ]; then exit 3; fi; rm -f -- {quoted}")
        if exit_code != 0:
            raise WorkspaceError(f"Failed to delete {path}")
