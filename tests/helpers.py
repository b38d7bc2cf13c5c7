import asyncio
import json
from collections.abc import AsyncIterator

from sitesmith.errors import WorkspaceError
from sitesmith.sandbox.utils import FileNode, build_file_tree
from sitesmith.sse import SSE_DONE, sse_format


class MemoryWorkspace:
    """Workspace over a dict, with optional per-path write failures."""

    def __init__(self, files: dict[str, str] | None = None, fail_writes=()) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.fail_writes = set(fail_writes)
        self.writes: list[str] = []
        self.deletes: list[str] = []

    async def list(self, path: str = "", depth: int = 8) -> list[FileNode]:
        prefix = f"{path}/" if path else ""
        entries = [("f", p[len(prefix):]) for p in self.files if p.startswith(prefix)]
        return build_file_tree(entries, base_path=path)

    async def read(self, path: str) -> str | None:
        return self.files.get(path)

    async def write(self, path: str, content: str) -> None:
        if path in self.fail_writes:
            raise WorkspaceError(f"Failed to write {path}")
        self.writes.append(path)
        self.files[path] = content

    async def delete(self, path: str) -> None:
        if path in self.fail_writes:
            raise WorkspaceError(f"Failed to delete {path}")
        self.deletes.append(path)
        self.files.pop(path, None)


class ScriptedTransport:
    """Yields canned chunks; can raise afterwards or hang until released."""

    def __init__(self, chunks=(), error: Exception | None = None, hang: bool = False) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.release = asyncio.Event()
        self.prompts: list[str] = []
        self.closed = 0

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        try:
            for chunk in self.chunks:
                yield chunk
            if self.hang:
                await self.release.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1


class CannedGenerator:
    def __init__(self, reply: str | dict) -> None:
        self.reply = reply if isinstance(reply, str) else json.dumps(reply)
        self.calls: list[tuple[str, list[dict[str, str]]]] = []

    async def generate_edits(self, instruction: str, files: list[dict[str, str]]) -> str:
        self.calls.append((instruction, files))
        return self.reply


def events(*items: dict, done: bool = True) -> list[str]:
    frames = [sse_format(item) for item in items]
    if done:
        frames.append(SSE_DONE)
    return frames


