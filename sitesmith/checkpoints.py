"""Point-in-time snapshots of a workspace, persisted per sandbox."""
import asyncio
import json
import logging
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, ValidationError

from sitesmith.errors import CheckpointError, WorkspaceError
from sitesmith.sandbox.utils import flatten_file_paths
from sitesmith.sandbox.workspace import MAX_TREE_DEPTH, Workspace
from sitesmith.store import KeyValueStore


logger = logging.getLogger("sitesmith.checkpoints")

CHECKPOINT_PREFIX = "sitesmith:sandbox-checkpoints:"
MAX_CHECKPOINTS = 8
MAX_SNAPSHOT_FILES = 120
MAX_SNAPSHOT_BYTES = 2_000_000
RESTORE_CONCURRENCY = 4
BEFORE_APPLY_LABEL = "Before apply"

_ID_ALPHABET = string.digits + string.ascii_lowercase


class SnapshotFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class Checkpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    created_at: float
    prompt: str
    files: tuple[SnapshotFile, ...]
    file_count: int
    total_bytes: int
    truncated: bool


class Snapshot(BaseModel):
    files: list[SnapshotFile]
    total_bytes: int
    truncated: bool
    total_files: int


class RestoreResult(BaseModel):
    restored: list[str]
    failed: list[str]

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    @property
    def ok(self) -> bool:
        return not self.failed


def make_checkpoint_id(now: float) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"checkpoint-{int(now * 1000)}-{suffix}"


def format_label(now: float, prefix: str | None = None) -> str:
    dt = datetime.fromtimestamp(now)
    base = f"{dt:%b} {dt.day}, {dt:%H:%M}"
    return f"{prefix} {base}" if prefix else base


async def collect_project_files(
    workspace: Workspace,
    max_files: int = MAX_SNAPSHOT_FILES,
    max_bytes: int = MAX_SNAPSHOT_BYTES,
) -> Snapshot:
    """Read up to ``max_files`` files totalling at most ``max_bytes`` UTF-8 bytes."""
    try:
        tree = await workspace.list("", MAX_TREE_DEPTH)
    except WorkspaceError as e:
        raise CheckpointError("Failed to list project files for checkpoint") from e

    all_paths = flatten_file_paths(tree)
    target_paths = all_paths[:max_files]
    truncated = len(all_paths) > len(target_paths)

    files: list[SnapshotFile] = []
    total_bytes = 0
    for path in target_paths:
        try:
            content = await workspace.read(path)
        except Exception as e:
            logger.warning("skipping %s in snapshot: %s", path, e)
            continue
        if content is None:
            continue
        size = len(content.encode("utf-8"))
        if total_bytes + size > max_bytes:
            truncated = True
            break
        total_bytes += size
        files.append(SnapshotFile(path=path, content=content))

    return Snapshot(
        files=files,
        total_bytes=total_bytes,
        truncated=truncated,
        total_files=len(all_paths),
    )


async def capture_checkpoint(
    workspace: Workspace,
    label_prefix: str | None = None,
    prompt: str = "",
    max_files: int = MAX_SNAPSHOT_FILES,
    max_bytes: int = MAX_SNAPSHOT_BYTES,
    clock: Callable[[], float] = time.time,
) -> Checkpoint:
    snapshot = await collect_project_files(workspace, max_files, max_bytes)
    if not snapshot.files:
        raise CheckpointError("No files available for checkpoint")

    now = clock()
    checkpoint = Checkpoint(
        id=make_checkpoint_id(now),
        label=format_label(now, label_prefix),
        created_at=now,
        prompt=prompt,
        files=tuple(snapshot.files),
        file_count=len(snapshot.files),
        total_bytes=snapshot.total_bytes,
        truncated=snapshot.truncated,
    )
    logger.info(
        "captured %s files=%d bytes=%d truncated=%s",
        checkpoint.id,
        checkpoint.file_count,
        checkpoint.total_bytes,
        checkpoint.truncated,
    )
    return checkpoint


async def restore_checkpoint(
    checkpoint: Checkpoint,
    workspace: Workspace,
    concurrency: int = RESTORE_CONCURRENCY,
) -> RestoreResult:
    """Write every snapshotted file back with a pool of ``concurrency`` workers.

    Not transactional: files written before a failure stay written.
    """
    files = list(checkpoint.files)
    pending = iter(files)
    failed: set[str] = set()

    async def worker() -> None:
        for file in pending:
            try:
                await workspace.write(file.path, file.content)
            except Exception as e:
                logger.warning("restore of %s failed: %s", file.path, e)
                failed.add(file.path)

    if files:
        limit = max(1, min(concurrency, len(files)))
        await asyncio.gather(*(worker() for _ in range(limit)))

    return RestoreResult(
        restored=[f.path for f in files if f.path not in failed],
        failed=[f.path for f in files if f.path in failed],
    )


class CheckpointStore:
    """Most-recent-first checkpoint lists, one per sandbox, in a key-value store.

    Store failures never propagate: loading degrades to an empty list and
    persisting reports False.
    """

    def __init__(self, store: KeyValueStore, max_checkpoints: int = MAX_CHECKPOINTS) -> None:
        self._store = store
        self.max_checkpoints = max_checkpoints

    @staticmethod
    def key(sandbox_id: str) -> str:
        return f"{CHECKPOINT_PREFIX}{sandbox_id}"

    async def load(self, sandbox_id: str) -> list[Checkpoint]:
        if not sandbox_id:
            return []
        try:
            raw = await self._store.get(self.key(sandbox_id))
            parsed = json.loads(raw) if raw else []
        except Exception as e:
            logger.warning("failed to load checkpoints for %s: %s", sandbox_id, e)
            return []
        if not isinstance(parsed, list):
            return []

        checkpoints: list[Checkpoint] = []
        for item in parsed:
            try:
                checkpoints.append(Checkpoint.model_validate(item))
            except ValidationError:
                logger.warning("discarding malformed checkpoint for %s", sandbox_id)
        return checkpoints[: self.max_checkpoints]

    async def persist(self, sandbox_id: str, checkpoints: list[Checkpoint]) -> bool:
        if not sandbox_id:
            return False
        payload = json.dumps(
            [c.model_dump(mode="json") for c in checkpoints[: self.max_checkpoints]]
        )
        try:
            await self._store.set(self.key(sandbox_id), payload.encode("utf-8"))
        except Exception as e:
            logger.warning("failed to persist checkpoints for %s: %s", sandbox_id, e)
            return False
        return True

    async def add(self, sandbox_id: str, checkpoint: Checkpoint) -> list[Checkpoint]:
        checkpoints = [checkpoint, *await self.load(sandbox_id)][: self.max_checkpoints]
        await self.persist(sandbox_id, checkpoints)
        return checkpoints

    async def get(self, sandbox_id: str, checkpoint_id: str) -> Checkpoint | None:
        for checkpoint in await self.load(sandbox_id):
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None
