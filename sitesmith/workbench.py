import logging
from collections.abc import Callable, Iterable

import httpx

from sitesmith.checkpoints import (
    Checkpoint,
    CheckpointStore,
    RestoreResult,
    capture_checkpoint,
    restore_checkpoint,
)
from sitesmith.config import Settings, get_settings
from sitesmith.errors import CheckpointError, ConfirmationRequired, EditError
from sitesmith.generator import EditGenerator, OpenAIEditGenerator
from sitesmith.orchestrator import ApplyReport, EditOrchestrator, EditPlan, plural
from sitesmith.sandbox.client import HttpWorkspace
from sitesmith.sandbox.workspace import Workspace
from sitesmith.session import GenerationSession, MessageType, SessionState
from sitesmith.store import make_store
from sitesmith.transport import HttpGenerationTransport


logger = logging.getLogger("sitesmith.workbench")


class Workbench:
    """One user's view of a generation run and the edits made on top of it.

    Owns the session, the pending edit plan with its selection, and the checkpoint
    list of the current sandbox. Destructive calls raise ConfirmationRequired until
    repeated with ``confirmed=True``.
    """

    def __init__(
        self,
        session: GenerationSession,
        workspace_factory: Callable[[str], Workspace],
        generator: EditGenerator,
        store: CheckpointStore,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._workspace_factory = workspace_factory
        self._generator = generator
        self._store = store
        self.plan: EditPlan | None = None
        self.selected_paths: list[str] = []
        self.checkpoints: list[Checkpoint] = []
        self.last_apply_checkpoint_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Workbench":
        """Wire a workbench to the generation service and a sitesmith API server."""
        settings = settings or get_settings()
        api = httpx.AsyncClient(base_url=settings.api_url, timeout=60.0)
        return cls(
            GenerationSession(HttpGenerationTransport(settings.generation_url)),
            lambda sandbox_id: HttpWorkspace(api, sandbox_id),
            OpenAIEditGenerator(settings),
            CheckpointStore(make_store(settings), settings.max_checkpoints),
            settings,
        )

    @property
    def sandbox_id(self) -> str | None:
        return self.session.state.sandbox_id

    @property
    def last_apply_checkpoint(self) -> Checkpoint | None:
        if not self.last_apply_checkpoint_id:
            return None
        return self._find_checkpoint(self.last_apply_checkpoint_id)

    # Generation

    async def start(self, prompt: str) -> SessionState:
        if not prompt.strip():
            return self.session.snapshot()
        self._reset_workspace_state()
        state = await self.session.start(prompt)
        await self.refresh_checkpoints()
        return state

    async def retry(self) -> SessionState:
        if not self.session.latest_prompt:
            return self.session.snapshot()
        self._reset_workspace_state()
        state = await self.session.retry()
        await self.refresh_checkpoints()
        return state

    def cancel(self) -> bool:
        return self.session.cancel()

    def _reset_workspace_state(self) -> None:
        self.plan = None
        self.selected_paths = []
        self.checkpoints = []
        self.last_apply_checkpoint_id = None

    # Edits

    def _require_workspace(self) -> tuple[str, Workspace]:
        sandbox_id = self.sandbox_id
        if not sandbox_id:
            raise EditError("Sandbox not ready", status_code=409)
        if self.session.is_busy:
            raise EditError("Generation is still running", status_code=409)
        return sandbox_id, self._workspace_factory(sandbox_id)

    def _orchestrator(self) -> EditOrchestrator:
        sandbox_id, workspace = self._require_workspace()
        return EditOrchestrator(workspace, self._generator, self._store, sandbox_id, self.settings)

    async def prepare(self, instruction: str, file_paths: list[str] | None = None) -> EditPlan:
        self.plan = None
        self.selected_paths = []
        plan = await self._orchestrator().prepare(instruction, file_paths)
        self.plan = plan
        self.selected_paths = plan.paths
        logger.info("prepared %s for review", plural(len(plan.previews), "file change"))
        return plan

    def select(self, paths: Iterable[str]) -> None:
        available = set(self.plan.paths) if self.plan else set()
        self.selected_paths = [p for p in dict.fromkeys(paths) if p in available]

    def toggle(self, path: str) -> None:
        if path in self.selected_paths:
            self.selected_paths = [p for p in self.selected_paths if p != path]
        else:
            self.select([*self.selected_paths, path])

    def select_all(self) -> None:
        self.selected_paths = self.plan.paths if self.plan else []

    def clear_selection(self) -> None:
        self.selected_paths = []

    def discard_plan(self) -> None:
        self.plan = None
        self.selected_paths = []

    async def apply_selected(self, confirmed: bool = False) -> ApplyReport:
        plan = self.plan
        if plan is None:
            raise EditError("No prepared edits to apply", status_code=400)
        selected = plan.select(self.selected_paths)
        if not selected:
            raise EditError("Select at least one file in the preview to apply edits", status_code=400)

        deletions = sum(1 for edit in selected if edit.delete)
        if deletions and not confirmed:
            raise ConfirmationRequired(f"Apply selected edits and delete {plural(deletions, 'file')}?")

        report = await self._orchestrator().apply(plan, self.selected_paths)
        if report.checkpoint is not None:
            await self._remember(report.checkpoint)
            self.last_apply_checkpoint_id = report.checkpoint.id

        fail_suffix = f" ({plural(len(report.failed), 'file')} failed)" if report.failed else ""
        self.session.append_message(
            MessageType.ASSISTANT_TEXT,
            event_type="edit_applied",
            content=f"{report.summary}{fail_suffix} | Undo available",
        )
        self.plan = None
        self.selected_paths = []
        return report

    # Checkpoints

    async def refresh_checkpoints(self) -> list[Checkpoint]:
        sandbox_id = self.sandbox_id
        self.checkpoints = await self._store.load(sandbox_id) if sandbox_id else []
        return self.checkpoints

    def _find_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        return next((c for c in self.checkpoints if c.id == checkpoint_id), None)

    async def _remember(self, checkpoint: Checkpoint) -> None:
        others = [c for c in self.checkpoints if c.id != checkpoint.id]
        self.checkpoints = [checkpoint, *others][: self._store.max_checkpoints]
        if self.sandbox_id:
            await self._store.persist(self.sandbox_id, self.checkpoints)

    async def create_checkpoint(self, label_prefix: str | None = None) -> Checkpoint:
        _, workspace = self._require_workspace()
        checkpoint = await capture_checkpoint(
            workspace,
            label_prefix=label_prefix,
            prompt=self.session.latest_prompt,
            max_files=self.settings.checkpoint_max_files,
            max_bytes=self.settings.checkpoint_max_bytes,
        )
        await self._remember(checkpoint)
        return checkpoint

    async def restore(self, checkpoint_id: str, confirmed: bool = False) -> RestoreResult:
        checkpoint = self._find_checkpoint(checkpoint_id)
        if checkpoint is None:
            raise CheckpointError("Checkpoint not found")
        if not confirmed:
            raise ConfirmationRequired(
                f'Restore version "{checkpoint.label}"? This will overwrite matching files in the sandbox.'
            )
        return await self._restore(checkpoint, f"Restored version {checkpoint.label}")

    async def undo_last_apply(self, confirmed: bool = False) -> RestoreResult:
        checkpoint = self.last_apply_checkpoint
        if checkpoint is None:
            raise CheckpointError("No recent apply backup available")
        if not confirmed:
            raise ConfirmationRequired(f'Undo last apply by restoring "{checkpoint.label}"?')
        result = await self._restore(checkpoint, f"Undid last apply using {checkpoint.label}")
        if result.ok:
            self.discard_plan()
        return result

    async def _restore(self, checkpoint: Checkpoint, success_message: str) -> RestoreResult:
        _, workspace = self._require_workspace()
        result = await restore_checkpoint(checkpoint, workspace, self.settings.restore_concurrency)
        if result.ok:
            self.last_apply_checkpoint_id = None
            content = success_message
        else:
            content = f"Restored {result.restored_count}/{checkpoint.file_count} files"
            logger.warning("restore of %s incomplete: failed=%s", checkpoint.id, result.failed)
        self.session.append_message(
            MessageType.ASSISTANT_TEXT, event_type="checkpoint_restored", content=content
        )
        return result
