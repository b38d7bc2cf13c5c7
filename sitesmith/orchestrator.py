import logging
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sitesmith.checkpoints import BEFORE_APPLY_LABEL, Checkpoint, CheckpointStore, capture_checkpoint
from sitesmith.config import Settings, get_settings
from sitesmith.diff import deleted_file_diff, unified_diff
from sitesmith.edits import NormalizedEdit, normalize_edits, parse_edit_response, unique_paths
from sitesmith.errors import EditError, SitesmithError
from sitesmith.generator import EditGenerator
from sitesmith.sandbox.utils import flatten_file_paths, looks_binary, sort_by_priority
from sitesmith.sandbox.workspace import MAX_TREE_DEPTH, Workspace


logger = logging.getLogger("sitesmith.orchestrator")

TRUNCATED_MARKER = "\n/* truncated */"


class ContextFile(BaseModel):
    path: str
    content: str


class FilePreview(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: str
    additions: int
    deletions: int
    changed: bool
    is_new_file: bool
    is_deleted: bool
    diff: str
    outside_context: bool = False


class EditPlan(BaseModel):
    """Proposed changes awaiting review; previews and edits cover the same paths."""

    instruction: str
    summary: str
    notes: list[str] = Field(default_factory=list)
    previews: list[FilePreview]
    proposed_edits: list[NormalizedEdit]
    context_files: list[str] = Field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [p.path for p in self.previews]

    def select(self, paths: Iterable[str]) -> list[NormalizedEdit]:
        wanted = set(paths)
        return [edit for edit in self.proposed_edits if edit.path in wanted]


class ApplyFailure(BaseModel):
    path: str
    reason: str


class ApplyReport(BaseModel):
    instruction: str
    summary: str
    notes: list[str] = Field(default_factory=list)
    applied: list[str]
    failed: list[ApplyFailure]
    previews: list[FilePreview]
    checkpoint_id: str
    checkpoint: Checkpoint | None = Field(default=None, exclude=True)

    @property
    def partial(self) -> bool:
        return bool(self.applied) and bool(self.failed)


def plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


class EditOrchestrator:
    """Preview and apply natural-language edits against one sandbox workspace."""

    def __init__(
        self,
        workspace: Workspace,
        generator: EditGenerator,
        checkpoints: CheckpointStore,
        sandbox_id: str,
        settings: Settings | None = None,
    ) -> None:
        self.workspace = workspace
        self.generator = generator
        self.checkpoints = checkpoints
        self.sandbox_id = sandbox_id
        self.settings = settings or get_settings()

    def validate_instruction(self, instruction: Any) -> str:
        text = instruction.strip() if isinstance(instruction, str) else ""
        if not text:
            raise EditError("Instruction is required", status_code=400)
        limit = self.settings.max_prompt_length
        if len(text) > limit:
            raise EditError(f"Instruction must be {limit} characters or less", status_code=400)
        return text

    async def gather_context(self, file_paths: list[str] | None = None) -> list[ContextFile]:
        if file_paths:
            candidates = unique_paths(file_paths)
        else:
            tree = await self.workspace.list("", MAX_TREE_DEPTH)
            candidates = sort_by_priority(flatten_file_paths(tree))
        selected = candidates[: self.settings.max_context_files]
        if not selected:
            raise EditError("No project files available for edit context")

        files: list[ContextFile] = []
        total_chars = 0
        max_file_chars = self.settings.max_file_chars
        for path in selected:
            content = await self.workspace.read(path)
            if content is None or looks_binary(content):
                continue
            if len(content) > max_file_chars:
                content = content[:max_file_chars] + TRUNCATED_MARKER
            if total_chars + len(content) > self.settings.max_context_chars:
                break
            total_chars += len(content)
            files.append(ContextFile(path=path, content=content))

        if not files:
            raise EditError("No readable text files available for edit context")
        return files

    async def build_previews(
        self,
        edits: list[NormalizedEdit],
        context_paths: set[str] | None = None,
    ) -> tuple[list[FilePreview], list[NormalizedEdit]]:
        """Diff each edit against the workspace, dropping the ones that change nothing."""
        previews: list[FilePreview] = []
        effective: list[NormalizedEdit] = []
        for edit in edits:
            previous = await self.workspace.read(edit.path)
            if edit.delete and previous is None:
                continue

            is_new_file = previous is None and not edit.delete
            if edit.delete:
                result = deleted_file_diff(edit.path, previous or "", self.settings.max_diff_lines)
            else:
                result = unified_diff(
                    edit.path,
                    previous or "",
                    edit.content or "",
                    context_lines=self.settings.diff_context_lines,
                    max_lines=self.settings.max_diff_lines,
                )
            if not (edit.delete or result.changed or is_new_file):
                continue

            outside = context_paths is not None and edit.path not in context_paths
            if outside:
                logger.info("edit targets %s outside the edit context", edit.path)
            previews.append(
                FilePreview(
                    path=edit.path,
                    additions=result.additions,
                    deletions=result.deletions,
                    changed=result.changed or is_new_file,
                    is_new_file=is_new_file,
                    is_deleted=edit.delete,
                    diff=result.diff,
                    outside_context=outside,
                )
            )
            effective.append(edit)
        return previews, effective

    async def prepare(self, instruction: str, file_paths: list[str] | None = None) -> EditPlan:
        instruction = self.validate_instruction(instruction)
        context = await self.gather_context(file_paths)
        context_paths = [f.path for f in context]

        raw = await self.generator.generate_edits(
            instruction, [f.model_dump() for f in context]
        )
        response = parse_edit_response(raw)
        edits = normalize_edits(response.edits, self.settings.max_apply_edits)
        if not edits:
            raise EditError("Model did not return any applicable file edits")

        previews, effective = await self.build_previews(edits, set(context_paths))
        if not effective:
            raise EditError("No file changes detected from instruction")

        logger.info(
            "prepare sandbox=%s context=%d proposed=%d effective=%d",
            self.sandbox_id,
            len(context),
            len(edits),
            len(effective),
        )
        return EditPlan(
            instruction=instruction,
            summary=response.summary or f"Prepared {plural(len(effective), 'change')}",
            notes=response.notes,
            previews=previews,
            proposed_edits=effective,
            context_files=context_paths,
        )

    async def apply(self, plan: EditPlan, selected_paths: Iterable[str] | None = None) -> ApplyReport:
        """Apply the selected subset of a prepared plan (all of it by default)."""
        selected = plan.select(plan.paths if selected_paths is None else selected_paths)
        if not selected:
            raise EditError("Select at least one file in the preview to apply edits", status_code=400)
        return await self._apply(plan.instruction, selected, plan.notes)

    async def apply_edits(self, candidates: Any, instruction: str = "") -> ApplyReport:
        """Apply caller-supplied edits directly, without a preview round."""
        edits = normalize_edits(candidates, self.settings.max_apply_edits)
        if not edits:
            raise EditError("No applicable file edits were provided")
        return await self._apply(instruction, edits, [])

    async def _apply(
        self, instruction: str, edits: list[NormalizedEdit], notes: list[str]
    ) -> ApplyReport:
        previews, effective = await self.build_previews(edits)
        if not effective:
            raise EditError("No effective changes to apply")

        # Backup first so the batch stays undoable even if every write fails
        checkpoint = await capture_checkpoint(
            self.workspace,
            label_prefix=BEFORE_APPLY_LABEL,
            prompt=instruction,
            max_files=self.settings.checkpoint_max_files,
            max_bytes=self.settings.checkpoint_max_bytes,
        )
        await self.checkpoints.add(self.sandbox_id, checkpoint)

        applied: list[str] = []
        failed: list[ApplyFailure] = []
        for edit in effective:
            try:
                if edit.delete:
                    await self.workspace.delete(edit.path)
                else:
                    await self.workspace.write(edit.path, edit.content or "")
            except Exception as e:
                reason = e.message if isinstance(e, SitesmithError) else (str(e) or "apply failed")
                logger.warning("apply of %s failed: %s", edit.path, reason)
                failed.append(ApplyFailure(path=edit.path, reason=reason))
            else:
                applied.append(edit.path)

        logger.info(
            "apply sandbox=%s applied=%d failed=%d checkpoint=%s",
            self.sandbox_id,
            len(applied),
            len(failed),
            checkpoint.id,
        )
        return ApplyReport(
            instruction=instruction,
            summary=f"Applied {plural(len(applied), 'file edit')}",
            notes=notes,
            applied=applied,
            failed=failed,
            previews=previews,
            checkpoint_id=checkpoint.id,
            checkpoint=checkpoint,
        )
