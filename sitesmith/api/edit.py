import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from sitesmith.api.deps import get_checkpoint_store, get_generator, get_workspace
from sitesmith.checkpoints import CheckpointStore
from sitesmith.config import Settings, get_settings
from sitesmith.errors import EditError
from sitesmith.generator import EditGenerator
from sitesmith.orchestrator import ApplyReport, EditOrchestrator, EditPlan
from sitesmith.sandbox.workspace import Workspace


logger = logging.getLogger("sitesmith.api.edit")

router = APIRouter(prefix="/api/sandbox", tags=["edit"])


class EditRequest(BaseModel):
    """Payload for previewing or applying an instruction against a sandbox."""

    model_config = ConfigDict(populate_by_name=True)

    instruction: Any = None
    file_paths: list[Any] | None = Field(default=None, alias="filePaths")
    mode: Any = None
    proposed_edits: list[Any] | None = Field(default=None, alias="proposedEdits")


def _plan_payload(plan: EditPlan) -> dict[str, Any]:
    return {
        "success": True,
        "mode": "preview",
        "summary": plan.summary,
        "notes": plan.notes,
        "proposedEdits": [e.to_payload() for e in plan.proposed_edits],
        "previews": [p.model_dump(by_alias=True) for p in plan.previews],
        "contextFiles": plan.context_files,
    }


def _report_payload(report: ApplyReport) -> dict[str, Any]:
    return {
        "success": True,
        "mode": "apply",
        "summary": report.summary,
        "notes": report.notes,
        "applied": report.applied,
        "failed": [f.model_dump() for f in report.failed],
        "previews": [p.model_dump(by_alias=True) for p in report.previews],
        "checkpointId": report.checkpoint_id,
    }


@router.post("/{sandbox_id}/edit")
async def edit_sandbox(
    sandbox_id: str,
    req: EditRequest,
    workspace: Workspace = Depends(get_workspace),
    generator: EditGenerator = Depends(get_generator),
    checkpoints: CheckpointStore = Depends(get_checkpoint_store),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    orchestrator = EditOrchestrator(workspace, generator, checkpoints, sandbox_id, settings)
    instruction = orchestrator.validate_instruction(req.instruction)
    mode = "preview" if req.mode == "preview" else "apply"
    file_paths = [p for p in (req.file_paths or []) if isinstance(p, str)]
    logger.info(
        "edit[%s] mode=%s files=%d proposed=%d",
        sandbox_id,
        mode,
        len(file_paths),
        len(req.proposed_edits or []),
    )

    if mode == "apply" and req.proposed_edits:
        report = await orchestrator.apply_edits(req.proposed_edits, instruction)
    else:
        plan = await orchestrator.prepare(instruction, file_paths or None)
        if mode == "preview":
            return _plan_payload(plan)
        report = await orchestrator.apply(plan)

    if not report.applied:
        raise EditError("No edits were applied", status_code=500)
    return _report_payload(report)
