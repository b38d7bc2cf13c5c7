import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from sitesmith.api.deps import get_workspace
from sitesmith.errors import PathError, WorkspaceError
from sitesmith.sandbox.utils import normalize_relative_path
from sitesmith.sandbox.workspace import MAX_TREE_DEPTH, Workspace


logger = logging.getLogger("sitesmith.api.files")

router = APIRouter(prefix="/api/sandbox", tags=["files"])

DEFAULT_TREE_DEPTH = 5


def parse_depth(raw: str | None, default: int) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        value = default
    return min(max(value, 0), MAX_TREE_DEPTH)


@router.get("/{sandbox_id}/files")
async def get_files(
    sandbox_id: str,
    path: str | None = None,
    list_mode: str | None = Query(None, alias="list"),
    depth: str | None = None,
    workspace: Workspace = Depends(get_workspace),
) -> dict[str, Any]:
    """List the project tree (``list=1``) or read a single file (``path=``)."""
    listing = list_mode == "1"
    tree_depth = parse_depth(depth, 0 if listing else DEFAULT_TREE_DEPTH)

    if listing:
        folder = normalize_relative_path(path) if path else ""
        files = await workspace.list(folder, tree_depth)
        return {
            "files": [f.model_dump(exclude_none=True) for f in files],
            "path": folder,
            "depth": tree_depth,
        }

    if path is not None:
        rel = normalize_relative_path(path)
        if not rel:
            raise PathError("Path is required")
        content = await workspace.read(rel)
        if content is None:
            raise WorkspaceError("File not found", status_code=404)
        return {"path": rel, "content": content}

    files = await workspace.list("", tree_depth)
    return {"files": [f.model_dump(exclude_none=True) for f in files]}


@router.put("/{sandbox_id}/files")
async def put_file(
    sandbox_id: str,
    body: dict[str, Any] = Body(...),
    workspace: Workspace = Depends(get_workspace),
) -> dict[str, Any]:
    raw_path = body.get("path")
    content = body.get("content")
    if not isinstance(raw_path, str) or not isinstance(content, str):
        raise PathError("Path and string content are required")
    rel = normalize_relative_path(raw_path)
    if not rel:
        raise PathError("Path is required")

    await workspace.write(rel, content)
    logger.info("files[%s] wrote %s (%d chars)", sandbox_id, rel, len(content))
    return {"success": True, "path": rel}


@router.delete("/{sandbox_id}/files")
async def delete_file(
    sandbox_id: str,
    path: str | None = None,
    workspace: Workspace = Depends(get_workspace),
) -> dict[str, Any]:
    if not path:
        raise PathError("Path is required")
    rel = normalize_relative_path(path)
    if not rel:
        raise PathError("Deleting project root is not allowed")

    await workspace.delete(rel)
    logger.info("files[%s] deleted %s", sandbox_id, rel)
    return {"success": True, "path": rel}
