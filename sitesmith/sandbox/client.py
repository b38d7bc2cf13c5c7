from typing import Any

import httpx

from sitesmith.errors import WorkspaceError
from sitesmith.sandbox.utils import FileNode
from sitesmith.sandbox.workspace import MAX_TREE_DEPTH


def _error_from(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return fallback


class HttpWorkspace:
    """Workspace that talks to the files API of a running sitesmith server."""

    def __init__(self, client: httpx.AsyncClient, sandbox_id: str) -> None:
        self._client = client
        self.sandbox_id = sandbox_id
        self._url = f"/api/sandbox/{sandbox_id}/files"

    async def list(self, path: str = "", depth: int = MAX_TREE_DEPTH) -> list[FileNode]:
        params: dict[str, Any] = {"list": "1", "depth": depth}
        if path:
            params["path"] = path
        response = await self._client.get(self._url, params=params)
        if response.status_code >= 400:
            raise WorkspaceError(_error_from(response, "Failed to list project files"))
        files = response.json().get("files")
        return [FileNode.model_validate(f) for f in files] if isinstance(files, list) else []

    async def read(self, path: str) -> str | None:
        response = await self._client.get(self._url, params={"path": path})
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise WorkspaceError(_error_from(response, f"Failed to read {path}"))
        content = response.json().get("content")
        return content if isinstance(content, str) else ""

    async def write(self, path: str, content: str) -> None:
        response = await self._client.put(self._url, json={"path": path, "content": content})
        if response.status_code >= 400:
            raise WorkspaceError(_error_from(response, f"Failed to write {path}"))

    async def delete(self, path: str) -> None:
        response = await self._client.delete(self._url, params={"path": path})
        if response.status_code >= 400:
            raise WorkspaceError(_error_from(response, f"Failed to delete {path}"))
