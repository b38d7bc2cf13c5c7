import json
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict

from sitesmith.errors import EditError, PathError
from sitesmith.sandbox.utils import normalize_relative_path


logger = logging.getLogger("sitesmith.edits")

MAX_APPLY_EDITS = 20
MAX_NOTES = 5


class NormalizedEdit(BaseModel):
    """A validated file change: full new content, or a deletion."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str | None = None
    delete: bool = False

    def to_payload(self) -> dict[str, Any]:
        if self.delete:
            return {"path": self.path, "delete": True}
        return {"path": self.path, "content": self.content}


class EditResponse(BaseModel):
    summary: str = ""
    edits: list[Any] = []
    notes: list[str] = []


def normalize_edits(candidates: Any, max_edits: int = MAX_APPLY_EDITS) -> list[NormalizedEdit]:
    """Turn untrusted model output into at most ``max_edits`` safe edits.

    Never raises. Entries with a bad shape or an unsafe path are dropped, and only
    the first edit for a given normalized path is kept.
    """
    if not isinstance(candidates, (list, tuple)):
        return []

    normalized: list[NormalizedEdit] = []
    seen: set[str] = set()
    for candidate in candidates:
        if len(normalized) >= max_edits:
            break
        if not isinstance(candidate, dict):
            logger.warning("dropping edit candidate with shape %s", type(candidate).__name__)
            continue

        raw_path = candidate.get("path")
        content = candidate.get("content")
        is_delete = candidate.get("delete") is True
        if not isinstance(raw_path, str) or not raw_path:
            logger.warning("dropping edit candidate without a path")
            continue
        if not isinstance(content, str) and not is_delete:
            logger.warning("dropping edit for %r: no content and not a delete", raw_path[:200])
            continue

        try:
            path = normalize_relative_path(raw_path)
        except PathError as e:
            logger.warning("dropping edit for %r: %s", raw_path[:200], e.message)
            continue
        if not path or path in seen:
            continue

        seen.add(path)
        if is_delete:
            normalized.append(NormalizedEdit(path=path, delete=True))
        else:
            normalized.append(NormalizedEdit(path=path, content=content))
    return normalized


def unique_paths(paths: Iterable[Any]) -> list[str]:
    result: list[str] = []
    seen: set[str] = set()
    for raw in paths:
        try:
            path = normalize_relative_path(raw)
        except PathError:
            continue
        if path and path not in seen:
            seen.add(path)
            result.append(path)
    return result


def extract_json_object(raw: str) -> dict[str, Any]:
    """Parse a model reply that should be a JSON object, tolerating stray prose."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        first = raw.find("{")
        last = raw.rfind("}")
        if first == -1 or last <= first:
            raise EditError("Model response was not valid JSON")
        try:
            parsed = json.loads(raw[first : last + 1])
        except ValueError:
            raise EditError("Model response was not valid JSON")
    if not isinstance(parsed, dict):
        raise EditError("Model response was not a JSON object")
    return parsed


def parse_edit_response(raw: str) -> EditResponse:
    parsed = extract_json_object(raw)
    summary = parsed.get("summary")
    edits = parsed.get("edits")
    notes = parsed.get("notes")
    return EditResponse(
        summary=summary.strip() if isinstance(summary, str) else "",
        edits=edits if isinstance(edits, list) else [],
        notes=[n for n in notes if isinstance(n, str)][:MAX_NOTES] if isinstance(notes, list) else [],
    )
