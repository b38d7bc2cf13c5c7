import logging
from functools import lru_cache

from fastapi import Depends

from sitesmith.checkpoints import CheckpointStore
from sitesmith.config import Settings, get_settings
from sitesmith.errors import WorkspaceError
from sitesmith.generator import EditGenerator, OpenAIEditGenerator
from sitesmith.sandbox.workspace import SandboxWorkspace, Workspace
from sitesmith.store import make_store


logger = logging.getLogger("sitesmith.api")


async def get_workspace(
    sandbox_id: str, settings: Settings = Depends(get_settings)
) -> Workspace:
    try:
        return await SandboxWorkspace.connect(sandbox_id, settings.project_dir_name)
    except Exception as e:
        logger.warning("sandbox %s lookup failed: %s", sandbox_id, e)
        raise WorkspaceError("Sandbox not found", status_code=404) from e


@lru_cache(maxsize=1)
def _generator(settings: Settings) -> OpenAIEditGenerator:
    return OpenAIEditGenerator(settings)


def get_generator(settings: Settings = Depends(get_settings)) -> EditGenerator:
    return _generator(settings)


@lru_cache(maxsize=1)
def _checkpoint_store(settings: Settings) -> CheckpointStore:
    return CheckpointStore(make_store(settings), settings.max_checkpoints)


def get_checkpoint_store(settings: Settings = Depends(get_settings)) -> CheckpointStore:
    return _checkpoint_store(settings)
