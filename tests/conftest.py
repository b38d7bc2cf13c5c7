import pytest

from sitesmith.checkpoints import CheckpointStore
from sitesmith.config import Settings
from sitesmith.store import MemoryStore
from tests.helpers import MemoryWorkspace


@pytest.fixture
def settings() -> Settings:
    return Settings(checkpoint_store="memory")


@pytest.fixture
def workspace() -> MemoryWorkspace:
    return MemoryWorkspace(
        {
            "app/page.tsx": "<div>Home</div>",
            "app/layout.tsx": "export default function Layout() {}",
            "package.json": "{}",
        }
    )


@pytest.fixture
def checkpoint_store() -> CheckpointStore:
    return CheckpointStore(MemoryStore())
