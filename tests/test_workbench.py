import pytest

from sitesmith.errors import CheckpointError, ConfirmationRequired, EditError
from sitesmith.session import GenerationSession, Lifecycle
from sitesmith.workbench import Workbench
from tests.helpers import CannedGenerator, ScriptedTransport, events


PREVIEW = "https://3000-sbx.proxy.daytona.works"

READY_STREAM = events(
    {"type": "progress", "message": "Sandbox created"},
    {"type": "complete", "sandboxId": "sbx-1", "previewUrl": PREVIEW},
)


def make_workbench(workspace, reply, checkpoint_store, settings, chunks=READY_STREAM):
    session = GenerationSession(ScriptedTransport(chunks))
    return Workbench(
        session,
        lambda sandbox_id: workspace,
        CannedGenerator(reply),
        checkpoint_store,
        settings,
    )


DELETE_REPLY = {
    "summary": "Cleanup",
    "edits": [
        {"path": "app/page.tsx", "content": "<main>New</main>"},
        {"path": "package.json", "delete": True},
    ],
}


async def test_edits_need_a_ready_sandbox(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    with pytest.raises(EditError, match="Sandbox not ready"):
        await bench.prepare("edit")

    failing = make_workbench(
        workspace, DELETE_REPLY, checkpoint_store, settings,
        chunks=events({"type": "error", "message": "nope"}),
    )
    state = await failing.start("site")
    assert state.lifecycle is Lifecycle.FAILED
    with pytest.raises(EditError, match="Sandbox not ready"):
        await failing.prepare("edit")


async def test_prepare_select_and_apply_with_confirmation(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    await bench.start("site")
    plan = await bench.prepare("cleanup")
    assert bench.selected_paths == ["app/page.tsx", "package.json"]
    assert plan.paths == bench.selected_paths

    with pytest.raises(ConfirmationRequired, match="delete 1 file\\?"):
        await bench.apply_selected()
    assert workspace.writes == [] and workspace.deletes == []

    report = await bench.apply_selected(confirmed=True)
    assert report.applied == ["app/page.tsx", "package.json"]
    assert bench.plan is None and bench.selected_paths == []
    assert bench.last_apply_checkpoint_id == report.checkpoint_id
    assert bench.checkpoints[0].id == report.checkpoint_id

    message = bench.session.state.messages[-1]
    assert message.event_type == "edit_applied"
    assert message.content == "Applied 2 file edits | Undo available"


async def test_selection_without_deletions_needs_no_confirmation(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    await bench.start("site")
    await bench.prepare("cleanup")
    bench.toggle("package.json")
    bench.toggle("unknown.ts")
    assert bench.selected_paths == ["app/page.tsx"]

    report = await bench.apply_selected()
    assert report.applied == ["app/page.tsx"]
    assert "package.json" in workspace.files


async def test_empty_selection_is_rejected(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    await bench.start("site")
    await bench.prepare("cleanup")
    bench.clear_selection()
    with pytest.raises(EditError, match="Select at least one file"):
        await bench.apply_selected()
    bench.select_all()
    assert len(bench.selected_paths) == 2


async def test_undo_last_apply_restores_previous_content(workspace, checkpoint_store, settings):
    reply = {"edits": [{"path": "app/page.tsx", "content": "<main>New</main>"}]}
    bench = make_workbench(workspace, reply, checkpoint_store, settings)
    await bench.start("site")

    with pytest.raises(CheckpointError, match="No recent apply backup"):
        await bench.undo_last_apply(confirmed=True)

    await bench.prepare("change page")
    await bench.apply_selected()
    assert workspace.files["app/page.tsx"] == "<main>New</main>"

    with pytest.raises(ConfirmationRequired, match='Undo last apply by restoring "Before apply'):
        await bench.undo_last_apply()

    result = await bench.undo_last_apply(confirmed=True)
    assert result.ok
    assert workspace.files["app/page.tsx"] == "<div>Home</div>"
    assert bench.last_apply_checkpoint_id is None
    assert bench.session.state.messages[-1].event_type == "checkpoint_restored"


async def test_manual_checkpoint_and_restore(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    await bench.start("site")
    checkpoint = await bench.create_checkpoint("Manual")
    assert checkpoint.label.startswith("Manual ")
    assert checkpoint.prompt == "site"

    workspace.files["app/page.tsx"] = "broken"
    with pytest.raises(ConfirmationRequired, match="overwrite matching files"):
        await bench.restore(checkpoint.id)
    result = await bench.restore(checkpoint.id, confirmed=True)
    assert result.ok
    assert workspace.files["app/page.tsx"] == "<div>Home</div>"

    with pytest.raises(CheckpointError, match="Checkpoint not found"):
        await bench.restore("checkpoint-0-missing", confirmed=True)


async def test_partial_restore_keeps_undo_available(workspace, checkpoint_store, settings):
    reply = {"edits": [{"path": "app/page.tsx", "content": "<main>New</main>"}]}
    bench = make_workbench(workspace, reply, checkpoint_store, settings)
    await bench.start("site")
    await bench.prepare("change page")
    report = await bench.apply_selected()

    workspace.fail_writes = {"package.json"}
    result = await bench.undo_last_apply(confirmed=True)
    assert not result.ok
    assert result.failed == ["package.json"]
    assert bench.last_apply_checkpoint_id == report.checkpoint_id
    assert bench.session.state.messages[-1].content == "Restored 2/3 files"


async def test_checkpoints_reload_for_new_run(workspace, checkpoint_store, settings):
    bench = make_workbench(workspace, DELETE_REPLY, checkpoint_store, settings)
    await bench.start("site")
    await bench.create_checkpoint()
    assert len(bench.checkpoints) == 1

    state = await bench.retry()
    assert state.sandbox_id == "sbx-1"
    assert bench.last_apply_checkpoint_id is None
    assert len(bench.checkpoints) == 1


def test_from_settings_wires_http_collaborators():
    from sitesmith.config import Settings
    from sitesmith.sandbox.client import HttpWorkspace

    bench = Workbench.from_settings(
        Settings(checkpoint_store="memory", ai_api_key="test-key", api_url="http://api.test")
    )
    workspace = bench._workspace_factory("sbx-9")
    assert isinstance(workspace, HttpWorkspace)
    assert workspace.sandbox_id == "sbx-9"
    assert bench.sandbox_id is None


async def test_blank_prompt_keeps_pending_work(workspace, checkpoint_store, settings):
    reply = {"edits": [{"path": "app/page.tsx", "content": "<main>New</main>"}]}
    bench = make_workbench(workspace, reply, checkpoint_store, settings)
    await bench.start("site")
    await bench.prepare("change page")

    await bench.start("")
    assert bench.plan is not None
    assert bench.selected_paths == ["app/page.tsx"]

    report = await bench.apply_selected()
    state = await bench.start("   ")
    assert state.lifecycle is Lifecycle.READY
    assert bench.last_apply_checkpoint_id == report.checkpoint_id
    assert bench.checkpoints[0].id == report.checkpoint_id


async def test_retry_without_prior_prompt_is_a_noop(workspace, checkpoint_store, settings):
    transport = ScriptedTransport(READY_STREAM)
    bench = Workbench(
        GenerationSession(transport),
        lambda sandbox_id: workspace,
        CannedGenerator(DELETE_REPLY),
        checkpoint_store,
        settings,
    )
    state = await bench.retry()
    assert state.lifecycle is Lifecycle.IDLE
    assert transport.prompts == []
