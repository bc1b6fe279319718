from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from app.core.exceptions import NotFoundError, PrefectError, ValidationError, WorkflowRunNotFoundError
from app.core.prefect_client import DeploymentInfo, FlowRun, PrefectClient
from app.schemas.ndr import Document, DocumentsPage, SourceDocument
from app.services.workflow_service import WorkflowService
from app.utils.timeutils import utcnow


@pytest_asyncio.fixture
async def service(db_session, mock_ndr, disabled_prefect):
    service = WorkflowService(db_session, ndr=mock_ndr, prefect=disabled_prefect, public_base_url="http://ydms.test")
    await service.ensure_default_workflows()
    return service


@pytest_asyncio.fixture
async def submitting_service(db_session, mock_ndr, mock_prefect):
    service = WorkflowService(db_session, ndr=mock_ndr, prefect=mock_prefect, public_base_url="http://ydms.test/")
    await service.ensure_default_workflows()
    return service


async def _create_run(service: WorkflowService, status: str = "pending", **kwargs):
    fields = {"workflow_key": "generate_xiaohongshu_cards", "node_id": 1, "parameters": {}}
    fields.update(kwargs)
    return await service.run_repo.create(status=status, **fields)


@pytest.mark.asyncio
async def test_ensure_default_workflows_is_idempotent(service):
    assert await service.ensure_default_workflows() == 0

    keys = [d.workflow_key for d in await service.list_workflow_definitions()]
    assert "generate_node_documents" in keys
    # disabled by default
    assert "generate_exercises" not in keys


@pytest.mark.asyncio
async def test_ensure_default_workflows_keeps_admin_changes(service):
    definition = await service.definition_repo.get_by_key("generate_node_documents")
    await service.definition_repo.update(definition.id, enabled=False)

    await service.ensure_default_workflows()

    refreshed = await service.definition_repo.get_by_key("generate_node_documents")
    assert refreshed.enabled is False


@pytest.mark.asyncio
async def test_trigger_without_scheduler_stays_pending(service, mock_ndr, meta):
    mock_ndr.list_source_documents.return_value = [SourceDocument(document_id=11)]

    result = await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards", {"course_name": "Math"})

    assert result.status == "pending"
    assert result.message == "workflow created (scheduler not configured)"
    run = await service.get_workflow_run(result.run_id)
    assert run.node_id == 1
    assert run.parameters == {"course_name": "Math"}
    assert run.created_by_id == "user-1"


@pytest.mark.asyncio
async def test_trigger_unknown_or_disabled_workflow(service, meta):
    with pytest.raises(NotFoundError):
        await service.execute_trigger_node(meta, 1, "does_not_exist")
    with pytest.raises(NotFoundError):
        await service.execute_trigger_node(meta, 1, "generate_exercises")


@pytest.mark.asyncio
async def test_trigger_document_workflow_rejects_node_workflow(service, meta):
    with pytest.raises(ValidationError, match="not a document workflow"):
        await service.execute_trigger_document(meta, 5, "generate_xiaohongshu_cards")


@pytest.mark.asyncio
async def test_trigger_submits_flow_run(submitting_service, mock_ndr, mock_prefect, meta):
    mock_ndr.list_source_documents.return_value = [SourceDocument(document_id=11)]
    mock_ndr.list_node_documents.return_value = DocumentsPage(
        items=[Document(id=11, title="Source"), Document(id=12, title="Lesson", type="markdown")]
    )
    mock_prefect.get_deployment_by_name.return_value = DeploymentInfo(id="dep-1", name="node-generate-documents-deployment")
    mock_prefect.create_flow_run.return_value = FlowRun(id="flow-1")

    result = await submitting_service.execute_trigger_node(
        meta, 1, "generate_node_documents", {"run_id": 999, "tone": "formal"}
    )

    assert result.status == "running"
    assert result.prefect_flow_run_id == "flow-1"

    deployment_id, params = mock_prefect.create_flow_run.call_args.args
    assert deployment_id == "dep-1"
    assert params["run_id"] == result.run_id
    assert params["tone"] == "formal"
    assert params["source_doc_ids"] == [11]
    assert params["callback_url"] == f"http://ydms.test/api/v1/workflows/callback/{result.run_id}"
    assert params["target_docs"] == [{"document_id": 12, "title": "Lesson", "type": "markdown"}]

    run = await submitting_service.get_workflow_run(result.run_id)
    assert run.status == "running"
    assert run.started_at is not None


@pytest.mark.asyncio
async def test_trigger_marks_run_failed_when_submission_fails(submitting_service, mock_ndr, mock_prefect, meta):
    mock_ndr.list_source_documents.return_value = []
    mock_prefect.get_deployment_by_name.return_value = DeploymentInfo(id="dep-1", name="cards")
    mock_prefect.create_flow_run.side_effect = PrefectError("boom", status_code=500)

    with pytest.raises(PrefectError):
        await submitting_service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards")

    runs = await submitting_service.list_workflow_runs(node_id=1)
    assert runs.total == 1
    assert runs.runs[0].status == "failed"
    assert runs.runs[0].error_message.startswith("Failed to create flow run")


@pytest.mark.asyncio
async def test_unreadable_scheduler_reply_marks_run_failed(db_session, mock_ndr, meta):
    prefect = PrefectClient(base_url="http://prefect.test", retry_delay=0)
    service = WorkflowService(db_session, ndr=mock_ndr, prefect=prefect, public_base_url="http://ydms.test")
    await service.ensure_default_workflows()
    mock_ndr.list_source_documents.return_value = []
    request = httpx.Request("POST", "http://prefect.test")

    with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
        mock_request.side_effect = [
            httpx.Response(200, json=[{"id": "dep-1", "name": "cards"}], request=request),
            httpx.Response(201, text="<html>proxy page</html>", request=request),
        ]

        with pytest.raises(PrefectError):
            await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards")

    runs = await service.list_workflow_runs(node_id=1)
    assert runs.runs[0].status == "failed"
    assert runs.runs[0].error_message.startswith("Failed to create flow run")


@pytest.mark.asyncio
async def test_retry_with_different_workflow_key_is_rejected(service, mock_ndr, meta):
    original = await _create_run(service, status="failed", workflow_key="generate_node_documents")

    with pytest.raises(ValidationError, match="workflow_key mismatch"):
        await service.execute_trigger_node(
            meta, 1, "generate_xiaohongshu_cards", retry_of_id=original.id
        )

    mock_ndr.list_source_documents.assert_not_called()


@pytest.mark.asyncio
async def test_retry_of_other_node_or_missing_run(service, meta):
    original = await _create_run(service, status="failed", node_id=2)

    with pytest.raises(ValidationError, match="node_id mismatch"):
        await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards", retry_of_id=original.id)
    with pytest.raises(ValidationError, match="non-existent"):
        await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards", retry_of_id=4242)


@pytest.mark.asyncio
async def test_retry_stats_in_run_listing(service, mock_ndr, meta):
    mock_ndr.list_source_documents.return_value = []
    original = await _create_run(service, status="failed")

    await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards", retry_of_id=original.id)
    await service.execute_trigger_node(meta, 1, "generate_xiaohongshu_cards", retry_of_id=original.id)

    listing = await service.list_workflow_runs(node_id=1)
    assert listing.total == 3
    assert listing.has_more is False
    by_id = {run.id: run for run in listing.runs}
    assert by_id[original.id].retry_count == 2
    assert by_id[original.id].latest_retry_status == "pending"


@pytest.mark.asyncio
async def test_cancel_twice(service):
    run = await _create_run(service, status="running")

    await service.cancel_workflow_run(run.id)
    with pytest.raises(ValidationError, match="current status: cancelled"):
        await service.cancel_workflow_run(run.id)

    with pytest.raises(WorkflowRunNotFoundError):
        await service.cancel_workflow_run(9999)


@pytest.mark.asyncio
async def test_cancel_forwards_to_scheduler(submitting_service, mock_prefect):
    run = await _create_run(submitting_service, status="running", prefect_flow_run_id="flow-9")

    await submitting_service.cancel_workflow_run(run.id)

    mock_prefect.cancel_flow_run.assert_awaited_once_with("flow-9")


@pytest.mark.asyncio
async def test_callback_after_cancel_keeps_cancelled(service):
    run = await _create_run(service, status="running")
    await service.cancel_workflow_run(run.id)

    await service.execute_callback(run.id, "success", result={"documents": 3})

    refreshed = await service.get_workflow_run(run.id)
    assert refreshed.status == "cancelled"
    assert refreshed.result is None


@pytest.mark.asyncio
async def test_callback_records_outcome(service):
    run = await _create_run(service, status="running")

    await service.execute_callback(run.id, "failed", error_message="model timeout")

    refreshed = await service.get_workflow_run(run.id)
    assert refreshed.status == "failed"
    assert refreshed.error_message == "model timeout"
    assert refreshed.finished_at is not None


@pytest.mark.asyncio
async def test_callback_with_unknown_status(service):
    run = await _create_run(service)

    with pytest.raises(ValidationError, match="invalid callback status"):
        await service.execute_callback(run.id, "exploded")


@pytest.mark.asyncio
async def test_strict_callbacks_reject_finished_runs(db_session, mock_ndr, disabled_prefect):
    strict = WorkflowService(db_session, ndr=mock_ndr, prefect=disabled_prefect, strict_callbacks=True)
    run = await strict.run_repo.create(workflow_key="k", node_id=1, parameters={}, status="running")

    await strict.execute_callback(run.id, "success")
    with pytest.raises(ValidationError, match="invalid state transition"):
        await strict.execute_callback(run.id, "failed", error_message="late")


@pytest.mark.asyncio
async def test_force_terminate_requires_zombie(service):
    young = await _create_run(service, status="running", started_at=utcnow())
    old = await _create_run(service, status="running", started_at=utcnow() - timedelta(minutes=31))

    with pytest.raises(ValidationError, match="use cancel instead"):
        await service.force_terminate_workflow_run(young.id)

    await service.force_terminate_workflow_run(old.id)
    refreshed = await service.get_workflow_run(old.id)
    assert refreshed.status == "failed"
    assert "force terminated" in refreshed.error_message


@pytest.mark.asyncio
async def test_cleanup_guards_active_runs(service):
    with pytest.raises(ValidationError, match="include_zombie"):
        await service.cleanup_workflow_runs(statuses=["running"])
    with pytest.raises(ValidationError, match="invalid status"):
        await service.cleanup_workflow_runs(statuses=["unknown"])


@pytest.mark.asyncio
async def test_cleanup_dry_run_and_delete(service):
    await _create_run(service, status="success")
    await _create_run(service, status="failed")
    await _create_run(service, status="running", started_at=utcnow() - timedelta(hours=2))
    active = await _create_run(service, status="running", started_at=utcnow())

    preview = await service.cleanup_workflow_runs(
        statuses=["success", "failed", "running"], include_zombie=True, dry_run=True
    )
    assert preview.dry_run is True
    assert preview.deleted_count == 3
    assert preview.zombie_count == 1
    assert (await service.list_workflow_runs()).total == 4

    result = await service.cleanup_workflow_runs()
    assert result.deleted_count == 2
    remaining = await service.list_workflow_runs()
    assert remaining.total == 2
    assert active.id in {run.id for run in remaining.runs}
    assert all(run.status == "running" for run in remaining.runs)


@pytest.mark.asyncio
async def test_cleanup_marks_zombies_failed(service):
    zombie = await _create_run(service, status="pending", created_at=utcnow() - timedelta(hours=1))

    result = await service.cleanup_workflow_runs(statuses=["pending"], include_zombie=True)

    assert result.zombie_count == 1
    refreshed = await service.get_workflow_run(zombie.id)
    assert refreshed.status == "failed"
