import logging

import pytest

from app.core.exceptions import ConfigurationError, ConflictError, NotFoundError, PrefectError
from app.core.prefect_client import DeploymentDetails
from app.services.workflow_service import WorkflowService
from app.services.workflow_sync_service import (
    SyncStatusCell,
    WorkflowSyncService,
    compute_spec_hash,
    parse_deployment_tags,
)


def _deployment(deployment_id: str, name: str, tags, description: str = "", schema=None) -> DeploymentDetails:
    return DeploymentDetails.model_validate(
        {
            "id": deployment_id,
            "name": name,
            "version": "1.0",
            "description": description,
            "tags": tags,
            "parameter_openapi_schema": schema or {"type": "object", "properties": {}},
        }
    )


SUMMARIZE = _deployment("dep-1", "summarize-deployment", ["pdms:type=node", "pdms:key=summarize"], "Summaries")
PROOFREAD = _deployment("dep-2", "proofread-deployment", ["document-workflow", "pdms:key=proofread"])
NO_KEY = _deployment("dep-3", "keyless-deployment", ["pdms:type=node"])
BAD_TYPE = _deployment("dep-4", "odd-deployment", ["pdms:type=course", "pdms:key=odd"])
UNTAGGED = _deployment("dep-5", "internal-deployment", ["infra"])


@pytest.fixture
def cell() -> SyncStatusCell:
    return SyncStatusCell()


@pytest.fixture
def service(db_session, mock_prefect, cell) -> WorkflowSyncService:
    return WorkflowSyncService(db_session, prefect=mock_prefect, cell=cell)


class TestDeploymentTags:
    def test_prefixed_tags(self):
        assert parse_deployment_tags(["pdms:type=document", "pdms:key=check"]) == ("document", "check")

    def test_legacy_type_tag(self):
        assert parse_deployment_tags(["node-workflow", "pdms:key=x"]) == ("node", "x")

    def test_prefixed_type_wins_over_legacy(self):
        assert parse_deployment_tags(["document-workflow", "pdms:type=node"]) == ("node", "")

    def test_untagged(self):
        assert parse_deployment_tags(["prod"]) == ("", "")


def test_spec_hash_ignores_tag_order():
    reordered = _deployment("dep-1", "summarize-deployment", ["pdms:key=summarize", "pdms:type=node"], "Summaries")
    changed = _deployment("dep-1", "summarize-deployment", ["pdms:type=node", "pdms:key=summarize"], "New text")

    assert compute_spec_hash(SUMMARIZE) == compute_spec_hash(reordered)
    assert compute_spec_hash(SUMMARIZE) != compute_spec_hash(changed)
    assert len(compute_spec_hash(SUMMARIZE)) == 32


@pytest.mark.asyncio
async def test_sync_creates_definitions_and_reports_errors(service, mock_prefect, cell):
    mock_prefect.list_deployments.return_value = [SUMMARIZE, PROOFREAD, NO_KEY, BAD_TYPE, UNTAGGED]

    result = await service.sync_from_prefect()

    assert result.created == 2
    assert result.updated == 0
    assert len(result.errors) == 2
    assert any("missing pdms:key tag" in error for error in result.errors)
    assert any("invalid pdms:type=course" in error for error in result.errors)

    status = service.get_last_sync_status()
    assert status.status == "completed_with_errors"
    assert status.prefect_enabled is True
    assert status.result.created == 2

    proofread = await service.definition_repo.get_by_key("proofread")
    assert proofread.workflow_type == "document"
    assert proofread.source == "prefect"
    assert proofread.prefect_deployment_id == "dep-2"
    assert proofread.parameter_schema == {"type": "object", "properties": {}}


@pytest.mark.asyncio
async def test_resync_updates_only_changed_and_marks_missing(service, mock_prefect):
    mock_prefect.list_deployments.return_value = [SUMMARIZE, PROOFREAD]
    await service.sync_from_prefect()

    unchanged = await service.sync_from_prefect()
    assert (unchanged.created, unchanged.updated, unchanged.missing) == (0, 0, 0)
    assert service.get_last_sync_status().status == "success"

    renamed = _deployment("dep-1", "summarize-deployment", ["pdms:type=node", "pdms:key=summarize"], "Better summaries")
    mock_prefect.list_deployments.return_value = [renamed]
    result = await service.sync_from_prefect()

    assert result.updated == 1
    assert result.missing == 1
    assert (await service.definition_repo.get_by_key("summarize")).description == "Better summaries"
    assert (await service.definition_repo.get_by_key("proofread")).sync_status == "missing"

    # Missing definitions are hidden from the trigger listing
    visible = [d.workflow_key for d in await WorkflowService(service.session).list_workflow_definitions()]
    assert "proofread" not in visible


@pytest.mark.asyncio
async def test_sync_adopts_legacy_definition(service, mock_prefect):
    await WorkflowService(service.session).ensure_default_workflows()
    mock_prefect.list_deployments.return_value = [
        _deployment("dep-9", "node-generate-documents-deployment", ["pdms:type=node", "pdms:key=generate_node_documents"])
    ]

    result = await service.sync_from_prefect()

    assert result.created == 0
    assert result.updated == 1
    adopted = await service.definition_repo.get_by_key("generate_node_documents")
    assert adopted.source == "prefect"
    assert adopted.prefect_deployment_id == "dep-9"


@pytest.mark.asyncio
async def test_concurrent_sync_is_rejected(service, cell):
    assert await cell.try_begin() is True

    with pytest.raises(ConflictError, match="already in progress"):
        await service.sync_from_prefect()


@pytest.mark.asyncio
async def test_sync_requires_scheduler(db_session, disabled_prefect, cell):
    service = WorkflowSyncService(db_session, prefect=disabled_prefect, cell=cell)

    with pytest.raises(ConfigurationError):
        await service.sync_from_prefect()
    assert service.get_last_sync_status().status == "idle"


@pytest.mark.asyncio
async def test_failed_listing_releases_cell(service, mock_prefect, cell):
    mock_prefect.list_deployments.side_effect = PrefectError("list deployments failed", status_code=503)

    with pytest.raises(PrefectError):
        await service.sync_from_prefect()

    assert cell.status == "failed"
    assert cell.error == "list deployments failed"
    assert await cell.try_begin() is True


@pytest.mark.asyncio
async def test_admin_listing_and_toggle(service, mock_prefect):
    mock_prefect.list_deployments.return_value = [SUMMARIZE, PROOFREAD]
    await service.sync_from_prefect()

    documents = await service.list_definitions_admin(workflow_type="document")
    assert [d.workflow_key for d in documents] == ["proofread"]

    toggled = await service.update_definition(documents[0].id, enabled=False)
    assert toggled.enabled is False
    assert await service.list_definitions_admin(enabled=False) == [toggled]

    with pytest.raises(NotFoundError):
        await service.update_definition(9999, enabled=True)


@pytest.mark.asyncio
async def test_sync_summary_is_logged_at_info(service, mock_prefect, caplog):
    mock_prefect.list_deployments.return_value = [SUMMARIZE, PROOFREAD]

    with caplog.at_level(logging.INFO, logger="app.services.workflow_sync_service"):
        result = await service.sync_from_prefect()

    assert result.created == 2
    [record] = [r for r in caplog.records if r.getMessage() == "Workflow definition sync finished"]
    assert (record.created_count, record.updated_count, record.missing_count, record.error_count) == (2, 0, 0, 0)
    assert service.get_last_sync_status().status == "success"
