import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import status

from app.api.v1.dependencies import (
    get_batch_sync_service,
    get_sync_service,
    get_workflow_service,
    get_workflow_sync_service,
)
from app.core.config import settings
from app.core.exceptions import ValidationError, WorkflowRunNotFoundError
from app.main import app
from app.schemas.auth import JWTClaims
from app.schemas.batch import SyncExecuteResponse
from app.schemas.workflows import DefinitionSyncStatus, TriggerWorkflowResponse

AUTH_HEADERS = {"Authorization": "Bearer fake_token"}


def _claims(role: str, sub: str = "user-1") -> JWTClaims:
    return JWTClaims(
        sub=sub,
        email=f"{sub}@example.com",
        role=role,
        exp=1234567890,
        iat=1234567890,
        iss="ydms",
    )


@pytest.fixture
def mock_workflow_service():
    return MagicMock(
        execute_trigger_node=AsyncMock(),
        execute_callback=AsyncMock(),
        cancel_workflow_run=AsyncMock(),
    )


def test_requests_without_token_are_rejected(test_client):
    response = test_client.get("/api/v1/workflows")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Authentication required"


def test_trigger_node_workflow(test_client, mock_workflow_service):
    app.dependency_overrides[get_workflow_service] = lambda: mock_workflow_service
    mock_workflow_service.execute_trigger_node.return_value = TriggerWorkflowResponse(
        run_id=11, status="pending", message="workflow triggered"
    )

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = _claims("course_admin")

        response = test_client.post(
            "/api/v1/nodes/3/workflows/generate_node_documents/runs",
            json={"parameters": {"tone": "formal"}},
            headers=AUTH_HEADERS,
        )

    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["data"]["run_id"] == 11
    assert body["message"] == "workflow triggered"

    args = mock_workflow_service.execute_trigger_node.call_args
    meta, node_id, workflow_key = args.args
    assert meta.user_id == "user-1"
    assert meta.user_role == "course_admin"
    assert (node_id, workflow_key) == (3, "generate_node_documents")
    assert args.kwargs == {"parameters": {"tone": "formal"}, "retry_of_id": None}


def test_cancel_missing_run_maps_to_404(test_client, mock_workflow_service):
    app.dependency_overrides[get_workflow_service] = lambda: mock_workflow_service
    mock_workflow_service.cancel_workflow_run.side_effect = WorkflowRunNotFoundError(99)

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = _claims("course_admin")
        response = test_client.post("/api/v1/workflows/runs/99/cancel", headers=AUTH_HEADERS)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"]["status"] == 404


def test_workflow_callback_is_open_without_secret(test_client, mock_workflow_service):
    app.dependency_overrides[get_workflow_service] = lambda: mock_workflow_service
    mock_workflow_service.execute_callback.side_effect = ValidationError("invalid callback status: weird")

    with patch.object(settings.prefect, "webhook_secret", ""):
        response = test_client.post("/api/v1/workflows/callback/5", json={"status": "weird"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["detail"] == "invalid callback status: weird"
    mock_workflow_service.execute_callback.assert_awaited_once_with(
        5, "weird", error_message=None, result=None
    )


def test_workflow_callback_checks_configured_secret(test_client, mock_workflow_service):
    app.dependency_overrides[get_workflow_service] = lambda: mock_workflow_service

    with patch.object(settings.prefect, "webhook_secret", "s3cret"):
        missing = test_client.post("/api/v1/workflows/callback/5", json={"status": "success"})
        accepted = test_client.post(
            "/api/v1/workflows/callback/5",
            json={"status": "success", "result": {"documents": 2}},
            headers={"X-Webhook-Secret": "s3cret"},
        )

    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert accepted.status_code == status.HTTP_200_OK
    mock_workflow_service.execute_callback.assert_awaited_once_with(
        5, "success", error_message=None, result={"documents": 2}
    )


def test_sync_callback_requires_configured_secret(test_client):
    sync_service = MagicMock(handle_sync_callback=AsyncMock())
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    payload = {"event_id": "evt-1", "doc_id": 4, "doc_version": 2, "status": "success"}

    with patch.object(settings.prefect, "webhook_secret", ""):
        unconfigured = test_client.post("/api/v1/sync/callback", json=payload)
    with patch.object(settings.prefect, "webhook_secret", "s3cret"):
        wrong = test_client.post("/api/v1/sync/callback", json=payload, headers={"X-Webhook-Secret": "nope"})
        accepted = test_client.post("/api/v1/sync/callback", json=payload, headers={"X-Webhook-Secret": "s3cret"})

    assert unconfigured.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert accepted.status_code == status.HTTP_200_OK
    assert accepted.json()["data"] == {"event_id": "evt-1", "status": "success"}
    sync_service.handle_sync_callback.assert_awaited_once_with(
        "evt-1", 4, 2, "success", error=None, run_id=None
    )


def test_admin_routes_require_super_admin(test_client):
    sync_service = MagicMock()
    sync_service.get_last_sync_status.return_value = DefinitionSyncStatus(status="idle", prefect_enabled=False)
    app.dependency_overrides[get_workflow_sync_service] = lambda: sync_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = _claims("proofreader")
        denied = test_client.get("/api/v1/admin/workflows/sync/status", headers=AUTH_HEADERS)

        mock_verify.return_value = _claims("super_admin")
        allowed = test_client.get("/api/v1/admin/workflows/sync/status", headers=AUTH_HEADERS)

    assert denied.status_code == status.HTTP_403_FORBIDDEN
    assert allowed.status_code == status.HTTP_200_OK
    assert allowed.json()["data"]["status"] == "idle"


def test_batch_sync_execute_blocks_proofreaders(test_client):
    batch_service = MagicMock(execute=AsyncMock())
    batch_service.execute.return_value = SyncExecuteResponse(
        batch_id="batch-1", status="pending", total_documents=3, message="batch sync started"
    )
    app.dependency_overrides[get_batch_sync_service] = lambda: batch_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = _claims("proofreader")
        denied = test_client.post("/api/v1/nodes/1/sync/batch/execute", json={}, headers=AUTH_HEADERS)

        mock_verify.return_value = _claims("course_admin")
        accepted = test_client.post("/api/v1/nodes/1/sync/batch/execute", json={}, headers=AUTH_HEADERS)

    assert denied.status_code == status.HTTP_403_FORBIDDEN
    assert accepted.status_code == status.HTTP_202_ACCEPTED
    assert accepted.json()["data"]["batch_id"] == "batch-1"
    assert batch_service.execute.await_count == 1
    assert batch_service.execute.call_args.kwargs["node_id"] == 1
