import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import status

from app.api.v1.dependencies import get_category_service, get_document_service, get_sync_service
from app.core.config import settings
from app.core.database import db_client
from app.core.exceptions import NDRError, PrefectError
from app.core.prefect_client import PrefectClient, get_prefect_client
from app.main import app
from app.schemas.auth import JWTClaims
from app.schemas.categories import Category, CategoryRepositionResult
from app.schemas.ndr import DocumentVersionDiff
from app.schemas.sync import DocumentSnapshot

AUTH_HEADERS = {"Authorization": "Bearer fake_token"}


@pytest.fixture
def claims() -> JWTClaims:
    return JWTClaims(
        sub="user-1",
        email="user-1@example.com",
        role="course_admin",
        exp=1234567890,
        iat=1234567890,
        iss="ydms",
    )


def test_upstream_404_maps_to_not_found(test_client, claims):
    document_service = MagicMock(get=AsyncMock(side_effect=NDRError("ndr request failed: 404", status_code=404)))
    app.dependency_overrides[get_document_service] = lambda: document_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        response = test_client.get("/api/v1/documents/5", headers=AUTH_HEADERS)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    detail = response.json()["detail"]
    assert detail["title"] == "Not Found"
    assert detail["instance"] == "/api/v1/documents/5"


def test_other_upstream_errors_map_to_bad_gateway(test_client, claims):
    document_service = MagicMock(get=AsyncMock(side_effect=NDRError("ndr request failed: 503", status_code=503)))
    app.dependency_overrides[get_document_service] = lambda: document_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        response = test_client.get("/api/v1/documents/5", headers=AUTH_HEADERS)

    assert response.status_code == status.HTTP_502_BAD_GATEWAY


def test_move_category_distinguishes_null_from_absent(test_client, claims):
    category_service = MagicMock(move=AsyncMock(return_value=Category(id=2, name="Algebra")))
    app.dependency_overrides[get_category_service] = lambda: category_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        to_root = test_client.patch("/api/v1/categories/2/move", json={"new_parent_id": None}, headers=AUTH_HEADERS)
        untouched = test_client.patch("/api/v1/categories/2/move", json={}, headers=AUTH_HEADERS)

    assert to_root.status_code == status.HTTP_200_OK
    assert untouched.status_code == status.HTTP_200_OK
    first, second = category_service.move.call_args_list
    assert first.args[1:] == (2, None)
    assert first.kwargs == {"parent_specified": True}
    assert second.kwargs == {"parent_specified": False}


def test_internal_snapshot_requires_api_key(test_client):
    sync_service = MagicMock(
        get_document_snapshot=AsyncMock(return_value=DocumentSnapshot(id=5, type="markdown", version=3, title="Lesson"))
    )
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    url = "/api/internal/documents/5/snapshot"

    with patch.object(settings.auth, "internal_api_key", ""):
        unconfigured = test_client.get(url, headers={"X-API-Key": "anything"})
    with patch.object(settings.auth, "internal_api_key", "worker-key"):
        missing = test_client.get(url)
        wrong = test_client.get(url, headers={"X-API-Key": "nope"})
        accepted = test_client.get(url, headers={"X-API-Key": "worker-key"})

    assert unconfigured.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert missing.json()["detail"] == "API key required"
    assert wrong.json()["detail"] == "invalid API key"
    assert accepted.status_code == status.HTTP_200_OK
    assert accepted.json()["data"]["version"] == 3

    meta, document_id = sync_service.get_document_snapshot.call_args.args
    assert document_id == 5
    assert meta.user_id == "idpp-internal"

    with patch.object(settings.auth, "internal_api_key", "worker-key"):
        versioned = test_client.get("/api/v1/internal/documents/5/snapshot", headers={"X-API-Key": "worker-key"})
    assert versioned.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_404_NOT_FOUND)


def test_health_reports_disabled_scheduler(test_client):
    app.dependency_overrides[get_prefect_client] = lambda: PrefectClient(base_url="")

    with patch.object(db_client, "health_check", new_callable=AsyncMock) as mock_db:
        mock_db.return_value = {"status": "healthy"}
        response = test_client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"] == {"database": "healthy", "prefect": "disabled"}


def test_health_degrades_when_scheduler_is_down(test_client):
    prefect = AsyncMock(spec=PrefectClient)
    prefect.enabled = True
    prefect.health_check.side_effect = PrefectError("prefect server unreachable")
    app.dependency_overrides[get_prefect_client] = lambda: prefect

    with patch.object(db_client, "health_check", new_callable=AsyncMock) as mock_db:
        mock_db.return_value = {"status": "healthy"}
        response = test_client.get("/health")

    assert response.json()["status"] == "degraded"
    assert response.json()["checks"]["prefect"] == "unhealthy"


def test_reposition_category_passes_parent_presence(test_client, claims):
    moved = Category(id=2, name="Algebra", parent_id=5)
    category_service = MagicMock(
        reposition=AsyncMock(return_value=CategoryRepositionResult(category=moved, siblings=[moved]))
    )
    app.dependency_overrides[get_category_service] = lambda: category_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        response = test_client.patch(
            "/api/v1/categories/2/reposition",
            json={"new_parent_id": 5, "ordered_ids": [2]},
            headers=AUTH_HEADERS,
        )
        test_client.patch("/api/v1/categories/2/reposition", json={"ordered_ids": [2]}, headers=AUTH_HEADERS)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["category"]["parent_id"] == 5
    first, second = category_service.reposition.call_args_list
    assert first.args[1:] == (2, 5, [2])
    assert first.kwargs == {"parent_specified": True}
    assert second.kwargs == {"parent_specified": False}


def test_bulk_delete_reports_deleted_ids(test_client, claims):
    category_service = MagicMock(bulk_delete=AsyncMock(return_value=[4, 5]))
    app.dependency_overrides[get_category_service] = lambda: category_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        response = test_client.post("/api/v1/categories/bulk/delete", json={"ids": [4, 5, 4]}, headers=AUTH_HEADERS)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"] == {"deleted_ids": [4, 5]}


def test_version_diff_requires_target_version(test_client, claims):
    document_service = MagicMock(
        diff_versions=AsyncMock(return_value=DocumentVersionDiff(from_version=1, to_version=2))
    )
    app.dependency_overrides[get_document_service] = lambda: document_service

    with patch("app.core.jwt.JWTVerifier.verify_token", new_callable=AsyncMock) as mock_verify:
        mock_verify.return_value = claims
        missing = test_client.get("/api/v1/documents/5/versions/1/diff", headers=AUTH_HEADERS)
        found = test_client.get("/api/v1/documents/5/versions/1/diff?to=2", headers=AUTH_HEADERS)

    assert missing.status_code == 422
    assert found.status_code == status.HTTP_200_OK
    assert found.json()["data"]["to_version"] == 2
    assert document_service.diff_versions.call_args.args[1:] == (5, 1, 2)
