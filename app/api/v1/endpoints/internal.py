"""Endpoints read by workflow workers, authenticated by API key."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.api.v1.dependencies import get_sync_service
from app.core.auth import verify_internal_api_key
from app.schemas.common import ApiResponse
from app.services.sync_service import SyncService, internal_request_meta
from app.utils.responses import create_api_response, raise_http_error

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])


@router.get(
    "/documents/{document_id}/snapshot",
    response_model=ApiResponse,
    summary="Current document content for the sync worker",
    operation_id="get_document_snapshot",
)
async def get_document_snapshot(
    request: Request,
    document_id: int,
    sync_service: Annotated[SyncService, Depends(get_sync_service)] = None,
) -> ApiResponse:
    meta = internal_request_meta(getattr(request.state, "correlation_id", "") or "")
    try:
        snapshot = await sync_service.get_document_snapshot(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=snapshot, message="Snapshot retrieved successfully", request=request)
