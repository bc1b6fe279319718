from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from app.api.v1.dependencies import get_batch_sync_service, get_sync_service
from app.core.auth import get_current_user, verify_webhook_secret
from app.schemas.auth import CurrentUser
from app.schemas.common import ApiResponse
from app.schemas.sync import SyncCallbackRequest
from app.services.batch_sync_service import BatchSyncService
from app.services.sync_service import SyncService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/callback",
    response_model=ApiResponse,
    summary="Scheduler callback for a document sync",
    operation_id="sync_callback",
    dependencies=[Depends(verify_webhook_secret)],
)
async def sync_callback(
    request: Request,
    payload: SyncCallbackRequest,
    sync_service: Annotated[SyncService, Depends(get_sync_service)] = None,
) -> ApiResponse:
    try:
        await sync_service.handle_sync_callback(
            payload.event_id,
            payload.doc_id,
            payload.doc_version,
            payload.status,
            error=payload.error,
            run_id=payload.run_id,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={"event_id": payload.event_id, "status": payload.status},
        message="sync callback processed",
        request=request,
    )


@router.get(
    "/batches",
    response_model=ApiResponse,
    summary="List batch syncs",
    operation_id="list_sync_batches",
)
async def list_sync_batches(
    request: Request,
    limit: int = Query(20),
    offset: int = Query(0),
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    batch_service: Annotated[BatchSyncService, Depends(get_batch_sync_service)] = None,
) -> ApiResponse:
    try:
        result = await batch_service.list_batch_syncs(current_user, limit=limit, offset=offset)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Sync batches retrieved successfully", request=request)


@router.get(
    "/batches/{batch_id}",
    response_model=ApiResponse,
    summary="Get batch sync progress",
    operation_id="get_sync_batch",
)
async def get_sync_batch(
    request: Request,
    batch_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    batch_service: Annotated[BatchSyncService, Depends(get_batch_sync_service)] = None,
) -> ApiResponse:
    try:
        result = await batch_service.get_batch_sync_status(batch_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Sync batch retrieved successfully", request=request)
