"""Super-admin operations on workflow definitions and run history."""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.v1.dependencies import get_workflow_service, get_workflow_sync_service
from app.core.auth import require_super_admin
from app.schemas.common import ApiResponse
from app.schemas.workflows import (
    CleanupRunsRequest,
    UpdateDefinitionRequest,
    WorkflowDefinitionResponse,
)
from app.services.workflow_service import WorkflowService
from app.services.workflow_sync_service import WorkflowSyncService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_super_admin)])

SyncServiceDep = Annotated[WorkflowSyncService, Depends(get_workflow_sync_service)]


@router.post(
    "/sync",
    response_model=ApiResponse,
    summary="Reconcile definitions with scheduler deployments",
    operation_id="sync_workflow_definitions",
)
async def sync_definitions(request: Request, sync_service: SyncServiceDep) -> ApiResponse:
    try:
        result = await sync_service.sync_from_prefect()
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Workflow definitions synced", request=request)


@router.get(
    "/sync/status",
    response_model=ApiResponse,
    summary="Outcome of the last definition sync",
    operation_id="get_workflow_sync_status",
)
async def get_sync_status(request: Request, sync_service: SyncServiceDep) -> ApiResponse:
    return create_api_response(
        data=sync_service.get_last_sync_status(),
        message="Sync status retrieved successfully",
        request=request,
    )


@router.get(
    "/definitions",
    response_model=ApiResponse,
    summary="List every workflow definition",
    operation_id="list_workflow_definitions_admin",
)
async def list_definitions(
    request: Request,
    sync_service: SyncServiceDep,
    source: Optional[str] = Query(None),
    workflow_type: Optional[str] = Query(None),
    sync_status: Optional[str] = Query(None),
    enabled: Optional[bool] = Query(None),
) -> ApiResponse:
    try:
        definitions = await sync_service.list_definitions_admin(source, workflow_type, sync_status, enabled)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data=[WorkflowDefinitionResponse.model_validate(d) for d in definitions],
        message="Workflow definitions retrieved successfully",
        request=request,
    )


@router.patch(
    "/definitions/{definition_id}",
    response_model=ApiResponse,
    summary="Enable or disable a workflow definition",
    operation_id="update_workflow_definition",
)
async def update_definition(
    request: Request,
    definition_id: int,
    payload: UpdateDefinitionRequest,
    sync_service: SyncServiceDep,
) -> ApiResponse:
    try:
        definition = await sync_service.update_definition(definition_id, payload.enabled)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data=WorkflowDefinitionResponse.model_validate(definition),
        message="Workflow definition updated",
        request=request,
    )


@router.post(
    "/runs/cleanup",
    response_model=ApiResponse,
    summary="Delete workflow run history",
    operation_id="cleanup_workflow_runs",
)
async def cleanup_runs(
    request: Request,
    payload: CleanupRunsRequest,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
) -> ApiResponse:
    try:
        result = await workflow_service.cleanup_workflow_runs(
            before=payload.before_date,
            statuses=payload.status,
            workflow_key=payload.workflow_key,
            node_id=payload.node_id,
            document_id=payload.document_id,
            include_zombie=payload.include_zombie,
            force_cleanup_active=payload.force_cleanup_active,
            dry_run=payload.dry_run,
        )
    except Exception as e:
        raise_http_error(e, request)

    message = "dry run completed" if payload.dry_run else "workflow runs cleaned up"
    return create_api_response(data=result, message=message, request=request)
