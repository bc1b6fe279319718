"""Workflow and sync operations scoped to a category node."""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from app.api.v1.dependencies import (
    get_batch_sync_service,
    get_batch_workflow_service,
    get_workflow_service,
)
from app.core.auth import get_current_user, get_request_meta, require_editor
from app.core.ndr_client import RequestMeta
from app.schemas.auth import CurrentUser
from app.schemas.batch import BatchSyncRequest, BatchWorkflowRequest
from app.schemas.common import ApiResponse
from app.schemas.workflows import TriggerWorkflowRequest, WorkflowDefinitionResponse
from app.services.batch_sync_service import BatchSyncService
from app.services.batch_workflow_service import BatchWorkflowService
from app.services.workflow_service import WorkflowService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()


@router.get(
    "/{node_id}/workflows",
    response_model=ApiResponse,
    summary="List workflows runnable on a node",
    operation_id="list_node_workflows",
)
async def list_node_workflows(
    request: Request,
    node_id: int,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    try:
        definitions = await workflow_service.list_workflow_definitions("node")
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data=[WorkflowDefinitionResponse.model_validate(d) for d in definitions],
        message="Workflows retrieved successfully",
        request=request,
    )


@router.get(
    "/{node_id}/workflow-runs",
    response_model=ApiResponse,
    summary="List workflow runs of a node",
    operation_id="list_node_workflow_runs",
)
async def list_node_workflow_runs(
    request: Request,
    node_id: int,
    workflow_key: Optional[str] = Query(None),
    run_status: Optional[List[str]] = Query(None, alias="status"),
    limit: int = Query(20),
    offset: int = Query(0),
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    try:
        result = await workflow_service.list_workflow_runs(
            node_id=node_id,
            workflow_key=workflow_key,
            statuses=run_status,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Workflow runs retrieved successfully", request=request)


@router.post(
    "/{node_id}/workflows/batch/preview",
    response_model=ApiResponse,
    summary="Preview a batch workflow over a subtree",
    operation_id="preview_batch_workflow",
)
async def preview_batch_workflow(
    request: Request,
    node_id: int,
    payload: BatchWorkflowRequest,
    meta: Annotated[RequestMeta, Depends(get_request_meta)] = None,
    batch_service: Annotated[BatchWorkflowService, Depends(get_batch_workflow_service)] = None,
) -> ApiResponse:
    try:
        result = await batch_service.preview_batch_workflow(meta, node_id, payload)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Batch preview generated", request=request)


@router.post(
    "/{node_id}/workflows/batch/execute",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a workflow over every eligible node of a subtree",
    operation_id="execute_batch_workflow",
)
async def execute_batch_workflow(
    request: Request,
    node_id: int,
    payload: BatchWorkflowRequest,
    meta: Annotated[RequestMeta, Depends(get_request_meta)] = None,
    batch_service: Annotated[BatchWorkflowService, Depends(get_batch_workflow_service)] = None,
) -> ApiResponse:
    LOGGER.info(f"Batch workflow {payload.workflow_key} requested on node {node_id} by {meta.user_id}")
    try:
        result = await batch_service.execute(meta=meta, node_id=node_id, request=payload)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message=result.message, request=request)


@router.post(
    "/{node_id}/workflows/{workflow_key}/runs",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Trigger a node workflow",
    operation_id="trigger_node_workflow",
)
async def trigger_node_workflow(
    request: Request,
    node_id: int,
    workflow_key: str,
    payload: Optional[TriggerWorkflowRequest] = None,
    meta: Annotated[RequestMeta, Depends(get_request_meta)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    payload = payload or TriggerWorkflowRequest()
    try:
        result = await workflow_service.execute_trigger_node(
            meta,
            node_id,
            workflow_key,
            parameters=payload.parameters,
            retry_of_id=payload.retry_of_id,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message=result.message or "workflow triggered", request=request)


@router.post(
    "/{node_id}/sync/batch/preview",
    response_model=ApiResponse,
    summary="Preview a batch sync over a subtree",
    operation_id="preview_batch_sync",
)
async def preview_batch_sync(
    request: Request,
    node_id: int,
    payload: Optional[BatchSyncRequest] = None,
    meta: Annotated[RequestMeta, Depends(get_request_meta)] = None,
    sync_service: Annotated[BatchSyncService, Depends(get_batch_sync_service)] = None,
) -> ApiResponse:
    try:
        result = await sync_service.preview_batch_sync(meta, node_id, payload or BatchSyncRequest())
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Batch sync preview generated", request=request)


@router.post(
    "/{node_id}/sync/batch/execute",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Sync every document of a subtree",
    operation_id="execute_batch_sync",
    dependencies=[Depends(require_editor)],
)
async def execute_batch_sync(
    request: Request,
    node_id: int,
    payload: Optional[BatchSyncRequest] = None,
    meta: Annotated[RequestMeta, Depends(get_request_meta)] = None,
    sync_service: Annotated[BatchSyncService, Depends(get_batch_sync_service)] = None,
) -> ApiResponse:
    try:
        result = await sync_service.execute(meta=meta, node_id=node_id, request=payload or BatchSyncRequest())
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message=result.message, request=request)
