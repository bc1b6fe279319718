from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.v1.dependencies import (
    get_batch_workflow_service,
    get_workflow_service,
)
from app.core.auth import get_current_user, verify_webhook_secret_if_configured
from app.schemas.auth import CurrentUser
from app.schemas.common import ApiResponse
from app.schemas.workflows import (
    WorkflowCallbackRequest,
    WorkflowDefinitionResponse,
    WorkflowRunResponse,
)
from app.services.batch_workflow_service import BatchWorkflowService
from app.services.workflow_service import WorkflowService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=ApiResponse,
    summary="List workflow definitions",
    operation_id="list_workflow_definitions",
)
async def list_workflows(
    request: Request,
    workflow_type: Optional[str] = Query(None, alias="type"),
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    """Enabled workflows, optionally filtered by ``node`` or ``document`` type."""
    try:
        definitions = await workflow_service.list_workflow_definitions(workflow_type)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data=[WorkflowDefinitionResponse.model_validate(d) for d in definitions],
        message="Workflows retrieved successfully",
        request=request,
    )


@router.get(
    "/runs",
    response_model=ApiResponse,
    summary="List workflow runs",
    operation_id="list_workflow_runs",
)
async def list_runs(
    request: Request,
    node_id: Optional[int] = Query(None),
    document_id: Optional[int] = Query(None),
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
            document_id=document_id,
            workflow_key=workflow_key,
            statuses=run_status,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Workflow runs retrieved successfully", request=request)


@router.get(
    "/runs/{run_id}",
    response_model=ApiResponse,
    summary="Get a workflow run",
    operation_id="get_workflow_run",
)
async def get_run(
    request: Request,
    run_id: int,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    try:
        run = await workflow_service.get_workflow_run(run_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data=WorkflowRunResponse.model_validate(run),
        message="Workflow run retrieved successfully",
        request=request,
    )


@router.post(
    "/runs/{run_id}/cancel",
    response_model=ApiResponse,
    summary="Cancel a pending or running workflow run",
    operation_id="cancel_workflow_run",
)
async def cancel_run(
    request: Request,
    run_id: int,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    LOGGER.info(f"User {current_user.id} cancelling workflow run {run_id}")
    try:
        await workflow_service.cancel_workflow_run(run_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={"run_id": run_id, "status": "cancelled"},
        message="workflow run cancelled",
        request=request,
    )


@router.post(
    "/runs/{run_id}/force-terminate",
    response_model=ApiResponse,
    summary="Force a zombie run into the failed state",
    operation_id="force_terminate_workflow_run",
)
async def force_terminate_run(
    request: Request,
    run_id: int,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    LOGGER.info(f"User {current_user.id} force terminating workflow run {run_id}")
    try:
        await workflow_service.force_terminate_workflow_run(run_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={"run_id": run_id, "status": "failed"},
        message="workflow run terminated",
        request=request,
    )


@router.post(
    "/callback/{run_id}",
    response_model=ApiResponse,
    summary="Scheduler callback for a workflow run",
    operation_id="workflow_run_callback",
    dependencies=[Depends(verify_webhook_secret_if_configured)],
)
async def workflow_callback(
    request: Request,
    run_id: int,
    payload: WorkflowCallbackRequest,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)] = None,
) -> ApiResponse:
    """Receives the final (or intermediate) status of a flow run."""
    try:
        await workflow_service.execute_callback(
            run_id,
            payload.status,
            error_message=payload.error_message,
            result=payload.result,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"run_id": run_id}, message="callback processed", request=request)


@router.get(
    "/batches",
    response_model=ApiResponse,
    summary="List batch workflow executions",
    operation_id="list_workflow_batches",
)
async def list_batches(
    request: Request,
    limit: int = Query(20),
    offset: int = Query(0),
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    batch_service: Annotated[BatchWorkflowService, Depends(get_batch_workflow_service)] = None,
) -> ApiResponse:
    try:
        result = await batch_service.list_batch_workflows(current_user, limit=limit, offset=offset)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Batches retrieved successfully", request=request)


@router.get(
    "/batches/{batch_id}",
    response_model=ApiResponse,
    summary="Get batch workflow progress",
    operation_id="get_workflow_batch",
)
async def get_batch(
    request: Request,
    batch_id: str,
    current_user: Annotated[CurrentUser, Depends(get_current_user)] = None,
    batch_service: Annotated[BatchWorkflowService, Depends(get_batch_workflow_service)] = None,
) -> ApiResponse:
    try:
        result = await batch_service.get_batch_workflow_status(batch_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Batch retrieved successfully", request=request)

