from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from app.api.v1.dependencies import (
    get_document_service,
    get_sync_service,
    get_workflow_service,
)
from app.core.auth import get_request_meta, require_editor
from app.core.ndr_client import RequestMeta
from app.schemas.common import ApiResponse
from app.schemas.documents import (
    AddReferenceRequest,
    DocumentCreateRequest,
    DocumentReorderRequest,
    DocumentUpdateRequest,
)
from app.schemas.workflows import TriggerWorkflowRequest
from app.services.document_service import DocumentService
from app.services.sync_service import SyncService
from app.services.workflow_service import WorkflowService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()

MetaDep = Annotated[RequestMeta, Depends(get_request_meta)]
DocumentServiceDep = Annotated[DocumentService, Depends(get_document_service)]


@router.get(
    "",
    response_model=ApiResponse,
    summary="List documents",
    operation_id="list_documents",
)
async def list_documents(
    request: Request,
    meta: MetaDep,
    document_service: DocumentServiceDep,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=1000),
    doc_type: Optional[str] = Query(None, alias="type"),
) -> ApiResponse:
    filters = {"type": doc_type} if doc_type else None
    try:
        result = await document_service.list_documents(meta, page=page, size=size, filters=filters)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Documents retrieved successfully", request=request)


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a document",
    operation_id="create_document",
)
async def create_document(
    request: Request,
    payload: DocumentCreateRequest,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.create(meta, payload)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Document created successfully", request=request)


@router.post(
    "/reorder",
    response_model=ApiResponse,
    summary="Reorder documents",
    operation_id="reorder_documents",
)
async def reorder_documents(
    request: Request,
    payload: DocumentReorderRequest,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    """Sending ``type`` limits the reorder to documents of that type."""
    try:
        documents = await document_service.reorder(meta, payload)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=documents, message="Documents reordered", request=request)


@router.get(
    "/{document_id}",
    response_model=ApiResponse,
    summary="Get a document",
    operation_id="get_document",
)
async def get_document(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.get(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Document retrieved successfully", request=request)


@router.put(
    "/{document_id}",
    response_model=ApiResponse,
    summary="Update a document",
    operation_id="update_document",
)
async def update_document(
    request: Request,
    document_id: int,
    payload: DocumentUpdateRequest,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    """Partial update; ``metadata`` is a merge patch where null deletes a key."""
    try:
        document = await document_service.update(meta, document_id, payload)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Document updated successfully", request=request)


@router.delete(
    "/{document_id}",
    response_model=ApiResponse,
    summary="Move a document to the trash",
    operation_id="delete_document",
)
async def delete_document(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        await document_service.delete(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"document_id": document_id}, message="Document deleted", request=request)


@router.post(
    "/{document_id}/restore",
    response_model=ApiResponse,
    summary="Restore a deleted document",
    operation_id="restore_document",
)
async def restore_document(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.restore(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Document restored", request=request)


@router.delete(
    "/{document_id}/purge",
    response_model=ApiResponse,
    summary="Permanently delete a document",
    operation_id="purge_document",
)
async def purge_document(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        await document_service.purge(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"document_id": document_id}, message="Document purged", request=request)


@router.get(
    "/{document_id}/binding-status",
    response_model=ApiResponse,
    summary="Nodes a document is bound to",
    operation_id="get_document_binding_status",
)
async def get_binding_status(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        binding_status = await document_service.get_binding_status(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=binding_status, message="Binding status retrieved", request=request)


@router.post(
    "/{document_id}/bindings/{node_id}",
    response_model=ApiResponse,
    summary="Bind a document to a node",
    operation_id="bind_document",
)
async def bind_document(
    request: Request,
    document_id: int,
    node_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        await document_service.bind(meta, node_id, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={"document_id": document_id, "node_id": node_id}, message="Document bound", request=request
    )


@router.delete(
    "/{document_id}/bindings/{node_id}",
    response_model=ApiResponse,
    summary="Unbind a document from a node",
    operation_id="unbind_document",
)
async def unbind_document(
    request: Request,
    document_id: int,
    node_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        await document_service.unbind(meta, node_id, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={"document_id": document_id, "node_id": node_id}, message="Document unbound", request=request
    )


@router.get(
    "/{document_id}/versions",
    response_model=ApiResponse,
    summary="List document versions",
    operation_id="list_document_versions",
)
async def list_versions(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
    page: int = Query(0, ge=0),
    size: int = Query(0, ge=0),
) -> ApiResponse:
    try:
        versions = await document_service.list_versions(meta, document_id, page=page, size=size)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(
        data={
            "page": versions.page,
            "size": versions.size,
            "total": versions.total,
            "versions": versions.entries,
        },
        message="Versions retrieved successfully",
        request=request,
    )


@router.get(
    "/{document_id}/versions/{version_number}",
    response_model=ApiResponse,
    summary="Get one document version",
    operation_id="get_document_version",
)
async def get_version(
    request: Request,
    document_id: int,
    version_number: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        version = await document_service.get_version(meta, document_id, version_number)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=version, message="Version retrieved successfully", request=request)


@router.get(
    "/{document_id}/versions/{version_number}/diff",
    response_model=ApiResponse,
    summary="Compare two document versions",
    operation_id="diff_document_versions",
)
async def diff_versions(
    request: Request,
    document_id: int,
    version_number: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
    to_version: int = Query(..., alias="to", ge=1),
) -> ApiResponse:
    try:
        diff = await document_service.diff_versions(meta, document_id, version_number, to_version)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=diff, message="Version diff retrieved", request=request)


@router.post(
    "/{document_id}/versions/{version_number}/restore",
    response_model=ApiResponse,
    summary="Restore a document to an earlier version",
    operation_id="restore_document_version",
)
async def restore_version(
    request: Request,
    document_id: int,
    version_number: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.restore_version(meta, document_id, version_number)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Version restored", request=request)


@router.post(
    "/{document_id}/references",
    response_model=ApiResponse,
    summary="Add a reference to another document",
    operation_id="add_document_reference",
)
async def add_reference(
    request: Request,
    document_id: int,
    payload: AddReferenceRequest,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.add_reference(meta, document_id, payload.document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Reference added", request=request)


@router.delete(
    "/{document_id}/references/{ref_document_id}",
    response_model=ApiResponse,
    summary="Remove a reference",
    operation_id="remove_document_reference",
)
async def remove_reference(
    request: Request,
    document_id: int,
    ref_document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        document = await document_service.remove_reference(meta, document_id, ref_document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=document, message="Reference removed", request=request)


@router.get(
    "/{document_id}/referencing",
    response_model=ApiResponse,
    summary="Documents that reference this document",
    operation_id="list_referencing_documents",
)
async def list_referencing_documents(
    request: Request,
    document_id: int,
    meta: MetaDep,
    document_service: DocumentServiceDep,
) -> ApiResponse:
    try:
        documents = await document_service.get_referencing_documents(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=documents, message="Referencing documents retrieved", request=request)


@router.post(
    "/{document_id}/sync",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Sync a document into the downstream database",
    operation_id="trigger_document_sync",
    dependencies=[Depends(require_editor)],
)
async def trigger_sync(
    request: Request,
    document_id: int,
    meta: MetaDep,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> ApiResponse:
    try:
        result = await sync_service.execute(meta=meta, document_id=document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message=result.message, request=request)


@router.get(
    "/{document_id}/sync-status",
    response_model=ApiResponse,
    summary="Sync configuration and last attempt of a document",
    operation_id="get_document_sync_status",
)
async def get_sync_status(
    request: Request,
    document_id: int,
    meta: MetaDep,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> ApiResponse:
    try:
        result = await sync_service.get_sync_status(meta, document_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Sync status retrieved successfully", request=request)


@router.post(
    "/{document_id}/workflows/{workflow_key}/runs",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Trigger a document workflow",
    operation_id="trigger_document_workflow",
)
async def trigger_document_workflow(
    request: Request,
    document_id: int,
    workflow_key: str,
    meta: MetaDep,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
    payload: Optional[TriggerWorkflowRequest] = None,
) -> ApiResponse:
    payload = payload or TriggerWorkflowRequest()
    try:
        result = await workflow_service.execute_trigger_document(
            meta,
            document_id,
            workflow_key,
            parameters=payload.parameters,
            retry_of_id=payload.retry_of_id,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message=result.message or "workflow triggered", request=request)


@router.get(
    "/{document_id}/workflow-runs",
    response_model=ApiResponse,
    summary="List workflow runs of a document",
    operation_id="list_document_workflow_runs",
)
async def list_document_workflow_runs(
    request: Request,
    document_id: int,
    meta: MetaDep,
    workflow_service: Annotated[WorkflowService, Depends(get_workflow_service)],
    workflow_key: Optional[str] = Query(None),
    run_status: Optional[List[str]] = Query(None, alias="status"),
    limit: int = Query(20),
    offset: int = Query(0),
) -> ApiResponse:
    try:
        result = await workflow_service.list_workflow_runs(
            document_id=document_id,
            workflow_key=workflow_key,
            statuses=run_status,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Workflow runs retrieved successfully", request=request)
