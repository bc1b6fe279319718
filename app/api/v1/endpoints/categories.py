from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from app.api.v1.dependencies import get_category_service
from app.core.auth import get_request_meta
from app.core.ndr_client import RequestMeta
from app.schemas.categories import (
    CategoryBulkIdsRequest,
    CategoryCreateRequest,
    CategoryMoveRequest,
    CategoryReorderRequest,
    CategoryRepositionRequest,
    CategoryUpdateRequest,
)
from app.schemas.common import ApiResponse
from app.services.category_service import CategoryService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()

MetaDep = Annotated[RequestMeta, Depends(get_request_meta)]
CategoryServiceDep = Annotated[CategoryService, Depends(get_category_service)]


@router.get(
    "/tree",
    response_model=ApiResponse,
    summary="Category tree",
    operation_id="get_category_tree",
)
async def get_tree(
    request: Request,
    meta: MetaDep,
    category_service: CategoryServiceDep,
    include_deleted: bool = Query(False),
) -> ApiResponse:
    try:
        tree = await category_service.get_tree(meta, include_deleted=include_deleted)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=tree, message="Category tree retrieved successfully", request=request)


@router.get(
    "/trash",
    response_model=ApiResponse,
    summary="Soft-deleted categories",
    operation_id="list_deleted_categories",
)
async def list_trash(
    request: Request,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        deleted = await category_service.list_trash(meta)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=deleted, message="Trash retrieved successfully", request=request)


@router.post(
    "/reorder",
    response_model=ApiResponse,
    summary="Reorder sibling categories",
    operation_id="reorder_categories",
)
async def reorder_categories(
    request: Request,
    payload: CategoryReorderRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        categories = await category_service.reorder(meta, payload.parent_id, payload.ordered_ids)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=categories, message="Categories reordered", request=request)


@router.post(
    "/bulk/restore",
    response_model=ApiResponse,
    summary="Restore several categories",
    operation_id="bulk_restore_categories",
)
async def bulk_restore_categories(
    request: Request,
    payload: CategoryBulkIdsRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        categories = await category_service.bulk_restore(meta, payload.ids)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=categories, message="Categories restored", request=request)


@router.post(
    "/bulk/delete",
    response_model=ApiResponse,
    summary="Move several categories to the trash",
    operation_id="bulk_delete_categories",
)
async def bulk_delete_categories(
    request: Request,
    payload: CategoryBulkIdsRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        deleted_ids = await category_service.bulk_delete(meta, payload.ids)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"deleted_ids": deleted_ids}, message="Categories deleted", request=request)


@router.post(
    "/bulk/purge",
    response_model=ApiResponse,
    summary="Permanently delete several categories",
    operation_id="bulk_purge_categories",
)
async def bulk_purge_categories(
    request: Request,
    payload: CategoryBulkIdsRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        purged_ids = await category_service.bulk_purge(meta, payload.ids)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"purged_ids": purged_ids}, message="Categories purged", request=request)


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a category",
    operation_id="create_category",
)
async def create_category(
    request: Request,
    payload: CategoryCreateRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        category = await category_service.create(meta, payload.name, payload.parent_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=category, message="Category created successfully", request=request)


@router.get(
    "/{category_id}",
    response_model=ApiResponse,
    summary="Get a category",
    operation_id="get_category",
)
async def get_category(
    request: Request,
    category_id: int,
    meta: MetaDep,
    category_service: CategoryServiceDep,
    include_deleted: bool = Query(False),
) -> ApiResponse:
    try:
        category = await category_service.get(meta, category_id, include_deleted=include_deleted)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=category, message="Category retrieved successfully", request=request)


@router.put(
    "/{category_id}",
    response_model=ApiResponse,
    summary="Rename a category",
    operation_id="update_category",
)
async def update_category(
    request: Request,
    category_id: int,
    payload: CategoryUpdateRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        category = await category_service.update(meta, category_id, payload.name)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=category, message="Category updated successfully", request=request)


@router.delete(
    "/{category_id}",
    response_model=ApiResponse,
    summary="Move a leaf category to the trash",
    operation_id="delete_category",
)
async def delete_category(
    request: Request,
    category_id: int,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        await category_service.delete(meta, category_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"category_id": category_id}, message="Category deleted", request=request)


@router.post(
    "/{category_id}/restore",
    response_model=ApiResponse,
    summary="Restore a deleted category",
    operation_id="restore_category",
)
async def restore_category(
    request: Request,
    category_id: int,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        category = await category_service.restore(meta, category_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=category, message="Category restored", request=request)


@router.patch(
    "/{category_id}/move",
    response_model=ApiResponse,
    summary="Move a category under another parent",
    operation_id="move_category",
)
async def move_category(
    request: Request,
    category_id: int,
    payload: CategoryMoveRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    """An explicit ``"new_parent_id": null`` moves the category to the root."""
    try:
        category = await category_service.move(
            meta,
            category_id,
            payload.new_parent_id,
            parent_specified="new_parent_id" in payload.model_fields_set,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=category, message="Category moved", request=request)


@router.delete(
    "/{category_id}/purge",
    response_model=ApiResponse,
    summary="Permanently delete a category",
    operation_id="purge_category",
)
async def purge_category(
    request: Request,
    category_id: int,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        await category_service.purge(meta, category_id)
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data={"category_id": category_id}, message="Category purged", request=request)


@router.patch(
    "/{category_id}/reposition",
    response_model=ApiResponse,
    summary="Move a category and reorder its new siblings",
    operation_id="reposition_category",
)
async def reposition_category(
    request: Request,
    category_id: int,
    payload: CategoryRepositionRequest,
    meta: MetaDep,
    category_service: CategoryServiceDep,
) -> ApiResponse:
    try:
        result = await category_service.reposition(
            meta,
            category_id,
            payload.new_parent_id,
            payload.ordered_ids,
            parent_specified="new_parent_id" in payload.model_fields_set,
        )
    except Exception as e:
        raise_http_error(e, request)

    return create_api_response(data=result, message="Category repositioned", request=request)
