from datetime import datetime, timezone
from typing import Any, Dict, List, NoReturn, Optional
from uuid import uuid4

from fastapi import HTTPException, Request, status as http_status

from app.core.exceptions import (
    AppError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.schemas.common import ApiResponse, ErrorDetail, ResponseMeta
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _request_id(request: Optional[Request]) -> str:
    if request is not None:
        correlation_id = getattr(request.state, "correlation_id", None)
        if correlation_id:
            return correlation_id
    return str(uuid4())


def _to_jsonable(item: Any) -> Any:
    return item.model_dump(mode="json") if hasattr(item, "model_dump") else item


def create_api_response(
    data: Any,
    message: str = "Operation successful",
    status: bool = True,
    request: Optional[Request] = None,
    api_version: str = "v1"
) -> Dict[str, Any]:
    """Create a standardized API response as a dictionary.

    Returns a dict to be compatible with FastAPI's response_model=dict.
    """
    meta = ResponseMeta(
        timestamp=datetime.now(timezone.utc),
        request_id=_request_id(request),
        api_version=api_version
    )

    data_dict: Dict[str, Any]
    if isinstance(data, dict):
        data_dict = {key: _to_jsonable(value) for key, value in data.items()}
    elif hasattr(data, "model_dump"):
        data_dict = data.model_dump(mode="json")
    elif isinstance(data, list):
        data_dict = {"items": [_to_jsonable(item) for item in data]}
    elif data is None:
        data_dict = {}
    else:
        data_dict = {"value": data}

    response = ApiResponse(
        status=status,
        message=message,
        data=data_dict,
        meta=meta
    )
    return response.model_dump(mode="json")


def create_error_detail(
    title: str,
    status: int,
    detail: str,
    request: Optional[Request] = None,
    instance: Optional[str] = None
) -> ErrorDetail:
    """Create a standardized error detail (RFC 7807)."""
    return ErrorDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance or (request.url.path if request else None),
        request_id=_request_id(request),
        timestamp=datetime.now(timezone.utc)
    )


# Most specific first
_ERROR_STATUS: List[tuple] = [
    (ValidationError, http_status.HTTP_400_BAD_REQUEST, "Validation Error"),
    (NotFoundError, http_status.HTTP_404_NOT_FOUND, "Not Found"),
    (ConflictError, http_status.HTTP_409_CONFLICT, "Conflict"),
    (UpstreamError, http_status.HTTP_502_BAD_GATEWAY, "Upstream Error"),
    (ConfigurationError, http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Configuration Error"),
]


def raise_http_error(exc: Exception, request: Optional[Request] = None) -> NoReturn:
    """Translate a service exception into an HTTPException with problem details."""
    status_code = http_status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Internal Server Error"
    for error_type, mapped_status, mapped_title in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code, title = mapped_status, mapped_title
            break

    # Upstream 404s surface as missing resources
    if isinstance(exc, UpstreamError) and getattr(exc, "status_code", None) == http_status.HTTP_404_NOT_FOUND:
        status_code, title = http_status.HTTP_404_NOT_FOUND, "Not Found"

    if status_code >= 500:
        LOGGER.error(f"{title}: {exc}", exc_info=not isinstance(exc, AppError))
    else:
        LOGGER.warning(f"{title}: {exc}")

    error_detail = create_error_detail(
        title=title,
        status=status_code,
        detail=str(exc),
        request=request,
    )
    raise HTTPException(status_code=status_code, detail=error_detail.model_dump(mode="json")) from exc
