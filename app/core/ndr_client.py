"""HTTP client for the NDR node/document store.

NDR owns categories (nodes) and documents. Every call forwards the caller's
identity through ``x-user-id`` / ``x-request-id`` headers so NDR can audit
writes.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import APITimeoutError, ConfigurationError, NDRError
from app.schemas.ndr import (
    Document,
    DocumentBindingStatus,
    DocumentCreate,
    DocumentReorder,
    DocumentsPage,
    DocumentUpdate,
    DocumentVersion,
    DocumentVersionDiff,
    DocumentVersionsPage,
    Node,
    NodeCreate,
    NodeReorder,
    NodesPage,
    NodeUpdate,
    SourceDocument,
)
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

_LOG_BODY_LIMIT = 2048


@dataclass
class RequestMeta:
    """Identity and tracing context forwarded to NDR."""

    api_key: str = ""
    user_id: str = ""
    user_role: str = ""
    request_id: str = ""
    admin_key: str = ""


def _truncate(text: str) -> str:
    if not text:
        return "<empty>"
    if len(text) <= _LOG_BODY_LIMIT:
        return text
    return f"{text[:_LOG_BODY_LIMIT]}...(truncated {len(text) - _LOG_BODY_LIMIT} bytes)"


class NDRClient:
    """Async client for the NDR REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        debug: Optional[bool] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.ndr.base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ndr.api_key
        self.timeout = timeout if timeout is not None else settings.ndr.timeout
        self.debug = debug if debug is not None else settings.ndr.debug_traffic

    def _headers(self, meta: RequestMeta) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = meta.api_key or self.api_key
        if api_key:
            headers["x-api-key"] = api_key
        if meta.user_id:
            headers["x-user-id"] = meta.user_id
        if meta.request_id:
            headers["x-request-id"] = meta.request_id
        if meta.admin_key:
            headers["x-admin-key"] = meta.admin_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        meta: RequestMeta,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            NDRError: If NDR answers with a status >= 400
            APITimeoutError: If the request times out
        """
        if not self.base_url:
            raise ConfigurationError("ndr base url is not configured")

        url = f"{self.base_url}{path}"
        if self.debug:
            LOGGER.debug(f"[ndr] request {method} {url} params={params} body={_truncate(str(json or ''))}")

        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(meta),
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as e:
            LOGGER.error(f"NDR request timed out: {method} {path}", exc_info=True)
            raise APITimeoutError(f"ndr request timed out: {method} {path}", original_error=e) from e
        except httpx.HTTPError as e:
            LOGGER.error(f"NDR request failed: {method} {path}: {e}", exc_info=True)
            raise NDRError(f"ndr request failed: {e}", original_error=e) from e

        if self.debug:
            LOGGER.debug(f"[ndr] response {method} {path} status={response.status_code} body={_truncate(response.text)}")

        if response.status_code >= 400:
            LOGGER.warning(
                f"NDR returned error status for {method} {path}",
                extra={"status_code": response.status_code},
            )
            raise NDRError(
                f"ndr request failed: {response.status_code} {response.text}".strip(),
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NDRError(
                f"ndr returned an invalid body for {method} {path}",
                status_code=response.status_code,
                original_error=e,
            ) from e

    async def check_health(self, meta: Optional[RequestMeta] = None) -> None:
        await self._request("GET", "/ready", meta or RequestMeta())

    # Nodes

    async def get_node(self, meta: RequestMeta, node_id: int, include_deleted: bool = False) -> Node:
        params = {"include_deleted": "true"} if include_deleted else None
        data = await self._request("GET", f"/api/v1/nodes/{node_id}", meta, params=params)
        return Node.model_validate(data)

    async def list_children(self, meta: RequestMeta, node_id: int, depth: int = 0) -> List[Node]:
        params = {"depth": depth} if depth > 0 else None
        data = await self._request("GET", f"/api/v1/nodes/{node_id}/children", meta, params=params)
        return [Node.model_validate(item) for item in data or []]

    async def has_children(self, meta: RequestMeta, node_id: int) -> bool:
        children = await self.list_children(meta, node_id)
        return len(children) > 0

    async def list_nodes(
        self,
        meta: RequestMeta,
        page: int = 0,
        size: int = 0,
        include_deleted: Optional[bool] = None,
    ) -> NodesPage:
        params: Dict[str, Any] = {}
        if page > 0:
            params["page"] = page
        if size > 0:
            params["size"] = size
        if include_deleted is not None:
            params["include_deleted"] = "true" if include_deleted else "false"
        data = await self._request("GET", "/api/v1/nodes", meta, params=params or None)
        return NodesPage.model_validate(data or {})

    async def create_node(self, meta: RequestMeta, body: NodeCreate) -> Node:
        data = await self._request("POST", "/api/v1/nodes", meta, json=body.to_payload())
        return Node.model_validate(data)

    async def update_node(self, meta: RequestMeta, node_id: int, body: NodeUpdate) -> Node:
        data = await self._request("PUT", f"/api/v1/nodes/{node_id}", meta, json=body.to_payload())
        return Node.model_validate(data)

    async def delete_node(self, meta: RequestMeta, node_id: int) -> None:
        await self._request("DELETE", f"/api/v1/nodes/{node_id}", meta)

    async def restore_node(self, meta: RequestMeta, node_id: int) -> Node:
        data = await self._request("POST", f"/api/v1/nodes/{node_id}/restore", meta)
        return Node.model_validate(data)

    async def purge_node(self, meta: RequestMeta, node_id: int) -> None:
        await self._request("DELETE", f"/api/v1/nodes/{node_id}/purge", meta)

    async def reorder_nodes(self, meta: RequestMeta, body: NodeReorder) -> List[Node]:
        data = await self._request("POST", "/api/v1/nodes/reorder", meta, json=body.model_dump())
        return [Node.model_validate(item) for item in data or []]

    async def list_node_documents(
        self,
        meta: RequestMeta,
        node_id: int,
        include_descendants: Optional[bool] = None,
        page: int = 0,
        size: int = 0,
    ) -> DocumentsPage:
        params: Dict[str, Any] = {}
        if include_descendants is not None:
            params["include_descendants"] = "true" if include_descendants else "false"
        if page > 0:
            params["page"] = page
        if size > 0:
            params["size"] = size
        data = await self._request(
            "GET", f"/api/v1/nodes/{node_id}/subtree-documents", meta, params=params or None
        )
        return DocumentsPage.model_validate(data or {})

    async def list_source_documents(self, meta: RequestMeta, node_id: int) -> List[SourceDocument]:
        data = await self._request("GET", f"/api/v1/nodes/{node_id}/sources", meta)
        return [SourceDocument.model_validate(item) for item in data or []]

    # Documents

    async def list_documents(
        self,
        meta: RequestMeta,
        page: int = 0,
        size: int = 0,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> DocumentsPage:
        params: Dict[str, Any] = dict(extra_params or {})
        if page > 0:
            params["page"] = page
        if size > 0:
            params["size"] = size
        data = await self._request("GET", "/api/v1/documents", meta, params=params or None)
        return DocumentsPage.model_validate(data or {})

    async def get_document(self, meta: RequestMeta, document_id: int) -> Document:
        data = await self._request("GET", f"/api/v1/documents/{document_id}", meta)
        return Document.model_validate(data)

    async def create_document(self, meta: RequestMeta, body: DocumentCreate) -> Document:
        data = await self._request("POST", "/api/v1/documents", meta, json=body.to_payload())
        return Document.model_validate(data)

    async def update_document(self, meta: RequestMeta, document_id: int, body: DocumentUpdate) -> Document:
        data = await self._request(
            "PUT", f"/api/v1/documents/{document_id}", meta, json=body.to_payload()
        )
        return Document.model_validate(data)

    async def delete_document(self, meta: RequestMeta, document_id: int) -> None:
        await self._request("DELETE", f"/api/v1/documents/{document_id}", meta)

    async def restore_document(self, meta: RequestMeta, document_id: int) -> Document:
        data = await self._request("POST", f"/api/v1/documents/{document_id}/restore", meta)
        return Document.model_validate(data)

    async def purge_document(self, meta: RequestMeta, document_id: int) -> None:
        await self._request("DELETE", f"/api/v1/documents/{document_id}/purge", meta)

    async def reorder_documents(self, meta: RequestMeta, body: DocumentReorder) -> List[Document]:
        data = await self._request("POST", "/api/v1/documents/reorder", meta, json=body.to_payload())
        return [Document.model_validate(item) for item in data or []]

    async def get_document_binding_status(self, meta: RequestMeta, document_id: int) -> DocumentBindingStatus:
        data = await self._request("GET", f"/api/v1/documents/{document_id}/binding-status", meta)
        return DocumentBindingStatus.model_validate(data or {})

    async def bind_document(self, meta: RequestMeta, node_id: int, document_id: int) -> None:
        await self._request("POST", f"/api/v1/nodes/{node_id}/bind/{document_id}", meta)

    async def unbind_document(self, meta: RequestMeta, node_id: int, document_id: int) -> None:
        await self._request("DELETE", f"/api/v1/nodes/{node_id}/unbind/{document_id}", meta)

    async def list_document_versions(
        self, meta: RequestMeta, document_id: int, page: int = 0, size: int = 0
    ) -> DocumentVersionsPage:
        params: Dict[str, Any] = {}
        if page > 0:
            params["page"] = page
        if size > 0:
            params["size"] = size
        data = await self._request(
            "GET", f"/api/v1/documents/{document_id}/versions", meta, params=params or None
        )
        return DocumentVersionsPage.model_validate(data or {})

    async def get_document_version(
        self, meta: RequestMeta, document_id: int, version_number: int
    ) -> DocumentVersion:
        data = await self._request(
            "GET", f"/api/v1/documents/{document_id}/versions/{version_number}", meta
        )
        return DocumentVersion.model_validate(data)

    async def get_document_version_diff(
        self, meta: RequestMeta, document_id: int, from_version: int, to_version: int
    ) -> DocumentVersionDiff:
        data = await self._request(
            "GET",
            f"/api/v1/documents/{document_id}/versions/{from_version}/diff",
            meta,
            params={"to": to_version},
        )
        return DocumentVersionDiff.model_validate(data)

    async def restore_document_version(
        self, meta: RequestMeta, document_id: int, version_number: int
    ) -> Document:
        data = await self._request(
            "POST", f"/api/v1/documents/{document_id}/versions/{version_number}/restore", meta
        )
        return Document.model_validate(data)


# Global NDR client instance
ndr_client = NDRClient()


def get_ndr_client() -> NDRClient:
    """FastAPI dependency returning the shared NDR client."""
    return ndr_client
