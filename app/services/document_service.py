"""Document service for document management operations.

Documents live in NDR; this layer validates types and metadata, binds new
documents to nodes, and keeps the ``metadata.references`` bookkeeping.
"""

from typing import Any, Dict, List, Optional

from app.core.exceptions import ConflictError, NDRError, NotFoundError, ValidationError
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.schemas.documents import (
    DocumentCreateRequest,
    DocumentReference,
    DocumentReorderRequest,
    DocumentUpdateRequest,
)
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
)
from app.utils.document_types import (
    validate_document_content,
    validate_document_metadata,
    validate_document_type,
)
from app.utils.logging import get_logger
from app.utils.timeutils import utcnow

LOGGER = get_logger(__name__)

REFERENCES_KEY = "references"
REFERENCE_SCAN_LIMIT = 1000


def reference_entries(document: Document) -> List[Dict[str, Any]]:
    """Well-formed entries of ``metadata.references``; anything else is ignored."""
    raw = (document.metadata or {}).get(REFERENCES_KEY)
    if not isinstance(raw, list):
        return []
    return [
        entry for entry in raw
        if isinstance(entry, dict) and isinstance(entry.get("document_id"), (int, float))
    ]


class DocumentService:
    """Service for document management operations."""

    def __init__(self, ndr: Optional[NDRClient] = None):
        self.ndr = ndr or ndr_client

    async def list_documents(
        self, meta: RequestMeta, page: int = 0, size: int = 0, filters: Optional[Dict[str, Any]] = None
    ) -> DocumentsPage:
        return await self.ndr.list_documents(meta, page=page, size=size, extra_params=filters)

    async def get(self, meta: RequestMeta, document_id: int) -> Document:
        return await self.ndr.get_document(meta, document_id)

    async def create(self, meta: RequestMeta, request: DocumentCreateRequest) -> Document:
        """Create a document and optionally bind it to ``request.node_id``.

        Raises:
            ValidationError: On an unknown type, mismatched content or bad metadata
            NDRError: If creation or binding fails
        """
        if request.type is not None:
            validate_document_content(request.content, request.type)
        validate_document_metadata(request.metadata)

        body = DocumentCreate(**request.model_dump(exclude={"node_id"}))
        document = await self.ndr.create_document(meta, body)
        if request.node_id is not None:
            await self.ndr.bind_document(meta, request.node_id, document.id)
        LOGGER.info(
            f"Created document {document.id}",
            extra={"type": document.type, "node_id": request.node_id},
        )
        return document

    async def update(self, meta: RequestMeta, document_id: int, request: DocumentUpdateRequest) -> Document:
        """Apply a partial update; ``metadata`` is forwarded as a merge patch.

        Content is checked against the type only when both are sent.
        """
        if request.type is not None:
            validate_document_type(request.type)
            if request.content is not None:
                validate_document_content(request.content, request.type)
        validate_document_metadata(request.metadata)

        body = DocumentUpdate(**request.model_dump(exclude_unset=True))
        return await self.ndr.update_document(meta, document_id, body)

    async def delete(self, meta: RequestMeta, document_id: int) -> None:
        await self.ndr.delete_document(meta, document_id)
        LOGGER.info(f"Deleted document {document_id}")

    async def restore(self, meta: RequestMeta, document_id: int) -> Document:
        document = await self.ndr.restore_document(meta, document_id)
        LOGGER.info(f"Restored document {document_id}")
        return document

    async def purge(self, meta: RequestMeta, document_id: int) -> None:
        await self.ndr.purge_document(meta, document_id)
        LOGGER.info(f"Purged document {document_id}")

    async def get_binding_status(self, meta: RequestMeta, document_id: int) -> DocumentBindingStatus:
        return await self.ndr.get_document_binding_status(meta, document_id)

    async def reorder(self, meta: RequestMeta, request: DocumentReorderRequest) -> List[Document]:
        """Forward a new document order to NDR.

        Raises:
            ValidationError: If ``ordered_ids`` is empty
        """
        if not request.ordered_ids:
            raise ValidationError("ordered_ids cannot be empty")

        body = DocumentReorder(ordered_ids=request.ordered_ids)
        if "type" in request.model_fields_set or request.type is not None:
            doc_type = (request.type or "").strip()
            body.apply_type_filter = True
            body.type = doc_type or None

        documents = await self.ndr.reorder_documents(meta, body)
        LOGGER.info(
            "Reordered documents",
            extra={"count": len(request.ordered_ids), "type_filter": body.type},
        )
        return documents

    async def bind(self, meta: RequestMeta, node_id: int, document_id: int) -> None:
        await self.ndr.bind_document(meta, node_id, document_id)

    async def unbind(self, meta: RequestMeta, node_id: int, document_id: int) -> None:
        await self.ndr.unbind_document(meta, node_id, document_id)

    async def list_versions(
        self, meta: RequestMeta, document_id: int, page: int = 0, size: int = 0
    ) -> DocumentVersionsPage:
        versions = await self.ndr.list_document_versions(meta, document_id, page=page, size=size)
        if not versions.versions and versions.items:
            versions.versions = versions.items
        return versions

    async def get_version(self, meta: RequestMeta, document_id: int, version_number: int) -> DocumentVersion:
        return await self.ndr.get_document_version(meta, document_id, version_number)

    async def diff_versions(
        self, meta: RequestMeta, document_id: int, from_version: int, to_version: int
    ) -> DocumentVersionDiff:
        return await self.ndr.get_document_version_diff(meta, document_id, from_version, to_version)

    async def restore_version(self, meta: RequestMeta, document_id: int, version_number: int) -> Document:
        """Make ``version_number`` the current content; NDR records it as a new version."""
        document = await self.ndr.restore_document_version(meta, document_id, version_number)
        LOGGER.info(
            f"Restored document {document_id} to version {version_number}",
            extra={"new_version": document.version},
        )
        return document

    async def add_reference(self, meta: RequestMeta, document_id: int, ref_document_id: int) -> Document:
        """Append ``ref_document_id`` to the document's references.

        Raises:
            ValidationError: On a self reference
            NotFoundError: If the referenced document does not exist
            ConflictError: If the reference is already present
        """
        if document_id == ref_document_id:
            raise ValidationError("cannot add self-reference")

        document = await self.ndr.get_document(meta, document_id)
        try:
            referenced = await self.ndr.get_document(meta, ref_document_id)
        except NDRError as e:
            if e.status_code != 404:
                raise
            raise NotFoundError(f"referenced document not found: {ref_document_id}", original_error=e) from e

        references = reference_entries(document)
        for entry in references:
            if int(entry["document_id"]) == ref_document_id:
                raise ConflictError(
                    f"reference already exists: document {document_id} already references "
                    f"document {ref_document_id} (title: {entry.get('title', '')})"
                )

        new_entry = DocumentReference(document_id=ref_document_id, title=referenced.title, added_at=utcnow())
        references.append(new_entry.model_dump(mode="json"))

        updated = await self.ndr.update_document(
            meta, document_id, DocumentUpdate(metadata={REFERENCES_KEY: references})
        )
        LOGGER.info(f"Document {document_id} now references {ref_document_id}")
        return updated

    async def remove_reference(self, meta: RequestMeta, document_id: int, ref_document_id: int) -> Document:
        """Drop a reference; removing the last one deletes the key upstream.

        Raises:
            NotFoundError: If the document holds no such reference
        """
        document = await self.ndr.get_document(meta, document_id)
        if REFERENCES_KEY not in (document.metadata or {}):
            raise NotFoundError("no references found")
        if not isinstance(document.metadata[REFERENCES_KEY], list):
            raise ValidationError("invalid references format")

        references = reference_entries(document)
        remaining = [entry for entry in references if int(entry["document_id"]) != ref_document_id]
        if len(remaining) == len(references):
            raise NotFoundError("reference not found")

        patch = {REFERENCES_KEY: remaining or None}
        updated = await self.ndr.update_document(meta, document_id, DocumentUpdate(metadata=patch))
        LOGGER.info(
            f"Document {document_id} no longer references {ref_document_id}",
            extra={"remaining": len(remaining)},
        )
        return updated

    async def get_referencing_documents(self, meta: RequestMeta, document_id: int) -> List[Document]:
        """Documents whose references include ``document_id``.

        Only the first ``REFERENCE_SCAN_LIMIT`` documents are scanned.
        """
        page = await self.ndr.list_documents(meta, page=1, size=REFERENCE_SCAN_LIMIT)
        return [
            doc for doc in page.items
            if any(int(entry["document_id"]) == document_id for entry in reference_entries(doc))
        ]
