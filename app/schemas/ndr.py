"""Pydantic models for resources owned by the NDR node/document store.

Update payloads rely on ``model_fields_set``: a field that was never set is
omitted from the request body, while a field explicitly set to ``None`` is
sent as JSON ``null``. For metadata this is RFC 7396 merge-patch, where a
``null`` value deletes the key upstream.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Node(BaseModel):
    """A category node in the NDR tree."""
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    slug: str = ""
    path: str = ""
    parent_id: Optional[int] = None
    position: int = 0
    subtree_doc_count: int = 0
    created_by: str = ""
    updated_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class NodesPage(BaseModel):
    page: int = 1
    size: int = 0
    total: int = 0
    items: List[Node] = Field(default_factory=list)


class NodeCreate(BaseModel):
    name: str
    slug: Optional[str] = None
    parent_path: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class NodeUpdate(BaseModel):
    """Partial node update.

    ``parent_path`` is tri-state: unset keeps the parent, a string moves the
    node under that path, an explicit ``None`` moves it to the root.
    """

    name: Optional[str] = None
    slug: Optional[str] = None
    parent_path: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude_unset=True)
        for key in ("name", "slug"):
            if payload.get(key) is None:
                payload.pop(key, None)
        return payload


class Document(BaseModel):
    """A document in the NDR store."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    title: str = ""
    version: Optional[int] = Field(default=None, alias="version_number")
    content: Optional[Dict[str, Any]] = None
    type: Optional[str] = None
    position: int = 0
    created_by: str = ""
    updated_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class DocumentsPage(BaseModel):
    page: int = 1
    size: int = 0
    total: int = 0
    items: List[Document] = Field(default_factory=list)


class SourceDocument(BaseModel):
    """A document bound to a node as workflow input."""
    model_config = ConfigDict(extra="ignore")

    document_id: int
    relation_type: str = ""
    document: Optional[Document] = None


class DocumentCreate(BaseModel):
    title: str
    type: Optional[str] = None
    position: Optional[int] = None
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class DocumentUpdate(BaseModel):
    """Partial document update; metadata is sent as a merge patch."""

    title: Optional[str] = None
    type: Optional[str] = None
    position: Optional[int] = None
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        # Only explicitly set top-level fields; inner metadata nulls survive.
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class DocumentVersion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    document_id: int
    version_number: int
    title: str = ""
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    type: Optional[str] = None
    created_by: str = ""
    created_at: Optional[datetime] = None
    change_message: Optional[str] = None


class DocumentVersionsPage(BaseModel):
    """Version listing; older NDR builds return ``items`` instead of ``versions``."""
    model_config = ConfigDict(extra="ignore")

    page: int = 1
    size: int = 0
    total: int = 0
    versions: List[DocumentVersion] = Field(default_factory=list)
    items: List[DocumentVersion] = Field(default_factory=list)

    @property
    def entries(self) -> List[DocumentVersion]:
        return self.versions or self.items


class DocumentBindingStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_bindings: int = 0
    node_ids: List[int] = Field(default_factory=list)


class DiffDetail(BaseModel):
    old: Any = None
    new: Any = None


class DocumentVersionDiff(BaseModel):
    model_config = ConfigDict(extra="ignore")

    from_version: int
    to_version: int
    title_diff: Optional[DiffDetail] = None
    content_diff: Optional[Dict[str, Any]] = None
    metadata_diff: Optional[Dict[str, Any]] = None


class NodeReorder(BaseModel):
    """Sibling order under ``parent_id``; a null parent addresses the roots."""

    parent_id: Optional[int] = None
    ordered_ids: List[int]


class DocumentReorder(BaseModel):
    """Document order; ``type`` is sent only when ``apply_type_filter`` is set."""

    ordered_ids: List[int]
    type: Optional[str] = None
    apply_type_filter: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ordered_ids": self.ordered_ids}
        if self.apply_type_filter:
            payload["type"] = self.type
        return payload
