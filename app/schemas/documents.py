"""Document request schemas and reference bookkeeping."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DocumentCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    type: Optional[str] = None
    position: Optional[int] = None
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    node_id: Optional[int] = Field(None, description="Bind the new document to this node")


class DocumentUpdateRequest(BaseModel):
    title: Optional[str] = None
    type: Optional[str] = None
    position: Optional[int] = None
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Merge patch; null values delete keys"
    )


class DocumentReference(BaseModel):
    """Entry stored in a document's ``metadata.references`` list."""

    document_id: int
    title: str = ""
    added_at: datetime


class AddReferenceRequest(BaseModel):
    document_id: int


class DocumentReorderRequest(BaseModel):
    """New document order.

    Sending ``type`` at all, even as null, asks NDR to reorder only within
    that type; a blank type is forwarded as null.
    """

    ordered_ids: List[int] = Field(default_factory=list)
    type: Optional[str] = None
