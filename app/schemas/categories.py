"""Category (NDR node) request and response schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Category(BaseModel):
    id: int
    name: str
    slug: str = ""
    path: str = ""
    parent_id: Optional[int] = None
    position: int = 0
    subtree_doc_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    children: List["Category"] = Field(default_factory=list)


class CategoryCreateRequest(BaseModel):
    name: str
    parent_id: Optional[int] = None


class CategoryUpdateRequest(BaseModel):
    name: str


class CategoryMoveRequest(BaseModel):
    """Move target; an explicit null ``new_parent_id`` moves to the root."""

    new_parent_id: Optional[int] = None



class CategoryReorderRequest(BaseModel):
    parent_id: Optional[int] = None
    ordered_ids: List[int] = Field(default_factory=list)


class CategoryRepositionRequest(BaseModel):
    """Move and reorder in one call.

    ``new_parent_id`` follows the move semantics: absent keeps the parent,
    null moves to the root. ``ordered_ids`` is the sibling order at the
    destination and must contain the moved category.
    """

    new_parent_id: Optional[int] = None
    ordered_ids: List[int] = Field(default_factory=list)


class CategoryRepositionResult(BaseModel):
    category: Category
    siblings: List[Category] = Field(default_factory=list)


class CategoryBulkIdsRequest(BaseModel):
    ids: List[int] = Field(default_factory=list)


Category.model_rebuild()
