"""Category management over NDR nodes."""

from typing import Dict, List, Optional

from app.core.exceptions import ConflictError, ValidationError
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.schemas.auth import ROLE_COURSE_ADMIN
from app.schemas.categories import Category, CategoryRepositionResult
from app.schemas.ndr import Node, NodeCreate, NodeReorder, NodeUpdate
from app.utils.logging import get_logger
from app.utils.slugs import node_slug

LOGGER = get_logger(__name__)

NODES_PAGE_SIZE = 100


def to_category(node: Node, parent_id: Optional[int] = None) -> Category:
    category = Category.model_validate(node.model_dump(exclude={"created_by", "updated_by"}))
    if parent_id is not None:
        category.parent_id = parent_id
    return category


def build_tree(nodes: List[Node]) -> List[Category]:
    """Assemble flat nodes into a forest.

    Nodes whose parent is not in the list become roots. Siblings are ordered
    by position, then name.
    """
    by_id: Dict[int, Category] = {node.id: to_category(node) for node in nodes}
    roots: List[Category] = []

    for category in by_id.values():
        parent = by_id.get(category.parent_id) if category.parent_id is not None else None
        if parent is None:
            roots.append(category)
        else:
            parent.children.append(category)

    def sort_key(category: Category):
        return (category.position, category.name)

    roots.sort(key=sort_key)
    for category in by_id.values():
        category.children.sort(key=sort_key)
    return roots


class CategoryService:
    """Thin domain layer over the NDR node API."""

    def __init__(self, ndr: Optional[NDRClient] = None):
        self.ndr = ndr or ndr_client

    async def get(self, meta: RequestMeta, category_id: int, include_deleted: bool = False) -> Category:
        node = await self.ndr.get_node(meta, category_id, include_deleted=include_deleted)
        return to_category(node)

    async def create(self, meta: RequestMeta, name: str, parent_id: Optional[int] = None) -> Category:
        """Create a node, placing it under ``parent_id`` when given.

        Raises:
            ValidationError: If the name is blank
            NDRError: If the parent lookup or creation fails
        """
        if not name or not name.strip():
            raise ValidationError("name is required")

        parent_path = None
        if parent_id is not None:
            parent = await self.ndr.get_node(meta, parent_id)
            parent_path = parent.path

        node = await self.ndr.create_node(
            meta, NodeCreate(name=name, slug=node_slug(name), parent_path=parent_path)
        )
        category = to_category(node, parent_id)
        LOGGER.info(
            f"Created category {category.id}",
            extra={"path": category.path, "position": category.position},
        )
        return category

    async def update(self, meta: RequestMeta, category_id: int, name: str) -> Category:
        if not name or not name.strip():
            raise ValidationError("name is required")

        node = await self.ndr.update_node(
            meta, category_id, NodeUpdate(name=name, slug=node_slug(name))
        )
        LOGGER.info(f"Updated category {category_id}", extra={"path": node.path})
        return to_category(node)

    async def delete(self, meta: RequestMeta, category_id: int) -> None:
        """Soft delete a leaf category.

        Raises:
            ConflictError: If the category still has children
        """
        if await self.ndr.has_children(meta, category_id):
            raise ConflictError("cannot delete category with children")
        await self.ndr.delete_node(meta, category_id)
        LOGGER.info(f"Deleted category {category_id}")

    async def restore(self, meta: RequestMeta, category_id: int) -> Category:
        node = await self.ndr.restore_node(meta, category_id)
        LOGGER.info(f"Restored category {category_id}", extra={"path": node.path})
        return to_category(node)

    async def move(
        self, meta: RequestMeta, category_id: int, new_parent_id: Optional[int], parent_specified: bool = True
    ) -> Category:
        """Reparent a category.

        When ``parent_specified`` is false the parent is left untouched; an
        explicit ``None`` moves the category to the root.
        """
        update = NodeUpdate()
        if parent_specified:
            parent_path = None
            if new_parent_id is not None:
                parent = await self.ndr.get_node(meta, new_parent_id)
                parent_path = parent.path
            update = NodeUpdate(parent_path=parent_path)

        node = await self.ndr.update_node(meta, category_id, update)
        category = to_category(node, new_parent_id)
        LOGGER.info(
            f"Moved category {category_id}",
            extra={"new_parent_id": category.parent_id, "position": category.position},
        )
        return category

    async def purge(self, meta: RequestMeta, category_id: int) -> None:
        await self.ndr.purge_node(meta, category_id)
        LOGGER.info(f"Purged category {category_id}")

    async def reorder(
        self, meta: RequestMeta, parent_id: Optional[int], ordered_ids: List[int]
    ) -> List[Category]:
        """Set the sibling order under ``parent_id`` (None for the roots).

        Raises:
            ValidationError: If ``ordered_ids`` is empty
        """
        if not ordered_ids:
            raise ValidationError("ordered_ids is required")

        nodes = await self.ndr.reorder_nodes(meta, NodeReorder(parent_id=parent_id, ordered_ids=ordered_ids))
        LOGGER.info(f"Reordered categories under {parent_id}", extra={"count": len(nodes)})
        return [to_category(node, parent_id) for node in nodes]

    async def reposition(
        self,
        meta: RequestMeta,
        category_id: int,
        new_parent_id: Optional[int],
        ordered_ids: List[int],
        parent_specified: bool = True,
    ) -> CategoryRepositionResult:
        """Move a category if its parent changes, then reorder the destination siblings.

        Course administrators may neither move a node to the root nor move a
        root node under another node.

        Raises:
            ValidationError: If ``ordered_ids`` is empty or lacks ``category_id``,
                or the role forbids the move
        """
        if not ordered_ids:
            raise ValidationError("ordered_ids is required")
        if category_id not in ordered_ids:
            raise ValidationError("ordered_ids must contain the target category id")

        current = await self.get(meta, category_id, include_deleted=True)

        if meta.user_role == ROLE_COURSE_ADMIN and parent_specified:
            if new_parent_id is None:
                raise ValidationError("course administrators cannot move nodes to root level")
            if current.parent_id is None:
                raise ValidationError("course administrators cannot move root nodes to become child nodes")

        if parent_specified and current.parent_id != new_parent_id:
            current = await self.move(meta, category_id, new_parent_id)

        siblings = await self.reorder(meta, current.parent_id, ordered_ids)
        for sibling in siblings:
            if sibling.id == category_id:
                current = sibling
                break
        return CategoryRepositionResult(category=current, siblings=siblings)

    async def bulk_restore(self, meta: RequestMeta, ids: List[int]) -> List[Category]:
        """Restore each id in order; the first failure aborts the rest."""
        if not ids:
            raise ValidationError("ids is required")
        return [await self.restore(meta, category_id) for category_id in ids]

    async def bulk_delete(self, meta: RequestMeta, ids: List[int]) -> List[int]:
        """Soft delete each distinct id in order; returns the deleted ids."""
        if not ids:
            raise ValidationError("ids is required")
        deleted: List[int] = []
        for category_id in dict.fromkeys(ids):
            await self.delete(meta, category_id)
            deleted.append(category_id)
        return deleted

    async def bulk_purge(self, meta: RequestMeta, ids: List[int]) -> List[int]:
        if not ids:
            raise ValidationError("ids is required")
        for category_id in ids:
            await self.purge(meta, category_id)
        return ids

    async def _all_nodes(self, meta: RequestMeta, include_deleted: bool) -> List[Node]:
        nodes: List[Node] = []
        page_number = 1
        total = 0
        while True:
            page = await self.ndr.list_nodes(
                meta, page=page_number, size=NODES_PAGE_SIZE, include_deleted=include_deleted or None
            )
            if total == 0:
                total = page.total
            nodes.extend(page.items)

            page_size = page.size or NODES_PAGE_SIZE
            if (total and len(nodes) >= total) or not page.items or len(page.items) < page_size:
                return nodes
            page_number += 1

    async def get_tree(self, meta: RequestMeta, include_deleted: bool = False) -> List[Category]:
        nodes = await self._all_nodes(meta, include_deleted)
        tree = build_tree(nodes)
        LOGGER.debug(f"Category tree built: fetched={len(nodes)} roots={len(tree)}")
        return tree

    async def list_trash(self, meta: RequestMeta) -> List[Category]:
        nodes = await self._all_nodes(meta, include_deleted=True)
        return [to_category(node) for node in nodes if node.deleted_at is not None]
