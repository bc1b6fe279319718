from typing import List, Optional, Tuple, Type

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import SyncBatch, WorkflowBatch
from app.repositories.base_repository import BaseRepository, ModelType


class _BatchRepository(BaseRepository[ModelType]):
    """Shared lookups for batch rows keyed by their public UUID."""

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        super().__init__(session, model)

    async def get_by_batch_id(self, batch_id: str) -> Optional[ModelType]:
        query = select(self.model).where(self.model.batch_id == batch_id)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def update_by_batch_id(self, batch_id: str, **values) -> int:
        return await self.update_where([self.model.batch_id == batch_id], **values)

    async def list_batches(
        self,
        created_by_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[ModelType], int]:
        """Newest first; ``created_by_id`` restricts to one user's batches."""
        count_query = select(func.count()).select_from(self.model)
        query = select(self.model)
        if created_by_id is not None:
            count_query = count_query.where(self.model.created_by_id == created_by_id)
            query = query.where(self.model.created_by_id == created_by_id)

        total = (await self.session.execute(count_query)).scalar_one()
        query = query.order_by(self.model.created_at.desc(), self.model.id.desc())
        result = await self.session.execute(query.offset(offset).limit(limit))
        return list(result.scalars().all()), total


class WorkflowBatchRepository(_BatchRepository[WorkflowBatch]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, WorkflowBatch)


class SyncBatchRepository(_BatchRepository[SyncBatch]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, SyncBatch)
