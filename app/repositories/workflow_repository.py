from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import WorkflowDefinition, WorkflowRun
from app.repositories.base_repository import BaseRepository


class WorkflowDefinitionRepository(BaseRepository[WorkflowDefinition]):
    """Repository for workflow definitions."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WorkflowDefinition)

    async def get_by_key(self, workflow_key: str) -> Optional[WorkflowDefinition]:
        query = select(WorkflowDefinition).where(WorkflowDefinition.workflow_key == workflow_key)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_enabled_by_key(self, workflow_key: str) -> Optional[WorkflowDefinition]:
        query = select(WorkflowDefinition).where(
            WorkflowDefinition.workflow_key == workflow_key,
            WorkflowDefinition.enabled.is_(True),
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_deployment_id(self, deployment_id: str) -> Optional[WorkflowDefinition]:
        query = select(WorkflowDefinition).where(
            WorkflowDefinition.prefect_deployment_id == deployment_id
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_enabled(self, workflow_type: Optional[str] = None) -> List[WorkflowDefinition]:
        """Enabled definitions that are active (or predate sync tracking)."""
        query = select(WorkflowDefinition).where(
            WorkflowDefinition.enabled.is_(True),
            or_(
                WorkflowDefinition.sync_status == "active",
                WorkflowDefinition.sync_status == "",
                WorkflowDefinition.sync_status.is_(None),
            ),
        )
        if workflow_type:
            query = query.where(WorkflowDefinition.workflow_type == workflow_type)
        query = query.order_by(WorkflowDefinition.workflow_key)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_admin(
        self,
        source: Optional[str] = None,
        workflow_type: Optional[str] = None,
        sync_status: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[WorkflowDefinition]:
        query = select(WorkflowDefinition)
        if source:
            query = query.where(WorkflowDefinition.source == source)
        if workflow_type:
            query = query.where(WorkflowDefinition.workflow_type == workflow_type)
        if sync_status:
            query = query.where(WorkflowDefinition.sync_status == sync_status)
        if enabled is not None:
            query = query.where(WorkflowDefinition.enabled.is_(enabled))
        result = await self.session.execute(query.order_by(WorkflowDefinition.workflow_key))
        return list(result.scalars().all())

    async def list_by_source(self, source: str) -> List[WorkflowDefinition]:
        query = select(WorkflowDefinition).where(WorkflowDefinition.source == source)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class WorkflowRunRepository(BaseRepository[WorkflowRun]):
    """Repository for the workflow run ledger."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WorkflowRun)

    @staticmethod
    def _filtered(
        query,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
        workflow_key: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ):
        if node_id is not None:
            query = query.where(WorkflowRun.node_id == node_id)
        if document_id is not None:
            query = query.where(WorkflowRun.document_id == document_id)
        if workflow_key:
            query = query.where(WorkflowRun.workflow_key == workflow_key)
        if statuses:
            query = query.where(WorkflowRun.status.in_(list(statuses)))
        return query

    async def list_runs(
        self,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
        workflow_key: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[WorkflowRun], int]:
        """Page of runs (newest first) and the total matching count."""
        try:
            count_query = self._filtered(
                select(func.count()).select_from(WorkflowRun),
                node_id, document_id, workflow_key, statuses,
            )
            total = (await self.session.execute(count_query)).scalar_one()

            query = self._filtered(select(WorkflowRun), node_id, document_id, workflow_key, statuses)
            query = query.order_by(WorkflowRun.created_at.desc(), WorkflowRun.id.desc())
            result = await self.session.execute(query.offset(offset).limit(limit))
            return list(result.scalars().all()), total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing workflow runs: {str(e)}", exc_info=True)
            raise

    async def retry_stats(self, run_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
        """Retry count and latest retry status for each original run ID."""
        if not run_ids:
            return {}

        counts_query = (
            select(WorkflowRun.retry_of_id, func.count())
            .where(WorkflowRun.retry_of_id.in_(list(run_ids)))
            .group_by(WorkflowRun.retry_of_id)
        )
        counts = (await self.session.execute(counts_query)).all()

        stats: Dict[int, Dict[str, Any]] = {
            retry_of_id: {"retry_count": count, "latest_retry_status": None}
            for retry_of_id, count in counts
        }

        latest_query = (
            select(WorkflowRun.retry_of_id, WorkflowRun.status)
            .where(WorkflowRun.retry_of_id.in_(list(stats.keys())))
            .order_by(WorkflowRun.retry_of_id, WorkflowRun.created_at.desc(), WorkflowRun.id.desc())
        )
        for retry_of_id, run_status in (await self.session.execute(latest_query)).all():
            if stats[retry_of_id]["latest_retry_status"] is None:
                stats[retry_of_id]["latest_retry_status"] = run_status

        return stats

    async def count_where(self, conditions: List[Any]) -> int:
        query = select(func.count()).select_from(WorkflowRun).where(*conditions)
        return (await self.session.execute(query)).scalar_one()

    async def delete_where(self, conditions: List[Any]) -> int:
        try:
            result = await self.session.execute(
                delete(WorkflowRun).where(*conditions).execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting workflow runs: {str(e)}", exc_info=True)
            raise

    @staticmethod
    def cleanup_conditions(
        before: Optional[datetime] = None,
        workflow_key: Optional[str] = None,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
    ) -> List[Any]:
        conditions: List[Any] = []
        if before is not None:
            conditions.append(WorkflowRun.created_at < before)
        if workflow_key:
            conditions.append(WorkflowRun.workflow_key == workflow_key)
        if node_id is not None:
            conditions.append(WorkflowRun.node_id == node_id)
        if document_id is not None:
            conditions.append(WorkflowRun.document_id == document_id)
        return conditions
