from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import DocumentSyncStatus
from app.repositories.base_repository import BaseRepository
from app.utils.timeutils import utcnow


class DocumentSyncStatusRepository(BaseRepository[DocumentSyncStatus]):
    """Repository for per-document sync bookkeeping (keyed by document_id)."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, DocumentSyncStatus)

    async def get_by_document(self, document_id: int) -> Optional[DocumentSyncStatus]:
        return await self.get_by_id(document_id)

    async def upsert_pending(
        self,
        document_id: int,
        event_id: str,
        version: int,
        workflow_run_id: int,
        commit: bool = True,
    ) -> DocumentSyncStatus:
        """Start a new sync attempt, resetting the previous attempt's outcome."""
        status = await self.get_by_document(document_id)
        if status is None:
            return await self.create(
                commit=commit,
                document_id=document_id,
                last_event_id=event_id,
                last_version=version,
                last_status="pending",
                last_error="",
                last_run_id="",
                last_workflow_run_id=workflow_run_id,
            )

        status.last_event_id = event_id
        status.last_version = version
        status.last_status = "pending"
        status.last_error = ""
        status.last_run_id = ""
        status.last_workflow_run_id = workflow_run_id
        status.updated_at = utcnow()
        await self.session.flush()
        if commit:
            await self.session.commit()
        return status

    async def update_pending_attempt(self, document_id: int, event_id: str, **values) -> int:
        """Update only while the given attempt is still pending.

        Returns the affected row count; zero means a callback already
        finalized the attempt or a newer attempt replaced it.
        """
        return await self.update_where(
            [
                DocumentSyncStatus.document_id == document_id,
                DocumentSyncStatus.last_event_id == event_id,
                DocumentSyncStatus.last_status == "pending",
            ],
            **values,
        )
