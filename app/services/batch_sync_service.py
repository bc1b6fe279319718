"""Batch sync of every document under a category subtree."""

import asyncio
import uuid
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.core.exceptions import BatchNotFoundError, ValidationError
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.core.prefect_client import PrefectClient, prefect_client
from app.database.models import SyncBatch
from app.repositories.batch_repository import SyncBatchRepository
from app.schemas.auth import CurrentUser
from app.schemas.batch import (
    BatchSyncRequest,
    DocumentResult,
    SyncBatchListResponse,
    SyncBatchStatusResponse,
    SyncExecuteResponse,
    SyncPreviewItem,
    SyncPreviewResponse,
)
from app.schemas.ndr import Document
from app.services.base_service import BaseService
from app.services.batch_workflow_service import (
    BATCH_COMPLETED,
    BATCH_FAILED,
    BATCH_PENDING,
    BATCH_RUNNING,
    DEFAULT_BATCH_CONCURRENCY,
    DEFAULT_LIST_LIMIT,
    MAX_LIST_LIMIT,
    batch_progress,
    resolve_concurrency,
)
from app.services.sync_service import SyncService, parse_sync_target
from app.services.task_runner import BatchTaskRunner, batch_task_runner
from app.utils.logging import get_logger
from app.utils.timeutils import utcnow

LOGGER = get_logger(__name__)

DOCUMENTS_PAGE_SIZE = 100
SKIP_NO_TARGET = "sync_target not configured"


class CollectedDocument(NamedTuple):
    document: Document
    node_id: int
    node_path: str


class BatchSyncService(BaseService):
    """Preview, execute and track batch document syncs."""

    def __init__(
        self,
        session: AsyncSession,
        ndr: Optional[NDRClient] = None,
        prefect: Optional[PrefectClient] = None,
        runner: Optional[BatchTaskRunner] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        super().__init__(session)
        self.ndr = ndr or ndr_client
        self.prefect = prefect or prefect_client
        self.runner = runner or batch_task_runner
        self.session_factory = session_factory or async_session_maker
        self.batch_repo = SyncBatchRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        return await self.execute_batch_sync(kwargs["meta"], kwargs["node_id"], kwargs["request"])

    async def _node_documents(self, meta: RequestMeta, node_id: int) -> List[Document]:
        """All direct documents of a node, page by page."""
        documents: List[Document] = []
        page = 1
        while True:
            docs = await self.ndr.list_node_documents(
                meta, node_id, include_descendants=False, page=page, size=DOCUMENTS_PAGE_SIZE
            )
            documents.extend(docs.items)
            if len(docs.items) < DOCUMENTS_PAGE_SIZE or (docs.total > 0 and len(documents) >= docs.total):
                return documents
            page += 1

    async def collect_documents(
        self, meta: RequestMeta, node_id: int, include_descendants: bool
    ) -> List[CollectedDocument]:
        """Documents of the subtree, excluding each node's source documents."""
        node = await self.ndr.get_node(meta, node_id)

        source_ids = set()
        try:
            source_ids = {src.document_id for src in await self.ndr.list_source_documents(meta, node_id)}
        except Exception as e:
            LOGGER.warning(f"Failed to get source documents for node {node_id}: {e}")

        result = [
            CollectedDocument(doc, node_id, node.path)
            for doc in await self._node_documents(meta, node_id)
            if doc.id not in source_ids
        ]
        if not include_descendants:
            return result

        for child in await self.ndr.list_children(meta, node_id):
            if child.deleted_at is not None:
                continue
            result.extend(await self.collect_documents(meta, child.id, True))
        return result

    async def preview_batch_sync(
        self, meta: RequestMeta, node_id: int, request: BatchSyncRequest
    ) -> SyncPreviewResponse:
        documents = await self.collect_documents(meta, node_id, request.include_descendants)

        items: List[SyncPreviewItem] = []
        for doc, doc_node_id, node_path in documents:
            item = SyncPreviewItem(
                document_id=doc.id,
                document_name=doc.title,
                document_type=doc.type or "",
                node_id=doc_node_id,
                node_path=node_path,
                can_sync=False,
            )
            try:
                target = parse_sync_target(doc.metadata)
            except ValidationError as e:
                item.skip_reason = e.message
            else:
                if target is None:
                    item.skip_reason = SKIP_NO_TARGET
                else:
                    item.sync_target = target.model_dump(exclude_none=True)
                    item.can_sync = True
            items.append(item)

        can_sync = sum(1 for item in items if item.can_sync)
        return SyncPreviewResponse(
            root_node_id=node_id,
            total_documents=len(items),
            can_sync=can_sync,
            will_skip=len(items) - can_sync,
            documents=items,
        )

    async def execute_batch_sync(
        self, meta: RequestMeta, node_id: int, request: BatchSyncRequest
    ) -> SyncExecuteResponse:
        """Persist a sync batch row and hand the fan-out to the task runner.

        Raises:
            ValidationError: If the subtree holds no documents
        """
        documents = await self.collect_documents(meta, node_id, request.include_descendants)
        if not documents:
            raise ValidationError("no documents to sync")

        batch_id = str(uuid.uuid4())
        await self.batch_repo.create(
            batch_id=batch_id,
            root_node_id=node_id,
            status=BATCH_PENDING,
            total_documents=len(documents),
            created_by_id=meta.user_id or None,
        )
        LOGGER.info(
            f"Batch sync {batch_id} created",
            extra={"root_node_id": node_id, "total_documents": len(documents)},
        )

        self.runner.submit(batch_id, self._run_batch(meta, batch_id, documents, request))
        return SyncExecuteResponse(
            batch_id=batch_id,
            status=BATCH_RUNNING,
            total_documents=len(documents),
            message="batch sync started",
        )

    async def _run_batch(
        self,
        meta: RequestMeta,
        batch_id: str,
        documents: List[CollectedDocument],
        request: BatchSyncRequest,
    ) -> None:
        async with self.session_factory() as session:
            repo = SyncBatchRepository(session)
            await repo.update_by_batch_id(batch_id, status=BATCH_RUNNING, started_at=utcnow())

            try:
                counts, results = await self._fan_out(meta, documents, request)
            except Exception as e:
                LOGGER.error(f"Batch sync {batch_id} aborted: {e}", exc_info=True)
                await repo.update_by_batch_id(
                    batch_id, status=BATCH_FAILED, error_message=str(e), finished_at=utcnow()
                )
                return

            success, failed, skipped = counts["success"], counts["failed"], counts["skipped"]
            final_status = BATCH_FAILED if failed > 0 and success == 0 else BATCH_COMPLETED
            await repo.update_by_batch_id(
                batch_id,
                status=final_status,
                success_count=success,
                failed_count=failed,
                skipped_count=skipped,
                details={"document_results": results},
                finished_at=utcnow(),
            )
            LOGGER.info(
                f"Batch sync {batch_id} {final_status}",
                extra={"success": success, "failed": failed, "skipped": skipped},
            )

    async def _fan_out(
        self, meta: RequestMeta, documents: List[CollectedDocument], request: BatchSyncRequest
    ) -> Tuple[Dict[str, int], List[Dict[str, Any]]]:
        semaphore = asyncio.Semaphore(resolve_concurrency(request.concurrency, DEFAULT_BATCH_CONCURRENCY))
        lock = asyncio.Lock()
        counts = {"success": 0, "failed": 0, "skipped": 0}
        results: List[Dict[str, Any]] = []

        async def record(result: DocumentResult) -> None:
            async with lock:
                counts[result.status] += 1
                results.append(result.model_dump(mode="json", exclude_none=True))

        async def process(item: CollectedDocument) -> None:
            async with semaphore:
                doc = item.document
                base = {
                    "document_id": doc.id,
                    "document_name": doc.title,
                    "document_type": doc.type or "",
                    "node_id": item.node_id,
                    "node_path": item.node_path,
                }

                try:
                    target = parse_sync_target(doc.metadata)
                except ValidationError as e:
                    await record(DocumentResult(**base, status="failed", error=e.message))
                    return
                if target is None:
                    await record(DocumentResult(**base, status="skipped", reason=SKIP_NO_TARGET))
                    return

                try:
                    async with self.session_factory() as session:
                        service = SyncService(session, ndr=self.ndr, prefect=self.prefect)
                        response = await service.trigger_sync(meta, doc.id)
                except Exception as e:
                    LOGGER.warning(f"Batch sync of document {doc.id} failed: {e}")
                    await record(DocumentResult(**base, status="failed", error=str(e)))
                    return

                await record(
                    DocumentResult(
                        **base,
                        status="success",
                        event_id=response.event_id,
                        prefect_flow_run_id=response.prefect_flow_run_id,
                    )
                )

        await asyncio.gather(*(process(item) for item in documents))
        return counts, results

    @staticmethod
    def _to_status(batch: SyncBatch, include_details: bool = True) -> SyncBatchStatusResponse:
        return SyncBatchStatusResponse(
            batch_id=batch.batch_id,
            root_node_id=batch.root_node_id,
            status=batch.status,
            total_documents=batch.total_documents,
            success_count=batch.success_count,
            failed_count=batch.failed_count,
            skipped_count=batch.skipped_count,
            progress=batch_progress(
                batch.total_documents, batch.success_count, batch.failed_count, batch.skipped_count
            ),
            details=(batch.details or {}) if include_details else {},
            error_message=batch.error_message,
            created_by_id=batch.created_by_id,
            started_at=batch.started_at,
            finished_at=batch.finished_at,
            created_at=batch.created_at,
        )

    async def get_batch_sync_status(self, batch_id: str) -> SyncBatchStatusResponse:
        batch = await self.batch_repo.get_by_batch_id(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return self._to_status(batch)

    async def list_batch_syncs(
        self, user: CurrentUser, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0
    ) -> SyncBatchListResponse:
        limit = min(limit if limit > 0 else DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
        owner = None if user.is_super_admin else user.id
        batches, total = await self.batch_repo.list_batches(owner, limit=limit, offset=max(offset, 0))
        return SyncBatchListResponse(
            batches=[self._to_status(batch, include_details=False) for batch in batches],
            total=total,
        )
