"""Batch execution of a node workflow over a category subtree."""

import asyncio
import uuid
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.core.exceptions import BatchNotFoundError, ValidationError
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.core.prefect_client import PrefectClient, prefect_client
from app.database.models import WorkflowBatch
from app.repositories.batch_repository import WorkflowBatchRepository
from app.schemas.auth import CurrentUser
from app.schemas.batch import (
    BatchExecuteResponse,
    BatchListResponse,
    BatchPreviewItem,
    BatchPreviewResponse,
    BatchStatusResponse,
    BatchWorkflowRequest,
    NodeResult,
)
from app.schemas.ndr import Node, SourceDocument
from app.services.base_service import BaseService
from app.services.task_runner import BatchTaskRunner, batch_task_runner
from app.services.workflow_service import WorkflowService
from app.utils.logging import get_logger
from app.utils.timeutils import utcnow

LOGGER = get_logger(__name__)

BATCH_PENDING = "pending"
BATCH_RUNNING = "running"
BATCH_COMPLETED = "completed"
BATCH_FAILED = "failed"

# The scheduler's SQLite store rejects concurrent writes with 503s
DEFAULT_BATCH_CONCURRENCY = 1
# sync_to_mysql never reaches the scheduler database
DEFAULT_SYNC_CONCURRENCY = 10
MAX_BATCH_CONCURRENCY = 20

SYNC_WORKFLOW_KEY = "sync_to_mysql"

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

OUTPUT_PAGE_SIZE = 100


class CollectedNode(NamedTuple):
    node: Node
    depth: int


def resolve_concurrency(requested: Optional[int], default: int) -> int:
    """Requested concurrency, falling back to ``default`` and capped."""
    concurrency = requested if requested and requested > 0 else default
    return min(concurrency, MAX_BATCH_CONCURRENCY)


def batch_progress(total: int, success: int, failed: int, skipped: int) -> float:
    if total <= 0:
        return 0.0
    return (success + failed + skipped) / total * 100


async def collect_nodes(
    ndr: NDRClient,
    meta: RequestMeta,
    node_id: int,
    include_descendants: bool,
    depth: int = 0,
) -> List[CollectedNode]:
    """Depth-first walk from ``node_id``; soft-deleted children are skipped."""
    node = await ndr.get_node(meta, node_id)
    result = [CollectedNode(node, depth)]
    if not include_descendants:
        return result

    for child in await ndr.list_children(meta, node_id):
        if child.deleted_at is not None:
            continue
        result.extend(await collect_nodes(ndr, meta, child.id, True, depth + 1))
    return result


class BatchWorkflowService(BaseService):
    """Preview, execute and track batch workflow runs."""

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
        # Background workers outlive the request session
        self.session_factory = session_factory or async_session_maker
        self.batch_repo = WorkflowBatchRepository(session)
        self.workflow_service = WorkflowService(session, ndr=self.ndr, prefect=self.prefect)

    async def run(self, *args, **kwargs) -> Any:
        return await self.execute_batch_workflow(kwargs["meta"], kwargs["node_id"], kwargs["request"])

    def validate(self, *args, **kwargs):
        request = kwargs.get("request")
        if request is None or not request.workflow_key:
            raise ValidationError("workflow_key is required")

    async def _node_has_output(self, meta: RequestMeta, node_id: int, source_ids: Sequence[int]) -> bool:
        """True when the node directly holds a document that is not a source."""
        sources = set(source_ids)
        page = 1
        while True:
            docs = await self.ndr.list_node_documents(
                meta, node_id, include_descendants=False, page=page, size=OUTPUT_PAGE_SIZE
            )
            if any(doc.id not in sources for doc in docs.items):
                return True
            if not docs.items or docs.page * docs.size >= docs.total:
                return False
            page += 1

    @staticmethod
    def _filter_sources(sources: List[SourceDocument], skip_doc_types: Sequence[str]) -> List[SourceDocument]:
        if not skip_doc_types:
            return sources
        return [
            src for src in sources
            if ((src.document.type if src.document else None) or "") not in skip_doc_types
        ]

    async def _check_node(
        self, meta: RequestMeta, node: Node, request: BatchWorkflowRequest, fetch_sources: bool
    ) -> Tuple[Optional[List[int]], Optional[str], Optional[str]]:
        """Apply the skip policies to one node.

        Returns:
            (source document ids or None, skip reason, lookup error)
        """
        if request.skip_name_contains and request.skip_name_contains in node.name:
            return None, f"node name contains '{request.skip_name_contains}'", None

        if not fetch_sources:
            return None, None, None

        try:
            sources = await self.ndr.list_source_documents(meta, node.id)
        except Exception as e:
            return None, None, f"failed to fetch source docs: {e}"

        source_ids = [src.document_id for src in self._filter_sources(sources, request.skip_doc_types)]
        if request.skip_no_source and not source_ids:
            return source_ids, "no source documents", None

        if request.skip_no_output:
            try:
                has_output = await self._node_has_output(meta, node.id, source_ids)
            except Exception as e:
                return source_ids, None, f"failed to check output docs: {e}"
            if not has_output:
                return source_ids, "no output documents", None

        return source_ids, None, None

    async def preview_batch_workflow(
        self, meta: RequestMeta, node_id: int, request: BatchWorkflowRequest
    ) -> BatchPreviewResponse:
        """Report which nodes of the subtree a batch would run on.

        Raises:
            NotFoundError: If the workflow is unknown or disabled
        """
        definition = await self.workflow_service.get_workflow_definition(request.workflow_key)
        nodes = await collect_nodes(self.ndr, meta, node_id, request.include_descendants)

        items: List[BatchPreviewItem] = []
        for node, depth in nodes:
            source_ids, skip_reason, error = await self._check_node(meta, node, request, fetch_sources=True)
            reason = skip_reason or error
            items.append(
                BatchPreviewItem(
                    node_id=node.id,
                    node_name=node.name,
                    node_path=node.path,
                    source_doc_count=len(source_ids or []),
                    can_execute=reason is None,
                    skip_reason=reason,
                    depth=depth,
                )
            )

        can_execute = sum(1 for item in items if item.can_execute)
        return BatchPreviewResponse(
            root_node_id=node_id,
            workflow_key=request.workflow_key,
            workflow_name=definition.name,
            total_nodes=len(items),
            can_execute=can_execute,
            will_skip=len(items) - can_execute,
            nodes=items,
        )

    async def execute_batch_workflow(
        self, meta: RequestMeta, node_id: int, request: BatchWorkflowRequest
    ) -> BatchExecuteResponse:
        """Persist a batch row and hand the fan-out to the task runner.

        Raises:
            NotFoundError: If the workflow is unknown or disabled
            ValidationError: If the subtree is empty
        """
        await self.workflow_service.get_workflow_definition(request.workflow_key)
        nodes = await collect_nodes(self.ndr, meta, node_id, request.include_descendants)
        if not nodes:
            raise ValidationError("no nodes to execute")

        batch_id = str(uuid.uuid4())
        await self.batch_repo.create(
            batch_id=batch_id,
            workflow_key=request.workflow_key,
            root_node_id=node_id,
            parameters=dict(request.parameters),
            status=BATCH_PENDING,
            total_nodes=len(nodes),
            created_by_id=meta.user_id or None,
        )
        LOGGER.info(
            f"Batch workflow {batch_id} created",
            extra={"workflow_key": request.workflow_key, "root_node_id": node_id, "total_nodes": len(nodes)},
        )

        self.runner.submit(batch_id, self._run_batch(meta, batch_id, nodes, request))
        return BatchExecuteResponse(
            batch_id=batch_id,
            status=BATCH_RUNNING,
            total_nodes=len(nodes),
            message="batch workflow started",
        )

    async def _run_batch(
        self,
        meta: RequestMeta,
        batch_id: str,
        nodes: List[CollectedNode],
        request: BatchWorkflowRequest,
    ) -> None:
        async with self.session_factory() as session:
            repo = WorkflowBatchRepository(session)
            await repo.update_by_batch_id(batch_id, status=BATCH_RUNNING, started_at=utcnow())

            try:
                counts, results = await self._fan_out(meta, nodes, request)
            except Exception as e:
                LOGGER.error(f"Batch workflow {batch_id} aborted: {e}", exc_info=True)
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
                details={"node_results": results},
                finished_at=utcnow(),
            )
            LOGGER.info(
                f"Batch workflow {batch_id} {final_status}",
                extra={"success": success, "failed": failed, "skipped": skipped},
            )

    async def _fan_out(
        self, meta: RequestMeta, nodes: List[CollectedNode], request: BatchWorkflowRequest
    ) -> Tuple[Dict[str, int], List[Dict[str, Any]]]:
        default = (
            DEFAULT_SYNC_CONCURRENCY if request.workflow_key == SYNC_WORKFLOW_KEY else DEFAULT_BATCH_CONCURRENCY
        )
        semaphore = asyncio.Semaphore(resolve_concurrency(request.concurrency, default))
        lock = asyncio.Lock()
        counts = {"success": 0, "failed": 0, "skipped": 0}
        results: List[Dict[str, Any]] = []
        fetch_sources = request.skip_no_source or request.skip_no_output or bool(request.skip_doc_types)

        async def record(result: NodeResult) -> None:
            async with lock:
                counts[result.status] += 1
                results.append(result.model_dump(mode="json", exclude_none=True))

        async def process(node: Node) -> None:
            async with semaphore:
                base = {"node_id": node.id, "node_name": node.name, "node_path": node.path}

                source_ids, skip_reason, error = await self._check_node(meta, node, request, fetch_sources)
                if error:
                    await record(NodeResult(**base, status="failed", error=error))
                    return
                if skip_reason:
                    await record(NodeResult(**base, status="skipped", reason=skip_reason))
                    return

                try:
                    async with self.session_factory() as session:
                        service = WorkflowService(session, ndr=self.ndr, prefect=self.prefect)
                        response = await service.trigger_workflow(
                            meta,
                            node.id,
                            request.workflow_key,
                            request.parameters,
                            source_doc_ids=source_ids,
                        )
                except Exception as e:
                    LOGGER.warning(f"Batch node {node.id} failed: {e}")
                    await record(NodeResult(**base, status="failed", error=str(e)))
                    return

                await record(
                    NodeResult(
                        **base,
                        status="success",
                        run_id=response.run_id,
                        prefect_flow_run_id=response.prefect_flow_run_id,
                    )
                )

        await asyncio.gather(*(process(node) for node, _ in nodes))
        return counts, results

    @staticmethod
    def _to_status(batch: WorkflowBatch, include_details: bool = True) -> BatchStatusResponse:
        return BatchStatusResponse(
            batch_id=batch.batch_id,
            workflow_key=batch.workflow_key,
            root_node_id=batch.root_node_id,
            status=batch.status,
            total_nodes=batch.total_nodes,
            success_count=batch.success_count,
            failed_count=batch.failed_count,
            skipped_count=batch.skipped_count,
            progress=batch_progress(
                batch.total_nodes, batch.success_count, batch.failed_count, batch.skipped_count
            ),
            details=(batch.details or {}) if include_details else {},
            error_message=batch.error_message,
            created_by_id=batch.created_by_id,
            started_at=batch.started_at,
            finished_at=batch.finished_at,
            created_at=batch.created_at,
        )

    async def get_batch_workflow_status(self, batch_id: str) -> BatchStatusResponse:
        batch = await self.batch_repo.get_by_batch_id(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return self._to_status(batch)

    async def list_batch_workflows(
        self, user: CurrentUser, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0
    ) -> BatchListResponse:
        """Newest batches first; only super admins see other users' batches."""
        limit = min(limit if limit > 0 else DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
        owner = None if user.is_super_admin else user.id
        batches, total = await self.batch_repo.list_batches(owner, limit=limit, offset=max(offset, 0))
        return BatchListResponse(
            batches=[self._to_status(batch, include_details=False) for batch in batches],
            total=total,
        )
