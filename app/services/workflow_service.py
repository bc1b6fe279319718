"""Workflow run orchestration.

Triggers node and document workflows on the scheduler, keeps the local run
ledger in step with scheduler callbacks, and exposes the run history
(listing, cancellation, zombie termination and cleanup).
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppError,
    NotFoundError,
    PrefectError,
    ValidationError,
    WorkflowRunNotFoundError,
)
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.core.prefect_client import PrefectClient, prefect_client
from app.database.models import WorkflowDefinition, WorkflowRun
from app.repositories.workflow_repository import (
    WorkflowDefinitionRepository,
    WorkflowRunRepository,
)
from app.schemas.workflows import (
    CleanupRunsResponse,
    TriggerWorkflowResponse,
    WorkflowRunListResponse,
    WorkflowRunResponse,
)
from app.services.base_service import BaseService
from app.utils.logging import get_logger
from app.utils.timeutils import as_utc, utcnow

LOGGER = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

ACTIVE_STATUSES = (STATUS_PENDING, STATUS_RUNNING)
TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILED, STATUS_CANCELLED)
RUN_STATUSES = ACTIVE_STATUSES + TERMINAL_STATUSES

# Active runs older than this may be force terminated
ZOMBIE_TIMEOUT = timedelta(minutes=30)

DEFAULT_RUN_LIMIT = 20
MAX_RUN_LIMIT = 100

NODE_RESERVED_KEYS = frozenset(
    {"run_id", "node_id", "workflow_key", "source_doc_ids", "callback_url", "pdms_base_url", "target_docs"}
)
DOCUMENT_RESERVED_KEYS = frozenset(
    {"run_id", "document_id", "document_type", "workflow_key", "callback_url", "pdms_base_url"}
)

TARGET_DOCS_PREFIX = "generate_node_documents"
TARGET_DOCS_PAGE_SIZE = 100

MESSAGE_SCHEDULER_DISABLED = "workflow created (scheduler not configured)"
MESSAGE_SUBMITTED = "workflow submitted"

DEFAULT_WORKFLOWS: List[Dict[str, Any]] = [
    {
        "workflow_key": "generate_node_documents",
        "name": "Generate node documents",
        "description": "Generate the content of every document under a node from its source documents",
        "prefect_deployment_name": "node-generate-documents-deployment",
        "parameter_schema": {},
        "enabled": True,
    },
    {
        "workflow_key": "generate_node_documents_v2",
        "name": "Generate node documents (enhanced)",
        "description": "Broader knowledge coverage, structural diagrams and detailed exercise explanations",
        "prefect_deployment_name": "node-generate-documents-v2-deployment",
        "parameter_schema": {},
        "enabled": True,
    },
    {
        "workflow_key": "generate_node_documents_exercises",
        "name": "Generate chapter exercises",
        "description": "Two-stage generation of multiple choice questions for a chapter",
        "prefect_deployment_name": "node-generate-exercises-deployment",
        "parameter_schema": {},
        "enabled": True,
    },
    {
        "workflow_key": "generate_knowledge_overview",
        "name": "Generate knowledge overview",
        "description": "Build an HTML study overview from the node's source documents",
        "prefect_deployment_name": "node-generate-knowledge-overview-deployment",
        "parameter_schema": {
            "type": "object",
            "properties": {
                "theme": {
                    "type": "string",
                    "title": "Theme",
                    "description": "Visual theme of the overview",
                    "enum": ["classic_blue", "warm_sunrise", "night_immersion", "glass_morphism", "bamboo_ink"],
                    "default": "classic_blue",
                },
            },
        },
        # superseded by generate_node_documents
        "enabled": False,
    },
    {
        "workflow_key": "generate_exercises",
        "name": "Generate exercises",
        "description": "Generate practice questions from the node's source documents",
        "prefect_deployment_name": "generate_exercises-deployment",
        "parameter_schema": {
            "type": "object",
            "properties": {
                "count": {
                    "type": "integer",
                    "title": "Question count",
                    "minimum": 1,
                    "maximum": 20,
                    "default": 5,
                },
                "difficulty": {
                    "type": "string",
                    "title": "Difficulty",
                    "enum": ["easy", "medium", "hard"],
                    "default": "medium",
                },
            },
        },
        "enabled": False,
    },
    {
        "workflow_key": "generate_xiaohongshu_cards",
        "name": "Generate social cards",
        "description": "Turn knowledge content into a series of shareable 3:4 cards",
        "prefect_deployment_name": "node-generate-xiaohongshu-cards-deployment",
        "parameter_schema": {
            "type": "object",
            "properties": {
                "course_name": {
                    "type": "string",
                    "title": "Course name",
                    "description": "Course name printed on the cards",
                },
            },
            "required": ["course_name"],
        },
        "enabled": True,
    },
]


class WorkflowService(BaseService):
    """Service for triggering workflows and tracking their runs."""

    def __init__(
        self,
        session: AsyncSession,
        ndr: Optional[NDRClient] = None,
        prefect: Optional[PrefectClient] = None,
        strict_callbacks: Optional[bool] = None,
        public_base_url: Optional[str] = None,
    ):
        """Initialize the workflow service.

        Args:
            session: Database session
            ndr: NDR client; defaults to the shared instance
            prefect: Prefect client; defaults to the shared instance
            strict_callbacks: Reject callbacks for runs that already finished
            public_base_url: Base URL the scheduler calls back on
        """
        super().__init__(session)
        self.ndr = ndr or ndr_client
        self.prefect = prefect or prefect_client
        self.strict_callbacks = (
            settings.workflow.strict_callbacks if strict_callbacks is None else strict_callbacks
        )
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.definition_repo = WorkflowDefinitionRepository(session)
        self.run_repo = WorkflowRunRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        """Route to the appropriate handler based on action."""
        action = kwargs.get("action")

        if action == "trigger_node":
            return await self.trigger_workflow(
                kwargs["meta"],
                kwargs["node_id"],
                kwargs["workflow_key"],
                kwargs.get("parameters"),
                retry_of_id=kwargs.get("retry_of_id"),
            )
        elif action == "trigger_document":
            return await self.trigger_document_workflow(
                kwargs["meta"],
                kwargs["document_id"],
                kwargs["workflow_key"],
                kwargs.get("parameters"),
                retry_of_id=kwargs.get("retry_of_id"),
            )
        elif action == "callback":
            return await self.handle_callback(
                kwargs["run_id"],
                kwargs["status"],
                error_message=kwargs.get("error_message"),
                result=kwargs.get("result"),
            )
        else:
            raise ValidationError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        action = kwargs.get("action")

        if action in ("trigger_node", "trigger_document"):
            if not kwargs.get("workflow_key"):
                raise ValidationError("workflow_key is required")
            target = "node_id" if action == "trigger_node" else "document_id"
            if not kwargs.get(target):
                raise ValidationError(f"{target} is required")
        elif action == "callback":
            if kwargs.get("status") not in RUN_STATUSES:
                raise ValidationError(f"invalid callback status: {kwargs.get('status')}")

    async def execute_trigger_node(
        self,
        meta: RequestMeta,
        node_id: int,
        workflow_key: str,
        parameters: Optional[Dict[str, Any]] = None,
        retry_of_id: Optional[int] = None,
    ) -> TriggerWorkflowResponse:
        return await self.execute(
            action="trigger_node",
            meta=meta,
            node_id=node_id,
            workflow_key=workflow_key,
            parameters=parameters,
            retry_of_id=retry_of_id,
        )

    async def execute_trigger_document(
        self,
        meta: RequestMeta,
        document_id: int,
        workflow_key: str,
        parameters: Optional[Dict[str, Any]] = None,
        retry_of_id: Optional[int] = None,
    ) -> TriggerWorkflowResponse:
        return await self.execute(
            action="trigger_document",
            meta=meta,
            document_id=document_id,
            workflow_key=workflow_key,
            parameters=parameters,
            retry_of_id=retry_of_id,
        )

    async def execute_callback(
        self,
        run_id: int,
        status: str,
        error_message: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        return await self.execute(
            action="callback",
            run_id=run_id,
            status=status,
            error_message=error_message,
            result=result,
        )

    # Definitions

    async def list_workflow_definitions(self, workflow_type: Optional[str] = None) -> List[WorkflowDefinition]:
        return await self.definition_repo.list_enabled(workflow_type)

    async def get_workflow_definition(self, workflow_key: str) -> WorkflowDefinition:
        definition = await self.definition_repo.get_enabled_by_key(workflow_key)
        if definition is None:
            raise NotFoundError(f"workflow not found: {workflow_key}")
        return definition

    async def ensure_default_workflows(self) -> int:
        """Seed the built-in definitions that do not exist yet.

        Existing rows are left untouched so admin changes to ``enabled``
        survive restarts.

        Returns:
            Number of definitions created
        """
        created = 0
        for default in DEFAULT_WORKFLOWS:
            if await self.definition_repo.get_by_key(default["workflow_key"]) is not None:
                continue
            await self.definition_repo.create(source="legacy", workflow_type="node", **default)
            created += 1

        if created:
            LOGGER.info(f"Seeded {created} default workflow definition(s)")
        return created

    # Triggering

    async def validate_retry_of(
        self,
        retry_of_id: Optional[int],
        workflow_key: str,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
    ) -> None:
        """Check that a retry points at a run of the same workflow and target.

        Raises:
            ValidationError: If the referenced run is missing or mismatched
        """
        if retry_of_id is None:
            return
        if retry_of_id <= 0:
            raise ValidationError("retry_of_id must be a positive integer")

        source = await self.run_repo.get_by_id(retry_of_id)
        if source is None:
            raise ValidationError(f"retry_of_id refers to a non-existent workflow run ({retry_of_id})")
        if source.workflow_key != workflow_key:
            raise ValidationError(f"retry_of_id ({retry_of_id}) workflow_key mismatch")
        if node_id is not None and source.node_id != node_id:
            raise ValidationError(f"retry_of_id ({retry_of_id}) node_id mismatch")
        if document_id is not None and source.document_id != document_id:
            raise ValidationError(f"retry_of_id ({retry_of_id}) document_id mismatch")

    def _check_triggerable(self, definition: WorkflowDefinition, expected_type: str) -> None:
        if definition.sync_status and definition.sync_status != "active":
            raise ValidationError(
                f"workflow {definition.workflow_key} is not active (status={definition.sync_status})"
            )
        workflow_type = definition.workflow_type
        if expected_type == "node" and workflow_type and workflow_type != "node":
            raise ValidationError(f"workflow {definition.workflow_key} is not a node workflow")
        if expected_type == "document" and workflow_type != "document":
            raise ValidationError(f"workflow {definition.workflow_key} is not a document workflow")

    def callback_url(self, run_id: int) -> str:
        return f"{self.public_base_url}/api/v1/workflows/callback/{run_id}"

    async def _resolve_target_docs(
        self, meta: RequestMeta, node_id: int, source_doc_ids: Sequence[int]
    ) -> List[Dict[str, Any]]:
        """Direct documents of the node that the workflow should (re)generate."""
        page = await self.ndr.list_node_documents(
            meta, node_id, include_descendants=False, size=TARGET_DOCS_PAGE_SIZE
        )
        sources = set(source_doc_ids)
        return [
            {"document_id": doc.id, "title": doc.title, "type": doc.type or ""}
            for doc in page.items
            if doc.id not in sources
        ]

    async def trigger_workflow(
        self,
        meta: RequestMeta,
        node_id: int,
        workflow_key: str,
        parameters: Optional[Dict[str, Any]] = None,
        source_doc_ids: Optional[Sequence[int]] = None,
        retry_of_id: Optional[int] = None,
    ) -> TriggerWorkflowResponse:
        """Trigger a node workflow.

        Args:
            meta: NDR call context of the caller
            node_id: Target node
            workflow_key: Definition key
            parameters: User parameters forwarded to the flow
            source_doc_ids: Pre-resolved source documents (batch execution)
            retry_of_id: Run this trigger retries

        Returns:
            TriggerWorkflowResponse with the run id and its status

        Raises:
            NotFoundError: If the workflow is unknown or disabled
            ValidationError: If the workflow cannot run on nodes or the retry is invalid
            PrefectError: If the deployment lookup or submission fails
        """
        definition = await self.get_workflow_definition(workflow_key)
        self._check_triggerable(definition, "node")
        await self.validate_retry_of(retry_of_id, workflow_key, node_id=node_id)

        if source_doc_ids:
            sources = list(source_doc_ids)
        else:
            sources = [item.document_id for item in await self.ndr.list_source_documents(meta, node_id)]

        target_docs: List[Dict[str, Any]] = []
        if workflow_key.startswith(TARGET_DOCS_PREFIX):
            target_docs = await self._resolve_target_docs(meta, node_id, sources)

        parameters = dict(parameters or {})
        run = await self.run_repo.create(
            workflow_key=workflow_key,
            node_id=node_id,
            parameters=parameters,
            status=STATUS_PENDING,
            created_by_id=meta.user_id or None,
            retry_of_id=retry_of_id,
        )
        LOGGER.info(
            f"Created workflow run {run.id}",
            extra={"workflow_key": workflow_key, "node_id": node_id, "retry_of_id": retry_of_id},
        )

        if not self.prefect.enabled:
            return TriggerWorkflowResponse(run_id=run.id, status=STATUS_PENDING, message=MESSAGE_SCHEDULER_DISABLED)

        flow_params = {k: v for k, v in parameters.items() if k not in NODE_RESERVED_KEYS}
        flow_params.update(
            run_id=run.id,
            node_id=node_id,
            workflow_key=workflow_key,
            source_doc_ids=sources,
            callback_url=self.callback_url(run.id),
            pdms_base_url=self.public_base_url,
        )
        if target_docs:
            flow_params["target_docs"] = target_docs

        return await self._submit(run, definition, flow_params)

    async def trigger_document_workflow(
        self,
        meta: RequestMeta,
        document_id: int,
        workflow_key: str,
        parameters: Optional[Dict[str, Any]] = None,
        retry_of_id: Optional[int] = None,
    ) -> TriggerWorkflowResponse:
        """Trigger a document workflow; mirrors trigger_workflow for documents."""
        definition = await self.get_workflow_definition(workflow_key)
        self._check_triggerable(definition, "document")
        await self.validate_retry_of(retry_of_id, workflow_key, document_id=document_id)

        document = await self.ndr.get_document(meta, document_id)

        parameters = dict(parameters or {})
        run = await self.run_repo.create(
            workflow_key=workflow_key,
            document_id=document_id,
            parameters=parameters,
            status=STATUS_PENDING,
            created_by_id=meta.user_id or None,
            retry_of_id=retry_of_id,
        )
        LOGGER.info(
            f"Created workflow run {run.id}",
            extra={"workflow_key": workflow_key, "document_id": document_id, "retry_of_id": retry_of_id},
        )

        if not self.prefect.enabled:
            return TriggerWorkflowResponse(run_id=run.id, status=STATUS_PENDING, message=MESSAGE_SCHEDULER_DISABLED)

        flow_params = {k: v for k, v in parameters.items() if k not in DOCUMENT_RESERVED_KEYS}
        flow_params.update(
            run_id=run.id,
            document_id=document_id,
            document_type=document.type,
            workflow_key=workflow_key,
            callback_url=self.callback_url(run.id),
            pdms_base_url=self.public_base_url,
        )
        return await self._submit(run, definition, flow_params)

    async def _submit(
        self, run: WorkflowRun, definition: WorkflowDefinition, flow_params: Dict[str, Any]
    ) -> TriggerWorkflowResponse:
        """Resolve the deployment, create the flow run and mark the run running.

        Failures mark the run failed before re-raising.
        """
        run_id = run.id
        try:
            deployment = await self.prefect.get_deployment_by_name(
                definition.workflow_key, definition.prefect_deployment_name
            )
        except PrefectError as e:
            await self.run_repo.update(run_id, status=STATUS_FAILED, error_message=f"Deployment not found: {e.message}")
            LOGGER.error(f"Deployment lookup failed for run {run_id}: {e.message}")
            raise

        try:
            flow_run = await self.prefect.create_flow_run(deployment.id, flow_params)
        except PrefectError as e:
            await self.run_repo.update(
                run_id, status=STATUS_FAILED, error_message=f"Failed to create flow run: {e.message}"
            )
            LOGGER.error(f"Flow run creation failed for run {run_id}: {e.message}")
            raise

        await self.run_repo.update(
            run_id,
            status=STATUS_RUNNING,
            prefect_flow_run_id=flow_run.id,
            started_at=utcnow(),
        )
        LOGGER.info(f"Workflow run {run_id} submitted", extra={"prefect_flow_run_id": flow_run.id})
        return TriggerWorkflowResponse(
            run_id=run_id,
            status=STATUS_RUNNING,
            prefect_flow_run_id=flow_run.id,
            message=MESSAGE_SUBMITTED,
        )

    # Run lifecycle

    async def get_workflow_run(self, run_id: int) -> WorkflowRun:
        run = await self.run_repo.get_by_id(run_id)
        if run is None:
            raise WorkflowRunNotFoundError(run_id)
        return run

    async def handle_callback(
        self,
        run_id: int,
        status: str,
        error_message: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Apply a scheduler callback to a run.

        A cancelled run keeps its status whatever the callback says.

        Raises:
            WorkflowRunNotFoundError: If the run does not exist
            ValidationError: On an unknown status, or a finished run in strict mode
        """
        if status not in RUN_STATUSES:
            raise ValidationError(f"invalid callback status: {status}")

        run = await self.get_workflow_run(run_id)
        if run.status == STATUS_CANCELLED:
            LOGGER.info(f"Ignoring callback for cancelled run {run_id}", extra={"callback_status": status})
            return

        if self.strict_callbacks and run.status in TERMINAL_STATUSES:
            raise ValidationError(
                f"invalid state transition for run {run_id}: {run.status} -> {status}"
            )

        updates: Dict[str, Any] = {"status": status}
        if status in (STATUS_SUCCESS, STATUS_FAILED):
            updates["finished_at"] = utcnow()
        if status == STATUS_FAILED and error_message:
            updates["error_message"] = error_message
        if result is not None:
            updates["result"] = result

        await self.run_repo.update(run_id, **updates)
        LOGGER.info(f"Workflow run {run_id} -> {status}", extra={"previous_status": run.status})

    async def cancel_workflow_run(self, run_id: int) -> None:
        """Cancel a pending or running run.

        The local row is updated conditionally so a run that finishes
        concurrently is never flipped back to cancelled.

        Raises:
            WorkflowRunNotFoundError: If the run does not exist
            ValidationError: If the run already finished
        """
        affected = await self.run_repo.update_where(
            [WorkflowRun.id == run_id, WorkflowRun.status.in_(ACTIVE_STATUSES)],
            status=STATUS_CANCELLED,
            finished_at=utcnow(),
        )
        run = await self.run_repo.get_by_id(run_id)
        if run is None:
            raise WorkflowRunNotFoundError(run_id)
        if affected == 0:
            raise ValidationError(
                f"can only cancel pending or running runs (current status: {run.status})"
            )

        LOGGER.info(f"Workflow run {run_id} cancelled")
        if run.prefect_flow_run_id and self.prefect.enabled:
            try:
                await self.prefect.cancel_flow_run(run.prefect_flow_run_id)
            except AppError as e:
                LOGGER.warning(
                    f"Failed to cancel flow run {run.prefect_flow_run_id} for run {run_id}: {e.message}"
                )

    async def force_terminate_workflow_run(self, run_id: int) -> None:
        """Mark a zombie run failed.

        Raises:
            WorkflowRunNotFoundError: If the run does not exist
            ValidationError: If the run is finished or younger than the zombie timeout
        """
        run = await self.get_workflow_run(run_id)
        if run.status not in ACTIVE_STATUSES:
            raise ValidationError(
                f"can only terminate pending or running runs (current status: {run.status})"
            )

        started = as_utc(run.started_at or run.created_at)
        if utcnow() - started < ZOMBIE_TIMEOUT:
            raise ValidationError("run has not exceeded 30 minutes; use cancel instead")

        await self.run_repo.update(
            run_id,
            status=STATUS_FAILED,
            error_message="force terminated (runtime exceeded 30m)",
            finished_at=utcnow(),
        )
        LOGGER.warning(f"Workflow run {run_id} force terminated")

    async def list_workflow_runs(
        self,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
        workflow_key: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_RUN_LIMIT,
        offset: int = 0,
    ) -> WorkflowRunListResponse:
        """Newest runs first, each annotated with its retry statistics."""
        if limit <= 0:
            limit = DEFAULT_RUN_LIMIT
        limit = min(limit, MAX_RUN_LIMIT)
        offset = max(offset, 0)

        runs, total = await self.run_repo.list_runs(
            node_id=node_id,
            document_id=document_id,
            workflow_key=workflow_key,
            statuses=statuses,
            limit=limit,
            offset=offset,
        )
        stats = await self.run_repo.retry_stats([run.id for run in runs])

        items = []
        for run in runs:
            item = WorkflowRunResponse.model_validate(run)
            run_stats = stats.get(run.id)
            if run_stats:
                item.retry_count = run_stats["retry_count"]
                item.latest_retry_status = run_stats["latest_retry_status"]
            items.append(item)

        return WorkflowRunListResponse(runs=items, total=total, has_more=offset + len(runs) < total)

    async def cleanup_workflow_runs(
        self,
        before: Optional[datetime] = None,
        statuses: Optional[Sequence[str]] = None,
        workflow_key: Optional[str] = None,
        node_id: Optional[int] = None,
        document_id: Optional[int] = None,
        include_zombie: bool = False,
        force_cleanup_active: bool = False,
        dry_run: bool = False,
    ) -> CleanupRunsResponse:
        """Delete run history.

        Only finished runs are deleted by default. With ``include_zombie``,
        active runs older than the zombie timeout are marked failed first;
        with ``force_cleanup_active``, active runs are deleted outright.

        Raises:
            ValidationError: If active statuses are requested without either flag
        """
        allowed = list(statuses or TERMINAL_STATUSES)
        for run_status in allowed:
            if run_status not in RUN_STATUSES:
                raise ValidationError(f"invalid status: {run_status}")

        has_active = any(s in ACTIVE_STATUSES for s in allowed)
        if has_active and not (include_zombie or force_cleanup_active):
            raise ValidationError(
                "cannot cleanup pending or running runs without include_zombie or force_cleanup_active"
            )

        scope = self.run_repo.cleanup_conditions(
            workflow_key=workflow_key, node_id=node_id, document_id=document_id
        )
        dated_scope = self.run_repo.cleanup_conditions(
            before=before, workflow_key=workflow_key, node_id=node_id, document_id=document_id
        )
        active_filter = WorkflowRun.status.in_(ACTIVE_STATUSES)

        zombie_count = 0
        force_count = 0
        if has_active and force_cleanup_active:
            conditions = [active_filter, *dated_scope]
            if dry_run:
                force_count = await self.run_repo.count_where(conditions)
            else:
                force_count = await self.run_repo.delete_where(conditions)
        elif has_active:
            cutoff = utcnow() - ZOMBIE_TIMEOUT
            conditions = [
                active_filter,
                func.coalesce(WorkflowRun.started_at, WorkflowRun.created_at) < cutoff,
                *scope,
            ]
            if dry_run:
                zombie_count = await self.run_repo.count_where(conditions)
            else:
                zombie_count = await self.run_repo.update_where(
                    conditions,
                    status=STATUS_FAILED,
                    error_message="cleaned up (runtime exceeded 30m)",
                    finished_at=utcnow(),
                )

        terminal = [s for s in allowed if s not in ACTIVE_STATUSES]
        terminal_count = 0
        if terminal:
            conditions = [WorkflowRun.status.in_(terminal), *dated_scope]
            if dry_run:
                terminal_count = await self.run_repo.count_where(conditions)
            else:
                terminal_count = await self.run_repo.delete_where(conditions)

        deleted = terminal_count + zombie_count + force_count
        LOGGER.info(
            "Workflow run cleanup finished",
            extra={"deleted": deleted, "zombies": zombie_count, "dry_run": dry_run},
        )
        return CleanupRunsResponse(deleted_count=deleted, zombie_count=zombie_count, dry_run=dry_run)
