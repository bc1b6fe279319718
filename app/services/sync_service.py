"""Sync of document content into the downstream MySQL database.

A sync is a scheduler flow keyed by an event id. The per-document status
row is the source of truth: every write after submission is conditional on
the row still holding the same event id in ``pending`` state, so a callback
that lands first is never overwritten by a slower submission path.
"""

import hashlib
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DatabaseError, NotFoundError, PrefectError, ValidationError
from app.core.ndr_client import NDRClient, RequestMeta, ndr_client
from app.core.prefect_client import PrefectClient, prefect_client
from app.database.models import DocumentSyncStatus, WorkflowRun
from app.repositories.sync_status_repository import DocumentSyncStatusRepository
from app.repositories.workflow_repository import WorkflowRunRepository
from app.schemas.sync import (
    DocumentSnapshot,
    LastSyncInfo,
    SyncStatusResponse,
    SyncTarget,
    TriggerSyncResponse,
)
from app.services.base_service import BaseService
from app.services.workflow_service import ACTIVE_STATUSES, STATUS_CANCELLED, STATUS_FAILED, STATUS_RUNNING, STATUS_SUCCESS
from app.utils.logging import get_logger
from app.utils.timeutils import as_utc, utcnow

LOGGER = get_logger(__name__)

SYNC_WORKFLOW_KEY = "sync_to_mysql"
SYNC_DEPLOYMENT_NAME = f"{SYNC_WORKFLOW_KEY}-deployment"

SYNC_PENDING = "pending"
SYNC_SUCCESS = "success"
SYNC_FAILED = "failed"
SYNC_SKIPPED = "skipped"
CALLBACK_STATUSES = (SYNC_PENDING, SYNC_SUCCESS, SYNC_FAILED, SYNC_SKIPPED)

SYNC_PENDING_TIMEOUT = timedelta(minutes=1)
SYNC_TIMEOUT_MESSAGE = "sync task timeout (exceeded 1 minute)"

# Workers reading snapshots identify themselves with this user id
INTERNAL_USER_ID = "idpp-internal"


def sync_idempotency_key(document_id: int, version: int) -> str:
    return hashlib.sha256(f"sync:{document_id}:{version}".encode()).hexdigest()[:32]


def parse_sync_target(metadata: Optional[Dict[str, Any]]) -> Optional[SyncTarget]:
    """Read ``metadata["sync_target"]``.

    Accepts a JSON string, a bare record id or an object. Returns None when
    the key is absent or empty.

    Raises:
        ValidationError: If the value is malformed
    """
    if not metadata or "sync_target" not in metadata:
        return None

    raw = metadata["sync_target"]
    try:
        if raw is None:
            return None
        if isinstance(raw, str):
            if not raw.strip():
                return None
            return SyncTarget.model_validate_json(raw.strip())
        if isinstance(raw, bool):
            raise ValidationError(f"unsupported sync_target type: {type(raw).__name__}")
        if isinstance(raw, (int, float)):
            return SyncTarget(record_id=int(raw))
        if isinstance(raw, dict):
            return SyncTarget.model_validate(raw)
    except PydanticValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"invalid sync_target config: {messages}", original_error=e) from e

    raise ValidationError(f"unsupported sync_target type: {type(raw).__name__}")


class SyncService(BaseService):
    """Trigger document syncs and apply their callbacks."""

    def __init__(
        self,
        session: AsyncSession,
        ndr: Optional[NDRClient] = None,
        prefect: Optional[PrefectClient] = None,
        public_base_url: Optional[str] = None,
    ):
        super().__init__(session)
        self.ndr = ndr or ndr_client
        self.prefect = prefect or prefect_client
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.status_repo = DocumentSyncStatusRepository(session)
        self.run_repo = WorkflowRunRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        return await self.trigger_sync(kwargs["meta"], kwargs["document_id"])

    @property
    def callback_url(self) -> str:
        return f"{self.public_base_url}/api/v1/sync/callback"

    async def mark_sync_timeout(self, status: DocumentSyncStatus) -> None:
        """Fail a stale pending attempt and its workflow run."""
        event_id = status.last_event_id
        await self.status_repo.update_pending_attempt(
            status.document_id,
            event_id,
            last_status=SYNC_FAILED,
            last_error=SYNC_TIMEOUT_MESSAGE,
        )
        if status.last_workflow_run_id:
            await self.run_repo.update_where(
                [WorkflowRun.id == status.last_workflow_run_id, WorkflowRun.status.in_(ACTIVE_STATUSES)],
                status=STATUS_FAILED,
                error_message=SYNC_TIMEOUT_MESSAGE,
                finished_at=utcnow(),
            )
        LOGGER.warning(
            f"Sync attempt timed out for document {status.document_id}",
            extra={"event_id": event_id},
        )

    async def _fail_attempt(self, document_id: int, event_id: str, run_id: int, message: str) -> None:
        """Record a submission failure on the attempt and its workflow run."""
        await self.status_repo.update_pending_attempt(
            document_id, event_id, last_status=SYNC_FAILED, last_error=message
        )
        await self.run_repo.update_where(
            [WorkflowRun.id == run_id, WorkflowRun.status.in_(ACTIVE_STATUSES)],
            status=STATUS_FAILED,
            error_message=message,
            finished_at=utcnow(),
        )
        LOGGER.error(f"Sync submission failed for document {document_id}: {message}", extra={"event_id": event_id})

    async def _start_attempt(
        self, meta: RequestMeta, document_id: int, version: int, event_id: str, target: SyncTarget
    ) -> int:
        """Create the audit run and reset the status row in one transaction."""
        try:
            run = await self.run_repo.create(
                commit=False,
                workflow_key=SYNC_WORKFLOW_KEY,
                document_id=document_id,
                parameters={
                    "event_id": event_id,
                    "doc_version": version,
                    "sync_target": target.model_dump(exclude_none=True),
                },
                status=SYNC_PENDING,
                created_by_id=meta.user_id or None,
            )
            run_id = run.id
            await self.status_repo.upsert_pending(document_id, event_id, version, run_id, commit=False)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError(f"failed to update sync status: {e}", original_error=e) from e
        return run_id

    async def trigger_sync(self, meta: RequestMeta, document_id: int) -> TriggerSyncResponse:
        """Start syncing a document, or return the attempt already in flight.

        Raises:
            ValidationError: If the document has no usable sync target
            PrefectError: If the deployment lookup or submission fails
        """
        document = await self.ndr.get_document(meta, document_id)
        version = document.version or 1
        target = parse_sync_target(document.metadata)
        if target is None:
            raise ValidationError("sync_target not configured in document metadata")

        idempotency_key = sync_idempotency_key(document_id, version)

        existing = await self.status_repo.get_by_document(document_id)
        if existing is not None and existing.last_status == SYNC_PENDING:
            if utcnow() - as_utc(existing.updated_at) < SYNC_PENDING_TIMEOUT:
                return TriggerSyncResponse(
                    event_id=existing.last_event_id,
                    status=SYNC_PENDING,
                    message="sync task already in progress",
                    document_id=document_id,
                    document_version=existing.last_version,
                    prefect_flow_run_id=existing.last_run_id or None,
                    sync_target=target,
                    idempotency_key=idempotency_key,
                )
            await self.mark_sync_timeout(existing)

        event_id = str(uuid.uuid4())
        run_id = await self._start_attempt(meta, document_id, version, event_id, target)
        LOGGER.info(
            f"Sync attempt started for document {document_id}",
            extra={"event_id": event_id, "version": version},
        )

        response = TriggerSyncResponse(
            event_id=event_id,
            status=SYNC_PENDING,
            message="sync task created (scheduler not configured)",
            document_id=document_id,
            document_version=version,
            sync_target=target,
            idempotency_key=idempotency_key,
        )
        if not self.prefect.enabled:
            return response

        try:
            deployment = await self.prefect.get_deployment_by_name(SYNC_WORKFLOW_KEY, SYNC_DEPLOYMENT_NAME)
        except PrefectError as e:
            await self._fail_attempt(document_id, event_id, run_id, f"deployment not found: {e.message}")
            raise

        flow_params = {
            "event_id": event_id,
            "doc_id": document_id,
            "doc_type": document.type or "",
            "doc_version": version,
            "callback_url": self.callback_url,
        }
        try:
            flow_run = await self.prefect.create_flow_run(deployment.id, flow_params)
        except PrefectError as e:
            await self._fail_attempt(document_id, event_id, run_id, f"failed to create flow run: {e.message}")
            raise

        await self.status_repo.update_pending_attempt(document_id, event_id, last_run_id=flow_run.id)
        response.message = "sync task submitted"
        response.prefect_flow_run_id = flow_run.id
        return response

    async def handle_sync_callback(
        self,
        event_id: str,
        doc_id: int,
        doc_version: int,
        status: str,
        error: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> None:
        """Finalize a pending attempt.

        A ``pending`` callback is a progress report: the attempt stays open,
        the worker's run id is recorded and the linked run moves to running.

        Raises:
            ValidationError: On an unknown status, a stale event id or a finished attempt
            NotFoundError: If the document was never synced
        """
        if status not in CALLBACK_STATUSES:
            raise ValidationError(f"invalid status: {status}")

        sync_status = await self.status_repo.get_by_document(doc_id)
        if sync_status is None:
            raise NotFoundError(f"sync status not found for document {doc_id}")
        if sync_status.last_event_id != event_id:
            raise ValidationError(
                f"event_id mismatch: expected {sync_status.last_event_id}, got {event_id}"
            )
        if sync_status.last_status != SYNC_PENDING:
            raise ValidationError(
                f"invalid state transition: current status is {sync_status.last_status}, not pending"
            )

        now = utcnow()
        updates: Dict[str, Any] = {"last_status": status}
        if status == SYNC_SUCCESS:
            updates["last_error"] = ""
            updates["last_synced_at"] = now
        elif status == SYNC_FAILED:
            updates["last_error"] = error or ""
        if run_id:
            updates["last_run_id"] = run_id

        affected = await self.status_repo.update_pending_attempt(doc_id, event_id, **updates)
        if affected == 0:
            raise ValidationError(f"sync attempt {event_id} was finalized concurrently")

        if sync_status.last_workflow_run_id:
            conditions = [WorkflowRun.id == sync_status.last_workflow_run_id]
            if status == SYNC_PENDING:
                conditions.append(WorkflowRun.status.in_(ACTIVE_STATUSES))
                run_updates: Dict[str, Any] = {"status": STATUS_RUNNING}
            else:
                run_status = {
                    SYNC_SUCCESS: STATUS_SUCCESS,
                    SYNC_FAILED: STATUS_FAILED,
                    SYNC_SKIPPED: STATUS_CANCELLED,
                }[status]
                run_updates = {"status": run_status, "finished_at": now}
                if status == SYNC_FAILED and error:
                    run_updates["error_message"] = error
            if run_id:
                run_updates["prefect_flow_run_id"] = run_id
            await self.run_repo.update_where(conditions, **run_updates)

        LOGGER.info(
            f"Sync callback applied for document {doc_id}",
            extra={"event_id": event_id, "status": status, "doc_version": doc_version},
        )

    async def get_sync_status(self, meta: RequestMeta, document_id: int) -> SyncStatusResponse:
        document = await self.ndr.get_document(meta, document_id)
        try:
            target = parse_sync_target(document.metadata)
        except ValidationError:
            target = None

        last_sync = None
        sync_status = await self.status_repo.get_by_document(document_id)
        if sync_status is not None:
            last_sync = LastSyncInfo(
                event_id=sync_status.last_event_id,
                version=sync_status.last_version,
                status=sync_status.last_status,
                error=sync_status.last_error or None,
                run_id=sync_status.last_run_id or None,
                synced_at=sync_status.last_synced_at,
            )

        return SyncStatusResponse(
            document_id=document_id,
            sync_target=target,
            last_sync=last_sync,
            sync_enabled=target is not None,
        )

    async def get_document_snapshot(self, meta: RequestMeta, document_id: int) -> DocumentSnapshot:
        """Current document content as read by the sync worker."""
        document = await self.ndr.get_document(meta, document_id)
        return DocumentSnapshot(
            id=document.id,
            type=document.type or "",
            version=document.version or 1,
            title=document.title,
            content=document.content,
            metadata=document.metadata,
        )


def internal_request_meta(request_id: str = "") -> RequestMeta:
    """NDR context for internal callers authenticated by API key."""
    return RequestMeta(api_key=settings.ndr.api_key, user_id=INTERNAL_USER_ID, request_id=request_id)

