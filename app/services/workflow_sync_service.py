"""Reconciliation of workflow definitions with scheduler deployments.

Deployments opt in through tags: ``pdms:type=node|document`` and
``pdms:key=<workflow_key>``. The older ``node-workflow`` and
``document-workflow`` tags are still honoured for the type.
"""

import asyncio
import hashlib
import json
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError, ConflictError, NotFoundError, PrefectError
from app.core.prefect_client import DeploymentDetails, PrefectClient, prefect_client
from app.database.models import WorkflowDefinition
from app.repositories.workflow_repository import WorkflowDefinitionRepository
from app.schemas.workflows import DefinitionSyncResult, DefinitionSyncStatus
from app.services.base_service import BaseService
from app.utils.logging import get_logger
from app.utils.timeutils import utcnow

LOGGER = get_logger(__name__)

SYNC_IDLE = "idle"
SYNC_IN_PROGRESS = "in_progress"
SYNC_SUCCESS = "success"
SYNC_COMPLETED_WITH_ERRORS = "completed_with_errors"
SYNC_FAILED = "failed"

TYPE_TAG_PREFIX = "pdms:type="
KEY_TAG_PREFIX = "pdms:key="
LEGACY_TYPE_TAGS = {"node-workflow": "node", "document-workflow": "document"}
WORKFLOW_TYPES = ("node", "document")


class SyncStatusCell:
    """Shared record of the last definition sync.

    ``try_begin`` is a compare-and-swap: it claims the cell unless a sync is
    already in progress, so two concurrent syncs cannot both start.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self.status = SYNC_IDLE
        self.started_at = None
        self.finished_at = None
        self.result: Optional[DefinitionSyncResult] = None
        self.error: Optional[str] = None

    async def try_begin(self) -> bool:
        async with self._lock:
            if self.status == SYNC_IN_PROGRESS:
                return False
            self.status = SYNC_IN_PROGRESS
            self.started_at = utcnow()
            self.finished_at = None
            self.error = None
            return True

    async def finish(
        self, status: str, result: Optional[DefinitionSyncResult] = None, error: Optional[str] = None
    ) -> None:
        async with self._lock:
            self.status = status
            self.finished_at = utcnow()
            self.error = error
            if result is not None:
                self.result = result

    def snapshot(self, prefect_enabled: bool = False) -> DefinitionSyncStatus:
        return DefinitionSyncStatus(
            status=self.status,
            started_at=self.started_at,
            finished_at=self.finished_at,
            result=self.result,
            error=self.error,
            prefect_enabled=prefect_enabled,
        )


# Process-wide cell shared by every request
definition_sync_cell = SyncStatusCell()


def get_definition_sync_cell() -> SyncStatusCell:
    return definition_sync_cell


def parse_deployment_tags(tags: List[str]) -> Tuple[str, str]:
    """Return ``(workflow_type, workflow_key)``; either may be empty."""
    workflow_type = ""
    workflow_key = ""
    for tag in tags:
        if tag.startswith(TYPE_TAG_PREFIX):
            workflow_type = tag[len(TYPE_TAG_PREFIX):]
        elif tag.startswith(KEY_TAG_PREFIX):
            workflow_key = tag[len(KEY_TAG_PREFIX):]

    if not workflow_type:
        for tag in tags:
            if tag in LEGACY_TYPE_TAGS:
                workflow_type = LEGACY_TYPE_TAGS[tag]
                break

    return workflow_type, workflow_key


def compute_spec_hash(deployment: DeploymentDetails) -> str:
    """Fingerprint of the deployment fields mirrored into a definition."""
    spec = {
        "name": deployment.name,
        "description": deployment.description or "",
        "version": deployment.version or "",
        "tags": sorted(deployment.tags),
        "parameter_schema": deployment.parameter_schema or {},
    }
    canonical = json.dumps(spec, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


class WorkflowSyncService(BaseService):
    """Mirror tagged scheduler deployments into workflow definitions."""

    def __init__(
        self,
        session: AsyncSession,
        prefect: Optional[PrefectClient] = None,
        cell: Optional[SyncStatusCell] = None,
    ):
        super().__init__(session)
        self.prefect = prefect or prefect_client
        self.cell = cell or definition_sync_cell
        self.definition_repo = WorkflowDefinitionRepository(session)

    async def run(self, *args, **kwargs) -> Any:
        return await self.sync_from_prefect()

    def get_last_sync_status(self) -> DefinitionSyncStatus:
        return self.cell.snapshot(prefect_enabled=self.prefect.enabled)

    async def sync_from_prefect(self) -> DefinitionSyncResult:
        """Create, update and retire definitions from the deployment list.

        Raises:
            ConfigurationError: If the scheduler is not configured
            ConflictError: If another sync is running
            PrefectError: If the deployments cannot be listed
        """
        if not self.prefect.enabled:
            raise ConfigurationError("scheduler integration is not enabled")
        if not await self.cell.try_begin():
            raise ConflictError("workflow sync already in progress")

        started = time.monotonic()
        try:
            deployments = await self.prefect.list_deployments()
        except PrefectError as e:
            await self.cell.finish(SYNC_FAILED, error=e.message)
            raise

        try:
            result = await self._reconcile(deployments)
        except Exception as e:
            await self.cell.finish(SYNC_FAILED, error=str(e))
            raise

        result.duration_ms = int((time.monotonic() - started) * 1000)
        if result.errors:
            await self.cell.finish(SYNC_COMPLETED_WITH_ERRORS, result, error="; ".join(result.errors))
        else:
            await self.cell.finish(SYNC_SUCCESS, result)

        LOGGER.info(
            "Workflow definition sync finished",
            extra={
                "created_count": result.created,
                "updated_count": result.updated,
                "missing_count": result.missing,
                "error_count": len(result.errors),
            },
        )
        return result

    async def _reconcile(self, deployments: List[DeploymentDetails]) -> DefinitionSyncResult:
        result = DefinitionSyncResult()
        seen: Set[str] = set()
        now = utcnow()

        for deployment in deployments:
            workflow_type, workflow_key = parse_deployment_tags(deployment.tags)
            if not workflow_type:
                continue
            label = f"{deployment.name}({deployment.id})"
            if not workflow_key:
                result.errors.append(f"deployment {label} missing pdms:key tag")
                continue
            if workflow_type not in WORKFLOW_TYPES:
                result.errors.append(f"deployment {label} has invalid pdms:type={workflow_type}")
                continue

            seen.add(deployment.id)
            try:
                outcome = await self._upsert(deployment, workflow_type, workflow_key, now)
            except SQLAlchemyError as e:
                await self.session.rollback()
                result.errors.append(f"failed to upsert {deployment.name}: {e}")
                continue
            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1

        for definition in await self.definition_repo.list_by_source("prefect"):
            if not definition.prefect_deployment_id or definition.prefect_deployment_id in seen:
                continue
            if definition.sync_status == "missing":
                continue
            try:
                await self.definition_repo.update(definition.id, sync_status="missing")
            except SQLAlchemyError as e:
                await self.session.rollback()
                result.errors.append(f"failed to mark {definition.workflow_key} as missing: {e}")
                continue
            result.missing += 1
            LOGGER.info(f"Workflow definition marked missing: {definition.workflow_key}")

        return result

    @staticmethod
    def _mirrored_fields(deployment: DeploymentDetails, workflow_type: str, spec_hash: str) -> Dict[str, Any]:
        return {
            "name": deployment.name,
            "description": deployment.description or "",
            "prefect_deployment_name": deployment.name,
            "prefect_deployment_id": deployment.id,
            "prefect_version": deployment.version or "",
            "prefect_tags": list(deployment.tags),
            "parameter_schema": deployment.parameter_schema or {},
            "workflow_type": workflow_type,
            "spec_hash": spec_hash,
        }

    async def _upsert(
        self, deployment: DeploymentDetails, workflow_type: str, workflow_key: str, now
    ) -> Optional[str]:
        """Returns "created", "updated", or None when only seen."""
        spec_hash = compute_spec_hash(deployment)
        existing = await self.definition_repo.get_by_deployment_id(deployment.id)

        if existing is None:
            # A legacy row with the same key is adopted rather than duplicated
            by_key = await self.definition_repo.get_by_key(workflow_key)
            fields = self._mirrored_fields(deployment, workflow_type, spec_hash)
            if by_key is not None:
                await self.definition_repo.update(
                    by_key.id,
                    source="prefect",
                    sync_status="active",
                    last_synced_at=now,
                    last_seen_at=now,
                    **fields,
                )
                return "updated"

            await self.definition_repo.create(
                workflow_key=workflow_key,
                source="prefect",
                sync_status="active",
                last_synced_at=now,
                last_seen_at=now,
                enabled=True,
                **fields,
            )
            LOGGER.info(f"Created workflow definition {workflow_key} ({workflow_type})")
            return "created"

        updates: Dict[str, Any] = {"last_seen_at": now, "sync_status": "active"}
        changed = existing.spec_hash != spec_hash
        if changed:
            updates.update(self._mirrored_fields(deployment, workflow_type, spec_hash))
            updates["last_synced_at"] = now
        await self.definition_repo.update(existing.id, **updates)
        return "updated" if changed else None

    async def list_definitions_admin(
        self,
        source: Optional[str] = None,
        workflow_type: Optional[str] = None,
        sync_status: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[WorkflowDefinition]:
        return await self.definition_repo.list_admin(source, workflow_type, sync_status, enabled)

    async def update_definition(self, definition_id: int, enabled: bool) -> WorkflowDefinition:
        definition = await self.definition_repo.update(definition_id, enabled=enabled)
        if definition is None:
            raise NotFoundError(f"workflow definition not found: {definition_id}")
        LOGGER.info(f"Workflow definition {definition_id} enabled={enabled}")
        return definition
