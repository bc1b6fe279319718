"""Service factories injected into route handlers."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_async_session as get_session
from app.core.ndr_client import NDRClient, get_ndr_client
from app.core.prefect_client import PrefectClient, get_prefect_client
from app.services.batch_sync_service import BatchSyncService
from app.services.batch_workflow_service import BatchWorkflowService
from app.services.category_service import CategoryService
from app.services.document_service import DocumentService
from app.services.sync_service import SyncService
from app.services.task_runner import BatchTaskRunner, get_batch_task_runner
from app.services.workflow_service import WorkflowService
from app.services.workflow_sync_service import (
    SyncStatusCell,
    WorkflowSyncService,
    get_definition_sync_cell,
)

SessionDep = Annotated[AsyncSession, Depends(get_session)]
NDRDep = Annotated[NDRClient, Depends(get_ndr_client)]
PrefectDep = Annotated[PrefectClient, Depends(get_prefect_client)]
RunnerDep = Annotated[BatchTaskRunner, Depends(get_batch_task_runner)]


async def get_workflow_service(
    db_session: SessionDep, ndr: NDRDep, prefect: PrefectDep
) -> WorkflowService:
    return WorkflowService(db_session, ndr=ndr, prefect=prefect)


async def get_batch_workflow_service(
    db_session: SessionDep, ndr: NDRDep, prefect: PrefectDep, runner: RunnerDep
) -> BatchWorkflowService:
    return BatchWorkflowService(db_session, ndr=ndr, prefect=prefect, runner=runner)


async def get_batch_sync_service(
    db_session: SessionDep, ndr: NDRDep, prefect: PrefectDep, runner: RunnerDep
) -> BatchSyncService:
    return BatchSyncService(db_session, ndr=ndr, prefect=prefect, runner=runner)


async def get_sync_service(
    db_session: SessionDep, ndr: NDRDep, prefect: PrefectDep
) -> SyncService:
    return SyncService(db_session, ndr=ndr, prefect=prefect)


async def get_workflow_sync_service(
    db_session: SessionDep,
    prefect: PrefectDep,
    cell: Annotated[SyncStatusCell, Depends(get_definition_sync_cell)],
) -> WorkflowSyncService:
    return WorkflowSyncService(db_session, prefect=prefect, cell=cell)


async def get_category_service(ndr: NDRDep) -> CategoryService:
    return CategoryService(ndr)


async def get_document_service(ndr: NDRDep) -> DocumentService:
    return DocumentService(ndr)
