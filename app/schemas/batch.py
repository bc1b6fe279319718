"""Schemas for batch workflow and batch sync operations."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BatchWorkflowRequest(BaseModel):
    """Options shared by batch workflow preview and execute."""

    workflow_key: str = Field(..., min_length=1)
    include_descendants: bool = True
    skip_no_source: bool = False
    skip_no_output: bool = False
    skip_name_contains: Optional[str] = None
    skip_doc_types: List[str] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    concurrency: Optional[int] = Field(None, ge=0)


class BatchPreviewItem(BaseModel):
    node_id: int
    node_name: str
    node_path: str
    source_doc_count: int = 0
    can_execute: bool
    skip_reason: Optional[str] = None
    depth: int = 0


class BatchPreviewResponse(BaseModel):
    root_node_id: int
    workflow_key: str
    workflow_name: str
    total_nodes: int
    can_execute: int
    will_skip: int
    nodes: List[BatchPreviewItem]


class BatchExecuteResponse(BaseModel):
    batch_id: str
    status: str
    total_nodes: int
    message: str


class NodeResult(BaseModel):
    node_id: int
    node_name: str
    node_path: str
    status: str
    run_id: Optional[int] = None
    prefect_flow_run_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None


class BatchStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    workflow_key: str
    root_node_id: int
    status: str
    total_nodes: int
    success_count: int
    failed_count: int
    skipped_count: int
    progress: float
    details: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    created_by_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BatchSyncRequest(BaseModel):
    include_descendants: bool = True
    concurrency: Optional[int] = Field(None, ge=0)


class SyncPreviewItem(BaseModel):
    document_id: int
    document_name: str
    document_type: str = ""
    node_id: int
    node_path: str
    sync_target: Optional[Dict[str, Any]] = None
    can_sync: bool
    skip_reason: Optional[str] = None


class SyncPreviewResponse(BaseModel):
    root_node_id: int
    total_documents: int
    can_sync: int
    will_skip: int
    documents: List[SyncPreviewItem]


class SyncExecuteResponse(BaseModel):
    batch_id: str
    status: str
    total_documents: int
    message: str


class DocumentResult(BaseModel):
    document_id: int
    document_name: str
    document_type: str = ""
    node_id: Optional[int] = None
    node_path: str
    status: str
    event_id: Optional[str] = None
    prefect_flow_run_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None


class SyncBatchStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    root_node_id: int
    status: str
    total_documents: int
    success_count: int
    failed_count: int
    skipped_count: int
    progress: float
    details: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    created_by_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BatchListResponse(BaseModel):
    batches: List[BatchStatusResponse]
    total: int


class SyncBatchListResponse(BaseModel):
    batches: List[SyncBatchStatusResponse]
    total: int
