"""Request and response schemas for workflow definitions and runs."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RunStatus = Literal["pending", "running", "success", "failed", "cancelled"]


class WorkflowDefinitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_key: str
    name: str
    description: str = ""
    workflow_type: str = "node"
    prefect_deployment_name: str
    prefect_deployment_id: Optional[str] = None
    prefect_version: str = ""
    prefect_tags: Optional[List[str]] = None
    parameter_schema: Dict[str, Any] = Field(default_factory=dict)
    source: str = "legacy"
    sync_status: Optional[str] = None
    spec_hash: str = ""
    last_synced_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    enabled: bool = True


class WorkflowRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_key: str
    node_id: Optional[int] = None
    document_id: Optional[int] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    status: str
    prefect_flow_run_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_by_id: Optional[str] = None
    retry_of_id: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    retry_count: int = 0
    latest_retry_status: Optional[str] = None


class TriggerWorkflowRequest(BaseModel):
    """Body of a node or document workflow trigger."""

    parameters: Dict[str, Any] = Field(default_factory=dict)
    retry_of_id: Optional[int] = Field(
        None, description="ID of the run being retried; must share key and target"
    )


class TriggerWorkflowResponse(BaseModel):
    run_id: int
    status: str
    prefect_flow_run_id: Optional[str] = None
    message: str = ""


class WorkflowCallbackRequest(BaseModel):
    """Payload the scheduler posts when a flow run finishes."""

    status: str
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class WorkflowRunListResponse(BaseModel):
    runs: List[WorkflowRunResponse]
    total: int
    has_more: bool


class CleanupRunsRequest(BaseModel):
    before_date: Optional[datetime] = None
    status: List[RunStatus] = Field(default_factory=list)
    workflow_key: Optional[str] = None
    node_id: Optional[int] = None
    document_id: Optional[int] = None
    include_zombie: bool = False
    force_cleanup_active: bool = False
    dry_run: bool = False


class CleanupRunsResponse(BaseModel):
    deleted_count: int
    zombie_count: int
    dry_run: bool


class UpdateDefinitionRequest(BaseModel):
    enabled: bool


class DefinitionSyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    missing: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class DefinitionSyncStatus(BaseModel):
    status: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[DefinitionSyncResult] = None
    error: Optional[str] = None
    prefect_enabled: bool = False
