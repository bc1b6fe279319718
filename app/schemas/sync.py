"""Schemas for the document sync-to-external-database workflow."""

import re
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class SyncTarget(BaseModel):
    """Where a document's content lands in the downstream database.

    Identifiers are interpolated into SQL downstream, so they are restricted
    to plain identifiers.
    """

    table: Optional[str] = None
    record_id: int
    field: Optional[str] = None
    connection: Optional[str] = None

    @field_validator("record_id")
    @classmethod
    def _record_id_required(cls, value: int) -> int:
        if value == 0:
            raise ValueError("sync_target.record_id is required")
        return value

    @field_validator("table", "field", "connection")
    @classmethod
    def _plain_identifier(cls, value: Optional[str]) -> Optional[str]:
        if value and not IDENTIFIER_PATTERN.match(value):
            raise ValueError(f"invalid identifier: {value!r}")
        return value


class TriggerSyncResponse(BaseModel):
    event_id: str
    status: str
    message: str
    document_id: int
    document_version: int = 0
    prefect_flow_run_id: Optional[str] = None
    sync_target: Optional[SyncTarget] = None
    idempotency_key: Optional[str] = None
    last_version: Optional[int] = None
    last_run_id: Optional[str] = None


class SyncCallbackRequest(BaseModel):
    event_id: str = Field(..., min_length=1)
    doc_id: int
    doc_version: int = 0
    status: str
    error: Optional[str] = None
    run_id: Optional[str] = None


class LastSyncInfo(BaseModel):
    event_id: str
    version: int
    status: str
    error: Optional[str] = None
    run_id: Optional[str] = None
    synced_at: Optional[datetime] = None


class SyncStatusResponse(BaseModel):
    document_id: int
    sync_target: Optional[SyncTarget] = None
    last_sync: Optional[LastSyncInfo] = None
    sync_enabled: bool


class DocumentSnapshot(BaseModel):
    id: int
    type: str = ""
    version: int = 1
    title: str = ""
    content: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
