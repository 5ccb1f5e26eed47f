from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Direction = Literal["pull", "push", "both"]


class SyncOptions(BaseModel):
    dry_run: bool = False
    force_refresh: bool = False
    modified_since: Optional[datetime] = None
    specific_ids: Optional[List[str]] = Field(
        None, description="Remote ids when pulling, local ids when pushing; requires a single entity type"
    )
    resume_from: Optional[str] = Field(None, description="Correlation id of a run whose pull checkpoints to resume")


class SyncRequest(SyncOptions):
    direction: Direction = "both"
    entity_types: List[Literal["contact", "invoice", "payment"]] = Field(
        default_factory=lambda: ["contact", "invoice", "payment"]
    )

    def options(self) -> SyncOptions:
        return SyncOptions(**self.model_dump(include=set(SyncOptions.model_fields)))


class SyncRunSummary(BaseModel):
    correlation_id: str
    trigger_type: str
    direction: str
    entity_types: List[str]
    dry_run: bool
    status: str  # 'RUNNING', 'SUCCESS', 'PARTIAL_SUCCESS', 'ERROR'
    cancelled: bool = False
    start_time: datetime
    end_time: Optional[datetime] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    conflicts_detected: int = 0
    records_failed: int = 0
    summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RunStatus(BaseModel):
    correlation_id: str
    status: str
    phase: Optional[str] = None
    entity_type: Optional[str] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    conflicts: int = 0


class PaginatedSyncRuns(BaseModel):
    data: List[SyncRunSummary]
    total: int


class ConnectionStatus(BaseModel):
    connected: bool
    tenant_id: str
    message: str
