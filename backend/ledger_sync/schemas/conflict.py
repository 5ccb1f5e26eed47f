from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Resolution = Literal["use_local", "use_remote", "skip"]


class ConflictFilter(BaseModel):
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    correlation_id: Optional[str] = None
    unresolved_only: bool = True
    skip: int = 0
    limit: int = 100


class ConflictResolve(BaseModel):
    resolution: Resolution = Field(..., description="'use_local', 'use_remote' or 'skip'")
    notes: Optional[str] = Field(None, description="Additional notes regarding the resolution")


class ConflictInDB(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    remote_id: Optional[str] = None
    correlation_id: Optional[str] = Field(None, description="Run that detected the conflict")
    phase: Optional[str] = Field(None, description="'pull' or 'push'")
    local_snapshot: Optional[dict] = Field(None, description="Local record at detection time")
    remote_snapshot: Optional[dict] = Field(None, description="Ledger record at detection time")
    detected_at: datetime
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PaginatedConflicts(BaseModel):
    data: List[ConflictInDB]
    total: int
