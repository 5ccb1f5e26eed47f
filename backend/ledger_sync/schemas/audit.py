from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AuditEntryInDB(BaseModel):
    id: int
    correlation_id: Optional[str] = None
    operation: str
    origin: str
    entity_type: str
    entity_id: Optional[str] = None
    remote_id: Optional[str] = None
    before_snapshot: Optional[Dict[str, Any]] = None
    after_snapshot: Optional[Dict[str, Any]] = None
    status: str
    error_message: Optional[str] = None
    user: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaginatedAuditEntries(BaseModel):
    data: List[AuditEntryInDB]
    total: int
