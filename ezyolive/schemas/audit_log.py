from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from .common import Pagination

class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    action: str
    resource_type: str
    resource_id: Optional[int] = None
    description: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime
    successful: bool
    details: Optional[Dict[str, Any]] = None

class AuditLogListResponse(BaseModel):
    results: int
    total: int
    pagination: Pagination
    logs: List[AuditLogResponse]
