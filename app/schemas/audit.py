from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class AuditLogOut(BaseModel):
    id: int
    action: str
    entity_id: str
    timestamp: datetime
    details: Optional[dict]
