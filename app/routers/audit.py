# app/routers/audit.py
from fastapi import APIRouter, Depends, Query
from app.dependencies import get_dispatch
from app.schemas.audit import AuditLogOut
from app.services.dispatch_engine import DispatchEngine
from typing import Optional

router = APIRouter()

@router.get("/audit", response_model=list[AuditLogOut], summary="Audit trail — filterable by entity and action")
async def audit_trail(
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    dispatch: DispatchEngine = Depends(get_dispatch),
):
    """Trip completions, cancellations and vehicle requeues, newest first."""
    return await dispatch.audit_trail(entity_id, action, limit)
