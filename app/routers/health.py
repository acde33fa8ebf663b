# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + circuit breaker + queue depths.
"""

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from app.database import get_db
from app.dependencies import get_dispatch
from app.exceptions import DispatchError
from app.services.dispatch_engine import DispatchEngine
from app.utils.clock import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
async def health_check(db: Session = Depends(get_db), dispatch: DispatchEngine = Depends(get_dispatch)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Circuit breaker state (open means bookings are failing fast)
    - Waiting vehicles per seater queue
    """
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "breaker": dispatch.breaker_status(),
        "queues": {},
    }

    # Check database
    try:
        await run_in_threadpool(db.execute, text("SELECT 1"))
        result["database"] = "ok"
    except SQLAlchemyError as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    if result["breaker"]["state"] != "closed":
        result["status"] = "degraded"

    try:
        result["queues"] = {str(c): n for c, n in (await dispatch.queue_counts()).items()}
    except DispatchError as e:
        result["queues"] = f"error: {e.error_code}"
        result["status"] = "degraded"

    return result
