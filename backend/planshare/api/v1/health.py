"""Health check endpoint."""

from fastapi import APIRouter
from sqlalchemy import text

from planshare.db.session import engine
from planshare.services.change_bus import change_bus

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check DB connectivity."""
    db_status = "ok"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "db": db_status,
        "change_bus_queue_size": change_bus.max_queue_size,
        "version": "0.1.0",
    }
