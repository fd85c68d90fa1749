"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies are reachable. Redis matters twice here: without it the
API still stores everything, but nothing is pushed live, so the status
reports "degraded" rather than failing.
"""

from fastapi import APIRouter
from sqlalchemy import text

from safespace import __version__
from safespace.db.engine import engine
from safespace.realtime.pubsub import current_redis

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check the broadcast transport
    r = current_redis()
    if r is None:
        checks["redis"] = "error: not connected"
    else:
        try:
            await r.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
