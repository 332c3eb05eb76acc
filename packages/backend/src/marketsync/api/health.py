"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, the
listing database is reachable, and reports how many realtime sessions
are connected.
"""

from fastapi import APIRouter, Request

from marketsync import __version__
from marketsync.db.engine import ping

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await ping(request.app.state.engine)
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"

    return {
        "status": status,
        "sessions": len(request.app.state.registry),
        **checks,
    }
