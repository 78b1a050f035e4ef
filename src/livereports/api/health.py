"""Health check endpoint.

Learn: Reports whether the hub is up, how many clients are connected,
and whether the optional Redis change feed is alive. The feed is
pinged, not just looked up: a listener that lost Redis shows as
"down". A missing or dead feed makes the status "degraded", not an
error: pushes still work over HTTP.
"""

from fastapi import APIRouter, Depends, Request

from livereports import __version__
from livereports.dependencies import get_hub
from livereports.realtime.hub import ReportHub

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, hub: ReportHub = Depends(get_hub)):
    """Check server health and change-feed state."""
    checks = {
        "server": "ok",
        "version": __version__,
        "connections": hub.connection_count,
        "groups": len(hub.registry),
    }

    feed = getattr(request.app.state, "change_feed", None)
    if feed is None:
        checks["change_feed"] = "disabled"
    else:
        checks["change_feed"] = "ok" if await feed.ping() else "down"

    status = "healthy" if checks["change_feed"] == "ok" else "degraded"
    return {"status": status, **checks}
