"""Liveness endpoint, also probed by the launch validator."""

from __future__ import annotations

import sys
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from staged_launch import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    controller = getattr(request.app.state, "launch_controller", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "runtime": {"python_version": sys.version.split(" ")[0]},
        "launches": {
            "registered": len(controller.registry) if controller else 0,
            "active": len(controller.list_launches()) if controller else 0,
        },
    }
