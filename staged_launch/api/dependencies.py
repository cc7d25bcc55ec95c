"""API dependencies."""

import os

from fastapi import Header, HTTPException, Request

from staged_launch.core.errors import ErrorCode, build_error
from staged_launch.core.launch.controller import StagedLaunchController


async def get_api_key(x_api_key: str = Header(default="", alias="X-API-Key")) -> str:
    """Check the X-API-Key header against LAUNCH_API_KEY when that is set."""
    expected = os.getenv("LAUNCH_API_KEY")
    if not expected:
        return x_api_key
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API Key")
    if x_api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return x_api_key


def get_controller(request: Request) -> StagedLaunchController:
    controller = getattr(request.app.state, "launch_controller", None)
    if controller is None:
        err = build_error(ErrorCode.INTERNAL_ERROR, "Launch controller not initialized")
        raise HTTPException(status_code=503, detail=err)
    return controller
