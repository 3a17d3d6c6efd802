"""Permission API routes."""

from fastapi import APIRouter, Request
from pydantic import BaseModel

from .playback import OrchestratorResponse, snapshot_to_response

router = APIRouter()


class PermissionResponse(BaseModel):
    """Automation permission status."""
    permission_status: str
    target_installed: bool
    has_permission_error: bool


class PermissionRequestResponse(BaseModel):
    """Outcome of a permission request."""
    granted: bool
    permission_status: str


@router.get("", response_model=PermissionResponse)
async def get_permission(request: Request):
    """Re-probe the automation permission."""
    orchestrator = request.app.state.orchestrator
    status = await orchestrator.check_permission()
    return PermissionResponse(
        permission_status=status.value,
        target_installed=orchestrator.permissions.is_target_installed(),
        has_permission_error=orchestrator.has_permission_error,
    )


@router.post("/request", response_model=PermissionRequestResponse)
async def request_permission(request: Request):
    """Trigger the OS permission prompt."""
    orchestrator = request.app.state.orchestrator
    granted = await orchestrator.request_permission()
    return PermissionRequestResponse(
        granted=granted,
        permission_status=orchestrator.permission_status.value,
    )


@router.post("/retry", response_model=OrchestratorResponse)
async def retry_permission(request: Request):
    """Re-check permission after the user changed it, resuming polling if allowed."""
    orchestrator = request.app.state.orchestrator
    await orchestrator.retry_after_permission_granted()
    return snapshot_to_response(orchestrator.snapshot())


@router.post("/settings", status_code=202)
async def open_settings(request: Request):
    """Open the OS automation privacy settings on the host."""
    request.app.state.orchestrator.open_system_settings()
    return {"status": "opened"}
