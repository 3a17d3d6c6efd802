"""Playback API routes - state, refresh, commands, polling."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ...orchestrator import OrchestratorSnapshot

router = APIRouter()


class PlaybackStateResponse(BaseModel):
    """Playback state snapshot."""
    is_playing: bool
    track_name: str
    artist_name: str
    album_name: str
    artwork_url: Optional[str]
    duration_seconds: int
    position_seconds: int
    is_connected: bool
    track_progress: float
    formatted_position: str
    formatted_duration: str


class ErrorResponse(BaseModel):
    """Last recorded service error."""
    kind: str
    description: str
    message: Optional[str] = None


class OrchestratorResponse(BaseModel):
    """Full orchestrator state."""
    current_state: PlaybackStateResponse
    is_polling: bool
    is_blocked_by_permission: bool
    last_error: Optional[ErrorResponse]
    permission_status: str
    phase: str
    has_permission_error: bool


def snapshot_to_response(snapshot: OrchestratorSnapshot) -> OrchestratorResponse:
    """Convert an orchestrator snapshot to a response model."""
    state = snapshot.current_state
    error = snapshot.last_error
    return OrchestratorResponse(
        current_state=PlaybackStateResponse(
            **state.to_dict(),
            track_progress=state.track_progress,
            formatted_position=state.formatted_position,
            formatted_duration=state.formatted_duration,
        ),
        is_polling=snapshot.is_polling,
        is_blocked_by_permission=snapshot.is_blocked_by_permission,
        last_error=ErrorResponse(**error.to_dict()) if error else None,
        permission_status=snapshot.permission_status.value,
        phase=snapshot.phase.value,
        has_permission_error=snapshot.has_permission_error,
    )


# URL segment -> orchestrator method name
COMMANDS = {
    "play": "play",
    "pause": "pause",
    "toggle": "toggle_play_pause",
    "next": "next_track",
    "previous": "previous_track",
}


@router.get("/playback", response_model=OrchestratorResponse)
async def get_playback(request: Request):
    """Current orchestrator state without touching the target."""
    orchestrator = request.app.state.orchestrator
    return snapshot_to_response(orchestrator.snapshot())


@router.post("/playback/refresh", response_model=OrchestratorResponse)
async def refresh_playback(request: Request):
    """Fetch playback state from the target once."""
    orchestrator = request.app.state.orchestrator
    await orchestrator.refresh()
    return snapshot_to_response(orchestrator.snapshot())


@router.post("/playback/{command}", response_model=OrchestratorResponse)
async def run_command(request: Request, command: str):
    """
    Send a playback command.

    Failures are reported through last_error rather than an HTTP error.
    """
    method_name = COMMANDS.get(command)
    if method_name is None:
        raise HTTPException(status_code=404, detail=f"Unknown command '{command}'")

    orchestrator = request.app.state.orchestrator
    await getattr(orchestrator, method_name)()
    return snapshot_to_response(orchestrator.snapshot())


@router.post("/polling/start", response_model=OrchestratorResponse)
async def start_polling(request: Request):
    """Start polling, waiting for the permission gate to finish."""
    orchestrator = request.app.state.orchestrator
    task = orchestrator.start_polling()
    if task is not None:
        await task
    return snapshot_to_response(orchestrator.snapshot())


@router.post("/polling/stop", response_model=OrchestratorResponse)
async def stop_polling(request: Request):
    """Stop polling."""
    orchestrator = request.app.state.orchestrator
    orchestrator.stop_polling()
    return snapshot_to_response(orchestrator.snapshot())
