"""System API routes - health, status, config."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime


class StatusResponse(BaseModel):
    """Service status response."""
    status: str
    timestamp: datetime
    phase: str
    target_running: bool
    uptime_seconds: Optional[float] = None


class ConfigResponse(BaseModel):
    """Current configuration response."""
    bundle_id: str
    target_name: str
    poll_interval: float
    script_timeout: float
    log_level: str
    use_fake: bool
    gateway_host: str
    gateway_port: int


# Track service start time
_start_time: Optional[datetime] = None


def set_start_time():
    """Set the service start time."""
    global _start_time
    _start_time = datetime.now()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns 200 OK if the service is healthy.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(),
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    """Get service status."""
    orchestrator = request.app.state.orchestrator

    uptime = None
    if _start_time is not None:
        uptime = (datetime.now() - _start_time).total_seconds()

    return StatusResponse(
        status="running",
        timestamp=datetime.now(),
        phase=orchestrator.phase.value,
        target_running=await run_in_threadpool(orchestrator.service.is_target_running),
        uptime_seconds=uptime,
    )


@router.get("/config", response_model=ConfigResponse)
async def get_config(request: Request):
    """Get current configuration."""
    config = request.app.state.config
    orchestrator = request.app.state.orchestrator

    return ConfigResponse(
        bundle_id=getattr(config, "bundle_id", "com.spotify.client"),
        target_name=orchestrator.target_name,
        poll_interval=orchestrator.poll_interval,
        script_timeout=getattr(config, "script_timeout", 10.0),
        log_level=getattr(config, "log_level", "INFO"),
        use_fake=getattr(config, "use_fake", False),
        gateway_host=getattr(config, "gateway_host", "127.0.0.1"),
        gateway_port=getattr(config, "gateway_port", 6061),
    )
