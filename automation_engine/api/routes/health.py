"""Health check route."""

import time
from typing import Any

from fastapi import APIRouter

from automation_engine import __version__
from automation_engine.api.deps import Engine, Scheduler, Triggers

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()


@router.get("")
async def health_check(engine: Engine, scheduler: Scheduler, triggers: Triggers) -> dict[str, Any]:
    """Lightweight liveness check with scheduler and registry counters."""
    return {
        "status": "healthy",
        "version": __version__,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "scheduler_running": scheduler.running,
        "scheduled_workflows": len(scheduler.get_scheduled_workflows()),
        "tracked_executions": len(engine.registry),
        "recent_events": triggers.get_event_queue_size(),
    }
