from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    breaker = getattr(request.app.state, "circuit_breaker", None)
    recorder = getattr(request.app.state, "decision_recorder", None)
    return {
        "status": "ok",
        "database": breaker.stats() if breaker is not None else None,
        "recorder": {"running": recorder.running, "dropped": recorder.dropped} if recorder is not None else None,
    }
