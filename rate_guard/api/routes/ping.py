from __future__ import annotations

from fastapi import APIRouter, Depends

from rate_guard.core.rate_limit import enforce_rate_limit

router = APIRouter(tags=["Ping"])


@router.get("/ping", dependencies=[Depends(enforce_rate_limit)])
async def ping() -> dict:
    """Rate limited endpoint used to exercise the limiter end to end."""

    return {"message": "pong"}
