from datetime import datetime, timezone
import sys

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

router = APIRouter(tags=["health"])

SERVICE_NAME = "billing-engine"
SERVICE_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str
    service: str
    python_version: str


class ReadinessResponse(BaseModel):
    ready: bool
    checks: dict


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=SERVICE_VERSION,
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
        service=SERVICE_NAME,
        python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request, response: Response) -> ReadinessResponse:
    db = getattr(request.app.state, "db", None)
    checks = {
        "api": "ok",
        "database": "ok" if db is not None and db.ping() else "unavailable",
    }
    ready = all(v == "ok" for v in checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=ready, checks=checks)


@router.head("/health")
async def health_head():
    return None
