from __future__ import annotations

from fastapi import APIRouter, Response, status

from report_validation.core.schemas import DependencyHealth, HealthResponse, ReadyResponse
from report_validation.services.health_checks import check_db
from report_validation.utils.time import now_utc

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_endpoint():
    return HealthResponse(status="ok", now=now_utc())


@router.get("/health/ready", response_model=ReadyResponse)
def readiness_endpoint(response: Response):
    db_ok, db_detail = check_db()
    dependencies = [DependencyHealth(name="database", ok=db_ok, detail=db_detail)]

    overall = all(dep.ok for dep in dependencies)
    if not overall:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadyResponse(
        status="ok" if overall else "degraded",
        dependencies=dependencies,
        now=now_utc(),
    )
