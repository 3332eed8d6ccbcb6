from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from report_validation.api.deps import get_actor, get_db, get_engine, require_token
from report_validation.core.enums import ReportStatus
from report_validation.core.errors import InvalidStateError
from report_validation.core.schemas import (
    ActorContext,
    AuditEventResponse,
    AutoValidationResponse,
    DigitalSignature,
    PendingReportListResponse,
    ReportSummary,
    SignatureCreateRequest,
)
from report_validation.services.bots import summarize
from report_validation.services.repository import (
    get_active_workflow_for_report,
    get_report_record,
    list_audit_events,
    list_reports,
)
from report_validation.services.workflow import ValidationWorkflowEngine

router = APIRouter(prefix="/api/v1/reports", tags=["reports"], dependencies=[Depends(require_token)])


@router.get("/pending", response_model=PendingReportListResponse)
def list_pending_reports_endpoint(limit: int = 20, db: Session = Depends(get_db)):
    rows = list_reports(db, status=ReportStatus.preliminary.value, limit=min(max(limit, 1), 100))
    return PendingReportListResponse(
        items=[ReportSummary(report_id=row.id, status=row.status, updated_at=row.updated_at) for row in rows]
    )


@router.put("/{report_id}", response_model=ReportSummary)
def store_report_endpoint(
    report_id: str,
    resource: dict[str, Any] = Body(...),
    engine: ValidationWorkflowEngine = Depends(get_engine),
):
    if get_active_workflow_for_report(engine.session, report_id) is not None:
        raise InvalidStateError(f"report {report_id} is under validation and cannot be replaced")
    engine.report_store.save_report(report_id, resource)
    record = get_report_record(engine.session, report_id)
    return ReportSummary(report_id=record.id, status=record.status, updated_at=record.updated_at)


@router.post("/{report_id}/validation", response_model=AutoValidationResponse)
def execute_validation_endpoint(report_id: str, engine: ValidationWorkflowEngine = Depends(get_engine)):
    results = engine.execute_validation(report_id)
    summary = summarize(results)
    return AutoValidationResponse(
        report_id=report_id,
        results=results,
        error_count=summary["errors"],
        warning_count=summary["warnings"],
        auto_fixed_count=summary["auto_fixed"],
    )


@router.post("/{report_id}/signatures", response_model=DigitalSignature, status_code=status.HTTP_201_CREATED)
def create_signature_endpoint(
    report_id: str,
    payload: SignatureCreateRequest,
    engine: ValidationWorkflowEngine = Depends(get_engine),
    actor: ActorContext | None = Depends(get_actor),
):
    return engine.create_signature(report_id, payload.method, payload.credentials, actor)


@router.get("/{report_id}/audit", response_model=list[AuditEventResponse])
def get_report_audit_endpoint(report_id: str, limit: int = 200, db: Session = Depends(get_db)):
    events = list_audit_events(db, resource_id=report_id, limit=min(max(limit, 1), 1000))
    return [
        AuditEventResponse(
            event_id=event.id,
            action=event.action,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            details=event.details or {},
            created_at=event.created_at,
        )
        for event in events
    ]
