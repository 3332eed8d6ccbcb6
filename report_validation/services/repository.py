from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select

from report_validation.core.enums import TERMINAL_WORKFLOW_STATUSES, ReportStatus, WorkflowStatus
from report_validation.core.errors import InvalidStateError, NotFoundError
from report_validation.core.schemas import PlannedStep
from report_validation.db import AuditEvent, DiagnosticReportRecord, ValidationStep, ValidationWorkflow
from report_validation.utils.time import now_utc

ALLOWED_STATUS_TRANSITIONS: dict[str, set[str]] = {
    WorkflowStatus.pending.value: {WorkflowStatus.in_progress.value, WorkflowStatus.cancelled.value},
    WorkflowStatus.in_progress.value: {
        WorkflowStatus.completed.value,
        WorkflowStatus.rejected.value,
        WorkflowStatus.cancelled.value,
    },
    WorkflowStatus.completed.value: set(),
    WorkflowStatus.rejected.value: set(),
    WorkflowStatus.cancelled.value: set(),
}

ACTIVE_WORKFLOW_STATUSES = (WorkflowStatus.pending.value, WorkflowStatus.in_progress.value)


def create_workflow(
    session,
    report_id: str,
    priority: str,
    steps: list[PlannedStep],
    due_at: datetime | None = None,
) -> ValidationWorkflow:
    if get_active_workflow_for_report(session, report_id) is not None:
        raise InvalidStateError(f"an active validation workflow already exists for report {report_id}")

    now = now_utc()
    workflow = ValidationWorkflow(
        id=f"validation-{uuid.uuid4()}",
        report_id=report_id,
        status=WorkflowStatus.pending.value,
        priority=priority,
        current_step_id=steps[0].id if steps else None,
        due_at=due_at,
        created_at=now,
        updated_at=now,
    )
    for planned in steps:
        workflow.steps.append(
            ValidationStep(
                step_key=planned.id,
                step_order=planned.order,
                name=planned.name,
                description=planned.description,
                required_roles=list(planned.required_role),
                validation_type=planned.validation_type.value,
                validation_rules=list(planned.validation_rules),
                status=planned.status.value,
                results=[],
            )
        )
    session.add(workflow)
    session.flush()
    return workflow


def get_workflow(session, workflow_id: str, *, refresh: bool = False) -> ValidationWorkflow | None:
    return session.get(ValidationWorkflow, workflow_id, populate_existing=refresh)


def require_workflow(session, workflow_id: str, *, refresh: bool = False) -> ValidationWorkflow:
    workflow = get_workflow(session, workflow_id, refresh=refresh)
    if workflow is None:
        raise NotFoundError(f"validation workflow {workflow_id} not found")
    return workflow


def get_active_workflow_for_report(session, report_id: str) -> ValidationWorkflow | None:
    return (
        session.execute(
            select(ValidationWorkflow)
            .where(ValidationWorkflow.report_id == report_id)
            .where(ValidationWorkflow.status.in_(ACTIVE_WORKFLOW_STATUSES))
        )
        .scalars()
        .first()
    )


def get_latest_workflow_for_report(session, report_id: str) -> ValidationWorkflow | None:
    return (
        session.execute(
            select(ValidationWorkflow)
            .where(ValidationWorkflow.report_id == report_id)
            .order_by(ValidationWorkflow.created_at.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def list_workflows(session, status: str | None = None, limit: int = 50) -> list[ValidationWorkflow]:
    query = select(ValidationWorkflow).order_by(ValidationWorkflow.created_at.desc()).limit(limit)
    if status:
        query = query.where(ValidationWorkflow.status == status)
    return session.execute(query).scalars().all()


def find_step(workflow: ValidationWorkflow, step_key: str) -> ValidationStep:
    for step in workflow.steps:
        if step.step_key == step_key:
            return step
    raise NotFoundError(f"validation step {step_key} not found in workflow {workflow.id}")


def set_workflow_status(workflow: ValidationWorkflow, status: WorkflowStatus) -> ValidationWorkflow:
    current = workflow.status
    target = status.value
    if current == target:
        return workflow
    allowed = ALLOWED_STATUS_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidStateError(f"invalid workflow status transition {current} -> {target}")
    workflow.status = target
    if target in TERMINAL_WORKFLOW_STATUSES:
        workflow.current_step_id = None
    return workflow


def signature_hash_in_use(session, signature_hash: str) -> bool:
    existing = session.execute(
        select(ValidationStep.id).where(ValidationStep.signature_hash == signature_hash).limit(1)
    ).first()
    return existing is not None


def save_report(session, report_id: str, resource: dict) -> DiagnosticReportRecord:
    record = session.get(DiagnosticReportRecord, report_id)
    status = resource.get("status") or ReportStatus.registered.value
    payload = dict(resource)
    payload["id"] = report_id
    if record is None:
        record = DiagnosticReportRecord(id=report_id, status=status, resource=payload, updated_at=now_utc())
        session.add(record)
    else:
        record.status = status
        record.resource = payload
        record.updated_at = now_utc()
    session.flush()
    return record


def get_report_record(session, report_id: str) -> DiagnosticReportRecord | None:
    return session.get(DiagnosticReportRecord, report_id)


def list_reports(session, status: str, limit: int = 20) -> list[DiagnosticReportRecord]:
    return (
        session.execute(
            select(DiagnosticReportRecord)
            .where(DiagnosticReportRecord.status == status)
            .order_by(DiagnosticReportRecord.updated_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def log_audit_event(session, action: str, resource_type: str, resource_id: str, details: dict | None = None) -> AuditEvent:
    event = AuditEvent(
        id=str(uuid.uuid4()),
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        created_at=now_utc(),
    )
    session.add(event)
    return event


def list_audit_events(session, resource_id: str, limit: int = 200) -> list[AuditEvent]:
    return (
        session.execute(
            select(AuditEvent)
            .where(AuditEvent.resource_id == resource_id)
            .order_by(AuditEvent.created_at.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
