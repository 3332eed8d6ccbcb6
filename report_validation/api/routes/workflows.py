from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from report_validation.api.deps import get_actor, get_db, get_engine, require_token
from report_validation.core.enums import Priority, StepStatus, ValidationType, WorkflowStatus
from report_validation.core.schemas import (
    ActorContext,
    AuditEventResponse,
    AutoValidationResponse,
    DigitalSignature,
    StepAssignRequest,
    StepCompleteRequest,
    StepResponse,
    ValidationResult,
    WorkflowCancelRequest,
    WorkflowCreateRequest,
    WorkflowListResponse,
    WorkflowResponse,
)
from report_validation.db import ValidationWorkflow
from report_validation.services.bots import summarize
from report_validation.services.repository import list_audit_events, list_workflows
from report_validation.services.workflow import ValidationWorkflowEngine

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"], dependencies=[Depends(require_token)])


def to_workflow_response(workflow: ValidationWorkflow) -> WorkflowResponse:
    steps = [
        StepResponse(
            id=step.step_key,
            name=step.name,
            description=step.description,
            order=step.step_order,
            status=StepStatus(step.status),
            required_role=step.required_roles or [],
            validation_type=ValidationType(step.validation_type),
            validation_rules=step.validation_rules or [],
            assigned_to=step.assigned_to,
            completed_by=step.completed_by,
            completed_at=step.completed_at,
            notes=step.notes,
            digital_signature=DigitalSignature.model_validate(step.digital_signature) if step.digital_signature else None,
            results=[ValidationResult.model_validate(row) for row in step.results or []],
        )
        for step in workflow.steps
    ]
    return WorkflowResponse(
        workflow_id=workflow.id,
        report_id=workflow.report_id,
        status=WorkflowStatus(workflow.status),
        priority=Priority(workflow.priority),
        current_step=workflow.current_step_id,
        steps=steps,
        due_at=workflow.due_at,
        created_at=workflow.created_at,
        updated_at=workflow.updated_at,
    )


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
def create_workflow_endpoint(
    payload: WorkflowCreateRequest,
    engine: ValidationWorkflowEngine = Depends(get_engine),
    actor: ActorContext | None = Depends(get_actor),
):
    workflow = engine.create_workflow(payload.report_id, payload.priority, actor=actor)
    return to_workflow_response(workflow)


@router.get("", response_model=WorkflowListResponse)
def list_workflows_endpoint(
    workflow_status: WorkflowStatus | None = Query(default=None, alias="status"),
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows = list_workflows(
        db,
        status=workflow_status.value if workflow_status else None,
        limit=min(max(limit, 1), 100),
    )
    return WorkflowListResponse(items=[to_workflow_response(row) for row in rows])


@router.get("/by-report/{report_id}", response_model=WorkflowResponse)
def get_workflow_for_report_endpoint(report_id: str, engine: ValidationWorkflowEngine = Depends(get_engine)):
    return to_workflow_response(engine.get_workflow_for_report(report_id))


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow_endpoint(workflow_id: str, engine: ValidationWorkflowEngine = Depends(get_engine)):
    return to_workflow_response(engine.get_workflow(workflow_id))


@router.post("/{workflow_id}/steps/{step_id}/assign", response_model=WorkflowResponse)
def assign_step_endpoint(
    workflow_id: str,
    step_id: str,
    payload: StepAssignRequest,
    engine: ValidationWorkflowEngine = Depends(get_engine),
    actor: ActorContext | None = Depends(get_actor),
):
    workflow = engine.assign_step(workflow_id, step_id, payload.assignee_id, actor=actor)
    return to_workflow_response(workflow)


@router.post("/{workflow_id}/steps/{step_id}/complete", response_model=WorkflowResponse)
def complete_step_endpoint(
    workflow_id: str,
    step_id: str,
    payload: StepCompleteRequest,
    engine: ValidationWorkflowEngine = Depends(get_engine),
    actor: ActorContext | None = Depends(get_actor),
):
    workflow = engine.complete_step(
        workflow_id,
        step_id,
        payload.outcome,
        actor,
        notes=payload.notes,
        signature=payload.signature,
    )
    return to_workflow_response(workflow)


@router.post("/{workflow_id}/auto-validation", response_model=AutoValidationResponse)
def run_auto_validation_endpoint(workflow_id: str, engine: ValidationWorkflowEngine = Depends(get_engine)):
    workflow = engine.get_workflow(workflow_id)
    results = engine.run_automatic_step(workflow_id)
    summary = summarize(results)
    return AutoValidationResponse(
        report_id=workflow.report_id,
        results=results,
        error_count=summary["errors"],
        warning_count=summary["warnings"],
        auto_fixed_count=summary["auto_fixed"],
    )


@router.post("/{workflow_id}/cancel", response_model=WorkflowResponse)
def cancel_workflow_endpoint(
    workflow_id: str,
    payload: WorkflowCancelRequest,
    engine: ValidationWorkflowEngine = Depends(get_engine),
    actor: ActorContext | None = Depends(get_actor),
):
    workflow = engine.cancel_workflow(workflow_id, payload.reason, actor=actor)
    return to_workflow_response(workflow)


@router.get("/{workflow_id}/audit", response_model=list[AuditEventResponse])
def get_workflow_audit_endpoint(
    workflow_id: str,
    limit: int = 200,
    engine: ValidationWorkflowEngine = Depends(get_engine),
):
    engine.get_workflow(workflow_id)
    events = list_audit_events(engine.session, resource_id=workflow_id, limit=min(max(limit, 1), 1000))
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
