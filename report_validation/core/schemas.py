from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from report_validation.core.enums import (
    Priority,
    Severity,
    SignatureMethod,
    StepOutcome,
    StepStatus,
    ValidationType,
    WorkflowStatus,
)


class ActorContext(BaseModel):
    actor_id: str
    display_name: str = "Unknown"
    roles: list[str] = Field(default_factory=list)
    ip_address: str | None = None
    user_agent: str | None = None

    def has_any_role(self, required: list[str]) -> bool:
        return bool(set(self.roles) & set(required))


class ValidationRule(BaseModel):
    id: str
    name: str
    description: str = ""
    # Documents intent only; behaviour comes from the evaluator bound to `id`.
    fhir_path: str = ""
    severity: Severity = Severity.error
    message: str = ""
    auto_fix: bool = False
    fix_action: str | None = None


class ValidationBot(BaseModel):
    id: str
    name: str
    description: str = ""
    trigger_conditions: list[str] = Field(default_factory=list)
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    is_active: bool = True
    priority: int = 100


class ValidationResult(BaseModel):
    rule_id: str
    passed: bool
    severity: Severity
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    auto_fixed: bool = False
    bot_id: str | None = None


class DigitalSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    signer_id: str
    signer_name: str
    timestamp: datetime
    method: SignatureMethod
    ip_address: str | None = None
    user_agent: str | None = None
    signature_hash: str


class PlannedStep(BaseModel):
    id: str
    name: str
    description: str
    order: int
    required_role: list[str]
    validation_type: ValidationType
    validation_rules: list[str]
    status: StepStatus = StepStatus.pending


class StepResponse(BaseModel):
    id: str
    name: str
    description: str
    order: int
    status: StepStatus
    required_role: list[str]
    validation_type: ValidationType
    validation_rules: list[str]
    assigned_to: str | None = None
    completed_by: str | None = None
    completed_at: datetime | None = None
    notes: str | None = None
    digital_signature: DigitalSignature | None = None
    results: list[ValidationResult] = Field(default_factory=list)


class WorkflowResponse(BaseModel):
    workflow_id: str
    report_id: str
    status: WorkflowStatus
    priority: Priority
    current_step: str | None
    steps: list[StepResponse]
    due_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class WorkflowListResponse(BaseModel):
    items: list[WorkflowResponse]


class WorkflowCreateRequest(BaseModel):
    report_id: str = Field(min_length=1, max_length=64)
    priority: Priority = Priority.routine


class StepAssignRequest(BaseModel):
    assignee_id: str = Field(min_length=1, max_length=128)


class StepCompleteRequest(BaseModel):
    outcome: StepOutcome
    notes: str | None = Field(default=None, max_length=4000)
    signature: DigitalSignature | None = None


class WorkflowCancelRequest(BaseModel):
    reason: str = Field(default="cancelled by operator", max_length=512)


class SignatureCreateRequest(BaseModel):
    # Plain string so unknown methods surface as UnsupportedMethodError, not a 422.
    method: str
    credentials: dict[str, Any] = Field(default_factory=dict)


class AutoValidationResponse(BaseModel):
    report_id: str
    results: list[ValidationResult]
    error_count: int
    warning_count: int
    auto_fixed_count: int


class BotResponse(BaseModel):
    items: list[ValidationBot]


class ReportSummary(BaseModel):
    report_id: str
    status: str
    updated_at: datetime


class PendingReportListResponse(BaseModel):
    items: list[ReportSummary]


class AuditEventResponse(BaseModel):
    event_id: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any]
    created_at: datetime


class HealthResponse(BaseModel):
    status: str
    now: datetime


class DependencyHealth(BaseModel):
    name: str
    ok: bool
    detail: str | None = None


class ReadyResponse(BaseModel):
    status: str
    dependencies: list[DependencyHealth]
    now: datetime


class ErrorResponse(BaseModel):
    error: str
    request_id: str | None = None
