from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from report_validation.config import settings
from report_validation.core.enums import (
    TERMINAL_WORKFLOW_STATUSES,
    Priority,
    StepOutcome,
    StepStatus,
    ValidationType,
    WorkflowStatus,
)
from report_validation.core.errors import (
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from report_validation.core.schemas import ActorContext, DigitalSignature, ValidationResult
from report_validation.db import ValidationStep, ValidationWorkflow
from report_validation.services import repository
from report_validation.services.audit import AuditSink, build_audit_sink, emit_audit
from report_validation.services.bots import BotValidationEngine, summarize
from report_validation.services.collaborators import CredentialValidator, ReportStore, SqlReportStore
from report_validation.services.finalizer import Finalizer
from report_validation.services.planner import DIGITAL_SIGNOFF, due_date, plan_steps
from report_validation.services.signature import create_signature, verify_signature
from report_validation.utils.time import now_utc

logger = logging.getLogger("report_validation.workflow")


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


_locks: dict[str, _KeyLock] = {}
_locks_guard = threading.Lock()


@contextmanager
def key_lock(key: str):
    """Serializes callers on `key`; the entry is dropped once no caller holds or awaits it."""
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _KeyLock()
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                del _locks[key]


def system_actor() -> ActorContext:
    return ActorContext(actor_id=settings.system_actor_id, display_name="Automatic Validation", roles=["system"])


class ValidationWorkflowEngine:
    """Drives one report's validation workflow through planning, bot checks, review and sign-off.

    Transitions on a workflow are serialized in-process by a per-workflow lock; across
    processes the `version` column on the workflow row rejects a second concurrent writer.
    """

    def __init__(
        self,
        session,
        *,
        report_store: ReportStore | None = None,
        audit_sink: AuditSink | None = None,
        bot_engine: BotValidationEngine | None = None,
        finalizer: Finalizer | None = None,
        credential_validator: CredentialValidator | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session = session
        self.report_store = report_store or SqlReportStore(session)
        self.audit_sink = audit_sink if audit_sink is not None else build_audit_sink(session)
        self.bot_engine = bot_engine or BotValidationEngine(audit_sink=self.audit_sink)
        self.finalizer = finalizer or Finalizer(self.report_store, self.audit_sink)
        self.credential_validator = credential_validator
        self.clock = clock

    @contextmanager
    def _serialized(self, key: str):
        with key_lock(key):
            try:
                yield
                self.session.flush()
            except StaleDataError as exc:
                raise InvalidStateError("workflow was modified concurrently; re-fetch its state and retry") from exc

    # ------------------------------------------------------------------
    def create_workflow(
        self,
        report_id: str,
        priority: Priority | str = Priority.routine,
        actor: ActorContext | None = None,
    ) -> ValidationWorkflow:
        priority = Priority(priority)
        report = self.report_store.read_report(report_id)
        steps = plan_steps(report)

        with key_lock(f"report:{report_id}"):
            try:
                workflow = repository.create_workflow(
                    self.session,
                    report_id=report_id,
                    priority=priority.value,
                    steps=steps,
                    due_at=due_date(priority.value, self.clock()),
                )
            except IntegrityError as exc:
                self.session.rollback()
                raise InvalidStateError(
                    f"an active validation workflow already exists for report {report_id}"
                ) from exc

        emit_audit(
            self.audit_sink,
            "create",
            "ValidationWorkflow",
            workflow.id,
            {
                "report_id": report_id,
                "priority": priority.value,
                "steps": [step.id for step in steps],
                "requested_by": actor.actor_id if actor else None,
            },
        )
        logger.info("workflow created workflow_id=%s report_id=%s steps=%s", workflow.id, report_id, len(steps))
        return workflow

    def get_workflow(self, workflow_id: str) -> ValidationWorkflow:
        return repository.require_workflow(self.session, workflow_id)

    def get_workflow_for_report(self, report_id: str) -> ValidationWorkflow:
        workflow = repository.get_active_workflow_for_report(self.session, report_id)
        if workflow is None:
            workflow = repository.get_latest_workflow_for_report(self.session, report_id)
        if workflow is None:
            raise NotFoundError(f"validation workflow not found for report {report_id}")
        return workflow

    # ------------------------------------------------------------------
    def assign_step(
        self,
        workflow_id: str,
        step_id: str,
        assignee_id: str,
        actor: ActorContext | None = None,
    ) -> ValidationWorkflow:
        with self._serialized(workflow_id):
            workflow = repository.require_workflow(self.session, workflow_id, refresh=True)
            step = repository.find_step(workflow, step_id)
            self._ensure_active(workflow)
            self._ensure_current(workflow, step)
            if step.status not in (StepStatus.pending.value, StepStatus.in_progress.value):
                raise InvalidStateError(f"step {step_id} cannot be assigned from status {step.status}")
            if settings.enforce_assignment_roles and (actor is None or not actor.has_any_role(step.required_roles)):
                raise PermissionDeniedError(f"assigning {step_id} requires one of roles {step.required_roles}")

            step.assigned_to = assignee_id
            step.status = StepStatus.in_progress.value
            if workflow.status == WorkflowStatus.pending.value:
                repository.set_workflow_status(workflow, WorkflowStatus.in_progress)
            workflow.updated_at = self.clock()

        emit_audit(
            self.audit_sink,
            "assign",
            "ValidationWorkflow",
            workflow.id,
            {
                "step_id": step_id,
                "assigned_to": assignee_id,
                "assigned_by": actor.actor_id if actor else None,
                "report_id": workflow.report_id,
            },
        )
        return workflow

    def complete_step(
        self,
        workflow_id: str,
        step_id: str,
        outcome: StepOutcome | str,
        actor: ActorContext | None,
        notes: str | None = None,
        signature: DigitalSignature | None = None,
        results: list[ValidationResult] | None = None,
    ) -> ValidationWorkflow:
        outcome = StepOutcome(outcome)
        if actor is None:
            raise AuthenticationError("User not authenticated")

        finalized = False
        with self._serialized(workflow_id):
            workflow = repository.require_workflow(self.session, workflow_id, refresh=True)
            step = repository.find_step(workflow, step_id)
            self._ensure_active(workflow)
            self._ensure_current(workflow, step)
            self._ensure_completable(step)
            if not actor.has_any_role(step.required_roles):
                raise PermissionDeniedError(f"completing {step_id} requires one of roles {step.required_roles}")
            if signature is not None:
                self._check_signature(workflow, signature, actor)
            elif (
                settings.require_signoff_signature
                and step.step_key == DIGITAL_SIGNOFF
                and outcome == StepOutcome.completed
            ):
                raise AuthenticationError("digital sign-off requires a digital signature")

            now = self.clock()
            step.status = outcome.value
            step.completed_at = now
            step.completed_by = actor.actor_id
            step.notes = notes
            if signature is not None:
                step.digital_signature = signature.model_dump(mode="json")
                step.signature_hash = signature.signature_hash
            if results is not None:
                step.results = [row.model_dump(mode="json") for row in results]

            if workflow.status == WorkflowStatus.pending.value:
                repository.set_workflow_status(workflow, WorkflowStatus.in_progress)

            if outcome == StepOutcome.completed:
                next_step = self._step_at(workflow, step.step_order + 1)
                if next_step is not None:
                    next_step.status = StepStatus.pending.value
                    workflow.current_step_id = next_step.step_key
                else:
                    repository.set_workflow_status(workflow, WorkflowStatus.completed)
                    finalized = True
            else:
                repository.set_workflow_status(workflow, WorkflowStatus.rejected)
            workflow.updated_at = now
            self.session.flush()

            if finalized:
                self.finalizer.finalize(workflow.report_id)

        emit_audit(
            self.audit_sink,
            "complete-step",
            "ValidationWorkflow",
            workflow.id,
            {
                "step_id": step_id,
                "status": outcome.value,
                "notes": notes,
                "has_digital_signature": signature is not None,
                "completed_by": actor.actor_id,
                "workflow_status": workflow.status,
            },
        )
        logger.info(
            "step completed workflow_id=%s step=%s outcome=%s workflow_status=%s",
            workflow.id,
            step_id,
            outcome.value,
            workflow.status,
        )
        return workflow

    def cancel_workflow(self, workflow_id: str, reason: str, actor: ActorContext | None = None) -> ValidationWorkflow:
        with self._serialized(workflow_id):
            workflow = repository.require_workflow(self.session, workflow_id, refresh=True)
            self._ensure_active(workflow)
            repository.set_workflow_status(workflow, WorkflowStatus.cancelled)
            workflow.updated_at = self.clock()

        emit_audit(
            self.audit_sink,
            "cancel",
            "ValidationWorkflow",
            workflow.id,
            {"reason": reason, "cancelled_by": actor.actor_id if actor else None, "report_id": workflow.report_id},
        )
        return workflow

    # ------------------------------------------------------------------
    def execute_validation(self, report_id: str) -> list[ValidationResult]:
        report = self.report_store.read_report(report_id)
        results = self.bot_engine.execute(report)
        if any(row.auto_fixed for row in results):
            self.report_store.save_report(report_id, report)
        return results

    def run_automatic_step(self, workflow_id: str, actor: ActorContext | None = None) -> list[ValidationResult]:
        actor = actor or system_actor()
        workflow = repository.require_workflow(self.session, workflow_id, refresh=True)
        self._ensure_active(workflow)
        step = self._step_by_key(workflow, workflow.current_step_id)
        if step is None or step.validation_type != ValidationType.automatic.value:
            raise InvalidStateError(f"current step of workflow {workflow_id} is not an automatic step")

        results = self.execute_validation(workflow.report_id)
        summary = summarize(results)
        failed = summary["errors"] > 0 and settings.auto_validation_fail_on_error
        notes = (
            f"{summary['results']} rules evaluated, {summary['errors']} unresolved errors, "
            f"{summary['warnings']} warnings, {summary['auto_fixed']} auto-fixed"
        )
        self.complete_step(
            workflow_id,
            step.step_key,
            StepOutcome.failed if failed else StepOutcome.completed,
            actor,
            notes=notes,
            results=results,
        )
        return results

    def create_signature(
        self,
        report_id: str,
        method: str,
        credentials: dict[str, Any] | None,
        actor: ActorContext | None,
    ) -> DigitalSignature:
        return create_signature(
            report_id,
            method,
            credentials,
            actor,
            validator=self.credential_validator,
            audit_sink=self.audit_sink,
            clock=self.clock,
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _ensure_active(workflow: ValidationWorkflow) -> None:
        if workflow.status in TERMINAL_WORKFLOW_STATUSES:
            raise InvalidStateError(f"workflow {workflow.id} is {workflow.status} and accepts no further transitions")

    @staticmethod
    def _ensure_current(workflow: ValidationWorkflow, step: ValidationStep) -> None:
        if workflow.current_step_id != step.step_key:
            raise InvalidStateError(
                f"step {step.step_key} is out of order; current step is {workflow.current_step_id}"
            )

    @staticmethod
    def _ensure_completable(step: ValidationStep) -> None:
        if step.status == StepStatus.in_progress.value:
            return
        if step.status == StepStatus.pending.value and step.validation_type == ValidationType.automatic.value:
            return
        if step.status == StepStatus.pending.value:
            raise InvalidStateError(f"step {step.step_key} must be assigned before it can be completed")
        raise InvalidStateError(f"step {step.step_key} is already {step.status}")

    def _check_signature(self, workflow: ValidationWorkflow, signature: DigitalSignature, actor: ActorContext) -> None:
        if signature.signer_id != actor.actor_id:
            raise AuthenticationError("signature signer does not match the completing user")
        if not verify_signature(workflow.report_id, signature):
            raise InvalidStateError("signature does not belong to this report")
        if repository.signature_hash_in_use(self.session, signature.signature_hash):
            raise InvalidStateError("signature has already been attached to a step")

    @staticmethod
    def _step_at(workflow: ValidationWorkflow, order: int) -> ValidationStep | None:
        for step in workflow.steps:
            if step.step_order == order:
                return step
        return None

    @staticmethod
    def _step_by_key(workflow: ValidationWorkflow, step_key: str | None) -> ValidationStep | None:
        if step_key is None:
            return None
        for step in workflow.steps:
            if step.step_key == step_key:
                return step
        return None
