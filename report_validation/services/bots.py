from __future__ import annotations

import logging

from report_validation.config import settings
from report_validation.core.enums import Severity
from report_validation.core.schemas import ValidationBot, ValidationResult, ValidationRule
from report_validation.services.audit import AuditSink, emit_audit
from report_validation.services.rules import RuleRegistry

logger = logging.getLogger("report_validation.bots")

PATHOLOGY_CATEGORY_CODE = "PAT"


def default_bots() -> list[ValidationBot]:
    disabled = settings.disabled_bots()
    bots = [
        ValidationBot(
            id="completeness-bot",
            name="Completeness Validation Bot",
            description="Validates that all required fields are present",
            trigger_conditions=["status:preliminary"],
            validation_rules=[
                ValidationRule(
                    id="completeness-check",
                    name="Required Fields Check",
                    description="Ensures all required fields are present",
                    fhir_path="status.exists() and code.exists() and subject.exists() and effective.exists()",
                    severity=Severity.error,
                    message="Required fields are missing",
                ),
                ValidationRule(
                    id="issued-date-check",
                    name="Issued Date Check",
                    description="Ensures the report carries an issued timestamp",
                    fhir_path="issued.exists()",
                    severity=Severity.error,
                    message="Issued date is missing",
                    auto_fix=True,
                    fix_action="add-missing-issued-date",
                ),
            ],
            priority=1,
        ),
        ValidationBot(
            id="terminology-bot",
            name="Terminology Validation Bot",
            description="Validates terminology usage and coding",
            trigger_conditions=["has-observations"],
            validation_rules=[
                ValidationRule(
                    id="terminology-validation",
                    name="Terminology Binding Check",
                    description="Validates that coded values use appropriate terminologies",
                    fhir_path="code.coding.system.exists() and code.coding.code.exists()",
                    severity=Severity.warning,
                    message="Coded values should use standard terminologies",
                ),
            ],
            priority=2,
        ),
        ValidationBot(
            id="format-bot",
            name="Format Validation Bot",
            description="Validates timestamp and reference formats",
            trigger_conditions=["status:preliminary"],
            validation_rules=[
                ValidationRule(
                    id="format-validation",
                    name="Format Check",
                    description="Validates date-time values and the subject reference",
                    fhir_path="subject.reference.matches('[A-Za-z]+/[A-Za-z0-9.-]+')",
                    severity=Severity.warning,
                    message="Values are not in the expected format",
                    auto_fix=True,
                    fix_action="normalize-references",
                ),
            ],
            priority=3,
        ),
    ]
    for bot in bots:
        if bot.id in disabled:
            bot.is_active = False
    return bots


def _has_category_code(report: dict, code: str) -> bool:
    for category in report.get("category") or []:
        if not isinstance(category, dict):
            continue
        for coding in category.get("coding") or []:
            if isinstance(coding, dict) and coding.get("code") == code:
                return True
    return False


def is_pathology_report(report: dict) -> bool:
    return _has_category_code(report, PATHOLOGY_CATEGORY_CODE)


def condition_matches(condition: str, report: dict) -> bool:
    if condition == "has-observations":
        return len(report.get("result") or []) > 0
    if condition == "category:pathology":
        return is_pathology_report(report)
    kind, _, value = condition.partition(":")
    if kind == "status" and value:
        return report.get("status") == value
    if kind == "category" and value:
        return _has_category_code(report, value)
    logger.debug("unknown trigger condition %s", condition)
    return False


def should_trigger(bot: ValidationBot, report: dict) -> bool:
    return any(condition_matches(condition, report) for condition in bot.trigger_conditions)


def summarize(results: list[ValidationResult]) -> dict[str, int]:
    unresolved = [row for row in results if not row.passed]
    return {
        "results": len(results),
        "errors": sum(1 for row in unresolved if row.severity == Severity.error),
        "warnings": sum(1 for row in unresolved if row.severity == Severity.warning),
        "auto_fixed": sum(1 for row in results if row.auto_fixed),
    }


class BotValidationEngine:
    def __init__(
        self,
        bots: list[ValidationBot] | None = None,
        registry: RuleRegistry | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.bots = default_bots() if bots is None else list(bots)
        self.registry = registry or RuleRegistry()
        self.audit_sink = audit_sink

    def triggered_bots(self, report: dict) -> list[ValidationBot]:
        selected = [bot for bot in self.bots if bot.is_active and should_trigger(bot, report)]
        # sorted() is stable, so equal priorities keep declaration order.
        return sorted(selected, key=lambda bot: bot.priority)

    def execute(self, report: dict) -> list[ValidationResult]:
        bots = self.triggered_bots(report)
        results: list[ValidationResult] = []
        for bot in bots:
            for rule in bot.validation_rules:
                result = self._evaluate(rule, report)
                if not result.passed and rule.auto_fix and rule.fix_action:
                    result = self._apply_fix(rule, report, result)
                results.append(result.model_copy(update={"bot_id": bot.id}))

        summary = summarize(results)
        emit_audit(
            self.audit_sink,
            "validate",
            "DiagnosticReport",
            str(report.get("id") or "unknown"),
            {
                "validation_type": "automatic",
                "bots_executed": len(bots),
                "results_count": summary["results"],
                "errors": summary["errors"],
                "warnings": summary["warnings"],
                "auto_fixed": summary["auto_fixed"],
            },
        )
        return results

    def _evaluate(self, rule: ValidationRule, report: dict) -> ValidationResult:
        evaluator = self.registry.evaluator_for(rule.id)
        try:
            return evaluator(rule, report)
        except Exception as exc:
            logger.warning("rule evaluation failed rule=%s error_type=%s error=%s", rule.id, type(exc).__name__, exc)
            return ValidationResult(
                rule_id=rule.id,
                passed=False,
                severity=Severity.error,
                message=f"Rule evaluation failed: {exc}",
                details={"error": str(exc), "error_type": type(exc).__name__},
            )

    def _apply_fix(self, rule: ValidationRule, report: dict, failed: ValidationResult) -> ValidationResult:
        fix = self.registry.fix_for(rule.fix_action)
        if fix is None:
            logger.debug("no fix registered for action=%s rule=%s", rule.fix_action, rule.id)
            return failed
        try:
            applied = fix(report)
        except Exception as exc:
            logger.warning("auto-fix failed rule=%s action=%s error=%s", rule.id, rule.fix_action, exc)
            return failed
        if not applied:
            return failed

        recheck = self._evaluate(rule, report)
        if not recheck.passed:
            return failed.model_copy(update={"details": {**failed.details, "fix_attempted": rule.fix_action}})
        return failed.model_copy(
            update={
                "passed": True,
                "auto_fixed": True,
                "message": f"{failed.message} (auto-fixed)",
                "details": {**failed.details, "fix_action": rule.fix_action},
            }
        )
