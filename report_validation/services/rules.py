from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable

from report_validation.core.errors import RuleEvaluationError
from report_validation.core.schemas import ValidationResult, ValidationRule
from report_validation.utils.time import now_utc

RuleEvaluator = Callable[[ValidationRule, dict], ValidationResult]
FixAction = Callable[[dict], bool]

REQUIRED_FIELDS: tuple[str, ...] = ("status", "code", "subject", "effectiveDateTime")

REFERENCE_PATTERN = re.compile(r"[A-Za-z]+/[A-Za-z0-9\-.]{1,64}")
# FHIR dateTime: YYYY, YYYY-MM, YYYY-MM-DD, or a full timestamp with optional fraction and offset.
DATETIME_PATTERN = re.compile(
    r"(?P<year>\d{4})(?:-(?P<month>\d{2})(?:-(?P<day>\d{2})"
    r"(?:T(?P<hour>\d{2}):(?P<minute>\d{2})(?::(?P<second>\d{2})(?:\.\d{1,9})?)?"
    r"(?P<offset>Z|[+-]\d{2}:\d{2})?)?)?)?"
)


def _is_present(value: Any) -> bool:
    return value not in (None, "", [], {})


def is_valid_datetime(value: Any) -> bool:
    """Checks `value` against the FHIR dateTime grammar, then the calendar."""
    if not isinstance(value, str):
        return False
    match = DATETIME_PATTERN.fullmatch(value)
    if match is None:
        return False
    parts = match.groupdict()
    try:
        datetime(
            int(parts["year"]),
            int(parts["month"] or 1),
            int(parts["day"] or 1),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
        )
    except ValueError:
        return False
    offset = parts["offset"]
    if offset and offset != "Z":
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        if hours > 14 or minutes > 59:
            return False
    return True


def is_valid_reference(value: Any) -> bool:
    return isinstance(value, str) and REFERENCE_PATTERN.fullmatch(value) is not None


def _codings(concept: Any) -> list[dict]:
    if not isinstance(concept, dict):
        return []
    return [coding for coding in concept.get("coding") or [] if isinstance(coding, dict)]


def evaluate_completeness(rule: ValidationRule, report: dict) -> ValidationResult:
    missing = [field for field in REQUIRED_FIELDS if not _is_present(report.get(field))]
    return ValidationResult(
        rule_id=rule.id,
        passed=not missing,
        severity=rule.severity,
        message=f"Missing required fields: {', '.join(missing)}" if missing else "All required fields present",
        details={"missing_fields": missing},
    )


def evaluate_issued_date(rule: ValidationRule, report: dict) -> ValidationResult:
    present = _is_present(report.get("issued"))
    return ValidationResult(
        rule_id=rule.id,
        passed=present,
        severity=rule.severity,
        message="Issued date present" if present else "Missing issued date",
        details={"issued": report.get("issued")},
    )


def evaluate_terminology(rule: ValidationRule, report: dict) -> ValidationResult:
    issues: list[str] = []

    for coding in _codings(report.get("code")):
        if not coding.get("system") or not coding.get("code"):
            issues.append("Report code missing system or code")

    conclusions = report.get("conclusionCode") or []
    if not isinstance(conclusions, list):
        raise RuleEvaluationError(f"conclusionCode must be a list, got {type(conclusions).__name__}")
    for conclusion in conclusions:
        for coding in _codings(conclusion):
            if not coding.get("system") or not coding.get("code"):
                issues.append("Conclusion code missing system or code")

    return ValidationResult(
        rule_id=rule.id,
        passed=not issues,
        severity=rule.severity,
        message=f"Terminology issues: {'; '.join(issues)}" if issues else "Terminology validation passed",
        details={"issues": issues},
    )


def evaluate_format(rule: ValidationRule, report: dict) -> ValidationResult:
    issues: list[str] = []

    effective = report.get("effectiveDateTime")
    if _is_present(effective) and not is_valid_datetime(effective):
        issues.append("Invalid effectiveDateTime format")

    issued = report.get("issued")
    if _is_present(issued) and not is_valid_datetime(issued):
        issues.append("Invalid issued date format")

    subject = report.get("subject") or {}
    reference = subject.get("reference") if isinstance(subject, dict) else None
    if _is_present(reference) and not is_valid_reference(reference):
        issues.append("Invalid subject reference format")

    return ValidationResult(
        rule_id=rule.id,
        passed=not issues,
        severity=rule.severity,
        message=f"Format issues: {'; '.join(issues)}" if issues else "Format validation passed",
        details={"issues": issues},
    )


def evaluate_not_implemented(rule: ValidationRule, report: dict) -> ValidationResult:
    return ValidationResult(
        rule_id=rule.id,
        passed=True,
        severity=rule.severity,
        message="Rule not implemented",
    )


def fix_missing_issued_date(report: dict) -> bool:
    if _is_present(report.get("issued")):
        return False
    report["issued"] = now_utc().isoformat()
    return True


def normalize_reference(reference: str) -> str:
    text = reference.strip()
    if "://" in text:
        text = text.split("://", 1)[1]
        text = text.split("/", 1)[1] if "/" in text else ""
    text = text.split("?", 1)[0].split("#", 1)[0].strip("/")
    parts = [part for part in text.split("/") if part]
    if len(parts) >= 2:
        # Drop any base path and history suffix, keeping `<Type>/<id>`.
        if len(parts) >= 4 and parts[-2] == "_history":
            parts = parts[:-2]
        return f"{parts[-2]}/{parts[-1]}"
    return text


def fix_normalize_references(report: dict) -> bool:
    subject = report.get("subject")
    if not isinstance(subject, dict):
        return False
    reference = subject.get("reference")
    if not isinstance(reference, str) or is_valid_reference(reference):
        return False
    normalized = normalize_reference(reference)
    if normalized == reference or not is_valid_reference(normalized):
        return False
    subject["reference"] = normalized
    return True


DEFAULT_EVALUATORS: dict[str, RuleEvaluator] = {
    "completeness-check": evaluate_completeness,
    "issued-date-check": evaluate_issued_date,
    "terminology-validation": evaluate_terminology,
    "format-validation": evaluate_format,
}

DEFAULT_FIX_ACTIONS: dict[str, FixAction] = {
    "add-missing-issued-date": fix_missing_issued_date,
    "normalize-references": fix_normalize_references,
}


class RuleRegistry:
    def __init__(
        self,
        evaluators: dict[str, RuleEvaluator] | None = None,
        fix_actions: dict[str, FixAction] | None = None,
    ) -> None:
        self._evaluators = dict(DEFAULT_EVALUATORS if evaluators is None else evaluators)
        self._fix_actions = dict(DEFAULT_FIX_ACTIONS if fix_actions is None else fix_actions)

    def register(self, rule_id: str, evaluator: RuleEvaluator) -> None:
        self._evaluators[rule_id] = evaluator

    def register_fix(self, fix_action: str, fix: FixAction) -> None:
        self._fix_actions[fix_action] = fix

    def evaluator_for(self, rule_id: str) -> RuleEvaluator:
        return self._evaluators.get(rule_id, evaluate_not_implemented)

    def fix_for(self, fix_action: str | None) -> FixAction | None:
        if not fix_action:
            return None
        return self._fix_actions.get(fix_action)

    def rule_ids(self) -> list[str]:
        return sorted(self._evaluators)
