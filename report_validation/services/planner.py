from __future__ import annotations

from datetime import datetime, timedelta

from report_validation.config import settings
from report_validation.core.enums import ValidationType
from report_validation.core.schemas import PlannedStep
from report_validation.services.bots import is_pathology_report

AUTO_VALIDATION = "auto-validation"
TECHNICAL_REVIEW = "technical-review"
PATHOLOGIST_REVIEW = "pathologist-review"
DIGITAL_SIGNOFF = "digital-signoff"


def requires_technical_review(report: dict) -> bool:
    indicators = (
        len(report.get("result") or []) > settings.technical_review_result_threshold,
        is_pathology_report(report),
        len(report.get("conclusionCode") or []) > settings.technical_review_conclusion_threshold,
    )
    return any(indicators)


def plan_steps(report: dict) -> list[PlannedStep]:
    steps = [
        PlannedStep(
            id=AUTO_VALIDATION,
            name="Automatic Validation",
            description="Automated validation using bots and rules",
            order=1,
            required_role=["system"],
            validation_type=ValidationType.automatic,
            validation_rules=["completeness", "terminology", "format"],
        )
    ]

    if requires_technical_review(report):
        steps.append(
            PlannedStep(
                id=TECHNICAL_REVIEW,
                name="Technical Review",
                description="Technical validation by lab technician",
                order=2,
                required_role=["lab-technician", "lab-manager"],
                validation_type=ValidationType.manual,
                validation_rules=["technical-accuracy", "data-integrity"],
            )
        )

    steps.append(
        PlannedStep(
            id=PATHOLOGIST_REVIEW,
            name="Pathologist Review",
            description="Final review and approval by pathologist",
            order=len(steps) + 1,
            required_role=["pathologist"],
            validation_type=ValidationType.manual,
            validation_rules=["clinical-accuracy", "diagnostic-consistency"],
        )
    )
    steps.append(
        PlannedStep(
            id=DIGITAL_SIGNOFF,
            name="Digital Sign-off",
            description="Digital signature and final approval",
            order=len(steps) + 1,
            required_role=["pathologist"],
            validation_type=ValidationType.manual,
            validation_rules=["signature-validation"],
        )
    )
    return steps


def due_date(priority: str, created_at: datetime) -> datetime:
    return created_at + timedelta(hours=settings.due_hours(priority))
