from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./runtime/test_report_validation.db")

import pytest

from report_validation.core.schemas import ActorContext
from report_validation.db import (
    AuditEvent,
    DiagnosticReportRecord,
    ValidationStep,
    ValidationWorkflow,
    db_session,
    init_db,
)
from report_validation.services.repository import save_report
from report_validation.services.workflow import ValidationWorkflowEngine


@pytest.fixture(autouse=True)
def clean_state():
    init_db()
    with db_session() as session:
        session.query(AuditEvent).delete()
        session.query(ValidationStep).delete()
        session.query(ValidationWorkflow).delete()
        session.query(DiagnosticReportRecord).delete()
    yield


def _make_report(report_id: str = "R1", observation_count: int = 2, **overrides) -> dict:
    report = {
        "resourceType": "DiagnosticReport",
        "id": report_id,
        "status": "preliminary",
        "code": {"coding": [{"system": "http://loinc.org", "code": "60567-5", "display": "Pathology report"}]},
        "subject": {"reference": "Patient/p-001"},
        "effectiveDateTime": "2024-03-01T09:30:00Z",
        "issued": "2024-03-01T12:00:00Z",
        "category": [{"coding": [{"system": "http://terminology.hl7.org/CodeSystem/v2-0074", "code": "LAB"}]}],
        "result": [{"reference": f"Observation/obs-{index}"} for index in range(observation_count)],
    }
    report.update(overrides)
    return report


@pytest.fixture
def make_report():
    return _make_report


@pytest.fixture
def session():
    with db_session() as session:
        yield session


@pytest.fixture
def store_report(session):
    def _store(report: dict) -> dict:
        save_report(session, report["id"], report)
        return report

    return _store


@pytest.fixture
def engine(session):
    return ValidationWorkflowEngine(session)


@pytest.fixture
def technician():
    return ActorContext(actor_id="tech-7", display_name="Terry Tech", roles=["lab-technician"])


@pytest.fixture
def pathologist():
    return ActorContext(
        actor_id="path-1",
        display_name="Dr. Pat Hollis",
        roles=["pathologist"],
        ip_address="10.0.0.12",
        user_agent="pytest",
    )
