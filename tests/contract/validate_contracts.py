from __future__ import annotations

from fastapi.testclient import TestClient

from report_validation.api.main import app

TOKEN = {"X-API-Token": "dev-token"}
TECHNICIAN = {**TOKEN, "X-Actor-Id": "tech-7", "X-Actor-Name": "Terry Tech", "X-Actor-Roles": "lab-technician"}
PATHOLOGIST = {**TOKEN, "X-Actor-Id": "path-1", "X-Actor-Name": "Dr. Pat Hollis", "X-Actor-Roles": "pathologist"}


def _pathology_report(report_id: str) -> dict:
    return {
        "resourceType": "DiagnosticReport",
        "id": report_id,
        "status": "preliminary",
        "code": {"coding": [{"system": "http://loinc.org", "code": "60567-5"}]},
        "subject": {"reference": "Patient/p-001"},
        "effectiveDateTime": "2024-03-01T09:30:00Z",
        "category": [{"coding": [{"system": "http://terminology.hl7.org/CodeSystem/v2-0074", "code": "PAT"}]}],
        "result": [{"reference": f"Observation/obs-{index}"} for index in range(12)],
    }


def _assign_and_complete(client: TestClient, workflow_id: str, step_id: str, headers: dict, **body) -> dict:
    assign_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/{step_id}/assign",
        json={"assignee_id": headers["X-Actor-Id"]},
        headers=headers,
    )
    assert assign_res.status_code == 200
    complete_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/{step_id}/complete",
        json={"outcome": "completed", **body},
        headers=headers,
    )
    assert complete_res.status_code == 200
    return complete_res.json()


def test_required_contract_paths_present():
    schema = app.openapi()
    paths = schema["paths"]
    expected_paths = {
        "/health",
        "/health/ready",
        "/api/v1/workflows",
        "/api/v1/workflows/{workflow_id}",
        "/api/v1/workflows/by-report/{report_id}",
        "/api/v1/workflows/{workflow_id}/steps/{step_id}/assign",
        "/api/v1/workflows/{workflow_id}/steps/{step_id}/complete",
        "/api/v1/workflows/{workflow_id}/auto-validation",
        "/api/v1/workflows/{workflow_id}/cancel",
        "/api/v1/workflows/{workflow_id}/audit",
        "/api/v1/reports/pending",
        "/api/v1/reports/{report_id}",
        "/api/v1/reports/{report_id}/validation",
        "/api/v1/reports/{report_id}/signatures",
        "/api/v1/reports/{report_id}/audit",
        "/api/v1/bots",
    }
    assert expected_paths.issubset(set(paths.keys()))


def test_readiness_reports_database():
    client = TestClient(app)
    res = client.get("/health/ready")
    assert res.status_code == 200
    payload = res.json()
    assert payload["status"] == "ok"
    assert [dep["name"] for dep in payload["dependencies"]] == ["database"]


def test_bot_catalogue_contract():
    client = TestClient(app)
    res = client.get("/api/v1/bots", headers=TOKEN)
    assert res.status_code == 200
    items = res.json()["items"]
    assert [bot["id"] for bot in items] == ["completeness-bot", "terminology-bot", "format-bot"]
    assert all(bot["validation_rules"] for bot in items)


def test_workflow_end_to_end_contract():
    client = TestClient(app)

    store_res = client.put("/api/v1/reports/R1", json=_pathology_report("R1"), headers=TOKEN)
    assert store_res.status_code == 200
    assert store_res.json()["status"] == "preliminary"

    pending = client.get("/api/v1/reports/pending", headers=TOKEN).json()["items"]
    assert [row["report_id"] for row in pending] == ["R1"]

    create_res = client.post("/api/v1/workflows", json={"report_id": "R1", "priority": "urgent"}, headers=PATHOLOGIST)
    assert create_res.status_code == 201
    created = create_res.json()
    workflow_id = created["workflow_id"]
    assert created["status"] == "pending"
    assert created["current_step"] == "auto-validation"
    assert [step["id"] for step in created["steps"]] == [
        "auto-validation",
        "technical-review",
        "pathologist-review",
        "digital-signoff",
    ]

    duplicate_res = client.post("/api/v1/workflows", json={"report_id": "R1"}, headers=PATHOLOGIST)
    assert duplicate_res.status_code == 409

    replace_res = client.put("/api/v1/reports/R1", json=_pathology_report("R1"), headers=TOKEN)
    assert replace_res.status_code == 409

    auto_res = client.post(f"/api/v1/workflows/{workflow_id}/auto-validation", headers=TOKEN)
    assert auto_res.status_code == 200
    auto = auto_res.json()
    assert auto["auto_fixed_count"] == 1
    assert auto["error_count"] == 0

    detail = client.get(f"/api/v1/workflows/{workflow_id}", headers=TOKEN).json()
    assert detail["status"] == "in-progress"
    assert detail["current_step"] == "technical-review"
    assert detail["steps"][0]["status"] == "completed"
    assert len(detail["steps"][0]["results"]) == len(auto["results"])

    out_of_order_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/digital-signoff/assign",
        json={"assignee_id": "path-1"},
        headers=PATHOLOGIST,
    )
    assert out_of_order_res.status_code == 409

    _assign_and_complete(client, workflow_id, "technical-review", TECHNICIAN, notes="QC passed")

    client.post(
        f"/api/v1/workflows/{workflow_id}/steps/pathologist-review/assign",
        json={"assignee_id": "tech-7"},
        headers=TECHNICIAN,
    )
    forbidden_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/pathologist-review/complete",
        json={"outcome": "completed"},
        headers=TECHNICIAN,
    )
    assert forbidden_res.status_code == 403

    _assign_and_complete(client, workflow_id, "pathologist-review", PATHOLOGIST, notes="Findings consistent")

    unsupported_res = client.post(
        "/api/v1/reports/R1/signatures",
        json={"method": "retina-scan", "credentials": {}},
        headers=PATHOLOGIST,
    )
    assert unsupported_res.status_code == 400

    empty_password_res = client.post(
        "/api/v1/reports/R1/signatures",
        json={"method": "password", "credentials": {"password": ""}},
        headers=PATHOLOGIST,
    )
    assert empty_password_res.status_code == 401

    signature_res = client.post(
        "/api/v1/reports/R1/signatures",
        json={"method": "password", "credentials": {"password": "s3cret"}},
        headers=PATHOLOGIST,
    )
    assert signature_res.status_code == 201
    signature = signature_res.json()
    assert signature["signer_id"] == "path-1"
    assert "credentials" not in signature

    final = _assign_and_complete(client, workflow_id, "digital-signoff", PATHOLOGIST, signature=signature)
    assert final["status"] == "completed"
    assert final["current_step"] is None
    assert final["steps"][-1]["digital_signature"]["signature_hash"] == signature["signature_hash"]

    again_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/digital-signoff/complete",
        json={"outcome": "completed"},
        headers=PATHOLOGIST,
    )
    assert again_res.status_code == 409

    assert client.get("/api/v1/reports/pending", headers=TOKEN).json()["items"] == []
    by_report = client.get("/api/v1/workflows/by-report/R1", headers=TOKEN).json()
    assert by_report["workflow_id"] == workflow_id

    workflow_audit = client.get(f"/api/v1/workflows/{workflow_id}/audit", headers=TOKEN).json()
    assert workflow_audit[0]["action"] == "create"
    assert workflow_audit[-1]["action"] == "complete-step"

    report_actions = {event["action"] for event in client.get("/api/v1/reports/R1/audit", headers=TOKEN).json()}
    assert {"validate", "digital-signature", "finalize"}.issubset(report_actions)
    for event in client.get("/api/v1/reports/R1/audit", headers=TOKEN).json():
        assert "s3cret" not in str(event["details"])


def test_cancel_and_missing_resources_contract():
    client = TestClient(app)
    client.put("/api/v1/reports/R2", json=_pathology_report("R2"), headers=TOKEN)
    workflow_id = client.post("/api/v1/workflows", json={"report_id": "R2"}, headers=TOKEN).json()["workflow_id"]

    cancel_res = client.post(f"/api/v1/workflows/{workflow_id}/cancel", json={"reason": "duplicate order"}, headers=TOKEN)
    assert cancel_res.status_code == 200
    assert cancel_res.json()["status"] == "cancelled"

    listed = client.get("/api/v1/workflows", params={"status": "cancelled"}, headers=TOKEN).json()["items"]
    assert [row["workflow_id"] for row in listed] == [workflow_id]

    assert client.get("/api/v1/workflows/validation-missing", headers=TOKEN).status_code == 404
    assert client.post("/api/v1/workflows", json={"report_id": "missing"}, headers=TOKEN).status_code == 404
    missing_step_res = client.post(
        f"/api/v1/workflows/{workflow_id}/steps/peer-review/assign",
        json={"assignee_id": "path-1"},
        headers=PATHOLOGIST,
    )
    assert missing_step_res.status_code == 404
