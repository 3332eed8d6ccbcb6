from fastapi.testclient import TestClient

from report_validation.api.main import app


def test_api_token_header_auth_works():
    client = TestClient(app)
    res = client.get("/api/v1/workflows", headers={"X-API-Token": "dev-token"})
    assert res.status_code == 200


def test_bearer_auth_works():
    client = TestClient(app)
    res = client.get("/api/v1/workflows", headers={"Authorization": "Bearer dev-token"})
    assert res.status_code == 200


def test_missing_token_rejected():
    client = TestClient(app)
    res = client.get("/api/v1/workflows")
    assert res.status_code == 401
    assert res.json()["error"] == "invalid api token"


def test_health_is_public():
    client = TestClient(app)
    res = client.get("/health")
    assert res.status_code == 200


def test_signature_without_actor_headers_is_unauthenticated():
    client = TestClient(app)
    res = client.post(
        "/api/v1/reports/R1/signatures",
        json={"method": "password", "credentials": {"password": "s3cret"}},
        headers={"X-API-Token": "dev-token"},
    )
    assert res.status_code == 401
