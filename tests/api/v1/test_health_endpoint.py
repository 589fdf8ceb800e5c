from datetime import datetime


def test_health_check(api_client):
    response = api_client.get("/api/v1/health-check")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None


def test_health_check_head(api_client):
    response = api_client.head("/api/v1/health-check")

    assert response.status_code == 200


def test_responses_carry_request_id(api_client):
    response = api_client.get(
        "/api/v1/health-check", headers={"X-Request-Id": "req-123"}
    )

    assert response.headers["X-Request-Id"] == "req-123"
