def test_health_endpoints(client):
    live = client.get("/api/health/live")
    assert live.status_code == 200
    assert live.json()["status"] == "ok"

    ready = client.get("/api/health/ready")
    assert ready.status_code in {200, 503}
    payload = ready.json()
    assert "database" in payload
    assert "smtp" in payload
    assert payload["voice"] == {"configured": False}
    assert payload["scheduler"]["broker"] == "memory://"


def test_security_headers_are_attached(client):
    response = client.get("/api/health")

    assert response.json() == {"status": "ok"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
