def test_health_check(api_client):
    resp = api_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "bizagent"


def test_health_ready(api_client):
    resp = api_client.get("/health/ready")
    assert resp.status_code == 200
    data = resp.json()
    assert data["database"] is True
    assert data["ready"] is True
    # redis is disabled in tests
    assert data["redis"] == "not_configured"


def test_health_info(api_client):
    resp = api_client.get("/health/info")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "bizagent"
    assert "configuration" in data
    assert "features" in data
    assert data["features"]["heuristic_replies"] is False


def test_metrics_endpoint(api_client):
    api_client.get("/health")
    resp = api_client.get("/metrics")
    assert resp.status_code == 200
    assert "api_requests_total" in resp.text
