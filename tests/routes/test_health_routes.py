def test_health_reports_components(client):
    res = client.get("/api/v1/health")

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "healthy"
    assert body["database"] == "ok"
    assert body["cache"]["circuit_breaker"]["state"] == "closed"
    assert body["orchestrator"]["queue_length"] == 0
    assert body["orchestrator"]["max_concurrency"] == 4


def test_health_counts_orchestrated_requests(client):
    client.get("/api/v1/content/home")
    client.get("/api/v1/content/home")

    body = client.get("/api/v1/health").json()

    assert body["orchestrator"]["total_requests"] == 2
    assert body["orchestrator"]["successful_requests"] == 2


def test_health_degrades_when_database_is_down(client, monkeypatch):
    monkeypatch.setattr("driveschool.routes.health.check_db", lambda bind=None: False)

    res = client.get("/api/v1/health")

    assert res.status_code == 503
    assert res.json()["status"] == "degraded"


def test_metrics_exposition(client):
    client.get("/api/v1/content/home")

    res = client.get("/api/v1/metrics")

    assert res.status_code == 200
    assert "driveschool_orchestrated_requests_total" in res.text
