"""Smoke tests for application wiring.

These validate that the app imports cleanly, the startup hook runs against the
test database and the request middleware tags responses.
"""


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "api"}


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers["X-Request-ID"]


def test_startup_warms_config_cache(client):
    status = client.get("/api/v1/config/status").json()
    assert status["ok"] is True
    assert status["cache"]["initialized"] is True
    assert status["cache"]["dan_configs"] > 0
