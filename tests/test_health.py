"""Health endpoint tests."""


class TestHealth:
    def test_liveness(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_readiness(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "ok"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["storage"]["status"] == "ok"
        assert body["checks"]["app"]["testing"] is True

    def test_security_headers(self, client):
        res = client.get("/api/v1/health")
        assert res.headers.get("X-Content-Type-Options") == "nosniff"

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers
