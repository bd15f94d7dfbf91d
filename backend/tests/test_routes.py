"""Tests for the Flask scan endpoints."""

import pytest

from posturescan import create_app
from posturescan.scan.routes import MAX_API_ENDPOINTS
from posturescan.scanner.pipeline import QuotaDecision, ScanPipeline

from conftest import StaticStage


class RecordingStage(StaticStage):
    """Remembers the context it was run with."""

    def __init__(self, name):
        super().__init__(name)
        self.ctx = None

    async def execute(self, ctx):
        self.ctx = ctx
        return await super().execute(ctx)


@pytest.fixture
def stage():
    return RecordingStage("recorder")


@pytest.fixture
def app(stage):
    pipeline = ScanPipeline(stages=[stage], risk_analyzer=StaticStage("risk", modes=("attack_surface",)))
    return create_app({"TESTING": True, "SCAN_PIPELINE": pipeline})


@pytest.fixture
def client(app):
    return app.test_client()


class TestScanEndpoint:
    """POST /scan"""

    def test_scan(self, client, stage):
        resp = client.post("/scan", json={"target": "example.com", "config": {"deepScan": True}})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["target"] == "https://example.com/"
        assert data["mode"] == "website"
        assert data["score"] == 100
        assert data["findings"][0]["id"] == "recorder-check"
        assert stage.ctx.config.deep_scan is True

    def test_missing_target(self, client):
        resp = client.post("/scan", json={})
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "target is required"}

    def test_invalid_target(self, client, stage):
        resp = client.post("/scan", json={"target": "ftp://example.com"})
        assert resp.status_code == 400
        assert "scheme" in resp.get_json()["error"]
        assert stage.runs == 0

    def test_invalid_config(self, client):
        resp = client.post("/scan", json={"target": "example.com", "config": {"mode": "loud"}})
        assert resp.status_code == 400

    @pytest.mark.parametrize("timeout", ["Infinity", "-Infinity", "NaN", "1e400"])
    def test_non_finite_timeout_is_400(self, client, stage, timeout):
        resp = client.post(
            "/scan",
            data='{"target": "example.com", "config": {"timeoutMs": %s}}' % timeout,
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert "timeoutMs" in resp.get_json()["error"]
        assert stage.runs == 0

    @pytest.mark.parametrize("path", ["/scan", "/scan/api", "/scan/attack-surface"])
    @pytest.mark.parametrize("payload", [["x"], "example.com", 42])
    def test_body_must_be_an_object(self, client, stage, path, payload):
        resp = client.post(path, json=payload)
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "request body must be a JSON object"}
        assert stage.runs == 0

    def test_failing_stage_still_200(self, client, app):
        app.extensions["posturescan"]["pipeline"] = ScanPipeline(
            stages=[StaticStage("bad", explode=True)], risk_analyzer=StaticStage("risk", modes=()),
        )
        resp = client.post("/scan", json={"target": "example.com"})

        assert resp.status_code == 200
        finding = resp.get_json()["findings"][0]
        assert (finding["id"], finding["status"]) == ("bad-error", "error")

    def test_quota_denied(self, app, client, stage):
        app.config["SCAN_QUOTA_PROVIDER"] = lambda request: QuotaDecision(allowed=False, remaining=0)
        resp = client.post("/scan", json={"target": "example.com"})

        assert resp.status_code == 402
        assert resp.get_json() == {"error": "Scan quota exhausted", "remaining": 0}
        assert stage.runs == 0


class TestAPIEndpoint:
    """POST /scan/api"""

    def test_api_scan_forwards_request_details(self, client, stage):
        resp = client.post("/scan/api", json={
            "url": "https://api.example.com/v1/orders",
            "method": "put",
            "headers": {"X-Tenant": "acme"},
            "auth": {"type": "bearer", "value": "tok"},
            "body": '{"id": 1}',
            "config": {"mode": "website"},
        })

        assert resp.status_code == 200
        assert resp.get_json()["mode"] == "api"
        target = stage.ctx.target
        assert target.method == "PUT"
        assert target.request_headers() == {"X-Tenant": "acme", "Authorization": "Bearer tok"}
        assert target.body == '{"id": 1}'

    def test_missing_url(self, client):
        resp = client.post("/scan/api", json={"method": "GET"})
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "url is required"}

    def test_bad_auth(self, client):
        resp = client.post("/scan/api", json={"url": "https://api.example.com", "auth": {"type": "magic", "value": "x"}})
        assert resp.status_code == 400

    def test_non_ascii_header_is_400(self, client, stage):
        resp = client.post("/scan/api", json={"url": "https://api.example.com", "headers": {"X-Name": "café"}})
        assert resp.status_code == 400
        assert "X-Name" in resp.get_json()["error"]
        assert stage.runs == 0


class TestAPIBatchEndpoint:
    """POST /scan/api with an endpoints array or an OpenAPI document"""

    def test_endpoints_scanned_in_order(self, client, stage):
        seen = []
        original = stage.execute

        async def recording(ctx):
            seen.append((ctx.target.method, ctx.target.url, ctx.target.request_headers()))
            return await original(ctx)

        stage.execute = recording
        resp = client.post("/scan/api", json={
            "endpoints": [
                {"url": "https://api.example.com/v1/users/1"},
                {"url": "https://api.example.com/v1/orders", "method": "POST", "body": "{}",
                 "headers": {"X-Tenant": "beta"}, "auth": {"type": "api-key", "value": "k2"}},
            ],
            "headers": {"X-Tenant": "acme"},
            "auth": {"type": "bearer", "value": "tok"},
        })

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["endpoints"] == 2
        assert data["truncated"] is False
        assert [r["target"] for r in data["results"]] == [
            "https://api.example.com/v1/users/1",
            "https://api.example.com/v1/orders",
        ]
        assert all(r["mode"] == "api" for r in data["results"])
        assert seen == [
            ("GET", "https://api.example.com/v1/users/1", {"X-Tenant": "acme", "Authorization": "Bearer tok"}),
            ("POST", "https://api.example.com/v1/orders", {"X-Tenant": "beta", "x-api-key": "k2"}),
        ]

    def test_bad_endpoint_rejects_whole_batch(self, client, stage):
        resp = client.post("/scan/api", json={"endpoints": [
            {"url": "https://api.example.com/ok"},
            {"url": "ftp://api.example.com/nope"},
        ]})
        assert resp.status_code == 400
        assert resp.get_json()["error"].startswith("endpoints[1]:")
        assert stage.runs == 0

    @pytest.mark.parametrize("endpoints", [[], "https://api.example.com", ["https://api.example.com"]])
    def test_invalid_endpoints(self, client, stage, endpoints):
        resp = client.post("/scan/api", json={"endpoints": endpoints})
        assert resp.status_code == 400
        assert stage.runs == 0

    def test_too_many_endpoints(self, client, stage):
        endpoints = [{"url": f"https://api.example.com/r/{i}"} for i in range(MAX_API_ENDPOINTS + 1)]
        resp = client.post("/scan/api", json={"endpoints": endpoints})
        assert resp.status_code == 400
        assert stage.runs == 0

    def test_openapi_json_document(self, client, stage):
        resp = client.post("/scan/api", json={
            "openapi": {
                "openapi": "3.0.0",
                "servers": [{"url": "https://api.example.com/v1"}],
                "paths": {
                    "/users/{id}": {"get": {}, "delete": {}},
                    "/health": {"get": {}},
                },
            },
            "auth": {"type": "bearer", "value": "tok"},
        })

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["endpoints"] == 3
        assert [r["target"] for r in data["results"]] == [
            "https://api.example.com/v1/users/1",
            "https://api.example.com/v1/users/1",
            "https://api.example.com/v1/health",
        ]
        assert stage.runs == 3
        assert stage.ctx.target.auth.kind == "bearer"

    def test_openapi_yaml_document_with_base_url(self, client, stage):
        document = "\n".join([
            "openapi: 3.0.0",
            "servers:",
            "  - url: /api",
            "paths:",
            "  /orders:",
            "    post:",
            "      requestBody:",
            "        content:",
            "          application/json: {}",
        ])
        resp = client.post("/scan/api", json={"openapi": document, "baseUrl": "https://shop.example.com"})

        assert resp.status_code == 200
        assert [r["target"] for r in resp.get_json()["results"]] == ["https://shop.example.com/api/orders"]
        assert stage.ctx.target.method == "POST"
        assert stage.ctx.target.headers == {"Content-Type": "application/json"}

    def test_openapi_document_truncated(self, client, stage):
        paths = {f"/r{i}": {"get": {}} for i in range(MAX_API_ENDPOINTS + 5)}
        resp = client.post("/scan/api", json={"openapi": {"host": "api.example.com", "paths": paths}})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["truncated"] is True
        assert data["endpoints"] == MAX_API_ENDPOINTS

    def test_unparseable_openapi_document(self, client, stage):
        resp = client.post("/scan/api", json={"openapi": "paths: [unclosed"})
        assert resp.status_code == 400
        assert stage.runs == 0

    def test_quota_denied(self, app, client, stage):
        app.config["SCAN_QUOTA_PROVIDER"] = lambda request: QuotaDecision(allowed=False, remaining=3)
        resp = client.post("/scan/api", json={"endpoints": [{"url": "https://api.example.com"}]})

        assert resp.status_code == 402
        assert resp.get_json()["remaining"] == 3
        assert stage.runs == 0


class TestAttackSurfaceEndpoint:
    """POST /scan/attack-surface"""

    def test_domain_normalized(self, client, stage):
        resp = client.post("/scan/attack-surface", json={"domain": "https://Example.COM/some/path"})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["mode"] == "attack_surface"
        assert data["target"] == "https://example.com/"
        assert [f["id"] for f in data["findings"]] == ["recorder-check", "risk-check"]
        assert stage.ctx.target.path == "/"

    def test_ip_rejected(self, client):
        resp = client.post("/scan/attack-surface", json={"domain": "93.184.216.34"})
        assert resp.status_code == 400

    def test_missing_domain(self, client):
        resp = client.post("/scan/attack-surface", json={"domain": "  "})
        assert resp.status_code == 400


class TestAppFactory:
    """Health check and JSON error handlers."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "up and running"}

    def test_not_found_is_json(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Not found"

    def test_method_not_allowed_is_json(self, client):
        resp = client.get("/scan")
        assert resp.status_code == 405
        assert resp.get_json()["error"] == "Method not allowed"

    def test_cache_shared_per_app(self, app):
        assert app.extensions["posturescan"]["cache"].ttl == 300.0

    def test_secret_key_required_in_production(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://scan.example.com")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError):
            create_app()
