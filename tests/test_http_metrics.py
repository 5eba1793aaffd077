import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from coach_api.main import app
from coach_api.middleware.metrics import HttpMetricsMiddleware
from coach_api.middleware.request_id import RequestIdMiddleware


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def _requests(method: str, path: str, status_class: str) -> float:
    return _sample("teachercoach_http_requests_total", method=method, path=path, status_class=status_class)


@pytest.mark.parametrize("method, path, body, status, status_class", [
    ("GET", "/health", None, 200, "2xx"),
    ("GET", "/", None, 200, "2xx"),
    ("GET", "/nope", None, 404, "4xx"),
    ("POST", "/analyze/video", {}, 401, "4xx"),
    ("POST", "/auth/refresh", {}, 400, "4xx"),
])
def test_requests_are_counted_by_status_class(method, path, body, status, status_class):
    client = TestClient(app)
    before = _requests(method, path, status_class)
    before_duration = _sample("teachercoach_http_request_duration_seconds_count", method=method, path=path)

    r = client.request(method, path, json=body)

    assert r.status_code == status
    assert _requests(method, path, status_class) >= before + 1
    assert _sample("teachercoach_http_request_duration_seconds_count", method=method, path=path) >= before_duration + 1


def test_metrics_endpoint_serves_exposition_format():
    client = TestClient(app)
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert 'teachercoach_http_requests_total{method="GET",path="/health",status_class="2xx"}' in r.text


def test_request_id_is_echoed_or_generated():
    client = TestClient(app)
    echoed = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert echoed.json()["name"] == "Teacher Coach API"
    assert echoed.headers["X-Request-Id"] == "abc-123"

    first = client.get("/health").headers.get("X-Request-Id")
    second = client.get("/health").headers.get("X-Request-Id")
    assert first and second and first != second


async def _exploding_app(scope, receive, send):
    raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_unhandled_error_counts_as_5xx_and_keeps_request_id():
    wrapped = HttpMetricsMiddleware(RequestIdMiddleware(_exploding_app))
    scope = {"type": "http", "method": "GET", "path": "/explode", "headers": []}
    before = _requests("GET", "/explode", "5xx")

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        raise AssertionError("no response expected")

    with pytest.raises(RuntimeError):
        await wrapped(scope, receive, send)
    assert _requests("GET", "/explode", "5xx") == before + 1
    # The request id lands in the shared request state
    assert scope["state"]["request_id"]
