"""
Pytest configuration.

The settings are read when ``main`` is imported, so the environment is prepared here first:
a dummy Pexels key, no rate limiting and no background refresh timer.
"""
import os

os.environ.setdefault("PEXELS_API_KEY", "test-pexels-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_IMAGE_REFRESH_TIMER"] = "false"
os.environ.setdefault("ENVIRONMENT", "development")

import httpx
import pytest


class FakeUpstream:
    """MockTransport handler answering from a table keyed by URL path."""

    def __init__(self):
        self.handlers = {}
        self.requests = []

    def json(self, path, payload, status_code=200):
        self.handlers[path] = lambda request: httpx.Response(status_code, json=payload)

    def html(self, path, status_code=200):
        self.handlers[path] = lambda request: httpx.Response(
            status_code, text="<html>down for maintenance</html>", headers={"content-type": "text/html"}
        )

    def raw(self, path, content, status_code=200, content_type="application/octet-stream"):
        self.handlers[path] = lambda request: httpx.Response(
            status_code, content=content, headers={"content-type": content_type}
        )

    def fail(self, path):
        def _raise(request):
            raise httpx.ConnectError("connection refused", request=request)
        self.handlers[path] = _raise

    def on(self, path, handler):
        self.handlers[path] = handler

    def calls_to(self, path):
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request):
        self.requests.append(request)
        handler = self.handlers.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": f"no fake for {request.url.path}"})
        return handler(request)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def advance(self, seconds):
        self.now += seconds

    def __call__(self):
        return self.now


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def clock():
    return FakeClock()
