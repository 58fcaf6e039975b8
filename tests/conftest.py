import json

import httpx
import pytest

from core.config import Config


class RecordingLogger:
    """GatewayLogger that keeps every call for assertions."""

    def __init__(self):
        self.proxied = []
        self.rejected = []
        self.errors = []

    def log_proxy(self, service, method, path, status, *, target, headers=None):
        self.proxied.append(
            {
                "service": service,
                "method": method,
                "path": path,
                "status": status,
                "target": target,
                "headers": headers,
            }
        )

    def log_rejected(self, service, method, path):
        self.rejected.append((service, method, path))

    def log_error(self, service, stage, status, message):
        self.errors.append((service, stage, status, message))


class BodyStream(httpx.AsyncByteStream):
    """Response body that stays unread until the gateway consumes it.

    A real transport hands back an unread stream; ``httpx.Response(content=...)``
    is read on construction, so it cannot be passed through ``aiter_raw()``.
    """

    def __init__(self, source: httpx.AsyncByteStream):
        self._source = source

    async def __aiter__(self):
        async for chunk in self._source:
            yield chunk


def unread(response: httpx.Response) -> httpx.Response:
    """Copy a canned response onto an unread stream of its raw (still encoded) bytes."""
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=BodyStream(response.stream),
    )


@pytest.fixture
def unread_response():
    return unread


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def make_target():
    """Build one activeTargets entry as Prometheus reports it."""

    def _make(job, health="up", address=None, scrape_url=None, scheme="http"):
        address = address if address is not None else "10.0.0.5:8080"
        discovered = {"job": job, "__scheme__": scheme, "__metrics_path__": "/metrics"}
        if address:
            discovered["__address__"] = address
        return {
            "discoveredLabels": discovered,
            "labels": {"instance": address, "job": job},
            "scrapePool": job,
            "scrapeUrl": scrape_url if scrape_url is not None else f"{scheme}://{address}/metrics",
            "lastError": "",
            "health": health,
        }

    return _make


@pytest.fixture
def registry_transport():
    """MockTransport serving /api/v1/targets with the given active targets."""

    def _transport(*targets):
        payload = {
            "status": "success",
            "data": {"activeTargets": list(targets), "droppedTargets": []},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/targets"
            return httpx.Response(
                200,
                content=json.dumps(payload).encode(),
                headers={"content-type": "application/json"},
            )

        return httpx.MockTransport(handler)

    return _transport


@pytest.fixture
def failing_transport():
    """MockTransport whose every request fails to connect."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)
