"""Tests for request-boundary helpers in the route handlers."""

import asyncio

import pytest
from fastapi import Response

from api import handlers


class FakeRequest:
    def __init__(self, disconnect_after=None, scope=None, path="/"):
        self._checks = 0
        self._disconnect_after = disconnect_after
        self.scope = scope or {}
        self.url = type("URL", (), {"path": path})()

    async def is_disconnected(self):
        self._checks += 1
        return self._disconnect_after is not None and self._checks > self._disconnect_after


class TestCancelOnDisconnect:
    @pytest.mark.asyncio
    async def test_pipeline_result_is_returned(self):
        async def pipeline():
            return Response(content=b"ok")

        response = await handlers._cancel_on_disconnect(FakeRequest(), pipeline())

        assert response.body == b"ok"

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pipeline(self, monkeypatch):
        monkeypatch.setattr(handlers, "DISCONNECT_POLL_INTERVAL", 0.01)
        cancelled = asyncio.Event()

        async def pipeline():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return Response(content=b"late")

        response = await handlers._cancel_on_disconnect(FakeRequest(disconnect_after=1), pipeline())
        await asyncio.wait_for(cancelled.wait(), timeout=1)

        assert response.status_code == handlers.CLIENT_CLOSED_REQUEST


class TestInboundPath:
    def test_raw_path_is_preferred(self):
        request = FakeRequest(scope={"raw_path": b"/service/web/a%2Fb"}, path="/service/web/a/b")

        assert handlers._inbound_path(request, "web") == "/service/web/a%2Fb"

    def test_decoded_path_when_service_name_is_encoded(self):
        request = FakeRequest(scope={"raw_path": b"/service/my%20app/x"}, path="/service/my app/x")

        assert handlers._inbound_path(request, "my app") == "/service/my app/x"

    def test_decoded_path_without_raw_path(self):
        request = FakeRequest(path="/service/web/x")

        assert handlers._inbound_path(request, "web") == "/service/web/x"
