"""HTTP proxying utilities for backend requests."""

import httpx
from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from core.exceptions import UpstreamConnectionError, UpstreamRewriteError, UpstreamTimeoutError
from core.headers import HeaderBuilder
from core.models import OutboundRequest


class UpstreamClient:
    """Send rewritten requests to backend services with streaming support."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        header_builder: HeaderBuilder | None = None,
    ) -> None:
        self._client = client
        self._headers = header_builder or HeaderBuilder()

    async def send(self, outbound: OutboundRequest, service: str) -> httpx.Response:
        """Send the request and return the response with its body still unread.

        Raises:
            UpstreamTimeoutError: the backend did not answer in time.
            UpstreamConnectionError: the backend could not be reached.
            UpstreamRewriteError: the backend redirected to an unparseable Location.
        """
        request = self._client.build_request(
            outbound.method,
            outbound.url,
            headers=outbound.headers,
            content=outbound.body or None,
        )
        try:
            return await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Upstream timeout", service=service) from e
        except httpx.RemoteProtocolError as e:
            # httpx parses Location even with redirects off, and closes the response on failure
            if _is_invalid_location(e):
                raise UpstreamRewriteError(f"Malformed Location header: {e}", service=service) from e
            raise UpstreamConnectionError(f"Upstream connection error: {e}", service=service) from e
        except httpx.RequestError as e:
            raise UpstreamConnectionError(f"Upstream connection error: {e}", service=service) from e

    async def read(self, response: httpx.Response, service: str) -> bytes:
        """Read the full (decoded) body of a streamed response.

        Raises:
            UpstreamRewriteError: the body could not be read.
        """
        try:
            return await response.aread()
        except httpx.HTTPError as e:
            raise UpstreamRewriteError(f"Failed to read upstream body: {e}", service=service) from e
        finally:
            await response.aclose()

    def buffered_response(
        self,
        body: bytes,
        status_code: int,
        headers: httpx.Headers,
    ) -> Response:
        """Build a client response from an already rewritten body."""
        response = Response(content=body, status_code=status_code)
        response.raw_headers = self._headers.build_client_headers(headers.raw)
        return response

    def streaming_response(
        self,
        upstream: httpx.Response,
        headers: httpx.Headers,
    ) -> StreamingResponse:
        """Stream the untouched backend body to the client."""
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(self._cleanup_streaming, upstream),
        )
        response.raw_headers = self._headers.build_client_headers(headers.raw)
        return response

    async def discard(self, response: httpx.Response) -> None:
        """Close a response that will not be forwarded."""
        await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _cleanup_streaming(self, response: httpx.Response) -> None:
        """Clean up streaming resources."""
        await response.aclose()


def _is_invalid_location(error: httpx.RemoteProtocolError) -> bool:
    return str(error).startswith("Invalid URL in location header")
