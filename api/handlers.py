"""FastAPI route handlers."""

import asyncio
from collections.abc import Awaitable

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from core.exceptions import RegistryQueryFailed
from core.models import mount_prefix_for
from core.protocols import GatewayLogger

DISCONNECT_POLL_INTERVAL = 0.25  # seconds

# Non-standard status used by proxies when the client closed the request
CLIENT_CLOSED_REQUEST = 499


async def handle_services(request: Request, logger: GatewayLogger) -> Response:
    """Handle /api/services with the full registry snapshot."""
    gateway = request.app.state.gateway
    try:
        services = await gateway.list_services()
    except RegistryQueryFailed as e:
        logger.log_error("-", "list", 500, str(e))
        return JSONResponse({"error": "Error querying target registry"}, status_code=500)

    return JSONResponse([service.model_dump() for service in services])


async def handle_proxy(request: Request, service_name: str) -> Response:
    """Handle /service/{service_name}/... by proxying to the resolved backend."""
    body = await request.body()
    gateway = request.app.state.gateway

    return await _cancel_on_disconnect(
        request,
        gateway.proxy(
            service_name,
            method=request.method,
            raw_path=_inbound_path(request, service_name),
            query=request.url.query,
            # Starlette lists every raw header pair, repeats included
            headers=request.headers.items(),
            body=body,
            public_host=request.headers.get("host") or request.url.netloc,
            scheme=request.url.scheme,
        ),
    )


def _inbound_path(request: Request, service_name: str) -> str:
    """Prefer the undecoded path so the backend sees it verbatim."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
        if path.startswith(mount_prefix_for(service_name)):
            return path
    return request.url.path


async def _cancel_on_disconnect(request: Request, pipeline: Awaitable[Response]) -> Response:
    """Run the pipeline, aborting it if the client goes away first."""
    work = asyncio.ensure_future(pipeline)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not work.done():
            work.cancel()

    if work in done:
        return work.result()
    return Response(status_code=CLIENT_CLOSED_REQUEST)


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)
