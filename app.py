"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from api.handlers import handle_proxy, handle_services
from core.config import Config
from core.protocols import GatewayLogger
from services.gateway import Gateway
from services.registry import ServiceResolver, create_registry_client
from services.upstream import UpstreamClient

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    config: Config,
    logger: GatewayLogger,
    *,
    registry_transport: httpx.AsyncBaseTransport | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The transports are only overridden in tests.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = create_registry_client(config.registry, transport=registry_transport)
        limits = httpx.Limits(
            max_connections=config.upstream.max_connections,
            max_keepalive_connections=config.upstream.max_keepalive_connections,
        )
        backend_client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.upstream.timeout, connect=config.upstream.connect_timeout),
            limits=limits,
            follow_redirects=False,
            transport=upstream_transport,
        )
        upstream = UpstreamClient(backend_client)
        app.state.gateway = Gateway(
            resolver=ServiceResolver(registry, config.registry, logger),
            upstream=upstream,
            logger=logger,
        )
        try:
            yield
        finally:
            await registry.aclose()
            await upstream.aclose()

    app = FastAPI(title="Service Gateway", version="0.1.0", lifespan=lifespan)

    @app.get("/api/services")
    async def list_services(request: Request):
        return await handle_services(request, logger)

    @app.api_route("/service/{service_name}", methods=PROXY_METHODS)
    async def proxy_service_root(request: Request, service_name: str):
        return await handle_proxy(request, service_name)

    @app.api_route("/service/{service_name}/{rest:path}", methods=PROXY_METHODS)
    async def proxy_service(request: Request, service_name: str, rest: str):
        return await handle_proxy(request, service_name)

    return app
