"""Gateway orchestration: resolve, admit, forward, rewrite."""

from typing import Iterable

from fastapi import Response
from fastapi.responses import JSONResponse

from core.exceptions import ServiceNotFound, UpstreamError
from core.models import MountContext, ServiceStatus
from core.protocols import GatewayLogger
from core.rewrite import ResponseRewriter
from core.router import MountRouter
from core.transform import RequestRewriter
from services.registry import ServiceResolver
from services.upstream import UpstreamClient

NOT_FOUND_MESSAGE = "Service not found or not running"


class Gateway:
    """Run one request through the resolve -> forward -> rewrite pipeline."""

    def __init__(
        self,
        resolver: ServiceResolver,
        upstream: UpstreamClient,
        logger: GatewayLogger,
        router: MountRouter | None = None,
        request_rewriter: RequestRewriter | None = None,
        response_rewriter: ResponseRewriter | None = None,
    ) -> None:
        self._resolver = resolver
        self._upstream = upstream
        self._logger = logger
        self._router = router or MountRouter(resolver)
        self._requests = request_rewriter or RequestRewriter()
        self._responses = response_rewriter or ResponseRewriter()

    async def list_services(self) -> list[ServiceStatus]:
        """Return the current registry snapshot."""
        return await self._resolver.list_services()

    async def proxy(
        self,
        service_name: str,
        *,
        method: str,
        raw_path: str,
        query: str,
        headers: Iterable[tuple[str, str]],
        body: bytes,
        public_host: str,
        scheme: str,
    ) -> Response:
        """Proxy a request mounted under /service/{service_name}."""
        try:
            context = await self._router.admit(service_name)
        except ServiceNotFound:
            self._logger.log_rejected(service_name, method, raw_path)
            return _error_response(404, NOT_FOUND_MESSAGE)

        outbound = self._requests.rewrite(
            context,
            method=method,
            raw_path=raw_path,
            query=query,
            headers=headers,
            body=body,
            public_host=public_host,
            scheme=scheme,
        )
        forwarded_path = self._requests.strip_prefix(raw_path, context.mount_prefix)
        target = str(context.target_base_url)

        try:
            upstream = await self._upstream.send(outbound, service_name)
        except UpstreamError as e:
            return self._fail(context, e, target)

        try:
            rewritten_headers = self._responses.rewrite_headers(
                upstream.headers,
                context,
                forwarded_path=forwarded_path,
                public_host=public_host,
                scheme=scheme,
            )
            if self._responses.should_rewrite_body(rewritten_headers, method, upstream.status_code):
                raw_body = await self._upstream.read(upstream, service_name)
                content = self._responses.rewrite_body(
                    raw_body,
                    rewritten_headers,
                    context,
                    encoding=upstream.charset_encoding,
                )
                response = self._upstream.buffered_response(
                    content, upstream.status_code, rewritten_headers
                )
            else:
                response = self._upstream.streaming_response(upstream, rewritten_headers)
        except UpstreamError as e:
            await self._upstream.discard(upstream)
            return self._fail(context, e, target)

        self._logger.log_proxy(
            service_name,
            method,
            forwarded_path,
            upstream.status_code,
            target=target,
            headers=dict(outbound.headers),
        )
        return response

    def _fail(self, context: MountContext, error: UpstreamError, target: str) -> Response:
        """Log the failure with its context and answer without internal details."""
        status = error.status_code
        self._logger.log_error(
            context.service_name,
            error.stage or "forward",
            status,
            f"{error} (target={target})",
        )
        message = "Gateway timeout" if status == 504 else "Bad gateway"
        return _error_response(status, message)


def _error_response(status_code: int, message: str) -> Response:
    return JSONResponse({"error": message}, status_code=status_code)
