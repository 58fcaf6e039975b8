"""Inbound request transformation for backend forwarding."""

from typing import Iterable

from core.headers import HeaderBuilder
from core.models import MountContext, OutboundRequest


class RequestRewriter:
    """Rewrite an inbound gateway request into the request sent to the backend."""

    def __init__(self, header_builder: HeaderBuilder | None = None) -> None:
        self._headers = header_builder or HeaderBuilder()

    def rewrite(
        self,
        context: MountContext,
        *,
        method: str,
        raw_path: str,
        query: str,
        headers: Iterable[tuple[str, str]],
        body: bytes,
        public_host: str,
        scheme: str,
    ) -> OutboundRequest:
        """Strip the mount prefix, point at the backend and attach X-Forwarded-* headers."""
        path = self.strip_prefix(raw_path, context.mount_prefix)
        if query:
            path = f"{path}?{query}"

        base = context.target_base_url
        # Addresses derived from a scrape URL may carry a base path
        base_path = base.raw_path.decode("ascii").split("?", 1)[0].rstrip("/")
        upstream_headers = self._headers.build_upstream_headers(
            headers,
            public_host=public_host,
            scheme=scheme,
            mount_prefix=context.mount_prefix,
        )
        return OutboundRequest(
            method=method,
            url=f"{base.scheme}://{base.netloc.decode('ascii')}{base_path}{path}",
            headers=upstream_headers,
            body=body,
        )

    @staticmethod
    def strip_prefix(path: str, mount_prefix: str) -> str:
        """Remove the mount prefix from the front of the path; empty becomes '/'."""
        if path.startswith(mount_prefix):
            path = path[len(mount_prefix):]
        return path or "/"
