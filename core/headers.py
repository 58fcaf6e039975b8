"""Header construction for backend requests and client responses."""

from typing import Iterable

# Hop-by-hop headers (RFC 7230 section 6.1) are never forwarded
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class HeaderBuilder:
    """Build headers for the backend request and the client response."""

    def build_upstream_headers(
        self,
        headers: Iterable[tuple[str, str]],
        *,
        public_host: str,
        scheme: str,
        mount_prefix: str,
    ) -> list[tuple[str, str]]:
        """Pass through end-to-end headers and attach forwarding metadata.

        Headers are (name, value) pairs so a repeated header keeps every value, in order.
        """
        upstream: list[tuple[str, str]] = []
        for key, value in headers:
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP_HEADERS or key_lower in ("host", "content-length"):
                continue
            if key_lower in ("x-forwarded-host", "x-forwarded-proto", "x-forwarded-prefix"):
                continue
            upstream.append((key, value))

        upstream.append(("X-Forwarded-Host", public_host))
        upstream.append(("X-Forwarded-Proto", scheme))
        upstream.append(("X-Forwarded-Prefix", mount_prefix))
        return upstream

    def build_client_headers(self, headers: Iterable[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
        """Drop hop-by-hop headers from raw backend response headers, keeping repeated ones."""
        client: list[tuple[bytes, bytes]] = []
        for key, value in headers:
            key_lower = key.lower()
            if key_lower.decode("latin-1") in HOP_BY_HOP_HEADERS:
                continue
            client.append((key_lower, value))
        return client
