"""Backend response rewriting so resources resolve under the mount prefix.

Rewriting is applied in a fixed order:

1. Content-type normalization for ``.js``/``.css`` paths.
2. ``Location`` header rewriting for redirects.
3. Frame-restricting security headers for HTML.
4. In-body link rewriting for HTML and CSS.
"""

import re
from urllib.parse import urlsplit, urlunsplit

import httpx

from core.exceptions import UpstreamRewriteError
from core.models import MountContext

JAVASCRIPT_TYPE = "application/javascript"
CSS_TYPE = "text/css"
HTML_TYPE = "text/html"

FRAME_OPTIONS = "SAMEORIGIN"
CONTENT_SECURITY_POLICY = "frame-ancestors 'self'"

# Statuses that never carry a body
_BODYLESS_STATUSES = frozenset({204, 304})

# Opening of a src=/href= attribute value or a CSS url( reference
_LINK_TOKEN = re.compile(
    r"""(?<![\w-])(?:(?P<attr>src|href)\s*=\s*(?P<quote>["'])|url\(\s*(?P<css_quote>["']?))""",
    re.IGNORECASE,
)

# Characters that never occur inside a real attribute or url( value
_UNTERMINATED = re.compile(r"[<\r\n]")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def media_type(content_type: str) -> str:
    """Return the lowercased media type without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


def has_prefix(value: str, mount_prefix: str) -> bool:
    """Check whether a path already lives under the mount prefix."""
    if not value.startswith(mount_prefix):
        return False
    rest = value[len(mount_prefix):]
    return rest == "" or rest[0] in "/?#"


class LinkRewriter:
    """Prefix site-root-relative references in HTML and CSS.

    A single left-to-right scan over ``src=``, ``href=`` and ``url(`` values.
    Each value is visited once and only rewritten when it starts with a single
    ``/`` and is not already under the mount prefix, so applying the rewrite
    twice gives the same result as applying it once.
    """

    def rewrite(self, text: str, mount_prefix: str) -> str:
        parts: list[str] = []
        pos = 0
        cursor = 0
        while True:
            match = _LINK_TOKEN.search(text, cursor)
            if match is None:
                break

            start = match.end()
            if match.group("attr"):
                terminator = match.group("quote")
            else:
                terminator = match.group("css_quote") or ")"
            end = text.find(terminator, start)
            # A value running into markup or past the line is unterminated
            if end == -1 or _UNTERMINATED.search(text, start, end):
                cursor = start
                continue

            parts.append(text[pos:start])
            parts.append(self.rewrite_reference(text[start:end], mount_prefix))
            pos = cursor = end

        parts.append(text[pos:])
        return "".join(parts)

    @staticmethod
    def rewrite_reference(value: str, mount_prefix: str) -> str:
        """Prefix a single reference if it is site-root-relative."""
        if not value.startswith("/") or value.startswith("//"):
            return value
        if has_prefix(value, mount_prefix):
            return value
        return mount_prefix + value


class ResponseRewriter:
    """Rewrite backend response headers and bodies for the mount prefix."""

    def __init__(self, link_rewriter: LinkRewriter | None = None) -> None:
        self._links = link_rewriter or LinkRewriter()

    def rewrite_headers(
        self,
        headers: httpx.Headers,
        context: MountContext,
        *,
        forwarded_path: str,
        public_host: str,
        scheme: str,
    ) -> httpx.Headers:
        """Apply content-type, redirect and security header rules.

        Raises:
            UpstreamRewriteError: the Location header is malformed.
        """
        headers = httpx.Headers(headers)
        self.normalize_content_type(headers, forwarded_path)

        location = headers.get("location")
        if location:
            headers["location"] = self.rewrite_location(
                location, context, public_host=public_host, scheme=scheme
            )

        if media_type(headers.get("content-type", "")) == HTML_TYPE:
            headers["x-frame-options"] = FRAME_OPTIONS
            headers["content-security-policy"] = CONTENT_SECURITY_POLICY

        return headers

    @staticmethod
    def normalize_content_type(headers: httpx.Headers, forwarded_path: str) -> None:
        """Force a script/stylesheet type on .js/.css paths served without one."""
        path = forwarded_path.split("?", 1)[0]
        current = media_type(headers.get("content-type", ""))
        if path.endswith(".js"):
            if "javascript" not in current and "ecmascript" not in current:
                headers["content-type"] = JAVASCRIPT_TYPE
        elif path.endswith(".css"):
            if current != CSS_TYPE:
                headers["content-type"] = CSS_TYPE

    @staticmethod
    def rewrite_location(
        location: str,
        context: MountContext,
        *,
        public_host: str,
        scheme: str,
    ) -> str:
        """Point a redirect back through the gateway.

        Raises:
            UpstreamRewriteError: the location cannot be parsed.
        """
        if _CONTROL_CHARS.search(location):
            raise UpstreamRewriteError(
                f"malformed Location header: {location!r}", service=context.service_name
            )
        try:
            parts = urlsplit(location)
            parts.port  # validates the port component
        except ValueError as e:
            raise UpstreamRewriteError(
                f"malformed Location header: {location!r}: {e}", service=context.service_name
            ) from e

        prefix = context.mount_prefix
        if parts.netloc:
            path = parts.path if has_prefix(parts.path, prefix) else prefix + parts.path
            return urlunsplit((scheme, public_host, path, parts.query, parts.fragment))

        if location.startswith("/") and not has_prefix(location, prefix):
            return prefix + location
        # Path-relative redirects already resolve against the prefixed URL
        return location

    @staticmethod
    def should_rewrite_body(headers: httpx.Headers, method: str, status_code: int) -> bool:
        """Only HTML and CSS bodies carry links worth rewriting."""
        if method.upper() == "HEAD" or status_code in _BODYLESS_STATUSES or status_code < 200:
            return False
        return media_type(headers.get("content-type", "")) in (HTML_TYPE, CSS_TYPE)

    def rewrite_body(
        self,
        body: bytes,
        headers: httpx.Headers,
        context: MountContext,
        encoding: str | None = None,
    ) -> bytes:
        """Rewrite links in a decoded body and fix up the length headers.

        Bodies that cannot be decoded with their charset are passed through unchanged.
        """
        # The HTTP client has already undone any content-coding
        headers.pop("content-encoding", None)
        try:
            text = body.decode(encoding or "utf-8")
            rewritten = self._links.rewrite(text, context.mount_prefix).encode(encoding or "utf-8")
        except (UnicodeError, LookupError):
            rewritten = body

        headers["content-length"] = str(len(rewritten))
        return rewritten
