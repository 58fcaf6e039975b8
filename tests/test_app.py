"""End-to-end tests through the FastAPI application."""

import gzip

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app


class Backend:
    """Simulated backend service answering canned responses by path."""

    def __init__(self, unread_response):
        self.requests: list[httpx.Request] = []
        self.routes = {}
        self._unread = unread_response

    def route(self, path, response):
        self.routes[path] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get(request.url.path)
        if response is None:
            response = httpx.Response(404, content=b"missing", headers={"content-type": "text/plain"})
        elif callable(response):
            response = response(request)
        return self._unread(response)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def backend(unread_response):
    return Backend(unread_response)


@pytest.fixture
def web_registry(registry_transport, make_target):
    return registry_transport(
        make_target("web", address="10.0.0.5:8080"),
        make_target("db", health="down", address="10.0.0.9:5432"),
    )


@pytest.fixture
def client(config, logger, web_registry, backend):
    app = create_app(
        config,
        logger,
        registry_transport=web_registry,
        upstream_transport=backend.transport,
    )
    with TestClient(app) as test_client:
        yield test_client


def _html(body, **headers):
    return httpx.Response(
        200,
        content=body.encode(),
        headers={"content-type": "text/html; charset=utf-8", **headers},
    )


class TestProxy:
    def test_html_page_is_proxied_and_rewritten(self, client, backend, logger):
        backend.route("/index.html", _html('<a href="/style.css">style</a>'))

        response = client.get("/service/web/index.html")

        assert response.status_code == 200
        assert response.text == '<a href="/service/web/style.css">style</a>'
        assert response.headers["content-length"] == str(len(response.content))
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert response.headers["content-security-policy"] == "frame-ancestors 'self'"

        forwarded = backend.requests[0]
        assert forwarded.method == "GET"
        assert forwarded.url.host == "10.0.0.5"
        assert forwarded.url.port == 8080
        assert forwarded.url.path == "/index.html"
        assert logger.proxied[0]["service"] == "web"
        assert logger.proxied[0]["path"] == "/index.html"

    @pytest.mark.parametrize("path", ["/service/web", "/service/web/"])
    def test_service_root_maps_to_backend_root(self, client, backend, path):
        backend.route("/", _html("<p>home</p>"))

        response = client.get(path)

        assert response.status_code == 200
        assert backend.requests[0].url.path == "/"

    def test_forwarding_headers_reach_backend(self, client, backend):
        backend.route("/", _html("ok"))

        client.get("/service/web/", headers={"x-custom": "1"})

        forwarded = backend.requests[0]
        assert forwarded.headers["host"] == "10.0.0.5:8080"
        assert forwarded.headers["x-forwarded-host"] == "testserver"
        assert forwarded.headers["x-forwarded-proto"] == "http"
        assert forwarded.headers["x-forwarded-prefix"] == "/service/web"
        assert forwarded.headers["x-custom"] == "1"

    def test_repeated_headers_reach_backend(self, client, backend):
        backend.route("/", _html("ok"))

        client.get("/service/web/", headers=[("x-multi", "a"), ("x-multi", "b")])

        assert backend.requests[0].headers.get_list("x-multi") == ["a", "b"]

    def test_query_string_is_forwarded(self, client, backend):
        backend.route("/search", httpx.Response(200, json={"ok": True}))

        client.get("/service/web/search?q=a%20b&page=2")

        assert backend.requests[0].url.query == b"q=a%20b&page=2"

    def test_post_body_and_method_are_forwarded(self, client, backend):
        backend.route("/api/items", lambda request: httpx.Response(201, content=request.content))

        response = client.post("/service/web/api/items", content=b'{"name": "x"}')

        assert response.status_code == 201
        assert response.content == b'{"name": "x"}'
        assert backend.requests[0].method == "POST"

    def test_non_html_body_is_streamed_untouched(self, client, backend):
        payload = b'{"href": "/not-rewritten"}'
        backend.route(
            "/data.json",
            httpx.Response(200, content=payload, headers={"content-type": "application/json"}),
        )

        response = client.get("/service/web/data.json")

        assert response.content == payload
        assert "x-frame-options" not in response.headers

    def test_css_is_rewritten_and_typed(self, client, backend):
        backend.route(
            "/site.css",
            httpx.Response(200, content=b"body { background: url(/bg.png) }"),
        )

        response = client.get("/service/web/site.css")

        assert response.headers["content-type"] == "text/css"
        assert response.text == "body { background: url(/service/web/bg.png) }"

    def test_script_gets_javascript_type(self, client, backend):
        backend.route(
            "/app.js",
            httpx.Response(200, content=b"console.log(1)", headers={"content-type": "text/plain"}),
        )

        response = client.get("/service/web/app.js")

        assert response.headers["content-type"] == "application/javascript"
        assert response.content == b"console.log(1)"

    def test_gzipped_html_is_decoded_before_rewriting(self, client, backend):
        backend.route(
            "/",
            httpx.Response(
                200,
                content=gzip.compress(b'<img src="/logo.png">'),
                headers={"content-type": "text/html", "content-encoding": "gzip"},
            ),
        )

        response = client.get("/service/web/")

        assert response.text == '<img src="/service/web/logo.png">'
        assert "content-encoding" not in response.headers

    def test_relative_redirect_is_rewritten(self, client, backend):
        backend.route("/old", httpx.Response(302, headers={"location": "/foo"}))

        response = client.get("/service/web/old", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/service/web/foo"

    def test_absolute_redirect_is_rewritten(self, client, backend):
        backend.route("/old", httpx.Response(301, headers={"location": "http://backend/foo"}))

        response = client.get("/service/web/old", follow_redirects=False)

        assert response.headers["location"] == "http://testserver/service/web/foo"

    def test_malformed_redirect_is_bad_gateway(self, client, backend, logger):
        backend.route("/old", httpx.Response(302, headers={"location": "http://[::1/broken"}))

        response = client.get("/service/web/old", follow_redirects=False)

        assert response.status_code == 502
        assert "10.0.0.5" not in response.text
        assert logger.errors[-1][:3] == ("web", "rewrite", 502)

    def test_backend_status_is_passed_through(self, client, backend):
        response = client.get("/service/web/nowhere")

        assert response.status_code == 404
        assert response.text == "missing"


class TestProxyFailures:
    def test_unknown_service_is_not_found(self, client, backend, logger):
        response = client.get("/service/ghost")

        assert response.status_code == 404
        assert response.json() == {"error": "Service not found or not running"}
        assert backend.requests == []
        assert logger.rejected == [("ghost", "GET", "/service/ghost")]

    def test_down_service_is_not_found(self, client, backend):
        response = client.get("/service/db/")

        assert response.status_code == 404
        assert backend.requests == []

    def test_registry_failure_is_not_found(self, config, logger, failing_transport, backend):
        app = create_app(
            config,
            logger,
            registry_transport=failing_transport,
            upstream_transport=backend.transport,
        )
        with TestClient(app) as client:
            response = client.get("/service/web/")

        assert response.status_code == 404

    def test_registry_row_with_malformed_labels_is_ignored(
        self, config, logger, registry_transport, make_target, backend
    ):
        broken = make_target("web", address="10.0.0.1:80")
        broken["labels"] = ["job"]
        backend.route("/", _html("ok"))
        app = create_app(
            config,
            logger,
            registry_transport=registry_transport(broken, make_target("web", address="10.0.0.5:8080")),
            upstream_transport=backend.transport,
        )
        with TestClient(app) as client:
            proxied = client.get("/service/web/")
            listing = client.get("/api/services")

        assert proxied.status_code == 200
        assert backend.requests[0].url.host == "10.0.0.5"
        assert listing.status_code == 200
        assert [row["name"] for row in listing.json()] == ["web"]

    def test_registry_row_with_only_malformed_labels_is_not_found(
        self, config, logger, registry_transport, make_target, backend
    ):
        broken = make_target("web")
        broken["labels"] = ["job"]
        app = create_app(
            config,
            logger,
            registry_transport=registry_transport(broken),
            upstream_transport=backend.transport,
        )
        with TestClient(app) as client:
            response = client.get("/service/web/")

        assert response.status_code == 404
        assert backend.requests == []

    def test_unreachable_backend_is_bad_gateway(self, config, logger, web_registry, failing_transport):
        app = create_app(
            config,
            logger,
            registry_transport=web_registry,
            upstream_transport=failing_transport,
        )
        with TestClient(app) as client:
            response = client.get("/service/web/")

        assert response.status_code == 502
        assert response.json() == {"error": "Bad gateway"}
        service, stage, status, message = logger.errors[-1]
        assert (service, stage, status) == ("web", "forward", 502)
        assert "10.0.0.5" in message

    def test_backend_timeout_is_gateway_timeout(self, config, logger, web_registry):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        app = create_app(
            config,
            logger,
            registry_transport=web_registry,
            upstream_transport=httpx.MockTransport(handler),
        )
        with TestClient(app) as client:
            response = client.get("/service/web/")

        assert response.status_code == 504


class TestServiceListing:
    def test_lists_full_snapshot(self, client):
        response = client.get("/api/services")

        assert response.status_code == 200
        assert response.json() == [
            {"name": "web", "status": "up", "target": "http://10.0.0.5:8080/metrics"},
            {"name": "db", "status": "down", "target": ""},
        ]

    def test_empty_registry_is_empty_list(self, config, logger, registry_transport, backend):
        app = create_app(
            config,
            logger,
            registry_transport=registry_transport(),
            upstream_transport=backend.transport,
        )
        with TestClient(app) as client:
            assert client.get("/api/services").json() == []

    def test_registry_failure_is_server_error(self, config, logger, failing_transport, backend):
        app = create_app(
            config,
            logger,
            registry_transport=failing_transport,
            upstream_transport=backend.transport,
        )
        with TestClient(app) as client:
            response = client.get("/api/services")

        assert response.status_code == 500
        assert response.json() == {"error": "Error querying target registry"}
