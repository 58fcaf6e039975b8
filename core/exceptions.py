"""Custom exception hierarchy for the service gateway."""


class GatewayError(Exception):
    """Base exception for all gateway errors."""


class ConfigurationError(GatewayError):
    """Raised when configuration is missing or invalid."""


class ServiceNotFound(GatewayError):
    """Raised when a service name does not map to a healthy target."""

    def __init__(self, service_name: str) -> None:
        super().__init__(f"Service not found or not running: {service_name}")
        self.service_name = service_name


class RegistryQueryFailed(GatewayError):
    """Raised when the target registry cannot be queried."""


class UpstreamError(GatewayError):
    """Raised when forwarding to a backend service fails.

    Attributes:
        message: Error message
        status_code: HTTP status code returned to the client
        service: Service name the request was mounted under
        stage: Pipeline stage that failed (e.g. 'forward', 'rewrite')
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        service: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.stage = stage


class UpstreamTimeoutError(UpstreamError):
    """Raised when a backend request times out."""

    status_code = 504

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message, service=service, stage="forward")


class UpstreamConnectionError(UpstreamError):
    """Raised when unable to connect to a backend service."""

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message, service=service, stage="forward")


class UpstreamRewriteError(UpstreamError):
    """Raised when a backend response cannot be rewritten (bad redirect, unreadable body)."""

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message, service=service, stage="rewrite")
