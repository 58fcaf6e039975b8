"""Shared protocol definitions."""

from typing import Protocol


class GatewayLogger(Protocol):
    """Protocol for request logging (Dashboard)."""

    def log_proxy(
        self,
        service: str,
        method: str,
        path: str,
        status: int,
        *,
        target: str,
        headers: dict[str, str] | None = None,
    ) -> None: ...
    def log_rejected(self, service: str, method: str, path: str) -> None: ...
    def log_error(self, service: str, stage: str, status: int, message: str) -> None: ...


class AddressResolver(Protocol):
    """Protocol for service name to address resolution."""

    async def resolve(self, service_name: str) -> str | None: ...
