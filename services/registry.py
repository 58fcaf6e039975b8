"""Target registry (Prometheus) client and service resolution."""

import asyncio
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

from core.config import RegistrySettings
from core.exceptions import ConfigurationError, RegistryQueryFailed
from core.models import ServiceRecord, ServiceStatus, Target
from core.protocols import GatewayLogger

TARGETS_PATH = "/api/v1/targets"


class RegistryClient:
    """Query the registry for its active scrape targets."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 5.0) -> None:
        self._client = client
        self._timeout = timeout

    async def active_targets(self) -> list[Target]:
        """Return active targets in registry order.

        Raises:
            RegistryQueryFailed: transport error, timeout, or unexpected payload.
        """
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.get(
                    TARGETS_PATH,
                    params={"state": "active"},
                    timeout=self._timeout,
                )
                response.raise_for_status()
                payload = response.json()
        except TimeoutError as e:
            raise RegistryQueryFailed(f"registry query timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise RegistryQueryFailed(f"registry query failed: {e}") from e
        except ValueError as e:
            raise RegistryQueryFailed(f"registry returned invalid JSON: {e}") from e

        return self._parse_targets(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _parse_targets(payload: Any) -> list[Target]:
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise RegistryQueryFailed("registry returned an error status")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise RegistryQueryFailed("registry response has no data")

        active = data.get("activeTargets") or []
        if not isinstance(active, list):
            raise RegistryQueryFailed("registry response has no target list")

        targets = []
        for item in active:
            if not isinstance(item, dict):
                continue
            labels = item.get("labels") or {}
            discovered = item.get("discoveredLabels") or {}
            # A row whose label sets are not objects cannot be matched or addressed
            if not isinstance(labels, dict) or not isinstance(discovered, dict):
                continue
            targets.append(
                Target(
                    job=str(labels.get("job", "")),
                    health=str(item.get("health", "unknown")),
                    scrape_url=str(item.get("scrapeUrl", "")),
                    labels=_string_labels(labels),
                    discovered_labels=_string_labels(discovered),
                )
            )
        return targets


def _string_labels(labels: dict[Any, Any]) -> dict[str, str]:
    return {str(key): str(value) for key, value in labels.items()}


def validate_registry_url(settings: RegistrySettings) -> httpx.URL:
    """Parse the registry URL.

    Raises:
        ConfigurationError: the registry URL is not a usable http(s) URL.
    """
    try:
        url = httpx.URL(settings.url)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"Invalid registry URL {settings.url!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid registry URL {settings.url!r}: expected http(s)://host[:port]")
    return url


def create_registry_client(
    settings: RegistrySettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RegistryClient:
    """Build the process-wide registry client.

    Raises:
        ConfigurationError: the registry URL is not a usable http(s) URL.
    """
    url = validate_registry_url(settings)
    client = httpx.AsyncClient(base_url=url, timeout=settings.timeout, transport=transport)
    return RegistryClient(client, timeout=settings.timeout)


class ServiceResolver:
    """Map service names to live backend addresses. Every call is a fresh query."""

    def __init__(
        self,
        registry: RegistryClient,
        settings: RegistrySettings,
        logger: GatewayLogger,
    ) -> None:
        self._registry = registry
        self._job_label = settings.job_label
        self._metrics_path = settings.metrics_path
        self._logger = logger

    async def lookup(self, service_name: str) -> ServiceRecord:
        """Return the first healthy record for the service, or an unhealthy one."""
        try:
            targets = await self._registry.active_targets()
        except RegistryQueryFailed as e:
            self._logger.log_error(service_name, "resolve", 404, str(e))
            return ServiceRecord(name=service_name, healthy=False)

        for target in targets:
            if not target.is_up or target.labels.get(self._job_label) != service_name:
                continue
            address = self._address_of(target)
            if address:
                return ServiceRecord(name=service_name, healthy=True, address=address)
        return ServiceRecord(name=service_name, healthy=False)

    async def resolve(self, service_name: str) -> str | None:
        """Return the backend address for the service, or None if not found."""
        record = await self.lookup(service_name)
        if record.healthy and record.address:
            return record.address
        return None

    async def list_services(self) -> list[ServiceStatus]:
        """Return the full registry snapshot.

        Raises:
            RegistryQueryFailed: the registry could not be queried.
        """
        targets = await self._registry.active_targets()
        return [
            ServiceStatus(
                name=target.labels.get(self._job_label, target.job),
                status="up" if target.is_up else "down",
                target=target.scrape_url if target.is_up else "",
            )
            for target in targets
        ]

    def _address_of(self, target: Target) -> str:
        address = target.discovered_labels.get("__address__", "")
        if address:
            scheme = target.discovered_labels.get("__scheme__")
            if scheme and "://" not in address:
                return f"{scheme}://{address}"
            return address
        return self._strip_metrics_path(target.scrape_url)

    def _strip_metrics_path(self, scrape_url: str) -> str:
        if not scrape_url:
            return ""
        parts = urlsplit(scrape_url)
        path = parts.path
        if self._metrics_path and path.endswith(self._metrics_path):
            path = path[: -len(self._metrics_path)]
        return urlunsplit((parts.scheme, parts.netloc, path.rstrip("/"), "", ""))
