"""Mount admission - decides whether a service request may be proxied."""

import httpx

from core.exceptions import ServiceNotFound
from core.models import MountContext, mount_prefix_for
from core.protocols import AddressResolver


class MountRouter:
    """Admit requests for services that resolve to a live address."""

    def __init__(self, resolver: AddressResolver):
        self.resolver = resolver

    async def admit(self, service_name: str) -> MountContext:
        """Return the mount context for the service or raise ServiceNotFound."""
        address = await self.resolver.resolve(service_name)
        if not address:
            raise ServiceNotFound(service_name)

        try:
            target_base_url = self._parse_address(address)
        except httpx.InvalidURL as e:
            raise ServiceNotFound(service_name) from e

        return MountContext(
            service_name=service_name,
            mount_prefix=mount_prefix_for(service_name),
            target_base_url=target_base_url,
        )

    @staticmethod
    def _parse_address(address: str) -> httpx.URL:
        """Parse a registry address, defaulting to plain HTTP."""
        if "://" not in address:
            address = f"http://{address}"
        return httpx.URL(address)
