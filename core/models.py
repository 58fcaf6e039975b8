"""Shared data types for resolution and proxying."""

from dataclasses import dataclass, field
from typing import Literal

import httpx
from pydantic import BaseModel

MOUNT_ROOT = "/service"


def mount_prefix_for(service_name: str) -> str:
    """Return the path prefix a service is mounted under."""
    return f"{MOUNT_ROOT}/{service_name}"


@dataclass(frozen=True)
class Target:
    """One active target as reported by the registry."""

    job: str
    health: str
    scrape_url: str
    labels: dict[str, str] = field(default_factory=dict)
    discovered_labels: dict[str, str] = field(default_factory=dict)

    @property
    def is_up(self) -> bool:
        return self.health == "up"


@dataclass(frozen=True)
class ServiceRecord:
    """Resolution result for a single service name."""

    name: str
    healthy: bool
    address: str = ""


@dataclass(frozen=True)
class MountContext:
    """Per-request mount information for a resolved service."""

    service_name: str
    mount_prefix: str
    target_base_url: httpx.URL


@dataclass(frozen=True)
class OutboundRequest:
    """Request to send to the backend service."""

    method: str
    url: str
    headers: list[tuple[str, str]]
    body: bytes


class ServiceStatus(BaseModel):
    """Row of the service listing endpoint."""

    name: str
    status: Literal["up", "down"]
    target: str
