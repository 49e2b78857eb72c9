"""Health platform boundary: the device-level health data store.

CapabilityGate and MetricQueryEngine receive a HealthPlatform at
construction and never reach for a global store, so tests can pass a fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from stepgate.domains.health.domain_logic.models import (
    KNOWN_METRICS,
    AuthorizationState,
    MetricType,
    TimeWindow,
)


@dataclass(frozen=True)
class PlatformType:
    """A metric type resolved by the platform."""

    identifier: str
    unit: str


# Identifier -> unit for every quantity type the bundled platforms understand.
DEFAULT_SUPPORTED_TYPES = {
    identifier: metric.unit for identifier, metric in KNOWN_METRICS.items()
}


@dataclass(frozen=True)
class Quantity:
    value: float
    unit: str


class PlatformError(Exception):
    """Transport or store failure reported by a health platform."""


@runtime_checkable
class HealthPlatform(Protocol):
    """Abstract interface for a device health data store.

    Async methods may do their work on any thread; by the time the awaitable
    completes the caller is back on its own event loop.
    """

    def is_data_available(self) -> bool:
        """Whether the health data store exists on this device."""
        ...

    def resolve_type(self, metric: MetricType) -> PlatformType | None:
        """Map a MetricType to a platform quantity type, or None."""
        ...

    def authorization_status(self, platform_type: PlatformType) -> AuthorizationState:
        """Current authorization for *platform_type*. No side effects."""
        ...

    async def request_authorization(
        self,
        read: frozenset[PlatformType],
        write: frozenset[PlatformType],
    ) -> None:
        """Prompt the user for access. Raises PlatformError on failure."""
        ...

    async def execute_aggregate_query(
        self, platform_type: PlatformType, window: TimeWindow
    ) -> Quantity | None:
        """Cumulative sum over *window*; None when no samples match."""
        ...

    async def save_sample(
        self, platform_type: PlatformType, quantity: Quantity, window: TimeWindow
    ) -> None:
        """Write one sample spanning *window*."""
        ...

    @property
    def data_source(self) -> str:
        """Label for the platform: 'simulated' or 'apple_health_export'."""
        ...
