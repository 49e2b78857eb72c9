"""CapabilityGate: authorization lifecycle for one health metric."""

from __future__ import annotations

import asyncio
import logging

from stepgate.domains.health.domain_logic.errors import (
    AuthorizationFailedError,
    TypeUnsupportedError,
)
from stepgate.domains.health.domain_logic.models import AuthorizationState, MetricType
from stepgate.domains.health.platform import HealthPlatform, PlatformError, PlatformType

logger = logging.getLogger(__name__)


class CapabilityGate:
    """Observes and requests read (and optionally write) access to a metric.

    The platform owns the authorization state; the gate never sets it. At
    most one platform request is outstanding: concurrent ``request()`` calls
    await the same in-flight request.

    Usage::

        gate = CapabilityGate(platform, STEP_COUNT, request_write=True)
        if gate.status() is not AuthorizationState.GRANTED:
            await gate.request()
    """

    def __init__(
        self,
        platform: HealthPlatform,
        metric: MetricType,
        *,
        request_write: bool = False,
    ) -> None:
        self._platform = platform
        self._metric = metric
        self._request_write = request_write
        self._pending: asyncio.Task[AuthorizationState] | None = None
        self.request_count = 0

    @property
    def metric(self) -> MetricType:
        return self._metric

    @property
    def request_in_flight(self) -> bool:
        return self._pending is not None

    def resolve(self) -> PlatformType:
        """Resolve the metric or raise TypeUnsupportedError."""
        platform_type = self._platform.resolve_type(self._metric)
        if platform_type is None:
            raise TypeUnsupportedError(
                f"Unable to create {self._metric.display_label} quantity type."
            )
        return platform_type

    def status(self) -> AuthorizationState:
        return self._platform.authorization_status(self.resolve())

    async def request(self) -> AuthorizationState:
        """Ask the platform for access and return the resulting state.

        A denial is not an error here; it shows up in the returned state.

        Raises:
            TypeUnsupportedError: The metric does not resolve (no platform call).
            AuthorizationFailedError: The request itself failed.
        """
        platform_type = self.resolve()
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._request(platform_type))
            self._pending.add_done_callback(self._clear_pending)
        else:
            logger.debug("Joining in-flight authorization request")
        # Shielded so one cancelled caller does not cancel the shared request.
        return await asyncio.shield(self._pending)

    async def _request(self, platform_type: PlatformType) -> AuthorizationState:
        read = frozenset({platform_type})
        write = frozenset({platform_type}) if self._request_write else frozenset()
        self.request_count += 1
        try:
            logger.info(
                "Current authorization status for %s: %s",
                platform_type.identifier,
                self._platform.authorization_status(platform_type).value,
            )
            await self._platform.request_authorization(read, write)
            new_status = self._platform.authorization_status(platform_type)
        except PlatformError as exc:
            logger.warning("Authorization error for %s: %s", platform_type.identifier, exc)
            raise AuthorizationFailedError(
                f"Failed to get HealthKit authorization: {exc}",
                cause=str(exc),
            ) from exc
        except Exception as exc:
            logger.exception("Unexpected authorization error for %s", platform_type.identifier)
            raise AuthorizationFailedError(
                f"Failed to get HealthKit authorization: {exc}",
                cause=str(exc),
            ) from exc

        logger.info(
            "Authorization request completed for %s: %s",
            platform_type.identifier,
            new_status.value,
        )
        return new_status

    def _clear_pending(self, task: asyncio.Task[AuthorizationState]) -> None:
        if self._pending is task:
            self._pending = None
        if not task.cancelled():
            # Mark the exception retrieved; every awaiter already sees it.
            task.exception()
