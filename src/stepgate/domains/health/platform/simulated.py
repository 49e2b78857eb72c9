"""In-process simulated health store.

Behaves like a device store: the first authorization decision sticks, reads
of a type the user denied come back empty rather than failing, and a saved
sample only becomes visible to queries after ``write_visibility_delay``.
Every async operation runs on a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from stepgate.domains.health.domain_logic.models import (
    AuthorizationState,
    MetricType,
    TimeWindow,
)
from stepgate.domains.health.platform import (
    DEFAULT_SUPPORTED_TYPES,
    PlatformError,
    PlatformType,
    Quantity,
)

logger = logging.getLogger(__name__)


@dataclass
class _Sample:
    identifier: str
    value: float
    start: datetime
    end: datetime
    visible_at: float


class SimulatedHealthPlatform:
    """HealthPlatform backed by an in-memory sample list.

    Usage::

        platform = SimulatedHealthPlatform(write_visibility_delay=0.2)
        platform.add_sample(STEP_COUNT.identifier, 4321, start, end)
    """

    def __init__(
        self,
        *,
        available: bool = True,
        supported_types: dict[str, str] | None = None,
        prompt_decision: AuthorizationState = AuthorizationState.GRANTED,
        latency: float = 0.0,
        write_visibility_delay: float = 0.0,
    ) -> None:
        self._available = available
        self._supported = dict(
            DEFAULT_SUPPORTED_TYPES if supported_types is None else supported_types
        )
        self._prompt_decision = prompt_decision
        self._latency = latency
        self._write_visibility_delay = write_visibility_delay
        self._lock = threading.Lock()
        self._status: dict[str, AuthorizationState] = {}
        self._samples: list[_Sample] = []
        self.authorization_failure: Exception | None = None
        self.query_failure: Exception | None = None
        self.save_failure: Exception | None = None
        self.authorization_requests = 0
        self.queries = 0

    # ------------------------------------------------------------------
    # HealthPlatform
    # ------------------------------------------------------------------

    def is_data_available(self) -> bool:
        return self._available

    def resolve_type(self, metric: MetricType) -> PlatformType | None:
        unit = self._supported.get(metric.identifier)
        if unit is None:
            return None
        return PlatformType(identifier=metric.identifier, unit=unit)

    def authorization_status(self, platform_type: PlatformType) -> AuthorizationState:
        with self._lock:
            return self._status.get(
                platform_type.identifier, AuthorizationState.UNDETERMINED
            )

    async def request_authorization(
        self,
        read: frozenset[PlatformType],
        write: frozenset[PlatformType],
    ) -> None:
        await asyncio.to_thread(self._request_authorization, read | write)

    async def execute_aggregate_query(
        self, platform_type: PlatformType, window: TimeWindow
    ) -> Quantity | None:
        return await asyncio.to_thread(self._aggregate, platform_type, window)

    async def save_sample(
        self, platform_type: PlatformType, quantity: Quantity, window: TimeWindow
    ) -> None:
        await asyncio.to_thread(self._save, platform_type, quantity, window)

    @property
    def data_source(self) -> str:
        return "simulated"

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_sample(
        self, identifier: str, value: float, start: datetime, end: datetime
    ) -> None:
        """Insert a sample that is visible immediately."""
        with self._lock:
            self._samples.append(
                _Sample(identifier, float(value), start, end, visible_at=0.0)
            )

    def set_authorization(self, identifier: str, state: AuthorizationState) -> None:
        with self._lock:
            self._status[identifier] = state

    # ------------------------------------------------------------------
    # Worker-thread bodies
    # ------------------------------------------------------------------

    def _request_authorization(self, types: frozenset[PlatformType]) -> None:
        self._simulate_latency()
        with self._lock:
            self.authorization_requests += 1
            if self.authorization_failure is not None:
                raise PlatformError(str(self.authorization_failure))
            for platform_type in types:
                # Only the first decision is recorded; later prompts are no-ops.
                self._status.setdefault(platform_type.identifier, self._prompt_decision)

    def _aggregate(
        self, platform_type: PlatformType, window: TimeWindow
    ) -> Quantity | None:
        self._simulate_latency()
        now = time.monotonic()
        with self._lock:
            self.queries += 1
            if self.query_failure is not None:
                raise PlatformError(str(self.query_failure))
            status = self._status.get(platform_type.identifier)
            if status is not AuthorizationState.GRANTED:
                # Denied reads look like an empty store.
                return None
            matching = [
                s.value
                for s in self._samples
                if s.identifier == platform_type.identifier
                and s.visible_at <= now
                and window.contains(s.start)
            ]
        if not matching:
            return None
        return Quantity(value=sum(matching), unit=platform_type.unit)

    def _save(
        self, platform_type: PlatformType, quantity: Quantity, window: TimeWindow
    ) -> None:
        self._simulate_latency()
        with self._lock:
            if self.save_failure is not None:
                raise PlatformError(str(self.save_failure))
            if self._status.get(platform_type.identifier) is not AuthorizationState.GRANTED:
                raise PlatformError(
                    f"Not authorized to share {platform_type.identifier}"
                )
            self._samples.append(
                _Sample(
                    platform_type.identifier,
                    quantity.value,
                    window.start,
                    window.end,
                    visible_at=time.monotonic() + self._write_visibility_delay,
                )
            )
        logger.debug(
            "Stored %s %s for %s", quantity.value, quantity.unit, platform_type.identifier
        )

    def _simulate_latency(self) -> None:
        if self._latency > 0:
            time.sleep(self._latency)
