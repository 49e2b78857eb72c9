"""MetricQueryEngine: authorize, then sum today's samples of one metric.

All engine state lives on the event loop that calls ``refresh()``. Platform
work may run on other threads, but it only reaches the engine through
awaitables, so ``(phase, last_result, generation)`` has a single writer and
needs no lock.

Every cycle is tagged with a generation. A ``refresh()`` issued while a cycle
is in flight starts a newer generation; the older cycle is left to finish
on the platform and its outcome is dropped. Callers that joined before the
newest cycle settles all receive its result, and the observer fires once.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime

from stepgate.domains.health.domain_logic.capability_gate import CapabilityGate
from stepgate.domains.health.domain_logic.errors import (
    AuthorizationFailedError,
    EngineClosedError,
    PlatformUnavailableError,
    QueryFailedError,
    StepGateError,
    SyntheticDataDisabledError,
)
from stepgate.domains.health.domain_logic.models import (
    IN_FLIGHT_PHASES,
    AuthorizationState,
    OperationPhase,
    QueryResult,
    TimeWindow,
)
from stepgate.domains.health.platform import (
    HealthPlatform,
    PlatformError,
    PlatformType,
    Quantity,
)

logger = logging.getLogger(__name__)

Observer = Callable[[QueryResult], None]

# Synthetic sample magnitude, inclusive.
DEFAULT_SYNTHETIC_RANGE = (1000, 10000)
# Time the store needs before a saved sample shows up in queries.
DEFAULT_SETTLE_DELAY = 0.5


def _local_now() -> datetime:
    return datetime.now().astimezone()


class MetricQueryEngine:
    """Drives the acquire-then-aggregate cycle and publishes one result per cycle.

    Usage::

        gate = CapabilityGate(platform, STEP_COUNT)
        engine = MetricQueryEngine(platform, gate, on_settled=render)
        result = await engine.refresh()
    """

    def __init__(
        self,
        platform: HealthPlatform,
        gate: CapabilityGate,
        *,
        on_settled: Observer | None = None,
        enable_synthetic_data: bool = False,
        synthetic_range: tuple[int, int] = DEFAULT_SYNTHETIC_RANGE,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clock: Callable[[], datetime] = _local_now,
        rng: random.Random | None = None,
    ) -> None:
        low, high = synthetic_range
        if low > high:
            raise ValueError(f"Invalid synthetic range: {synthetic_range}")
        self._platform = platform
        self._gate = gate
        self._observer = on_settled
        self._enable_synthetic_data = enable_synthetic_data
        self._synthetic_range = (low, high)
        self._settle_delay = settle_delay
        self._clock = clock
        self._rng = rng or random.Random()

        self._phase = OperationPhase.IDLE
        self._last_result: QueryResult | None = None
        self._generation = 0
        self._waiters: list[asyncio.Future[QueryResult]] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Observer boundary
    # ------------------------------------------------------------------

    @property
    def phase(self) -> OperationPhase:
        return self._phase

    @property
    def last_result(self) -> QueryResult | None:
        return self._last_result

    @property
    def is_operation_in_flight(self) -> bool:
        return self._phase in IN_FLIGHT_PHASES

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def synthetic_data_enabled(self) -> bool:
        return self._enable_synthetic_data

    @property
    def gate(self) -> CapabilityGate:
        return self._gate

    def set_observer(self, on_settled: Observer | None) -> None:
        self._observer = on_settled

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def refresh(self) -> asyncio.Future[QueryResult]:
        """Start a cycle and return a future for its settled result.

        Must be called on the event loop that owns the engine. Guard failures
        (no data store, unsupported type) settle before this returns.
        """
        return self._start(self._refresh_cycle)

    def inject_test_data(self) -> asyncio.Future[QueryResult]:
        """Write one random sample for today, wait for the store, then query.

        Raises:
            SyntheticDataDisabledError: ``enable_synthetic_data`` is off.
        """
        if not self._enable_synthetic_data:
            raise SyntheticDataDisabledError(
                "Synthetic data is disabled; set ENABLE_SYNTHETIC_DATA=true"
            )
        return self._start(self._inject_cycle)

    def close(self) -> None:
        """Tear down: later completions are discarded and waiters cancelled."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._observer = None
        for task in list(self._tasks):
            task.cancel()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.cancel()
        logger.debug("MetricQueryEngine closed")

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def _start(
        self, cycle: Callable[[int, PlatformType], Awaitable[QueryResult | None]]
    ) -> asyncio.Future[QueryResult]:
        if self._closed:
            raise EngineClosedError("MetricQueryEngine is closed")
        loop = asyncio.get_running_loop()

        if self.is_operation_in_flight:
            logger.info("Superseding in-flight generation %d", self._generation)
        self._generation += 1
        generation = self._generation
        waiter: asyncio.Future[QueryResult] = loop.create_future()
        self._waiters.append(waiter)
        self._phase = OperationPhase.AWAITING_AUTHORIZATION
        self._last_result = None

        try:
            platform_type = self._check_preconditions()
        except StepGateError as exc:
            self._settle(generation, exc.to_result())
            return waiter
        except Exception as exc:
            logger.exception("Health platform check failed")
            self._settle(
                generation,
                PlatformUnavailableError(
                    f"HealthKit is not available on this device: {exc}", cause=str(exc)
                ).to_result(),
            )
            return waiter

        task = loop.create_task(self._drive(generation, cycle(generation, platform_type)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return waiter

    def _check_preconditions(self) -> PlatformType:
        if not self._platform.is_data_available():
            raise PlatformUnavailableError("HealthKit is not available on this device.")
        return self._gate.resolve()

    async def _drive(
        self, generation: int, cycle: Awaitable[QueryResult | None]
    ) -> None:
        try:
            result = await cycle
        except StepGateError as exc:
            result = exc.to_result()
        except Exception as exc:
            logger.exception("Unexpected error in generation %d", generation)
            if self._phase is OperationPhase.QUERYING:
                error: StepGateError = QueryFailedError(
                    f"Failed to fetch {self._gate.metric.display_label}: {exc}",
                    cause=str(exc),
                )
            else:
                error = AuthorizationFailedError(
                    f"Failed to get HealthKit authorization: {exc}", cause=str(exc)
                )
            result = error.to_result()
        if result is not None:
            self._settle(generation, result)

    async def _refresh_cycle(
        self, generation: int, platform_type: PlatformType
    ) -> QueryResult | None:
        if self._gate.status() is not AuthorizationState.GRANTED:
            await self._gate.request()
            if not self._is_current(generation):
                return None
        return await self._query(generation, platform_type)

    async def _inject_cycle(
        self, generation: int, platform_type: PlatformType
    ) -> QueryResult | None:
        if self._gate.status() is not AuthorizationState.GRANTED:
            logger.info("Need to request authorization before adding test data")
            await self._gate.request()
            if not self._is_current(generation):
                return None
            if self._gate.status() is not AuthorizationState.GRANTED:
                raise AuthorizationFailedError(
                    "Not authorized to write test data to HealthKit."
                )

        self._set_phase(generation, OperationPhase.QUERYING)
        low, high = self._synthetic_range
        amount = float(self._rng.randint(low, high))
        window = TimeWindow.today(self._clock())
        try:
            await self._platform.save_sample(
                platform_type, Quantity(value=amount, unit=platform_type.unit), window
            )
        except PlatformError as exc:
            logger.warning("Failed to save test data: %s", exc)
            raise QueryFailedError(
                f"Failed to save test data: {exc}", cause=str(exc)
            ) from exc
        except Exception as exc:
            logger.exception("Unexpected error saving test data")
            raise QueryFailedError(
                f"Failed to save test data: {exc}", cause=str(exc)
            ) from exc
        logger.info("Successfully saved %d test %s", int(amount), self._gate.metric.display_label)

        await asyncio.sleep(self._settle_delay)
        if not self._is_current(generation):
            return None
        return await self._query(generation, platform_type)

    async def _query(
        self, generation: int, platform_type: PlatformType
    ) -> QueryResult:
        self._set_phase(generation, OperationPhase.QUERYING)
        metric = self._gate.metric
        window = TimeWindow.today(self._clock())
        try:
            quantity = await self._platform.execute_aggregate_query(platform_type, window)
        except PlatformError as exc:
            raise QueryFailedError(
                f"Failed to fetch {metric.display_label}: {exc}", cause=str(exc)
            ) from exc
        except Exception as exc:
            logger.exception("Unexpected error querying %s", platform_type.identifier)
            raise QueryFailedError(
                f"Failed to fetch {metric.display_label}: {exc}", cause=str(exc)
            ) from exc

        if quantity is None:
            return QueryResult.success(0.0, advisory=metric.advisory())
        return QueryResult.success(quantity.value)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _set_phase(self, generation: int, phase: OperationPhase) -> None:
        if self._is_current(generation):
            self._phase = phase

    def _settle(self, generation: int, result: QueryResult) -> None:
        if not self._is_current(generation):
            logger.debug(
                "Discarding stale result of generation %d (current %d)",
                generation,
                self._generation,
            )
            return

        self._phase = OperationPhase.SETTLED
        self._last_result = result
        waiters, self._waiters = self._waiters, []
        if result.ok:
            logger.info("Generation %d settled with %s", generation, result.value)
        else:
            logger.info("Generation %d failed: %s", generation, result.detail)

        if self._observer is not None:
            try:
                self._observer(result)
            except Exception:
                logger.exception("on_settled observer raised")

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)
