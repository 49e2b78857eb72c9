"""Shared test fixtures for StepGate tests."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HEALTH_PLATFORM", "simulated")
    monkeypatch.setenv("PLATFORM_AVAILABLE", "true")
    monkeypatch.setenv("ENABLE_SYNTHETIC_DATA", "false")
    monkeypatch.setenv("METRIC_IDENTIFIER", "HKQuantityTypeIdentifierStepCount")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from stepgate.domains.health.domain_logic.capability_gate import CapabilityGate  # noqa: E402
from stepgate.domains.health.domain_logic.models import (  # noqa: E402
    STEP_COUNT,
    AuthorizationState,
    MetricType,
    TimeWindow,
)
from stepgate.domains.health.domain_logic.query_engine import MetricQueryEngine  # noqa: E402
from stepgate.domains.health.platform import PlatformType, Quantity  # noqa: E402

# 15:30 in a fixed UTC-5 zone, far from midnight.
FIXED_NOW = datetime(2026, 10, 18, 15, 30, tzinfo=timezone(timedelta(hours=-5)))


def fixed_clock() -> datetime:
    return FIXED_NOW


# ---------------------------------------------------------------------------
# Scripted platform
# ---------------------------------------------------------------------------

@dataclass
class _Step:
    """One scripted platform outcome, optionally held until ``gate`` is set."""

    outcome: object = None
    gate: asyncio.Event | None = None


class ScriptedPlatform:
    """Fake HealthPlatform whose async calls complete when the test says so.

    Query and authorization outcomes are consumed in call order. An outcome
    that is an Exception is raised; otherwise it is returned (a float becomes
    a Quantity, None means "no samples").
    """

    def __init__(
        self,
        *,
        available: bool = True,
        supported: bool = True,
        status: AuthorizationState = AuthorizationState.UNDETERMINED,
        grant: AuthorizationState = AuthorizationState.GRANTED,
    ) -> None:
        self.available = available
        self.supported = supported
        self.status = status
        self.grant = grant
        self.calls: list[str] = []
        self.authorization_sets: list[tuple[frozenset, frozenset]] = []
        self.saved: list[tuple[Quantity, TimeWindow]] = []
        self.windows: list[TimeWindow] = []
        self._auth_script: list[_Step] = []
        self._query_script: list[_Step] = []
        self.save_outcome: Exception | None = None
        self.status_error: Exception | None = None

    # --- scripting -----------------------------------------------------

    def script_authorization(
        self, outcome: Exception | None = None, gate: asyncio.Event | None = None
    ) -> None:
        self._auth_script.append(_Step(outcome, gate))

    def script_query(
        self, outcome: float | Exception | None, gate: asyncio.Event | None = None
    ) -> None:
        self._query_script.append(_Step(outcome, gate))

    def count(self, name: str) -> int:
        return self.calls.count(name)

    # --- HealthPlatform ------------------------------------------------

    def is_data_available(self) -> bool:
        self.calls.append("is_data_available")
        return self.available

    def resolve_type(self, metric: MetricType) -> PlatformType | None:
        self.calls.append("resolve_type")
        if not self.supported:
            return None
        return PlatformType(metric.identifier, metric.unit)

    def authorization_status(self, platform_type: PlatformType) -> AuthorizationState:
        self.calls.append("authorization_status")
        if self.status_error is not None:
            raise self.status_error
        return self.status

    async def request_authorization(self, read, write) -> None:
        self.calls.append("request_authorization")
        self.authorization_sets.append((read, write))
        step = self._auth_script.pop(0) if self._auth_script else _Step()
        if step.gate is not None:
            await step.gate.wait()
        if isinstance(step.outcome, Exception):
            raise step.outcome
        if self.status is AuthorizationState.UNDETERMINED:
            self.status = self.grant

    async def execute_aggregate_query(self, platform_type, window) -> Quantity | None:
        self.calls.append("execute_aggregate_query")
        self.windows.append(window)
        step = self._query_script.pop(0) if self._query_script else _Step()
        if step.gate is not None:
            await step.gate.wait()
        if isinstance(step.outcome, Exception):
            raise step.outcome
        if step.outcome is None:
            return None
        return Quantity(float(step.outcome), platform_type.unit)

    async def save_sample(self, platform_type, quantity, window) -> None:
        self.calls.append("save_sample")
        if self.save_outcome is not None:
            raise self.save_outcome
        self.saved.append((quantity, window))

    @property
    def data_source(self) -> str:
        return "scripted"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def scripted_platform():
    """Factory for ScriptedPlatform instances."""
    return ScriptedPlatform


@pytest.fixture
def make_engine():
    """Factory building a step-count engine over a platform with a fixed clock."""

    def _make(platform, *, request_write: bool = False, **kwargs) -> MetricQueryEngine:
        gate = CapabilityGate(platform, STEP_COUNT, request_write=request_write)
        kwargs.setdefault("clock", fixed_clock)
        return MetricQueryEngine(platform, gate, **kwargs)

    return _make
