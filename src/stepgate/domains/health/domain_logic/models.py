"""Metric, authorization and result models for the step-count workflow."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Metric types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricType:
    """Identifier of the health quantity being read (e.g. step count)."""

    identifier: str
    unit: str = "count"
    label: str = ""
    empty_message: str | None = None

    @property
    def display_label(self) -> str:
        return self.label or self.identifier

    def advisory(self) -> str:
        """Message shown when the window holds no samples."""
        if self.empty_message:
            return self.empty_message
        return f"No {self.display_label} recorded yet today."


STEP_COUNT = MetricType(
    identifier="HKQuantityTypeIdentifierStepCount",
    unit="count",
    label="steps",
    empty_message=(
        "No steps recorded yet today. "
        "Start walking or use the Health app to add steps."
    ),
)

KNOWN_METRICS = {
    STEP_COUNT.identifier: STEP_COUNT,
    "HKQuantityTypeIdentifierFlightsClimbed": MetricType(
        identifier="HKQuantityTypeIdentifierFlightsClimbed",
        unit="count",
        label="flights climbed",
    ),
    "HKQuantityTypeIdentifierDistanceWalkingRunning": MetricType(
        identifier="HKQuantityTypeIdentifierDistanceWalkingRunning",
        unit="m",
        label="walking distance",
    ),
    "HKQuantityTypeIdentifierActiveEnergyBurned": MetricType(
        identifier="HKQuantityTypeIdentifierActiveEnergyBurned",
        unit="kcal",
        label="active energy",
    ),
}


def metric_type_for(identifier: str) -> MetricType:
    """Return the known MetricType for *identifier*, or a generic one."""
    known = KNOWN_METRICS.get(identifier)
    if known is not None:
        return known
    return MetricType(identifier=identifier)


# ---------------------------------------------------------------------------
# Authorization and phases
# ---------------------------------------------------------------------------

class AuthorizationState(str, Enum):
    """Authorization as reported by the health platform."""

    UNDETERMINED = "undetermined"
    DENIED = "denied"
    GRANTED = "granted"


class OperationPhase(str, Enum):
    IDLE = "idle"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    QUERYING = "querying"
    SETTLED = "settled"


IN_FLIGHT_PHASES = frozenset(
    {OperationPhase.AWAITING_AUTHORIZATION, OperationPhase.QUERYING}
)


class ErrorKind(str, Enum):
    PLATFORM_UNAVAILABLE = "platform_unavailable"
    TYPE_UNSUPPORTED = "type_unsupported"
    AUTHORIZATION_FAILED = "authorization_failed"
    QUERY_FAILED = "query_failed"


# ---------------------------------------------------------------------------
# Time window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    @classmethod
    def today(cls, now: datetime) -> TimeWindow:
        """Start of *now*'s calendar day up to *now*."""
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return cls(start=start, end=now)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


# ---------------------------------------------------------------------------
# Query result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryResult:
    """Outcome of one settled cycle: a value or a typed failure.

    A successful result may carry an ``advisory`` (no samples in the window);
    that is still a success with value ``0.0``.
    """

    value: float | None = None
    error: ErrorKind | None = None
    detail: str = ""
    cause: str | None = None
    advisory: str | None = None

    @classmethod
    def success(cls, value: float, advisory: str | None = None) -> QueryResult:
        return cls(value=float(value), advisory=advisory)

    @classmethod
    def failure(
        cls, kind: ErrorKind, detail: str, cause: str | None = None
    ) -> QueryResult:
        return cls(error=kind, detail=detail, cause=cause)

    @property
    def ok(self) -> bool:
        return self.error is None

    def display_text(self) -> str:
        """Text for a card: the failure detail, the advisory, or the value."""
        if not self.ok:
            return self.detail
        if self.advisory:
            return self.advisory
        return str(int(self.value or 0))

    def to_dict(self) -> dict[str, Any]:
        if not self.ok:
            payload: dict[str, Any] = {
                "status": "error",
                "error": self.error.value,
                "detail": self.detail,
            }
            if self.cause:
                payload["cause"] = self.cause
            return payload
        payload = {"status": "ok", "value": self.value}
        if self.advisory:
            payload["advisory"] = self.advisory
        return payload
