"""Exceptions raised by CapabilityGate and MetricQueryEngine."""

from __future__ import annotations

from stepgate.domains.health.domain_logic.models import ErrorKind, QueryResult


class StepGateError(Exception):
    """Base exception for a failed authorization or query cycle."""

    kind: ErrorKind = ErrorKind.QUERY_FAILED

    def __init__(self, detail: str, cause: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.cause = cause

    def to_result(self) -> QueryResult:
        return QueryResult.failure(self.kind, self.detail, self.cause)


class PlatformUnavailableError(StepGateError):
    """The health data store does not exist on this device."""

    kind = ErrorKind.PLATFORM_UNAVAILABLE


class TypeUnsupportedError(StepGateError):
    """The metric does not resolve to a platform quantity type."""

    kind = ErrorKind.TYPE_UNSUPPORTED


class AuthorizationFailedError(StepGateError):
    """The authorization request itself failed (not a user denial)."""

    kind = ErrorKind.AUTHORIZATION_FAILED


class QueryFailedError(StepGateError):
    """The store rejected a query or a write."""

    kind = ErrorKind.QUERY_FAILED


# ------------------------------------------------------------------
# Usage errors (never delivered as a QueryResult)
# ------------------------------------------------------------------

class SyntheticDataDisabledError(RuntimeError):
    """Test data injection requested without enable_synthetic_data."""


class EngineClosedError(RuntimeError):
    """The engine has been torn down."""
