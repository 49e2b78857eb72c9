"""Read-only health platform over an Apple Health export.xml.

Users export via iOS Health app → Share → Export Health Data. The export has
no permission model of its own, so every type it can read reports GRANTED
once the file exists. Writing is not possible.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path

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


def _parse_date(date_str: str) -> datetime:
    """Parse Apple Health date format: '2025-12-01 08:30:00 -0500'."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return datetime.fromisoformat(date_str)


def _align(instant: datetime, window: TimeWindow) -> datetime:
    """Make *instant* comparable with the window bounds (aware vs naive)."""
    tz = window.start.tzinfo
    if tz is None:
        return instant.astimezone().replace(tzinfo=None) if instant.tzinfo else instant
    return instant if instant.tzinfo else instant.replace(tzinfo=tz)


def sum_export_records(
    export_path: str | Path, identifier: str, window: TimeWindow
) -> float | None:
    """Sum the ``value`` of ``Record`` elements of *identifier* starting in *window*.

    Returns None when no record matches.

    Raises:
        PlatformError: If the file is missing or is not valid XML.
    """
    path = Path(export_path)
    if not path.exists():
        raise PlatformError(f"Export file not found: {path}")

    total = 0.0
    matched = False
    try:
        for _, elem in ET.iterparse(str(path), events=("end",)):
            if elem.tag != "Record":
                continue
            if elem.get("type") == identifier:
                try:
                    start = _parse_date(elem.get("startDate", ""))
                    value = float(elem.get("value", ""))
                except (ValueError, TypeError):
                    logger.debug("Skipping malformed %s record", identifier)
                else:
                    if window.contains(_align(start, window)):
                        total += value
                        matched = True
            elem.clear()
    except ET.ParseError as exc:
        raise PlatformError(f"Invalid export XML: {exc}") from exc

    return total if matched else None


class AppleHealthExportPlatform:
    """HealthPlatform backed by an Apple Health XML export.

    Usage::

        platform = AppleHealthExportPlatform("/path/to/export.xml")
        if platform.is_data_available():
            quantity = await platform.execute_aggregate_query(step_type, window)
    """

    def __init__(self, export_path: str) -> None:
        self._export_path = export_path

    def is_data_available(self) -> bool:
        return bool(self._export_path) and Path(self._export_path).exists()

    def resolve_type(self, metric: MetricType) -> PlatformType | None:
        unit = DEFAULT_SUPPORTED_TYPES.get(metric.identifier)
        if unit is None:
            return None
        return PlatformType(identifier=metric.identifier, unit=unit)

    def authorization_status(self, platform_type: PlatformType) -> AuthorizationState:
        if self.is_data_available():
            return AuthorizationState.GRANTED
        return AuthorizationState.UNDETERMINED

    async def request_authorization(
        self,
        read: frozenset[PlatformType],
        write: frozenset[PlatformType],
    ) -> None:
        if not self.is_data_available():
            raise PlatformError(f"Export file not found: {self._export_path}")

    async def execute_aggregate_query(
        self, platform_type: PlatformType, window: TimeWindow
    ) -> Quantity | None:
        total = await asyncio.to_thread(
            sum_export_records, self._export_path, platform_type.identifier, window
        )
        if total is None:
            return None
        return Quantity(value=total, unit=platform_type.unit)

    async def save_sample(
        self, platform_type: PlatformType, quantity: Quantity, window: TimeWindow
    ) -> None:
        raise PlatformError("Apple Health exports are read-only")

    @property
    def data_source(self) -> str:
        return "apple_health_export"
