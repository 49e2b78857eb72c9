"""StepGate MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- engine_lifespan() which tears the metric engine down when the server stops
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from stepgate.core.config.settings import Settings, get_settings
from stepgate.domains.health.domain_logic.capability_gate import CapabilityGate
from stepgate.domains.health.domain_logic.models import metric_type_for
from stepgate.domains.health.domain_logic.query_engine import MetricQueryEngine
from stepgate.domains.health.platform import HealthPlatform
from stepgate.domains.health.platform.apple_health import AppleHealthExportPlatform
from stepgate.domains.health.platform.simulated import SimulatedHealthPlatform
from stepgate.domains.health.tools.metric_tools import register_metric_tools

logger = logging.getLogger(__name__)


def create_platform(settings: Settings) -> HealthPlatform:
    """Build the health platform selected by ``HEALTH_PLATFORM``."""
    if settings.health_platform == "apple_health_export":
        if not settings.apple_health_export_path:
            logger.warning(
                "HEALTH_PLATFORM=apple_health_export but APPLE_HEALTH_EXPORT_PATH is empty"
            )
        return AppleHealthExportPlatform(settings.apple_health_export_path)
    return SimulatedHealthPlatform(available=settings.platform_available)


def engine_lifespan(engine: MetricQueryEngine):
    """Server lifespan that closes *engine* on shutdown."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[dict]:
        try:
            yield {}
        finally:
            logger.info("Closing metric engine")
            engine.close()

    return lifespan


def create_app(
    *,
    platform_override: HealthPlatform | None = None,
    settings_override: Settings | None = None,
) -> FastMCP:
    """Create and configure the StepGate MCP server.

    1. Initializes the health platform (simulated unless configured)
    2. Builds the CapabilityGate and MetricQueryEngine for the metric
    3. Creates the FastMCP server, closing the engine in its lifespan
    4. Registers the metric tools
    """
    settings = settings_override or get_settings()

    # --- Health platform ---
    if platform_override is not None:
        platform = platform_override
    else:
        platform = create_platform(settings)
    logger.info("Using %s health platform", platform.data_source)

    # --- Gate and engine ---
    metric = metric_type_for(settings.metric_identifier)
    gate = CapabilityGate(
        platform, metric, request_write=settings.enable_synthetic_data
    )
    engine = MetricQueryEngine(
        platform,
        gate,
        enable_synthetic_data=settings.enable_synthetic_data,
        synthetic_range=(settings.synthetic_min, settings.synthetic_max),
        settle_delay=settings.synthetic_settle_delay,
    )

    server = FastMCP(
        "StepGate",
        instructions=(
            "Reads today's total for one health metric (step count by default) "
            "from the device health store, requesting access when needed."
        ),
        lifespan=engine_lifespan(engine),
    )

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "StepGate",
            "version": "0.1.0",
            "data_source": platform.data_source,
            "data_available": platform.is_data_available(),
            "metric": metric.identifier,
            "synthetic_data_enabled": settings.enable_synthetic_data,
        }

    register_metric_tools(server, engine)
    logger.info("Metric tools registered for %s", metric.identifier)

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this attribute is accessed (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
