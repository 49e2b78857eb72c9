"""StepGate server entry point (``stepgate`` or ``python -m stepgate.core.server.main``)."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from stepgate.core.config.settings import Settings, get_settings
from stepgate.core.server.app import create_app

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def _check_bind(settings: Settings) -> None:
    """Health readings leave the device only when explicitly allowed."""
    if settings.stepgate_allow_insecure_bind or _is_loopback_host(settings.stepgate_host):
        return
    raise RuntimeError(
        f"STEPGATE_HOST={settings.stepgate_host} would expose health readings "
        "beyond this machine. Bind to 127.0.0.1, or set "
        "STEPGATE_ALLOW_INSECURE_BIND=true if another layer authenticates clients."
    )


def run() -> None:
    """Start the StepGate MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.stepgate_log_level.upper(), logging.INFO))
    _check_bind(settings)

    mcp = create_app(settings_override=settings)
    logger.info(
        "Serving %s from the %s platform on %s:%d (synthetic data %s)",
        settings.metric_identifier,
        settings.health_platform,
        settings.stepgate_host,
        settings.stepgate_port,
        "on" if settings.enable_synthetic_data else "off",
    )
    mcp.run(
        transport="streamable-http",
        host=settings.stepgate_host,
        port=settings.stepgate_port,
    )


if __name__ == "__main__":
    run()
