"""Integration tests for the StepGate MCP server."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import pytest
from fastmcp import Client

from stepgate.core.config.settings import Settings
from stepgate.core.server.app import create_app, create_platform, engine_lifespan
from stepgate.domains.health.domain_logic.errors import EngineClosedError
from stepgate.domains.health.domain_logic.models import STEP_COUNT
from stepgate.domains.health.platform.apple_health import AppleHealthExportPlatform
from stepgate.domains.health.platform.simulated import SimulatedHealthPlatform


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Pull the JSON string a tool returned out of a fastmcp CallToolResult."""
    for block in getattr(result, "content", result):
        text = getattr(block, "text", None)
        if text:
            return json.loads(text)
    raise AssertionError(f"No text content in {result!r}")


ALL_EXPECTED_TOOLS = [
    "health_check",
    "metric_today",
    "refresh_metric",
    "authorization_status",
]


@pytest.fixture
def seeded_platform() -> SimulatedHealthPlatform:
    platform = SimulatedHealthPlatform()
    now = datetime.now().astimezone()
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    platform.add_sample(STEP_COUNT.identifier, 4321, start, start + timedelta(minutes=1))
    return platform


@pytest.fixture
def client(seeded_platform):
    mcp = create_app(platform_override=seeded_platform, settings_override=Settings())
    return Client(mcp)


def test_server_starts_and_lists_tools(client):
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
            assert "add_test_data" not in tool_names
    _run(_check())


def test_health_check_reports_platform(client):
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            text = str(result)
            assert "ok" in text
            assert "simulated" in text
    _run(_check())


def test_metric_today_is_idle_before_refresh(client):
    async def _check():
        async with client:
            card = _payload(await client.call_tool("metric_today", {}))
            assert card["phase"] == "idle"
            assert card["in_flight"] is False
            assert "result" not in card
    _run(_check())


def test_refresh_requests_access_and_returns_total(client, seeded_platform):
    async def _check():
        async with client:
            card = _payload(await client.call_tool("refresh_metric", {}))
            assert card["phase"] == "settled"
            assert card["result"] == {"status": "ok", "value": 4321.0}
            assert card["display_text"] == "4321"

            status = _payload(await client.call_tool("authorization_status", {}))
            assert status["authorization"] == "granted"

            again = _payload(await client.call_tool("metric_today", {}))
            assert again["result"]["value"] == 4321.0
    _run(_check())
    assert seeded_platform.authorization_requests == 1


def test_unavailable_platform_reports_error():
    mcp = create_app(
        platform_override=SimulatedHealthPlatform(available=False),
        settings_override=Settings(),
    )

    async def _check():
        async with Client(mcp) as client:
            card = _payload(await client.call_tool("refresh_metric", {}))
            assert card["result"]["error"] == "platform_unavailable"
            assert card["display_text"] == "HealthKit is not available on this device."
    _run(_check())


def test_add_test_data_registered_when_enabled():
    platform = SimulatedHealthPlatform()
    settings = Settings(enable_synthetic_data=True, synthetic_settle_delay=0.0)
    mcp = create_app(platform_override=platform, settings_override=settings)

    async def _check():
        async with Client(mcp) as client:
            tools = [t.name for t in await client.list_tools()]
            assert "add_test_data" in tools
            card = _payload(await client.call_tool("add_test_data", {}))
            assert 1000 <= card["result"]["value"] <= 10000
    _run(_check())


class TestCreatePlatform:
    def test_simulated_by_default(self):
        assert isinstance(create_platform(Settings()), SimulatedHealthPlatform)

    def test_apple_health_export(self, tmp_path):
        settings = Settings(
            health_platform="apple_health_export",
            apple_health_export_path=str(tmp_path / "export.xml"),
        )
        platform = create_platform(settings)
        assert isinstance(platform, AppleHealthExportPlatform)
        assert not platform.is_data_available()


class TestEngineLifespan:
    def test_engine_closed_when_server_stops(self, make_engine):
        engine = make_engine(SimulatedHealthPlatform())

        async def _check():
            async with engine_lifespan(engine)(None):
                result = await engine.refresh()
                assert result.ok
            with pytest.raises(EngineClosedError):
                engine.refresh()
        _run(_check())
        assert engine.last_result is not None
