"""MCP tools for the step-count card.

These tools are the display layer: they read the engine's observer boundary
(phase, in-flight flag, last result) and trigger refreshes. The add-test-data
tool exists only when synthetic data is enabled.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from stepgate.domains.health.domain_logic.errors import StepGateError

if TYPE_CHECKING:
    from stepgate.domains.health.domain_logic.models import QueryResult
    from stepgate.domains.health.domain_logic.query_engine import MetricQueryEngine

logger = logging.getLogger(__name__)


def _card(engine: MetricQueryEngine) -> dict[str, Any]:
    metric = engine.gate.metric
    card: dict[str, Any] = {
        "metric": metric.identifier,
        "label": metric.display_label,
        "unit": metric.unit,
        "phase": engine.phase.value,
        "in_flight": engine.is_operation_in_flight,
    }
    result = engine.last_result
    if result is not None:
        card["result"] = result.to_dict()
        card["display_text"] = result.display_text()
    return card


def _settled_card(engine: MetricQueryEngine, result: QueryResult) -> dict[str, Any]:
    card = _card(engine)
    card["result"] = result.to_dict()
    card["display_text"] = result.display_text()
    return card


def register_metric_tools(mcp: FastMCP, engine: MetricQueryEngine) -> None:
    """Register step-count tools on the MCP server."""

    @mcp.tool
    async def metric_today(ctx: Context) -> str:
        """Show the current card: phase, whether an operation is running, last result.

        Does not start a query. Call refresh_metric to fetch today's total.
        """
        return json.dumps(_card(engine))

    @mcp.tool
    async def refresh_metric(ctx: Context) -> str:
        """Fetch today's total, requesting HealthKit access first if needed.

        Safe to call while another refresh is running; both calls return the
        newest result.
        """
        result = await engine.refresh()
        return json.dumps(_settled_card(engine, result))

    @mcp.tool
    async def authorization_status(ctx: Context) -> str:
        """Report HealthKit authorization for the configured metric."""
        gate = engine.gate
        try:
            status = gate.status().value
        except StepGateError as exc:
            return json.dumps({
                "status": "error",
                "error": exc.kind.value,
                "detail": exc.detail,
            })
        return json.dumps({
            "status": "ok",
            "metric": gate.metric.identifier,
            "authorization": status,
            "request_in_flight": gate.request_in_flight,
        })

    if engine.synthetic_data_enabled:

        @mcp.tool
        async def add_test_data(ctx: Context) -> str:
            """Add a random number of test steps for today, then refresh the total."""
            result = await engine.inject_test_data()
            return json.dumps(_settled_card(engine, result))

        logger.info("Synthetic data tool registered")
