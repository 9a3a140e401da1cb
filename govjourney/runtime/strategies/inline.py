"""
Inline-rules strategy.

Policy, state and consent are all handled deterministically by the
orchestrator; the model only receives optional read-only external data tools
and generates language.
"""

import logging
from typing import Any, Dict, List, Optional

from govjourney.config.settings import ToolDispatchConfig
from govjourney.runtime.protocols import ToolDefinition, ToolTransport
from govjourney.runtime.strategies.base import (
    ServiceStrategy,
    StrategyContext,
    call_with_reconnect,
    tool_error,
)
from govjourney.runtime.strategies.registry import register_strategy

logger = logging.getLogger(__name__)


EXTERNAL_TOOLS_GUIDE = """\
When you use these tools, present the information naturally as part of your response.
Do NOT mention "tools" or "MCP" to the user; just weave the real data into your answer.
Always prefer real data from tools over making up or guessing information."""


@register_strategy("inline")
class InlineStrategy(ServiceStrategy):
    """
    Evaluate the service in-process and inline the results into the prompt.

    Args:
        external_tools: Read-only data tools offered to the model
        external_transport: Transport that executes those tools
        dispatch_config: Reconnect behaviour for the transport
    """

    def __init__(
        self,
        external_tools: Optional[List[ToolDefinition]] = None,
        external_transport: Optional[ToolTransport] = None,
        dispatch_config: Optional[ToolDispatchConfig] = None,
    ):
        self.external_tools = list(external_tools or [])
        self.external_transport = external_transport
        self.dispatch_config = dispatch_config or ToolDispatchConfig()

    @property
    def name(self) -> str:
        return "inline"

    def build_tools(self, ctx: StrategyContext) -> List[ToolDefinition]:
        return list(self.external_tools)

    async def build_service_context(self, ctx: StrategyContext) -> str:
        lines: List[str] = []

        result = ctx.policy_result
        if result is not None:
            lines.append(f"POLICY EVALUATION ({ctx.service_id}):")
            lines.append(f"Eligibility: {'ELIGIBLE' if result.eligible else 'NOT ELIGIBLE'}")
            lines.append(result.explanation)

            if result.passed:
                lines.append("")
                lines.append("Rules passed:")
                lines.extend(f"  - {r.description}" for r in result.passed)
            if result.failed:
                lines.append("")
                lines.append("Rules failed:")
                lines.extend(f"  - {r.description}: {r.reason_if_failed}" for r in result.failed)
            if result.edge_cases:
                lines.append("")
                lines.append("Edge cases detected:")
                lines.extend(f"  - {e.description}: {e.action}" for e in result.edge_cases)
                lines.append(
                    "IMPORTANT: Mention relevant edge cases to the user and explain any implications."
                )

        if self.external_tools:
            postcode = ctx.postcode
            lines.append("")
            lines.append("LIVE GOV.UK DATA TOOLS:")
            lines.append(
                "You have access to tools that can look up real, current UK government data."
            )
            lines.append(
                "Use these when the user asks questions that benefit from real, "
                "up-to-date information."
            )
            lines.append("Available tools:")
            for tool in self.external_tools:
                hint = f" (their postcode is {postcode})" if postcode and "postcode" in tool.name else ""
                lines.append(f"- {tool.name}: {tool.description}{hint}")
            lines.append("")
            lines.append(EXTERNAL_TOOLS_GUIDE)

        return "\n".join(lines)

    async def dispatch_tool_call(self, name: str, arguments: Dict[str, Any]) -> str:
        if self.external_transport is None:
            logger.warning(f"No dispatcher for tool: {name}")
            return tool_error(f"No dispatcher for tool: {name}")
        return await call_with_reconnect(
            self.external_transport, name, arguments, self.dispatch_config
        )
