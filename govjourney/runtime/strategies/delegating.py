"""
Tool-delegating strategy.

Policy and state authority live behind service tools
(``*_check_eligibility``, ``*_advance_state``); the model calls them and the
orchestrator learns about state changes by reading their results back out
of the tool loop.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from govjourney.artefacts.schema import ServiceArtefacts, slug_from_id
from govjourney.config.settings import ToolDispatchConfig
from govjourney.runtime.protocols import (
    CallableTransport,
    Message,
    ReportedTransition,
    ToolDefinition,
    ToolTransport,
)
from govjourney.runtime.service_tools import ServiceToolHandler, is_service_tool
from govjourney.runtime.strategies.base import (
    ServiceStrategy,
    StrategyContext,
    call_with_reconnect,
    tool_error,
)
from govjourney.runtime.strategies.registry import register_strategy

logger = logging.getLogger(__name__)


ResourceReader = Callable[[str], Awaitable[Optional[str]]]
PromptReader = Callable[[str], Awaitable[Optional[str]]]

# (uri suffix, prompt label)
SERVICE_RESOURCES = (
    ("manifest", "SERVICE MANIFEST"),
    ("policy", "POLICY RULES"),
    ("consent", "CONSENT MODEL"),
    ("state-model", "STATE MODEL"),
)


@register_strategy("delegating")
class DelegatingStrategy(ServiceStrategy):
    """
    Route service tools to a service transport and everything else to an
    external data transport.

    Both transports get one reconnect-and-retry on a dropped connection.
    Resource and prompt readers are optional; when either fails the context
    is built without that section.

    Example:
        ```python
        strategy = DelegatingStrategy.from_artefacts([uc_artefacts])
        orchestrator = Orchestrator(adapter, strategy=strategy)
        ```
    """

    def __init__(
        self,
        service_tools: List[ToolDefinition],
        service_transport: ToolTransport,
        external_tools: Optional[List[ToolDefinition]] = None,
        external_transport: Optional[ToolTransport] = None,
        resource_reader: Optional[ResourceReader] = None,
        prompt_reader: Optional[PromptReader] = None,
        dispatch_config: Optional[ToolDispatchConfig] = None,
    ):
        self.service_tools = list(service_tools)
        self.service_transport = service_transport
        self.external_tools = list(external_tools or [])
        self.external_transport = external_transport
        self.resource_reader = resource_reader
        self.prompt_reader = prompt_reader
        self.dispatch_config = dispatch_config or ToolDispatchConfig()

    @classmethod
    def from_artefacts(
        cls, services: Iterable[ServiceArtefacts], **kwargs: Any
    ) -> "DelegatingStrategy":
        """Build a strategy whose service tools run in-process."""
        handler = ServiceToolHandler(services)
        return cls(
            service_tools=handler.tools,
            service_transport=CallableTransport(handler.dispatch),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "delegating"

    def build_tools(self, ctx: StrategyContext) -> List[ToolDefinition]:
        return self.service_tools + self.external_tools

    async def build_service_context(self, ctx: StrategyContext) -> str:
        lines: List[str] = []

        if self.resource_reader is not None:
            for suffix, label in SERVICE_RESOURCES:
                uri = f"service://{ctx.service_id}/{suffix}"
                try:
                    content = await self.resource_reader(uri)
                except Exception as e:
                    logger.debug(f"Resource {uri} unavailable: {e}")
                    continue
                if content:
                    lines.append(f"\n{label}:\n{content}")

        if self.prompt_reader is not None:
            prompt_name = f"{slug_from_id(ctx.service_id).replace('-', '_')}_journey"
            try:
                guide = await self.prompt_reader(prompt_name)
            except Exception as e:
                logger.debug(f"Prompt {prompt_name} unavailable: {e}")
                guide = None
            if guide:
                lines.append(f"\nJOURNEY GUIDE:\n{guide}")

        lines.extend(
            [
                "",
                "SERVICE TOOLS:",
                "You have access to tools for the government service the citizen is using.",
                "",
                "For the current service, use these tools to guide the citizen:",
                "- Use the _check_eligibility tool to evaluate whether the citizen qualifies "
                "(pass their data as citizen_data)",
                "- Use the _advance_state tool to transition to the next step "
                "(provide current_state and trigger)",
                "",
                f'IMPORTANT: The citizen\'s current state is "{ctx.current_state}". '
                "When using _advance_state, pass this as current_state.",
                "After advancing state, tell the citizen what happened and what comes next.",
                "Do NOT fabricate eligibility results, payment amounts, dates, or reference "
                "numbers; use the tools.",
                "",
                "The citizen's data for eligibility checks:",
                json.dumps(ctx.persona_data, indent=2, default=str),
            ]
        )

        if self.external_tools:
            lines.append("")
            lines.append("LIVE GOV.UK DATA TOOLS:")
            lines.append("You also have access to tools for real UK government data:")
            for tool in self.external_tools:
                lines.append(f"- {tool.name}: {tool.description}")
            if ctx.postcode:
                lines.append(f"The citizen's postcode is {ctx.postcode}.")
            lines.append("")
            lines.append('Present all information naturally. Do NOT mention "tools" or "MCP" to the user.')

        return "\n".join(lines)

    async def dispatch_tool_call(self, name: str, arguments: Dict[str, Any]) -> str:
        if is_service_tool(name):
            transport = self.service_transport
        else:
            transport = self.external_transport

        if transport is None:
            logger.warning(f"No dispatcher for tool: {name}")
            return tool_error(f"No dispatcher for tool: {name}")

        logger.debug(f"Dispatching {name} via {type(transport).__name__}")
        return await call_with_reconnect(transport, name, arguments, self.dispatch_config)

    def extract_state_transitions(
        self, loop_messages: List[Message]
    ) -> List[ReportedTransition]:
        """
        Collect transitions from ``tool_result`` blocks shaped like
        ``{"success": true, "fromState": ..., "toState": ..., "trigger": ...}``.
        """
        transitions: List[ReportedTransition] = []

        for message in loop_messages:
            content = message.get("content")
            if message.get("role") != "user" or not isinstance(content, list):
                continue
            for part in content:
                if not isinstance(part, dict) or part.get("type") != "tool_result":
                    continue
                text = part.get("content")
                if not isinstance(text, str):
                    continue
                try:
                    parsed = json.loads(text)
                except ValueError:
                    continue
                if not isinstance(parsed, dict):
                    continue
                if parsed.get("success") and parsed.get("fromState") and parsed.get("toState"):
                    transitions.append(
                        ReportedTransition(
                            from_state=parsed["fromState"],
                            to_state=parsed["toState"],
                            trigger=parsed.get("trigger") or "unknown",
                        )
                    )

        return transitions
