"""
Service strategy contract.

A strategy decides how the orchestrator talks to a government service:
inline (policy and state evaluated in-process, the model only gets external
data tools) or delegating (policy and state live behind remote tools). The
same orchestration loop runs over either.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from govjourney.artefacts.schema import ServiceArtefacts, StateInstructions
from govjourney.config.settings import ToolDispatchConfig
from govjourney.exceptions import TransportDisconnectedError
from govjourney.policy.evaluator import PolicyResult
from govjourney.runtime.protocols import (
    Message,
    ReportedTransition,
    ToolDefinition,
    ToolTransport,
)

logger = logging.getLogger(__name__)


@dataclass
class StrategyContext:
    """Per-request inputs a strategy needs to build its prompt and tools."""

    service_id: str
    persona_data: Dict[str, Any] = field(default_factory=dict)
    current_state: str = ""
    state_history: List[str] = field(default_factory=list)
    policy_result: Optional[PolicyResult] = None
    artefacts: Optional[ServiceArtefacts] = None
    state_instructions: Optional[StateInstructions] = None

    @property
    def postcode(self) -> str:
        address = self.persona_data.get("address")
        if isinstance(address, dict):
            return str(address.get("postcode") or "")
        return ""


def tool_error(message: str) -> str:
    return json.dumps({"error": message})


async def call_with_reconnect(
    transport: ToolTransport,
    name: str,
    arguments: Dict[str, Any],
    config: ToolDispatchConfig,
) -> str:
    """
    Call a tool, reconnecting and retrying on a dropped transport.

    Never raises: failures come back as an ``{"error": ...}`` tool result so
    the model can react in-context.
    """
    attempts_left = config.reconnect_attempts

    while True:
        try:
            return await transport.call_tool(name, arguments)
        except Exception as e:
            message = str(e)
            disconnected = isinstance(e, TransportDisconnectedError) or (
                config.reconnect_marker in message
            )
            if not disconnected or attempts_left <= 0:
                logger.warning(f"Tool call failed ({name}): {message}")
                return tool_error(f"Tool call failed: {message}")

            attempts_left -= 1
            logger.warning(f"Connection dropped during {name}, reconnecting...")
            try:
                reconnected = await transport.reconnect()
            except Exception as reconnect_error:
                logger.warning(f"Reconnect failed: {reconnect_error}")
                reconnected = False
            if not reconnected:
                return tool_error(f"Tool call failed: {message}")


class ServiceStrategy(ABC):
    """
    Base class for service strategies.

    Implementations should be registered using the @register_strategy
    decorator so they can be selected by name from configuration.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy identifier (e.g. 'inline', 'delegating')."""
        ...

    @abstractmethod
    def build_tools(self, ctx: StrategyContext) -> List[ToolDefinition]:
        """Tools to offer the model this turn."""
        ...

    @abstractmethod
    async def build_service_context(self, ctx: StrategyContext) -> str:
        """Service-specific text injected verbatim into the system prompt."""
        ...

    @abstractmethod
    async def dispatch_tool_call(self, name: str, arguments: Dict[str, Any]) -> str:
        """
        Execute one tool call.

        Must not raise: failures are returned as tool result text.
        """
        ...

    def extract_state_transitions(
        self, loop_messages: List[Message]
    ) -> List[ReportedTransition]:
        """Transitions reported by remote tools during the loop. None by default."""
        return []
