"""
Core protocol definitions for the journey runtime.

These define the contracts the orchestrator depends on but does not
implement: the language model adapter and the transport behind delegated
tools. Both are injected, so the runtime itself performs no I/O.

Loop messages use the Anthropic content-block shape throughout:
``{"role": "user" | "assistant", "content": str | list[dict]}`` where tool
results are ``{"type": "tool_result", "tool_use_id": ..., "content": str}``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional


Message = Dict[str, Any]
ToolDispatcher = Callable[[str, Dict[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class ToolDefinition:
    """A tool offered to the language model."""

    name: str
    description: str
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReportedTransition:
    """A state transition reported by a remote tool result."""

    from_state: str
    to_state: str
    trigger: str


@dataclass
class LLMChatResult:
    """Normalized result of one model call."""

    response_text: str
    stop_reason: str = "end_turn"
    reasoning: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    # Assistant content blocks to echo back into the loop on tool use
    raw_content: Any = None

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use"


class LLMAdapter(ABC):
    """
    Base class for language model adapters.

    The orchestrator treats ``stop_reason == "tool_use"`` as "dispatch the
    requested tools and call again" and anything else as the final answer.
    Timeouts and retries are the adapter's responsibility.
    """

    @abstractmethod
    async def chat(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
    ) -> LLMChatResult:
        """
        Run one model call.

        Args:
            system_prompt: Fully assembled system prompt
            messages: Conversation so far, including tool-loop messages
            tools: Tools the model may request, if any

        Returns:
            LLMChatResult with text, stop reason and any tool calls
        """
        ...


class ToolTransport(ABC):
    """
    Connection to an external tool server.

    Implementations raise ``TransportDisconnectedError`` (or any error whose
    message carries the configured reconnect marker) when the connection has
    dropped, so callers can reconnect once and retry.
    """

    @abstractmethod
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        """Invoke a tool and return its text result."""
        ...

    async def reconnect(self) -> bool:
        """Re-establish the connection. Returns False if that is not possible."""
        return False


class CallableTransport(ToolTransport):
    """Wrap a plain async ``(name, arguments) -> str`` function as a transport."""

    def __init__(
        self,
        fn: ToolDispatcher,
        reconnect: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self._fn = fn
        self._reconnect = reconnect

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        return await self._fn(name, arguments)

    async def reconnect(self) -> bool:
        if self._reconnect is None:
            return False
        return await self._reconnect()
