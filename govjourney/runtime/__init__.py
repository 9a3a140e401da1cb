"""
Journey runtime: the orchestrator and the pieces it composes.

Usage:
    ```python
    from govjourney.runtime import Orchestrator, OrchestratorInput, InlineStrategy

    orchestrator = Orchestrator(adapter, strategy=InlineStrategy())
    output = await orchestrator.run(OrchestratorInput(service_id=..., messages=...))
    ```
"""

from govjourney.runtime.protocols import (
    CallableTransport,
    LLMAdapter,
    LLMChatResult,
    ReportedTransition,
    ToolCall,
    ToolDefinition,
    ToolTransport,
)
from govjourney.runtime.strategies import (
    DelegatingStrategy,
    InlineStrategy,
    ServiceStrategy,
    StrategyContext,
    StrategyRegistry,
    register_strategy,
)
from govjourney.runtime.service_tools import (
    ServiceToolHandler,
    build_service_tools,
    is_service_tool,
    tool_prefix,
)
from govjourney.runtime.structured_output import (
    ExtractedFact,
    MalformedModelOutput,
    ParsedModelOutput,
    ProposedTask,
    StructuredOutput,
    parse_model_output,
)
from govjourney.runtime.tasks import JourneyTask, TaskOverlay, apply_task_overlay
from govjourney.runtime.handoff import (
    FailureCounterStore,
    HandoffManager,
    HandoffPackage,
    HandoffReason,
    HandoffTrigger,
    HandoffUrgency,
    InMemoryFailureCounter,
)
from govjourney.runtime.orchestrator import (
    LoopPhase,
    Orchestrator,
    OrchestratorInput,
    OrchestratorOutput,
)

__all__ = [
    "CallableTransport",
    "LLMAdapter",
    "LLMChatResult",
    "ReportedTransition",
    "ToolCall",
    "ToolDefinition",
    "ToolTransport",
    "DelegatingStrategy",
    "InlineStrategy",
    "ServiceStrategy",
    "StrategyContext",
    "StrategyRegistry",
    "register_strategy",
    "ServiceToolHandler",
    "build_service_tools",
    "is_service_tool",
    "tool_prefix",
    "ExtractedFact",
    "MalformedModelOutput",
    "ParsedModelOutput",
    "ProposedTask",
    "StructuredOutput",
    "parse_model_output",
    "JourneyTask",
    "TaskOverlay",
    "apply_task_overlay",
    "FailureCounterStore",
    "HandoffManager",
    "HandoffPackage",
    "HandoffReason",
    "HandoffTrigger",
    "HandoffUrgency",
    "InMemoryFailureCounter",
    "LoopPhase",
    "Orchestrator",
    "OrchestratorInput",
    "OrchestratorOutput",
]
