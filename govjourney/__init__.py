"""
GovJourney - Conversational orchestration for government services.

Guides a citizen through a government service journey. Each request runs a
bounded model/tool loop, then reconciles the journey state against the
service's declarative artefacts: eligibility policy, state model, consent
model and per-state instructions. Eligibility and state transitions are
decided by code, never by the model alone.

Quick Start:
    ```python
    from govjourney import (
        LiteLLMAdapter,
        Orchestrator,
        OrchestratorInput,
        ServiceRegistry,
    )

    registry = ServiceRegistry()
    registry.load_from_directory("./services")

    orchestrator = Orchestrator(LiteLLMAdapter())
    output = await orchestrator.run(
        OrchestratorInput(
            service_id="dwp.apply-universal-credit",
            messages=[{"role": "user", "content": "I lost my job last week"}],
            artefacts=registry.get("dwp.apply-universal-credit"),
        )
    )
    print(output.response, output.journey_state.current_state)
    ```

Checking artefacts from the command line:
    ```bash
    govjourney validate services/apply-universal-credit/state-model.json
    govjourney evaluate policy.json citizen.yaml
    ```
"""

__version__ = "0.1.0"

# Core configuration
from govjourney.config.settings import JourneySettings

# Errors
from govjourney.exceptions import (
    JourneyError,
    ArtefactError,
    ToolDispatchError,
    TransportDisconnectedError,
    LLMAdapterError,
)

# Service artefacts
from govjourney.artefacts import (
    ArtefactParser,
    CapabilityManifest,
    ConsentModel,
    PolicyRuleset,
    ServiceArtefacts,
    ServiceRegistry,
    StateInstructions,
    StateModelDefinition,
)

# Deterministic components
from govjourney.policy import ConsentManager, PolicyEvaluator, PolicyResult
from govjourney.journey import FieldCollector, StateMachine, TransitionOutcome

# Runtime
from govjourney.runtime import (
    DelegatingStrategy,
    HandoffManager,
    InlineStrategy,
    LLMAdapter,
    Orchestrator,
    OrchestratorInput,
    OrchestratorOutput,
    ServiceStrategy,
    ServiceToolHandler,
)
from govjourney.adapters import LiteLLMAdapter
from govjourney.tracing import JourneyTracer

__all__ = [
    # Version
    "__version__",
    # Configuration
    "JourneySettings",
    # Errors
    "JourneyError",
    "ArtefactError",
    "ToolDispatchError",
    "TransportDisconnectedError",
    "LLMAdapterError",
    # Artefacts
    "ArtefactParser",
    "CapabilityManifest",
    "ConsentModel",
    "PolicyRuleset",
    "ServiceArtefacts",
    "ServiceRegistry",
    "StateInstructions",
    "StateModelDefinition",
    # Deterministic components
    "ConsentManager",
    "PolicyEvaluator",
    "PolicyResult",
    "FieldCollector",
    "StateMachine",
    "TransitionOutcome",
    # Runtime
    "DelegatingStrategy",
    "HandoffManager",
    "InlineStrategy",
    "LLMAdapter",
    "Orchestrator",
    "OrchestratorInput",
    "OrchestratorOutput",
    "ServiceStrategy",
    "ServiceToolHandler",
    "LiteLLMAdapter",
    "JourneyTracer",
]
