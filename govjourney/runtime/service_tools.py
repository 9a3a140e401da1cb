"""
Per-service tool generation and in-process execution.

For each service two tools can be generated from its artefacts:
- ``{prefix}_check_eligibility`` when a policy ruleset exists
- ``{prefix}_advance_state`` when a state model exists

``{prefix}`` is the service slug (id without its department segment) with
``-`` replaced by ``_``, so ``dwp.apply-universal-credit`` gives
``apply_universal_credit_check_eligibility``.

ServiceToolHandler executes those tools against the artefacts directly. It is
the default service-tool dispatcher for the tool-delegating strategy and
stands in for a remote tool server with the same wire format.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from govjourney.artefacts.registry import ServiceRegistry
from govjourney.artefacts.schema import ServiceArtefacts, slug_from_id
from govjourney.journey.state_machine import StateMachine
from govjourney.policy.evaluator import PolicyEvaluator
from govjourney.runtime.protocols import ToolDefinition

logger = logging.getLogger(__name__)


CHECK_ELIGIBILITY = "check_eligibility"
ADVANCE_STATE = "advance_state"
SERVICE_TOOL_ACTIONS = (CHECK_ELIGIBILITY, ADVANCE_STATE)


def tool_prefix(service_id: str) -> str:
    return slug_from_id(service_id).replace("-", "_")


def is_service_tool(name: str) -> bool:
    """Whether ``name`` belongs to a service-tool family (by suffix)."""
    return any(name.endswith(f"_{action}") for action in SERVICE_TOOL_ACTIONS)


def build_service_tools(artefacts: ServiceArtefacts) -> List[ToolDefinition]:
    """Generate the tool definitions a service's artefacts support."""
    prefix = tool_prefix(artefacts.service_id)
    service_name = artefacts.manifest.name
    tools: List[ToolDefinition] = []

    if artefacts.policy is not None:
        tools.append(
            ToolDefinition(
                name=f"{prefix}_{CHECK_ELIGIBILITY}",
                description=(
                    f'Check citizen eligibility for the "{service_name}" service. '
                    "Evaluates policy rules against the provided citizen data and "
                    "returns which rules passed/failed, any detected edge cases, "
                    "and an explanation."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "citizen_data": {
                            "type": "object",
                            "description": (
                                "Citizen context data for policy evaluation "
                                "(e.g. age, jurisdiction, employment_status, savings, etc.)"
                            ),
                        },
                    },
                    "required": ["citizen_data"],
                },
            )
        )

    if artefacts.state_model is not None:
        state_ids = ", ".join(s.id for s in artefacts.state_model.states)
        triggers = ", ".join(artefacts.state_model.triggers())
        tools.append(
            ToolDefinition(
                name=f"{prefix}_{ADVANCE_STATE}",
                description=(
                    f'Attempt a state transition for the "{service_name}" service. '
                    f"Valid states: [{state_ids}]. Valid triggers: [{triggers}]. "
                    "Returns the new state or an error if the transition is not allowed."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "current_state": {
                            "type": "string",
                            "description": f"Current state ID. One of: {state_ids}",
                        },
                        "trigger": {
                            "type": "string",
                            "description": f"Transition trigger name. One of: {triggers}",
                        },
                    },
                    "required": ["current_state", "trigger"],
                },
            )
        )

    return tools


class ServiceToolHandler:
    """
    Execute service tools in-process.

    Results are always JSON or plain text strings; unknown tools and missing
    arguments produce an ``{"error": ...}`` payload rather than raising.

    Example:
        ```python
        handler = ServiceToolHandler([uc_artefacts])
        result = await handler.dispatch(
            "apply_universal_credit_advance_state",
            {"current_state": "not-started", "trigger": "verify-identity"},
        )
        ```
    """

    def __init__(
        self,
        services: Union[ServiceRegistry, Iterable[ServiceArtefacts]],
        evaluator: Optional[PolicyEvaluator] = None,
    ):
        if isinstance(services, ServiceRegistry):
            services = [services.get(sid) for sid in services.list_services()]

        self.evaluator = evaluator or PolicyEvaluator()
        self._tools: List[ToolDefinition] = []
        self._tool_map: Dict[str, Tuple[ServiceArtefacts, str]] = {}

        for artefacts in services:
            prefix = tool_prefix(artefacts.service_id)
            for tool in build_service_tools(artefacts):
                self._tools.append(tool)
                self._tool_map[tool.name] = (artefacts, tool.name[len(prefix) + 1:])

    @property
    def tools(self) -> List[ToolDefinition]:
        return list(self._tools)

    async def dispatch(self, name: str, arguments: Optional[Dict[str, Any]]) -> str:
        return self.handle(name, arguments or {})

    def handle(self, name: str, arguments: Dict[str, Any]) -> str:
        mapping = self._tool_map.get(name)
        if mapping is None:
            logger.warning(f"Unknown service tool: {name}")
            return json.dumps({"error": f"Unknown tool: {name}"})

        artefacts, action = mapping
        if action == CHECK_ELIGIBILITY:
            return self._check_eligibility(artefacts, arguments)
        return self._advance_state(artefacts, arguments)

    def _check_eligibility(
        self, artefacts: ServiceArtefacts, arguments: Dict[str, Any]
    ) -> str:
        citizen_data = arguments.get("citizen_data") or {}
        if not isinstance(citizen_data, dict):
            return json.dumps({"error": "citizen_data must be an object"})

        result = self.evaluator.evaluate(artefacts.policy, citizen_data)
        return json.dumps(result.to_dict(), indent=2, default=str)

    def _advance_state(
        self, artefacts: ServiceArtefacts, arguments: Dict[str, Any]
    ) -> str:
        current_state = arguments.get("current_state")
        trigger = arguments.get("trigger")
        if not current_state or not trigger:
            return json.dumps({"error": "Both current_state and trigger are required."})

        machine = StateMachine(artefacts.state_model)
        machine.set_state(current_state)
        outcome = machine.transition(trigger)

        payload = outcome.to_dict()
        payload.update(
            {
                "isTerminal": machine.is_terminal(),
                "requiresReceipt": machine.requires_receipt(),
                "allowedTransitions": [
                    t.model_dump(by_alias=True, exclude_none=True)
                    for t in machine.allowed_transitions()
                ],
            }
        )
        return json.dumps(payload, indent=2)
