"""
Service artefact schema using Pydantic models.

Each government service is described by four artefacts plus optional
per-state guidance:
- Capability manifest: what the service is, its input schema, handoff contact
- Policy ruleset: declarative eligibility rules and edge cases
- State model: the journey graph (states and triggered transitions)
- Consent model: the data-sharing grants the citizen must review
- State instructions: per-state prompt text, forced and auto transitions

Example state model (YAML):
```yaml
id: dwp.apply-universal-credit
version: "1.2"
states:
  - id: not-started
    type: initial
  - id: eligibility-checked
  - id: consent-given
  - id: claim-submitted
    type: terminal
    receipt: true
transitions:
  - from: not-started
    to: eligibility-checked
    trigger: check-eligibility
  - from: eligibility-checked
    to: consent-given
    trigger: grant-consent
  - from: consent-given
    to: claim-submitted
    trigger: submit-claim
```
"""

import re
from collections import deque
from typing import Optional, List, Dict, Any, Literal, Tuple

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


# Operators understood by the policy evaluator. Rules using anything else
# still load; they simply never pass.
KNOWN_OPERATORS = (">=", "<=", "==", "!=", "exists", "not-exists", "in")


# ---------------------------------------------------------------------------
# Capability manifest
# ---------------------------------------------------------------------------


class JsonSchema(BaseModel):
    """JSON-schema-shaped description of a service's inputs."""

    model_config = ConfigDict(extra="allow")

    type: str = "object"
    properties: Dict[str, Any] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


class HandoffContact(BaseModel):
    escalation_phone: Optional[str] = None
    opening_hours: Optional[str] = None
    department_queue: Optional[str] = None


class Redress(BaseModel):
    complaint_url: Optional[str] = None
    appeal_process: Optional[str] = None
    ombudsman: Optional[str] = None


class CapabilityManifest(BaseModel):
    """Metadata describing one government service."""

    id: str = Field(..., min_length=1)
    version: str = "1.0"
    name: str
    description: str = ""
    department: str = "Unknown"
    jurisdiction: Optional[str] = None

    input_schema: Optional[JsonSchema] = None
    output_schema: Optional[JsonSchema] = None

    constraints: Dict[str, Any] = Field(default_factory=dict)
    eligibility_ruleset_id: Optional[str] = None
    consent_requirements: List[str] = Field(default_factory=list)
    evidence_requirements: List[str] = Field(default_factory=list)

    redress: Optional[Redress] = None
    audit_requirements: Dict[str, Any] = Field(default_factory=dict)
    handoff: Optional[HandoffContact] = None

    @property
    def slug(self) -> str:
        """Service id without its department prefix (``dwp.apply-uc`` -> ``apply-uc``)."""
        return slug_from_id(self.id)


def slug_from_id(service_id: str) -> str:
    """Strip the leading department segment from a dotted service id."""
    parts = service_id.split(".")
    if len(parts) > 1:
        return ".".join(parts[1:])
    return service_id


# ---------------------------------------------------------------------------
# Policy ruleset
# ---------------------------------------------------------------------------


class PolicyCondition(BaseModel):
    """
    A single field test.

    ``value`` is optional; whether it was supplied at all matters for the
    equality operators, so the evaluator checks ``model_fields_set`` rather
    than comparing against None.
    """

    field: str = Field(..., min_length=1)
    operator: str
    value: Any = None


class PolicyRule(BaseModel):
    id: str
    description: str = ""
    condition: PolicyCondition
    reason_if_failed: str = ""
    evidence_source: Optional[str] = None
    alternative_service: Optional[str] = None
    triggers_handoff: bool = False


class PolicyEdgeCase(BaseModel):
    """A condition flagged for human attention regardless of eligibility."""

    id: str
    description: str = ""
    # Dot-separated path into the evaluation context
    detection: str
    action: str = ""


class PolicyRuleset(BaseModel):
    """Ordered eligibility rules for one service. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    version: str = "1.0"
    rules: List[PolicyRule] = Field(default_factory=list)
    explanation_template: Optional[str] = None
    edge_cases: List[PolicyEdgeCase] = Field(default_factory=list)

    def unknown_operators(self) -> List[Tuple[str, str]]:
        """``(rule_id, operator)`` pairs for conditions outside KNOWN_OPERATORS."""
        return [
            (r.id, r.condition.operator)
            for r in self.rules
            if r.condition.operator not in KNOWN_OPERATORS
        ]


# ---------------------------------------------------------------------------
# State model
# ---------------------------------------------------------------------------


class StateDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    type: Optional[Literal["initial", "terminal"]] = None
    receipt: bool = False

    @property
    def is_initial(self) -> bool:
        return self.type == "initial"

    @property
    def is_terminal(self) -> bool:
        return self.type == "terminal"


class TransitionDefinition(BaseModel):
    """An edge in the journey graph, resolved by ``(from_state, trigger)``."""

    model_config = ConfigDict(populate_by_name=True)

    from_state: str = Field(..., alias="from")
    to_state: str = Field(..., alias="to")
    trigger: Optional[str] = None
    condition: Optional[str] = None


class StateModelDefinition(BaseModel):
    """
    Complete journey graph.

    Validation rules (checked when the model is loaded):
    - exactly one state has type "initial"
    - transitions only reference declared states
    - terminal states have no outgoing transitions
    - a trigger is unique among transitions leaving the same state
    - every state is reachable from the initial state
    """

    id: str = ""
    version: str = "1.0"
    states: List[StateDefinition]
    transitions: List[TransitionDefinition] = Field(default_factory=list)

    @field_validator("states")
    @classmethod
    def validate_single_initial_state(
        cls, v: List[StateDefinition]
    ) -> List[StateDefinition]:
        initial = [s.id for s in v if s.is_initial]
        if len(initial) != 1:
            raise ValueError(
                f"State model must have exactly one initial state, found {len(initial)}"
            )
        ids = [s.id for s in v]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate state ids: {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def validate_graph(self):
        state_ids = {s.id for s in self.states}
        terminal = {s.id for s in self.states if s.is_terminal}

        seen_triggers = set()
        for t in self.transitions:
            if t.from_state not in state_ids:
                raise ValueError(f"Transition references unknown state: {t.from_state}")
            if t.to_state not in state_ids:
                raise ValueError(f"Transition references unknown state: {t.to_state}")
            if t.from_state in terminal:
                raise ValueError(
                    f"Terminal state '{t.from_state}' cannot have outgoing transitions"
                )
            if t.trigger:
                key = (t.from_state, t.trigger)
                if key in seen_triggers:
                    raise ValueError(
                        f"Trigger '{t.trigger}' is declared twice from state '{t.from_state}'"
                    )
                seen_triggers.add(key)

        unreachable = state_ids - self._reachable_from(self.initial_state.id)
        if unreachable:
            raise ValueError(
                f"States unreachable from initial state: {', '.join(sorted(unreachable))}"
            )

        return self

    def _reachable_from(self, start: str) -> set:
        reached = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for t in self.get_transitions_from(current):
                if t.to_state not in reached:
                    reached.add(t.to_state)
                    queue.append(t.to_state)
        return reached

    @property
    def initial_state(self) -> StateDefinition:
        return next(s for s in self.states if s.is_initial)

    def get_state(self, state_id: str) -> Optional[StateDefinition]:
        """Get state by id."""
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_transitions_from(self, state_id: str) -> List[TransitionDefinition]:
        """Get all transitions leaving a state, in declaration order."""
        return [t for t in self.transitions if t.from_state == state_id]

    def triggers(self) -> List[str]:
        """Distinct trigger names, in declaration order."""
        result: List[str] = []
        for t in self.transitions:
            if t.trigger and t.trigger not in result:
                result.append(t.trigger)
        return result


# ---------------------------------------------------------------------------
# Consent model
# ---------------------------------------------------------------------------


class ConsentGrant(BaseModel):
    id: str
    description: str
    data_shared: List[str] = Field(default_factory=list)
    source: str = ""
    purpose: str = ""
    duration: Literal["session", "until-revoked"] = "session"
    required: bool = True


class ConsentRevocation(BaseModel):
    mechanism: str
    effect: str


class ConsentDelegation(BaseModel):
    agent_identity: str
    scopes: List[str] = Field(default_factory=list)
    limitations: str = ""


class ConsentModel(BaseModel):
    id: str = ""
    version: str = "1.0"
    grants: List[ConsentGrant] = Field(default_factory=list)
    revocation: Optional[ConsentRevocation] = None
    delegation: Optional[ConsentDelegation] = None


# ---------------------------------------------------------------------------
# State instructions
# ---------------------------------------------------------------------------


class AutoTransition(BaseModel):
    """Apply ``trigger`` from ``from_state`` when the citizen's message matches."""

    model_config = ConfigDict(populate_by_name=True)

    from_state: str = Field(..., alias="fromState")
    trigger: str
    # Case-insensitive regular expression
    pattern: str

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid auto-transition pattern {v!r}: {e}")
        return v


class StateInstructions(BaseModel):
    """Deterministic per-state guidance layered on top of a state model."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = "1.0"
    instructions: Dict[str, str] = Field(default_factory=dict)
    forced_transitions: Dict[str, str] = Field(
        default_factory=dict, alias="forcedTransitions"
    )
    auto_transitions: List[AutoTransition] = Field(
        default_factory=list, alias="autoTransitions"
    )


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


class ServiceArtefacts(BaseModel):
    """Everything known about one service. Only the manifest is mandatory."""

    manifest: CapabilityManifest
    policy: Optional[PolicyRuleset] = None
    state_model: Optional[StateModelDefinition] = None
    consent: Optional[ConsentModel] = None
    state_instructions: Optional[StateInstructions] = None

    @property
    def service_id(self) -> str:
        return self.manifest.id
