"""
Journey orchestrator.

One ``run`` is one request/response cycle:

    evaluate policy -> seed state -> build prompt -> tool loop against the
    model -> parse structured output -> reconcile transitions -> task overlay
    -> consent -> handoff -> response

Eligibility, consent gating and step ordering are decided here
deterministically; the model only proposes. All I/O happens behind the
injected LLM adapter and strategy, and every per-request object is created
fresh, so concurrent runs share nothing except the handoff failure counter.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from govjourney.artefacts.schema import (
    CapabilityManifest,
    ConsentModel,
    PolicyRuleset,
    ServiceArtefacts,
    StateInstructions,
    StateModelDefinition,
)
from govjourney.config.settings import JourneySettings, OrchestratorConfig
from govjourney.journey.field_collector import FieldCollector
from govjourney.journey.state_machine import StateMachine
from govjourney.policy.evaluator import PolicyEvaluator, PolicyResult, PolicySummary
from govjourney.runtime.handoff import HandoffCitizen, HandoffManager, HandoffPackage
from govjourney.runtime.prompts import PromptInputs, build_system_prompt, hash_prompt
from govjourney.runtime.protocols import LLMAdapter, Message, ReportedTransition
from govjourney.runtime.strategies.base import ServiceStrategy, StrategyContext, tool_error
from govjourney.runtime.strategies.inline import InlineStrategy
from govjourney.runtime.strategies.registry import StrategyRegistry
from govjourney.runtime.structured_output import (
    ExtractedFact,
    MalformedModelOutput,
    parse_model_output,
)
from govjourney.runtime.tasks import JourneyTask, apply_task_overlay, build_tasks
from govjourney.tracing.otel_tracer import JourneyTracer

logger = logging.getLogger(__name__)


FLOOD_TOOL = "ea_current_floods"
NO_REASONING = "No internal reasoning available for this response."

FloodDataHandler = Callable[[str], Awaitable[str]]


class LoopPhase(Enum):
    """Phases of the bounded model/tool loop."""

    EVALUATING = "evaluating"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"


class TransitionSource(Enum):
    TOOL = "tool"
    PROPOSED = "proposed"
    FORCED = "forced"
    AUTO = "auto"


@dataclass(frozen=True)
class AppliedTransition:
    from_state: str
    to_state: str
    trigger: str
    source: TransitionSource

    def to_dict(self) -> Dict[str, str]:
        return {
            "fromState": self.from_state,
            "toState": self.to_state,
            "trigger": self.trigger,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class OrchestratorInput:
    """
    Everything one request needs. Not mutated by the orchestrator.

    ``policy``, ``state_model``, ``consent`` and ``state_instructions`` fall
    back to the matching entries in ``artefacts`` when not given directly.
    Any of them may be absent; the corresponding feature is then skipped.
    """

    service_id: str
    messages: List[Message]
    agent: str = "agent"
    persona: str = ""
    scenario: str = ""
    current_state: Optional[str] = None
    state_history: List[str] = field(default_factory=list)
    persona_data: Dict[str, Any] = field(default_factory=dict)
    agent_prompt: str = ""
    persona_prompt: str = ""
    scenario_prompt: str = ""
    artefacts: Optional[ServiceArtefacts] = None
    policy: Optional[PolicyRuleset] = None
    state_model: Optional[StateModelDefinition] = None
    consent: Optional[ConsentModel] = None
    state_instructions: Optional[StateInstructions] = None
    policy_context: Optional[Dict[str, Any]] = None
    generate_title: Optional[bool] = None
    facts_already_known: str = ""
    unresolved_contradictions: str = ""
    failure_key: Optional[str] = None
    flood_data_handler: Optional[FloodDataHandler] = None

    def _from_artefacts(self, name: str) -> Any:
        value = getattr(self, name)
        if value is None and self.artefacts is not None:
            value = getattr(self.artefacts, name)
        return value

    @property
    def resolved_policy(self) -> Optional[PolicyRuleset]:
        return self._from_artefacts("policy")

    @property
    def resolved_state_model(self) -> Optional[StateModelDefinition]:
        return self._from_artefacts("state_model")

    @property
    def resolved_consent(self) -> Optional[ConsentModel]:
        return self._from_artefacts("consent")

    @property
    def resolved_state_instructions(self) -> Optional[StateInstructions]:
        return self._from_artefacts("state_instructions")

    @property
    def manifest(self) -> Optional[CapabilityManifest]:
        return self.artefacts.manifest if self.artefacts else None


@dataclass
class JourneyStateInfo:
    current_state: str
    allowed_transitions: List[str]
    state_history: List[str]
    previous_state: Optional[str] = None
    trigger: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentState": self.current_state,
            "previousState": self.previous_state,
            "trigger": self.trigger,
            "allowedTransitions": self.allowed_transitions,
            "stateHistory": self.state_history,
        }


@dataclass
class ConsentRequest:
    id: str
    description: str
    data_shared: List[str]
    source: str
    purpose: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "data_shared": self.data_shared,
            "source": self.source,
            "purpose": self.purpose,
        }


@dataclass
class HandoffInfo:
    reason: str
    description: str
    urgency: str
    package: HandoffPackage
    triggered: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggered": self.triggered,
            "reason": self.reason,
            "description": self.description,
            "urgency": self.urgency,
            "routing": self.package.routing.to_dict(),
        }


@dataclass
class VersionMetadata:
    prompt_hash: str
    ruleset_version: Optional[str] = None
    state_model_version: Optional[str] = None
    model_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promptHash": self.prompt_hash,
            "rulesetVersion": self.ruleset_version,
            "stateModelVersion": self.state_model_version,
            "modelVersion": self.model_version,
        }


@dataclass
class OrchestratorOutput:
    """Response for one request, assembled once at the end of ``run``."""

    response: str
    reasoning: str
    version: VersionMetadata
    tools_used: List[str] = field(default_factory=list)
    conversation_title: Optional[str] = None
    tasks: List[JourneyTask] = field(default_factory=list)
    policy_result: Optional[PolicySummary] = None
    handoff: Optional[HandoffInfo] = None
    journey_state: Optional[JourneyStateInfo] = None
    consent_requests: Optional[List[ConsentRequest]] = None
    extracted_facts: List[ExtractedFact] = field(default_factory=list)
    transitions: List[AppliedTransition] = field(default_factory=list)
    malformed_output: Optional[MalformedModelOutput] = None
    field_stats: Optional[Dict[str, Any]] = None
    iterations: int = 0
    loop_exhausted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        policy = None
        if self.policy_result is not None:
            policy = {
                "eligible": self.policy_result.eligible,
                "explanation": self.policy_result.explanation,
                "passedCount": self.policy_result.passed_count,
                "failedCount": self.policy_result.failed_count,
                "edgeCaseCount": self.policy_result.edge_case_count,
            }
        return {
            "response": self.response,
            "reasoning": self.reasoning,
            "toolsUsed": self.tools_used,
            "conversationTitle": self.conversation_title,
            "tasks": [t.to_dict() for t in self.tasks],
            "policyResult": policy,
            "handoff": self.handoff.to_dict() if self.handoff else None,
            "journeyState": self.journey_state.to_dict() if self.journey_state else None,
            "consentRequests": (
                [c.to_dict() for c in self.consent_requests]
                if self.consent_requests is not None
                else None
            ),
            "extractedFields": [f.model_dump() for f in self.extracted_facts],
            "versionMetadata": self.version.to_dict(),
            "loopExhausted": self.loop_exhausted,
        }


def _message_text(message: Optional[Message]) -> str:
    if message is None:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


def _last_user_text(messages: List[Message]) -> str:
    last = next((m for m in reversed(messages) if m.get("role") == "user"), None)
    return _message_text(last)


class Orchestrator:
    """
    Run one journey turn against an LLM adapter and a service strategy.

    Args:
        adapter: Language model adapter
        strategy: Service strategy (defaults to InlineStrategy with no tools)
        handoff_manager: Handoff detector; share one across requests to make
            the repeated-failure trigger work
        max_iterations: Bound on model calls per request
        config: Orchestrator settings
        tracer: Optional OpenTelemetry tracer

    Example:
        ```python
        orchestrator = Orchestrator(LiteLLMAdapter(), strategy=InlineStrategy())
        output = await orchestrator.run(
            OrchestratorInput(
                service_id="dwp.apply-universal-credit",
                messages=[{"role": "user", "content": "I want to apply"}],
                artefacts=registry.get("dwp.apply-universal-credit"),
                policy_context={"age": 30, "jurisdiction": "England"},
            )
        )
        print(output.response, output.journey_state.current_state)
        ```
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        strategy: Optional[ServiceStrategy] = None,
        handoff_manager: Optional[HandoffManager] = None,
        max_iterations: Optional[int] = None,
        config: Optional[OrchestratorConfig] = None,
        evaluator: Optional[PolicyEvaluator] = None,
        tracer: Optional[JourneyTracer] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.adapter = adapter
        self.strategy = strategy or InlineStrategy()
        self.handoff_manager = handoff_manager or HandoffManager()
        self.max_iterations = (
            max_iterations if max_iterations is not None else self.config.max_iterations
        )
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.evaluator = evaluator or PolicyEvaluator()
        self.tracer = tracer or JourneyTracer()

        logger.info(
            f"Orchestrator initialized (strategy={self.strategy.name}, "
            f"max_iterations={self.max_iterations})"
        )

    @classmethod
    def from_settings(
        cls,
        adapter: LLMAdapter,
        settings: JourneySettings,
        strategy: Union[str, ServiceStrategy, None] = None,
        handoff_manager: Optional[HandoffManager] = None,
        **strategy_kwargs: Any,
    ) -> "Orchestrator":
        """
        Build an orchestrator from loaded settings.

        ``strategy`` may be a ready strategy or a registered strategy name
        (default ``"inline"``). A named strategy is created with
        ``settings.tools`` as its dispatch config plus ``strategy_kwargs``.
        """
        if strategy is None or isinstance(strategy, str):
            strategy = StrategyRegistry.create(
                strategy or "inline", dispatch_config=settings.tools, **strategy_kwargs
            )
        return cls(
            adapter,
            strategy=strategy,
            handoff_manager=handoff_manager or HandoffManager(config=settings.handoff),
            config=settings.orchestrator,
            tracer=JourneyTracer(settings.otel),
        )

    async def run(self, request: OrchestratorInput) -> OrchestratorOutput:
        with self.tracer.run_span(request.service_id) as span:
            output = await self._run(request, span)
            self.tracer.set_attributes(
                span,
                {
                    "journey.state.to": (
                        output.journey_state.current_state if output.journey_state else None
                    ),
                    "journey.prompt_hash": output.version.prompt_hash,
                    "journey.iterations": output.iterations,
                    "journey.loop_exhausted": output.loop_exhausted,
                },
            )
            return output

    async def _run(self, request: OrchestratorInput, span: Any) -> OrchestratorOutput:
        policy = request.resolved_policy
        state_model = request.resolved_state_model
        consent = request.resolved_consent
        instructions = request.resolved_state_instructions
        persona_data = request.persona_data or {}

        # Policy
        policy_result: Optional[PolicyResult] = None
        if policy is not None and request.policy_context is not None:
            policy_result = self.evaluator.evaluate(policy, request.policy_context)
        policy_summary = policy_result.summary() if policy_result else None

        # State
        seed_state = request.current_state or (
            state_model.initial_state.id if state_model is not None else self.config.default_state
        )
        machine: Optional[StateMachine] = None
        if state_model is not None:
            machine = StateMachine(state_model)
            machine.set_state(seed_state)
        self.tracer.set_attributes(span, {"journey.state.from": seed_state})

        # Fields
        collector: Optional[FieldCollector] = None
        manifest = request.manifest
        if manifest is not None and manifest.input_schema is not None:
            collector = FieldCollector(manifest.input_schema)
            collector.seed_from_persona(persona_data)

        # Prompt and tools
        strategy_ctx = StrategyContext(
            service_id=request.service_id,
            persona_data=request.policy_context or persona_data,
            current_state=machine.get_state() if machine else seed_state,
            state_history=list(request.state_history),
            policy_result=policy_result,
            artefacts=request.artefacts,
            state_instructions=instructions,
        )
        generate_title = (
            request.generate_title
            if request.generate_title is not None
            else self.config.generate_title_default
        )
        system_prompt = build_system_prompt(
            PromptInputs(
                agent=request.agent,
                scenario=request.scenario,
                agent_prompt=request.agent_prompt,
                persona_prompt=request.persona_prompt,
                scenario_prompt=request.scenario_prompt,
                persona_data=persona_data,
                service_context=await self.strategy.build_service_context(strategy_ctx),
                facts_already_known=request.facts_already_known,
                unresolved_contradictions=request.unresolved_contradictions,
                generate_title=generate_title,
                next_fields_limit=self.config.next_fields_limit,
            ),
            machine=machine,
            consent=consent,
            instructions=instructions,
            collector=collector,
        )
        prompt_hash = hash_prompt(system_prompt)
        logger.debug(f"System prompt for {request.service_id}: hash={prompt_hash}")

        tools = self.strategy.build_tools(strategy_ctx)

        # Model loop
        loop_messages: List[Message] = list(request.messages)
        tools_used: List[str] = []
        reasoning = ""
        response_text = ""
        iterations = 0
        phase = LoopPhase.EVALUATING

        while phase != LoopPhase.DONE and iterations < self.max_iterations:
            iterations += 1
            phase = LoopPhase.AWAITING_MODEL
            result = await self.adapter.chat(system_prompt, loop_messages, tools or None)

            if result.reasoning:
                reasoning = result.reasoning
            if result.response_text:
                response_text = result.response_text

            if not result.wants_tools:
                response_text = result.response_text
                phase = LoopPhase.DONE
                break

            phase = LoopPhase.DISPATCHING_TOOLS
            loop_messages.append({"role": "assistant", "content": result.raw_content})
            tool_results = []
            for call in result.tool_calls:
                tools_used.append(call.name)
                self.tracer.log_tool_call(span, call.name, iterations)
                content = await self._dispatch(call.name, call.input, request, persona_data)
                tool_results.append(
                    {"type": "tool_result", "tool_use_id": call.id, "content": content}
                )
            loop_messages.append({"role": "user", "content": tool_results})

        loop_exhausted = phase != LoopPhase.DONE
        if loop_exhausted:
            logger.warning(
                f"Tool loop for {request.service_id} hit max_iterations={self.max_iterations} "
                f"without a final response; returning last text"
            )
            self.tracer.log_loop_exhausted(span, iterations)

        # Structured output
        parsed = parse_model_output(response_text)
        structured = parsed.output
        if parsed.malformed is not None:
            self.tracer.log_malformed_output(span, parsed.malformed.reason, parsed.malformed.snippet)

        title = structured.title if generate_title and structured.title else None
        tasks = build_tasks(structured.tasks)

        # Transitions
        reported = self.strategy.extract_state_transitions(loop_messages)
        transitions = self._reconcile(
            machine,
            instructions,
            reported,
            structured.proposed_transition,
            _last_user_text(request.messages),
        )
        for t in transitions:
            self.tracer.log_transition(span, t.from_state, t.to_state, t.trigger, t.source.value)

        journey_state = self._journey_state(machine, seed_state, request.state_history, transitions)

        if machine is not None:
            tasks = apply_task_overlay(tasks, seed_state, machine.get_state(), bool(transitions))

        # Consent
        consent_requests: Optional[List[ConsentRequest]] = None
        if (
            consent is not None
            and machine is not None
            and machine.get_state() == self.config.eligibility_checked_state
        ):
            consent_requests = [
                ConsentRequest(
                    id=g.id,
                    description=g.description,
                    data_shared=list(g.data_shared),
                    source=g.source,
                    purpose=g.purpose,
                )
                for g in consent.grants
            ]

        # Handoff
        handoff = self._detect_handoff(request, policy_summary, persona_data, span)

        # Facts
        if collector is not None:
            for fact in structured.extracted_facts:
                collector.record_field(fact.key, fact.value, "conversation")

        version = VersionMetadata(
            prompt_hash=prompt_hash,
            ruleset_version=policy.version if policy else None,
            state_model_version=state_model.version if state_model else None,
            model_version=getattr(self.adapter, "model", None),
        )

        logger.info(
            f"Run complete for {request.service_id}: "
            f"{seed_state} -> {journey_state.current_state if journey_state else seed_state} "
            f"({len(transitions)} transitions, {iterations} iterations, tools={len(tools_used)})"
        )

        return OrchestratorOutput(
            response=parsed.clean_text,
            reasoning=reasoning or NO_REASONING,
            version=version,
            tools_used=tools_used,
            conversation_title=title,
            tasks=tasks,
            policy_result=policy_summary,
            handoff=handoff,
            journey_state=journey_state,
            consent_requests=consent_requests,
            extracted_facts=list(structured.extracted_facts),
            transitions=transitions,
            malformed_output=parsed.malformed,
            field_stats=collector.to_stats() if collector else None,
            iterations=iterations,
            loop_exhausted=loop_exhausted,
        )

    async def _dispatch(
        self,
        name: str,
        arguments: Dict[str, Any],
        request: OrchestratorInput,
        persona_data: Dict[str, Any],
    ) -> str:
        if name == FLOOD_TOOL and request.flood_data_handler is not None:
            address = persona_data.get("address")
            city = address.get("city", "") if isinstance(address, dict) else ""
            try:
                return await request.flood_data_handler(city or "")
            except Exception as e:
                logger.warning(f"Flood data handler failed: {e}")
                return tool_error(f"Tool call failed: {e}")
        return await self.strategy.dispatch_tool_call(name, arguments)

    def _reconcile(
        self,
        machine: Optional[StateMachine],
        instructions: Optional[StateInstructions],
        reported: List[ReportedTransition],
        proposed: Optional[str],
        user_text: str,
    ) -> List[AppliedTransition]:
        """
        Apply transitions in fixed priority order:
        tool-reported, model-proposed, forced chain, auto, forced chain again.
        """
        applied = [
            AppliedTransition(r.from_state, r.to_state, r.trigger, TransitionSource.TOOL)
            for r in reported
        ]
        if machine is None:
            return applied

        if applied:
            # Remote tools hold the transition authority; follow them
            machine.set_state(applied[-1].to_state)

        if proposed and not applied:
            outcome = machine.transition(proposed)
            if outcome.success:
                applied.append(
                    AppliedTransition(
                        outcome.from_state, outcome.to_state, proposed, TransitionSource.PROPOSED
                    )
                )
            else:
                logger.debug(f"Dropped proposed transition: {outcome.error}")

        forced = instructions.forced_transitions if instructions else {}
        self._apply_forced(machine, forced, applied)

        if not applied and instructions is not None:
            for rule in instructions.auto_transitions:
                if rule.from_state != machine.get_state():
                    continue
                if re.search(rule.pattern, user_text, re.IGNORECASE):
                    outcome = machine.transition(rule.trigger)
                    if outcome.success:
                        applied.append(
                            AppliedTransition(
                                outcome.from_state,
                                outcome.to_state,
                                rule.trigger,
                                TransitionSource.AUTO,
                            )
                        )
                    break

        self._apply_forced(machine, forced, applied)
        return applied

    def _apply_forced(
        self,
        machine: StateMachine,
        forced: Dict[str, str],
        applied: List[AppliedTransition],
    ) -> None:
        # A cycle of forced transitions would never settle; cap at one pass
        # per declared transition
        limit = len(machine.definition.transitions)
        steps = 0
        trigger = forced.get(machine.get_state())
        while trigger:
            if steps >= limit:
                logger.warning(f"Forced transition chain stopped after {steps} steps")
                break
            outcome = machine.transition(trigger)
            if not outcome.success:
                break
            applied.append(
                AppliedTransition(outcome.from_state, outcome.to_state, trigger, TransitionSource.FORCED)
            )
            steps += 1
            trigger = forced.get(machine.get_state())

    def _journey_state(
        self,
        machine: Optional[StateMachine],
        seed_state: str,
        client_history: List[str],
        transitions: List[AppliedTransition],
    ) -> Optional[JourneyStateInfo]:
        if machine is None and not transitions:
            return None

        history = list(client_history)
        if seed_state not in history:
            history.append(seed_state)
        for t in transitions:
            if t.to_state not in history:
                history.append(t.to_state)

        if machine is not None:
            current = machine.get_state()
            allowed = machine.allowed_triggers()
        else:
            current = transitions[-1].to_state
            allowed = []

        return JourneyStateInfo(
            current_state=current,
            allowed_transitions=allowed,
            state_history=history,
            previous_state=transitions[0].from_state if transitions else None,
            trigger=transitions[-1].trigger if transitions else None,
        )

    def _detect_handoff(
        self,
        request: OrchestratorInput,
        policy_summary: Optional[PolicySummary],
        persona_data: Dict[str, Any],
        span: Any,
    ) -> Optional[HandoffInfo]:
        check = self.handoff_manager.evaluate_triggers(
            _last_user_text(request.messages),
            failure_key=request.failure_key,
            policy_edge_case=bool(policy_summary and policy_summary.edge_case_count > 0),
        )
        if not check.triggered:
            return None

        trace_id = ""
        if span is not None:
            trace_id = format(span.get_span_context().trace_id, "032x")

        package = self.handoff_manager.create_package(
            reason=check.reason,
            description=check.description,
            agent_assessment=(
                f"Agent {request.agent.upper()} detected handoff trigger during "
                f"{request.scenario} scenario."
            ),
            citizen=HandoffCitizen(
                name=persona_data.get("name") or "Unknown",
                phone=persona_data.get("phone"),
                email=persona_data.get("email"),
            ),
            service=request.manifest,
            steps_completed=[f"Chat conversation ({len(request.messages)} messages)"],
            steps_blocked=[check.description or "Trigger detected"],
            data_collected=[k for k in persona_data if k != "communicationStyle"],
            time_spent=f"{len(request.messages)} exchanges",
            trace_id=trace_id,
        )
        self.tracer.log_handoff(span, check.reason.value, check.description, package.urgency.value)

        return HandoffInfo(
            reason=check.reason.value,
            description=check.description,
            urgency=package.urgency.value,
            package=package,
        )
