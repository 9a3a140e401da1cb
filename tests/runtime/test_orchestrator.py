"""Tests for the journey orchestrator."""

import json
from unittest.mock import AsyncMock

import pytest

from govjourney.artefacts.schema import AutoTransition, StateInstructions, StateModelDefinition
from govjourney.config.settings import JourneySettings, OrchestratorConfig
from govjourney.runtime.handoff import HandoffManager, InMemoryFailureCounter
from govjourney.runtime.orchestrator import (
    NO_REASONING,
    Orchestrator,
    OrchestratorInput,
    TransitionSource,
)
from govjourney.runtime.protocols import CallableTransport, ToolDefinition
from govjourney.runtime.strategies import DelegatingStrategy, InlineStrategy
from govjourney.runtime.tasks import HOUSING_OVERLAY

UC = "dwp.apply-universal-credit"


def _request(artefacts=None, text="Hello", **kwargs) -> OrchestratorInput:
    return OrchestratorInput(
        service_id=kwargs.pop("service_id", UC),
        messages=kwargs.pop("messages", [{"role": "user", "content": text}]),
        artefacts=artefacts,
        agent="dot",
        scenario="universal-credit",
        **kwargs,
    )


class TestTransitions:
    @pytest.mark.asyncio
    async def test_proposed_transition_applied_and_block_stripped(
        self, uc_artefacts, make_adapter, text_result, fenced
    ):
        adapter = make_adapter(
            text_result("Thanks for agreeing.\n\n" + fenced('{"stateTransition": "grant-consent"}'))
        )

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, text="ok", current_state="eligibility-checked")
        )

        assert output.journey_state.current_state == "consent-given"
        assert output.journey_state.previous_state == "eligibility-checked"
        assert output.journey_state.trigger == "grant-consent"
        assert output.response == "Thanks for agreeing."
        assert "```" not in output.response
        assert output.transitions[0].source == TransitionSource.PROPOSED

    @pytest.mark.asyncio
    async def test_illegal_proposal_is_dropped(self, uc_artefacts, make_adapter, text_result, fenced):
        adapter = make_adapter(text_result("Done! " + fenced('{"proposedTransition": "submit-claim"}')))

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, text="ok", current_state="consent-given")
        )

        assert output.transitions == []
        assert output.journey_state.current_state == "consent-given"
        assert output.journey_state.allowed_transitions == ["confirm-details"]

    @pytest.mark.asyncio
    async def test_forced_chain_resolves_in_one_pass(
        self, chain_state_model, make_adapter, text_result
    ):
        instructions = StateInstructions(forced_transitions={"a": "t1", "b": "t2"})

        output = await Orchestrator(make_adapter(text_result("Working on it."))).run(
            _request(
                service_id="test.chain",
                state_model=chain_state_model,
                state_instructions=instructions,
                current_state="a",
            )
        )

        assert output.journey_state.current_state == "c"
        assert [(t.from_state, t.to_state) for t in output.transitions] == [("a", "b"), ("b", "c")]
        assert {t.source for t in output.transitions} == {TransitionSource.FORCED}
        assert output.journey_state.state_history == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_forced_pass_runs_again_after_auto_transition(
        self, chain_state_model, make_adapter, text_result
    ):
        instructions = StateInstructions(
            auto_transitions=[AutoTransition(from_state="a", trigger="t1", pattern="yes")],
            forced_transitions={"b": "t2"},
        )

        output = await Orchestrator(make_adapter(text_result("Thanks."))).run(
            _request(
                service_id="test.chain",
                text="yes",
                state_model=chain_state_model,
                state_instructions=instructions,
                current_state="a",
            )
        )

        assert [t.source for t in output.transitions] == [
            TransitionSource.AUTO,
            TransitionSource.FORCED,
        ]
        assert [(t.from_state, t.to_state) for t in output.transitions] == [("a", "b"), ("b", "c")]
        assert output.journey_state.current_state == "c"

    @pytest.mark.asyncio
    async def test_forced_cycle_terminates(self, make_adapter, text_result):
        model = StateModelDefinition.model_validate(
            {
                "states": [{"id": "a", "type": "initial"}, {"id": "b"}],
                "transitions": [
                    {"from": "a", "to": "b", "trigger": "go"},
                    {"from": "b", "to": "a", "trigger": "back"},
                ],
            }
        )
        instructions = StateInstructions(forced_transitions={"a": "go", "b": "back"})

        output = await Orchestrator(make_adapter(text_result("Hi"))).run(
            _request(service_id="test.cycle", state_model=model, state_instructions=instructions)
        )

        # Each of the two forced passes stops after one step per declared transition
        assert len(output.transitions) == 4
        assert output.journey_state.current_state == "a"

    @pytest.mark.asyncio
    async def test_initial_state_forced_forward(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("Welcome!"))).run(
            _request(uc_artefacts)
        )

        assert output.journey_state.current_state == "identity-verified"
        assert output.journey_state.state_history == ["not-started", "identity-verified"]
        assert output.transitions[0].source == TransitionSource.FORCED

    @pytest.mark.asyncio
    async def test_auto_transition_on_citizen_message(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("Great, thank you."))).run(
            _request(uc_artefacts, text="Yes, go ahead", current_state="eligibility-checked")
        )

        assert output.journey_state.current_state == "consent-given"
        assert output.transitions[0].source == TransitionSource.AUTO

    @pytest.mark.asyncio
    async def test_auto_transition_reads_text_blocks(self, uc_artefacts, make_adapter, text_result):
        messages = [{"role": "user", "content": [{"type": "text", "text": "I consent"}]}]

        output = await Orchestrator(make_adapter(text_result("Thanks."))).run(
            _request(uc_artefacts, messages=messages, current_state="eligibility-checked")
        )

        assert output.journey_state.current_state == "consent-given"

    @pytest.mark.asyncio
    async def test_no_auto_transition_after_proposal(
        self, uc_artefacts, make_adapter, text_result, fenced
    ):
        adapter = make_adapter(text_result("Sorry to hear. " + fenced('{"stateTransition": "reject"}')))

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, text="yes", current_state="eligibility-checked")
        )

        assert output.journey_state.current_state == "rejected"
        assert len(output.transitions) == 1

    @pytest.mark.asyncio
    async def test_no_state_model(self, services_dir, make_adapter, text_result):
        from govjourney.artefacts.registry import ServiceRegistry

        artefacts = ServiceRegistry().load_service_directory(services_dir / "check-mot-history")

        output = await Orchestrator(make_adapter(text_result("Here's the MOT history."))).run(
            _request(artefacts, service_id="dvsa.check-mot-history")
        )

        assert output.journey_state is None
        assert output.consent_requests is None
        assert output.policy_result is None


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_delegated_transition_reported_by_tool(
        self, uc_artefacts, make_adapter, tool_use_result, text_result, fenced
    ):
        adapter = make_adapter(
            tool_use_result(
                (
                    "call_1",
                    "apply_universal_credit_advance_state",
                    {"current_state": "eligibility-checked", "trigger": "grant-consent"},
                ),
                text="Let me record that.",
            ),
            text_result("Consent recorded. " + fenced('{"stateTransition": "reject"}')),
        )
        strategy = DelegatingStrategy.from_artefacts([uc_artefacts])

        output = await Orchestrator(adapter, strategy=strategy).run(
            _request(uc_artefacts, text="ok", current_state="eligibility-checked")
        )

        assert output.tools_used == ["apply_universal_credit_advance_state"]
        assert output.iterations == 2
        assert [t.source for t in output.transitions] == [TransitionSource.TOOL]
        assert output.journey_state.current_state == "consent-given"
        assert output.journey_state.allowed_transitions == ["confirm-details"]

        second_call_messages = adapter.chat.call_args_list[1].args[1]
        assert second_call_messages[-2]["role"] == "assistant"
        tool_result = second_call_messages[-1]["content"][0]
        assert tool_result["type"] == "tool_result"
        assert tool_result["tool_use_id"] == "call_1"
        assert json.loads(tool_result["content"])["toState"] == "consent-given"

    @pytest.mark.asyncio
    async def test_tools_passed_to_adapter(self, uc_artefacts, make_adapter, text_result):
        adapter = make_adapter(text_result("Hi"))
        tool = ToolDefinition(name="postcode_lookup", description="Look up a postcode")

        await Orchestrator(adapter, strategy=InlineStrategy(external_tools=[tool])).run(
            _request(uc_artefacts)
        )

        system_prompt, _, tools = adapter.chat.call_args.args
        assert tools == [tool]
        assert "LIVE GOV.UK DATA TOOLS:" in system_prompt

    @pytest.mark.asyncio
    async def test_next_fields_limit_from_config(self, uc_artefacts, make_adapter, text_result):
        adapter = make_adapter(text_result("Hi"))

        await Orchestrator(adapter, config=OrchestratorConfig(next_fields_limit=1)).run(
            _request(uc_artefacts)
        )

        system_prompt = adapter.chat.call_args.args[0]
        assert "ASK NEXT (one or two at a time, in this order): full_name\n" in system_prompt

    @pytest.mark.asyncio
    async def test_loop_exhaustion_reported(self, make_adapter, tool_use_result):
        call = ("call_x", "postcode_lookup", {"postcode": "SW1A 1AA"})
        adapter = make_adapter(
            tool_use_result(call, text="Checking..."),
            tool_use_result(call, text="Still checking..."),
        )
        transport = CallableTransport(AsyncMock(return_value='{"result": "ok"}'))
        strategy = InlineStrategy(
            external_tools=[ToolDefinition(name="postcode_lookup", description="Postcodes")],
            external_transport=transport,
        )

        output = await Orchestrator(adapter, strategy=strategy, max_iterations=2).run(_request())

        assert output.loop_exhausted is True
        assert output.iterations == 2
        assert output.response == "Still checking..."
        assert output.tools_used == ["postcode_lookup", "postcode_lookup"]
        assert adapter.chat.await_count == 2

    @pytest.mark.asyncio
    async def test_flood_tool_answered_by_callback(self, make_adapter, tool_use_result, text_result):
        adapter = make_adapter(
            tool_use_result(("call_f", "ea_current_floods", {})),
            text_result("No flood warnings near you."),
        )
        flood_handler = AsyncMock(return_value="No active flood warnings for York")

        output = await Orchestrator(adapter).run(
            _request(
                persona_data={"address": {"city": "York"}},
                flood_data_handler=flood_handler,
            )
        )

        flood_handler.assert_awaited_once_with("York")
        tool_result = adapter.chat.call_args_list[1].args[1][-1]["content"][0]
        assert tool_result["content"] == "No active flood warnings for York"
        assert output.response == "No flood warnings near you."

    @pytest.mark.asyncio
    async def test_flood_callback_failure_becomes_tool_result(
        self, make_adapter, tool_use_result, text_result
    ):
        adapter = make_adapter(
            tool_use_result(("call_f", "ea_current_floods", {})),
            text_result("I couldn't check flood data."),
        )

        await Orchestrator(adapter).run(
            _request(flood_data_handler=AsyncMock(side_effect=RuntimeError("API down")))
        )

        tool_result = adapter.chat.call_args_list[1].args[1][-1]["content"][0]
        assert json.loads(tool_result["content"]) == {"error": "Tool call failed: API down"}

    def test_max_iterations_must_be_positive(self, make_adapter):
        with pytest.raises(ValueError):
            Orchestrator(make_adapter(), max_iterations=0)


class TestOutput:
    @pytest.mark.asyncio
    async def test_policy_summary_and_versions(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("You can apply."))).run(
            _request(
                uc_artefacts,
                policy_context={"age": 30, "savings": 100, "jurisdiction": "England"},
            )
        )

        assert output.policy_result.eligible is True
        assert output.policy_result.passed_count == 3
        assert output.version.ruleset_version == "2.1.0"
        assert output.version.state_model_version == "1.0.0"
        assert output.version.model_version == "test-model"
        assert len(output.version.prompt_hash) == 16

    @pytest.mark.asyncio
    async def test_prompt_hash_is_deterministic(self, uc_artefacts, make_adapter, text_result):
        request = _request(uc_artefacts, persona_data={"full_name": "Sarah Chen"})

        first = await Orchestrator(make_adapter(text_result("A"))).run(request)
        second = await Orchestrator(make_adapter(text_result("B"))).run(request)

        assert first.version.prompt_hash == second.version.prompt_hash

    @pytest.mark.asyncio
    async def test_policy_not_evaluated_without_context(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("Hi"))).run(_request(uc_artefacts))

        assert output.policy_result is None

    @pytest.mark.asyncio
    async def test_consent_requests_at_eligibility_checked(
        self, uc_artefacts, make_adapter, text_result, fenced
    ):
        adapter = make_adapter(
            text_result("You're eligible. " + fenced('{"stateTransition": "check-eligibility"}'))
        )

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, text="Am I eligible?", current_state="identity-verified")
        )

        assert output.journey_state.current_state == "eligibility-checked"
        assert [c.id for c in output.consent_requests] == ["hmrc-income", "dwp-records", "council-tax"]
        assert output.consent_requests[0].source == "HMRC"

    @pytest.mark.asyncio
    async def test_title_only_when_requested(self, make_adapter, text_result, fenced):
        response = "Hello! " + fenced('{"title": "Applying for Universal Credit"}')

        with_title = await Orchestrator(make_adapter(text_result(response))).run(
            _request(generate_title=True)
        )
        without_title = await Orchestrator(make_adapter(text_result(response))).run(_request())

        assert with_title.conversation_title == "Applying for Universal Credit"
        assert without_title.conversation_title is None

    @pytest.mark.asyncio
    async def test_reasoning_default(self, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("Hi"))).run(_request())
        reasoned = await Orchestrator(make_adapter(text_result("Hi", reasoning="Thought"))).run(
            _request()
        )

        assert output.reasoning == NO_REASONING
        assert reasoned.reasoning == "Thought"

    @pytest.mark.asyncio
    async def test_housing_task_overlay(self, uc_artefacts, make_adapter, text_result, fenced):
        payload = json.dumps(
            {
                "stateTransition": "confirm-details",
                "tasks": [
                    {"description": "Tell us about your rent", "detail": "Monthly rent", "type": "user"},
                    {"description": "Check your eligibility", "detail": "Eligibility", "type": "user"},
                ],
            }
        )
        adapter = make_adapter(text_result("Details confirmed. " + fenced(payload)))

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, text="That's right", current_state="consent-given")
        )

        assert [t.description for t in output.tasks] == [HOUSING_OVERLAY.description]

    @pytest.mark.asyncio
    async def test_extracted_facts_recorded(self, uc_artefacts, make_adapter, text_result, fenced):
        payload = json.dumps(
            {"extractedFacts": [{"key": "housing_status", "value": "renting", "confidence": "high"}]}
        )
        adapter = make_adapter(text_result("Noted. " + fenced(payload)))

        output = await Orchestrator(adapter).run(
            _request(uc_artefacts, persona_data={"full_name": "Sarah Chen"})
        )

        assert output.extracted_facts[0].key == "housing_status"
        assert output.field_stats == {"collected": 2, "required": 5, "missing": 3, "complete": False}

    @pytest.mark.asyncio
    async def test_malformed_block_reported(self, make_adapter, text_result, fenced):
        output = await Orchestrator(make_adapter(text_result("Hi " + fenced("{oops")))).run(_request())

        assert output.response == "Hi"
        assert output.malformed_output.reason == "invalid-json"

    @pytest.mark.asyncio
    async def test_to_dict(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("Hi"))).run(_request(uc_artefacts))
        data = output.to_dict()

        assert data["journeyState"]["currentState"] == "identity-verified"
        assert data["versionMetadata"]["stateModelVersion"] == "1.0.0"
        assert data["loopExhausted"] is False
        assert data["handoff"] is None


class TestHandoff:
    @pytest.mark.asyncio
    async def test_citizen_request(self, uc_artefacts, make_adapter, text_result):
        output = await Orchestrator(make_adapter(text_result("I'll connect you."))).run(
            _request(
                uc_artefacts,
                text="I want to speak to a human",
                persona_data={"name": "Sarah Chen", "email": "sarah@example.com"},
            )
        )

        assert output.handoff.reason == "citizen-requested"
        assert output.handoff.urgency == "routine"
        assert output.handoff.package.routing.suggested_queue == "uc-new-claims"
        assert output.handoff.package.citizen.name == "Sarah Chen"
        assert output.handoff.to_dict()["routing"]["department"] == "Department for Work and Pensions"

    @pytest.mark.asyncio
    async def test_policy_edge_case(self, uc_artefacts, make_adapter, text_result):
        context = {
            "age": 30,
            "savings": 100,
            "jurisdiction": "England",
            "employment": {"self_employed": True},
        }

        output = await Orchestrator(make_adapter(text_result("Let me explain."))).run(
            _request(uc_artefacts, policy_context=context)
        )

        assert output.handoff.reason == "policy-edge-case"

    @pytest.mark.asyncio
    async def test_repeated_failure_with_shared_counter(self, make_adapter, text_result):
        manager = HandoffManager(counter=InMemoryFailureCounter())
        outputs = []
        for _ in range(3):
            orchestrator = Orchestrator(make_adapter(text_result("Sorry")), handoff_manager=manager)
            outputs.append(await orchestrator.run(_request(failure_key="session-1:submit")))

        assert [o.handoff is not None for o in outputs] == [False, False, True]
        assert outputs[2].handoff.urgency == "priority"


class TestFromSettings:
    def test_uses_settings_sections(self, make_adapter, tmp_path):
        config = tmp_path / "govjourney.yaml"
        config.write_text(
            "max_iterations: 2\nfailure_threshold: 1\ntools:\n  reconnect_attempts: 3\n"
        )
        settings = JourneySettings(_config_path=str(config))

        orchestrator = Orchestrator.from_settings(make_adapter(), settings)

        assert orchestrator.max_iterations == 2
        assert orchestrator.handoff_manager.config.failure_threshold == 1
        assert orchestrator.tracer.enabled is False
        assert isinstance(orchestrator.strategy, InlineStrategy)
        assert orchestrator.strategy.dispatch_config.reconnect_attempts == 3

    def test_named_strategy_gets_tool_settings(self, make_adapter, tmp_path):
        config = tmp_path / "govjourney.yaml"
        config.write_text("tools:\n  reconnect_attempts: 0\n")
        settings = JourneySettings(_config_path=str(config))

        orchestrator = Orchestrator.from_settings(
            make_adapter(),
            settings,
            strategy="delegating",
            service_tools=[],
            service_transport=CallableTransport(AsyncMock()),
        )

        assert isinstance(orchestrator.strategy, DelegatingStrategy)
        assert orchestrator.strategy.dispatch_config is settings.tools

    def test_ready_strategy_used_as_given(self, make_adapter):
        strategy = InlineStrategy()

        orchestrator = Orchestrator.from_settings(make_adapter(), JourneySettings(), strategy=strategy)

        assert orchestrator.strategy is strategy
