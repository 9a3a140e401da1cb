"""Tests for service strategies and tool dispatch."""

import json
from unittest.mock import AsyncMock

import pytest

from govjourney.config.settings import ToolDispatchConfig
from govjourney.exceptions import ToolDispatchError, TransportDisconnectedError
from govjourney.policy.evaluator import PolicyEvaluator
from govjourney.runtime.protocols import CallableTransport, ToolDefinition
from govjourney.runtime.strategies import (
    DelegatingStrategy,
    InlineStrategy,
    StrategyContext,
    StrategyRegistry,
)
from govjourney.runtime.strategies.base import call_with_reconnect

POSTCODE_TOOL = ToolDefinition(name="postcode_lookup", description="Look up a postcode")


def _flaky(*outcomes):
    """Transport function raising or returning each outcome in turn."""
    remaining = list(outcomes)

    async def call(name, arguments):
        outcome = remaining.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return call


class TestCallWithReconnect:
    @pytest.mark.asyncio
    async def test_reconnects_once_on_dropped_transport(self):
        reconnect = AsyncMock(return_value=True)
        transport = CallableTransport(
            _flaky(TransportDisconnectedError("gone"), "ok"), reconnect=reconnect
        )

        result = await call_with_reconnect(transport, "tool", {}, ToolDispatchConfig())

        assert result == "ok"
        reconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_marker_in_message_counts_as_disconnect(self):
        reconnect = AsyncMock(return_value=True)
        transport = CallableTransport(
            _flaky(RuntimeError("No active transport for server"), "ok"), reconnect=reconnect
        )

        assert await call_with_reconnect(transport, "tool", {}, ToolDispatchConfig()) == "ok"

    @pytest.mark.asyncio
    async def test_only_one_retry(self):
        reconnect = AsyncMock(return_value=True)
        transport = CallableTransport(
            _flaky(TransportDisconnectedError("gone"), TransportDisconnectedError("still gone")),
            reconnect=reconnect,
        )

        result = json.loads(await call_with_reconnect(transport, "tool", {}, ToolDispatchConfig()))

        assert result == {"error": "Tool call failed: still gone"}
        reconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        reconnect = AsyncMock(return_value=True)
        transport = CallableTransport(_flaky(ToolDispatchError("bad request")), reconnect=reconnect)

        result = json.loads(await call_with_reconnect(transport, "tool", {}, ToolDispatchConfig()))

        assert result == {"error": "Tool call failed: bad request"}
        reconnect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_reconnect(self):
        transport = CallableTransport(_flaky(TransportDisconnectedError("gone")))

        result = json.loads(await call_with_reconnect(transport, "tool", {}, ToolDispatchConfig()))

        assert result == {"error": "Tool call failed: gone"}


class TestInlineStrategy:
    @pytest.mark.asyncio
    async def test_context_includes_policy_evaluation(self, uc_artefacts):
        result = PolicyEvaluator().evaluate(uc_artefacts.policy, {"age": 17})
        ctx = StrategyContext(service_id="dwp.apply-universal-credit", policy_result=result)

        context = await InlineStrategy().build_service_context(ctx)

        assert "POLICY EVALUATION (dwp.apply-universal-credit):" in context
        assert "Eligibility: NOT ELIGIBLE" in context
        assert "  - Applicant must be 18 or over: You must be 18 or over" in context

    @pytest.mark.asyncio
    async def test_context_lists_external_tools_with_postcode(self):
        ctx = StrategyContext(
            service_id="x.y", persona_data={"address": {"postcode": "SW1A 1AA"}}
        )
        strategy = InlineStrategy(external_tools=[POSTCODE_TOOL])

        context = await strategy.build_service_context(ctx)

        assert "LIVE GOV.UK DATA TOOLS:" in context
        assert "- postcode_lookup: Look up a postcode (their postcode is SW1A 1AA)" in context
        assert strategy.build_tools(ctx) == [POSTCODE_TOOL]

    @pytest.mark.asyncio
    async def test_no_dispatcher(self):
        result = json.loads(await InlineStrategy().dispatch_tool_call("postcode_lookup", {}))

        assert result == {"error": "No dispatcher for tool: postcode_lookup"}

    @pytest.mark.asyncio
    async def test_dispatch_through_transport(self):
        fn = AsyncMock(return_value='{"lat": 51.5}')
        strategy = InlineStrategy(
            external_tools=[POSTCODE_TOOL], external_transport=CallableTransport(fn)
        )

        assert await strategy.dispatch_tool_call("postcode_lookup", {"q": "SW1A"}) == '{"lat": 51.5}'
        fn.assert_awaited_once_with("postcode_lookup", {"q": "SW1A"})

    def test_no_transitions_reported(self):
        assert InlineStrategy().extract_state_transitions([]) == []


class TestDelegatingStrategy:
    @pytest.fixture
    def strategy(self, uc_artefacts):
        return DelegatingStrategy.from_artefacts([uc_artefacts])

    def test_tools(self, strategy):
        ctx = StrategyContext(service_id="dwp.apply-universal-credit")

        assert [t.name for t in strategy.build_tools(ctx)] == [
            "apply_universal_credit_check_eligibility",
            "apply_universal_credit_advance_state",
        ]

    @pytest.mark.asyncio
    async def test_routes_service_tools_in_process(self, strategy):
        result = json.loads(
            await strategy.dispatch_tool_call(
                "apply_universal_credit_advance_state",
                {"current_state": "not-started", "trigger": "verify-identity"},
            )
        )

        assert result["toState"] == "identity-verified"

    @pytest.mark.asyncio
    async def test_external_tool_without_transport(self, strategy):
        result = json.loads(await strategy.dispatch_tool_call("postcode_lookup", {}))

        assert result == {"error": "No dispatcher for tool: postcode_lookup"}

    @pytest.mark.asyncio
    async def test_context_reads_resources_and_journey_prompt(self, uc_artefacts):
        async def read_resource(uri):
            if uri.endswith("/policy"):
                raise ToolDispatchError("resource unavailable")
            return f"<{uri}>"

        prompt_reader = AsyncMock(return_value="Follow the steps in order.")
        strategy = DelegatingStrategy.from_artefacts(
            [uc_artefacts], resource_reader=read_resource, prompt_reader=prompt_reader
        )
        ctx = StrategyContext(
            service_id="dwp.apply-universal-credit",
            current_state="eligibility-checked",
            persona_data={"age": 30},
        )

        context = await strategy.build_service_context(ctx)

        assert "SERVICE MANIFEST:\n<service://dwp.apply-universal-credit/manifest>" in context
        assert "POLICY RULES:" not in context
        assert "JOURNEY GUIDE:\nFollow the steps in order." in context
        assert 'The citizen\'s current state is "eligibility-checked"' in context
        assert '"age": 30' in context
        prompt_reader.assert_awaited_once_with("apply_universal_credit_journey")

    @pytest.mark.asyncio
    async def test_failing_prompt_reader_is_ignored(self, uc_artefacts):
        strategy = DelegatingStrategy.from_artefacts(
            [uc_artefacts], prompt_reader=AsyncMock(side_effect=RuntimeError("down"))
        )

        context = await strategy.build_service_context(StrategyContext(service_id="dwp.apply-universal-credit"))

        assert "JOURNEY GUIDE" not in context
        assert "SERVICE TOOLS:" in context

    def test_extract_state_transitions(self, strategy):
        messages = [
            {"role": "user", "content": "Yes please"},
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "t1",
                        "content": json.dumps(
                            {"success": True, "fromState": "a", "toState": "b", "trigger": "go"}
                        ),
                    },
                    {
                        "type": "tool_result",
                        "tool_use_id": "t2",
                        "content": json.dumps({"success": False, "fromState": "b", "toState": "b"}),
                    },
                    {"type": "tool_result", "tool_use_id": "t3", "content": "not json"},
                    {
                        "type": "tool_result",
                        "tool_use_id": "t4",
                        "content": json.dumps({"success": True, "fromState": "b", "toState": "c"}),
                    },
                ],
            },
            {"role": "assistant", "content": [{"type": "text", "text": "{}"}]},
        ]

        transitions = strategy.extract_state_transitions(messages)

        assert [(t.from_state, t.to_state, t.trigger) for t in transitions] == [
            ("a", "b", "go"),
            ("b", "c", "unknown"),
        ]


class TestStrategyRegistry:
    def test_builtin_strategies_registered(self):
        assert StrategyRegistry.is_registered("inline")
        assert StrategyRegistry.is_registered("delegating")

    def test_create_by_name(self):
        strategy = StrategyRegistry.create("inline", external_tools=[POSTCODE_TOOL])

        assert isinstance(strategy, InlineStrategy)
        assert strategy.name == "inline"

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown service strategy"):
            StrategyRegistry.create("carrier-pigeon")
