"""Tests for the litellm-backed LLM adapter."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from govjourney.adapters.litellm_adapter import (
    LiteLLMAdapter,
    to_openai_messages,
    to_openai_tools,
)
from govjourney.config.settings import LLMConfig
from govjourney.exceptions import LLMAdapterError
from govjourney.runtime.protocols import ToolDefinition


def _response(content="", tool_calls=None, finish_reason="stop", reasoning=None, tokens=10):
    message = SimpleNamespace(
        content=content, tool_calls=tool_calls, reasoning_content=reasoning
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(total_tokens=tokens),
    )


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(
        id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


class TestMessageTranslation:
    def test_plain_messages(self):
        result = to_openai_messages("System", [{"role": "user", "content": "Hi"}])

        assert result == [
            {"role": "system", "content": "System"},
            {"role": "user", "content": "Hi"},
        ]

    def test_tool_round_trip_blocks(self):
        messages = [
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Checking"},
                    {"type": "tool_use", "id": "c1", "name": "lookup", "input": {"q": 1}},
                ],
            },
            {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "c1", "content": "{}"}],
            },
        ]

        result = to_openai_messages("S", messages)

        assert result[1]["content"] == "Checking"
        assert result[1]["tool_calls"][0]["function"] == {
            "name": "lookup",
            "arguments": '{"q": 1}',
        }
        assert result[2] == {"role": "tool", "tool_call_id": "c1", "content": "{}"}

    def test_user_text_blocks_joined(self):
        messages = [
            {"role": "user", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
        ]

        assert to_openai_messages("S", messages)[1] == {"role": "user", "content": "a\nb"}

    def test_tools(self):
        tool = ToolDefinition(name="lookup", description="Look up")

        assert to_openai_tools([tool]) == [
            {
                "type": "function",
                "function": {
                    "name": "lookup",
                    "description": "Look up",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ]


class TestLiteLLMAdapter:
    @pytest.fixture
    def adapter(self):
        return LiteLLMAdapter(config=LLMConfig(model="gpt-4o-mini", max_retries=1))

    @pytest.mark.asyncio
    async def test_text_response(self, adapter):
        with patch(
            "litellm.acompletion",
            new=AsyncMock(return_value=_response("Hello", reasoning="thinking")),
        ) as mock_completion:
            result = await adapter.chat("System", [{"role": "user", "content": "Hi"}])

        assert result.response_text == "Hello"
        assert result.reasoning == "thinking"
        assert result.stop_reason == "end_turn"
        assert result.wants_tools is False
        assert adapter.total_tokens_used == 10

        kwargs = mock_completion.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_tool_calls(self, adapter):
        response = _response(
            tool_calls=[_tool_call("c1", "lookup", json.dumps({"postcode": "SW1A 1AA"}))],
            finish_reason="tool_calls",
        )
        tool = ToolDefinition(name="lookup", description="Look up")

        with patch("litellm.acompletion", new=AsyncMock(return_value=response)) as mock_completion:
            result = await adapter.chat("S", [{"role": "user", "content": "Hi"}], [tool])

        assert result.stop_reason == "tool_use"
        assert result.wants_tools is True
        assert result.tool_calls[0].input == {"postcode": "SW1A 1AA"}
        assert result.raw_content == [
            {"type": "tool_use", "id": "c1", "name": "lookup", "input": {"postcode": "SW1A 1AA"}}
        ]
        assert mock_completion.await_args.kwargs["tools"][0]["function"]["name"] == "lookup"

    @pytest.mark.asyncio
    async def test_unparseable_arguments(self, adapter):
        response = _response(tool_calls=[_tool_call("c1", "lookup", "{not json")])

        with patch("litellm.acompletion", new=AsyncMock(return_value=response)):
            result = await adapter.chat("S", [])

        assert result.tool_calls[0].input == {}

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, adapter):
        mock_completion = AsyncMock(side_effect=[RuntimeError("rate limited"), _response("Ok")])

        with patch("litellm.acompletion", new=mock_completion):
            result = await adapter.chat("S", [])

        assert result.response_text == "Ok"
        assert mock_completion.await_count == 2

    @pytest.mark.asyncio
    async def test_raises_after_retries(self, adapter):
        mock_completion = AsyncMock(side_effect=RuntimeError("down"))

        with patch("litellm.acompletion", new=mock_completion):
            with pytest.raises(LLMAdapterError, match="after 2 attempts"):
                await adapter.chat("S", [])

        assert mock_completion.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_response(self, adapter):
        with patch(
            "litellm.acompletion", new=AsyncMock(return_value=SimpleNamespace(choices=[]))
        ):
            with pytest.raises(LLMAdapterError, match="Empty response"):
                await adapter.chat("S", [])

    def test_explicit_arguments_override_config(self):
        adapter = LiteLLMAdapter(
            model="anthropic/claude-sonnet-4-5",
            temperature=0.0,
            max_retries=0,
            config=LLMConfig(model="gpt-4o-mini", temperature=0.7, max_retries=3),
        )

        assert adapter.model == "anthropic/claude-sonnet-4-5"
        assert adapter.temperature == 0.0
        assert adapter.max_retries == 0
