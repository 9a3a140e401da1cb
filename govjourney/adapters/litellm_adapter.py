"""
LLM adapter over litellm.

Implements the LLMAdapter contract with ``litellm.acompletion`` so any
provider litellm supports can drive the orchestrator. The orchestrator's
loop speaks Anthropic-style content blocks; this adapter translates them to
and from OpenAI-style tool calling, which litellm normalizes across
providers.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from govjourney.config.settings import LLMConfig
from govjourney.exceptions import LLMAdapterError
from govjourney.runtime.protocols import (
    LLMAdapter,
    LLMChatResult,
    Message,
    ToolCall,
    ToolDefinition,
)

logger = logging.getLogger(__name__)


STOP_REASONS = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
}


def to_openai_messages(system_prompt: str, messages: List[Message]) -> List[Dict[str, Any]]:
    """Translate loop messages (content blocks) into OpenAI chat messages."""
    result: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    for message in messages:
        role = message.get("role")
        content = message.get("content")

        if isinstance(content, str) or content is None:
            result.append({"role": role, "content": content or ""})
            continue

        if role == "assistant":
            text = "".join(
                b.get("text", "") for b in content if isinstance(b, dict) and b.get("type") == "text"
            )
            tool_calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b.get("input") or {})},
                }
                for b in content
                if isinstance(b, dict) and b.get("type") == "tool_use"
            ]
            entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            result.append(entry)
            continue

        texts = []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_result":
                result.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.get("tool_use_id"),
                        "content": str(block.get("content", "")),
                    }
                )
            elif block.get("type") == "text":
                texts.append(block.get("text", ""))
        if texts:
            result.append({"role": role, "content": "\n".join(texts)})

    return result


def to_openai_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


class LiteLLMAdapter(LLMAdapter):
    """
    Async LLM adapter wrapping litellm.acompletion.

    Retries transient failures up to ``max_retries`` times, then raises
    LLMAdapterError.

    Example:
        ```python
        adapter = LiteLLMAdapter(model="anthropic/claude-sonnet-4-5")
        result = await adapter.chat("You are helpful.", [{"role": "user", "content": "Hi"}])
        ```
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        config: Optional[LLMConfig] = None,
    ):
        config = config or LLMConfig()
        self.model = model or config.model
        self.temperature = temperature if temperature is not None else config.temperature
        self.max_tokens = max_tokens or config.max_tokens
        self.timeout = timeout or config.timeout
        self.max_retries = max_retries if max_retries is not None else config.max_retries
        self.api_key = api_key or config.api_key
        self.base_url = base_url or config.base_url

        self._total_tokens_used = 0

    @property
    def total_tokens_used(self) -> int:
        return self._total_tokens_used

    async def chat(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
    ) -> LLMChatResult:
        # Lazy import to avoid import-time side effects
        import litellm

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(system_prompt, messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url

        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                response = await litellm.acompletion(**kwargs)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"LLM call attempt {attempt + 1}/{self.max_retries + 1} failed: {e}"
                )
                continue

            if getattr(response, "usage", None):
                self._total_tokens_used += getattr(response.usage, "total_tokens", 0) or 0
            return self._to_result(response)

        raise LLMAdapterError(
            f"LLM call failed after {self.max_retries + 1} attempts: {last_error}",
            context={"model": self.model},
        )

    def _to_result(self, response: Any) -> LLMChatResult:
        if not getattr(response, "choices", None):
            raise LLMAdapterError("Empty response from LLM", context={"model": self.model})

        choice = response.choices[0]
        message = choice.message
        text = getattr(message, "content", "") or ""
        reasoning = getattr(message, "reasoning_content", "") or ""

        tool_calls: List[ToolCall] = []
        raw_content: List[Dict[str, Any]] = []
        if text:
            raw_content.append({"type": "text", "text": text})

        for call in getattr(message, "tool_calls", None) or []:
            arguments = call.function.arguments or "{}"
            try:
                parsed = json.loads(arguments) if isinstance(arguments, str) else dict(arguments)
            except ValueError:
                logger.warning(f"Unparseable arguments for tool {call.function.name}: {arguments[:200]}")
                parsed = {}
            tool_calls.append(ToolCall(id=call.id, name=call.function.name, input=parsed))
            raw_content.append(
                {"type": "tool_use", "id": call.id, "name": call.function.name, "input": parsed}
            )

        finish_reason = getattr(choice, "finish_reason", None) or "stop"
        stop_reason = "tool_use" if tool_calls else STOP_REASONS.get(finish_reason, finish_reason)
        if stop_reason == "tool_use" and not tool_calls:
            stop_reason = "end_turn"

        return LLMChatResult(
            response_text=text,
            stop_reason=stop_reason,
            reasoning=reasoning,
            tool_calls=tool_calls,
            raw_content=raw_content,
        )

    def reset_token_count(self) -> None:
        self._total_tokens_used = 0
