"""LLM adapters implementing the runtime's chat() contract."""

from govjourney.adapters.litellm_adapter import LiteLLMAdapter

__all__ = ["LiteLLMAdapter"]
