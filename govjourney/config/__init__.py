"""Configuration management for GovJourney."""

from govjourney.config.settings import (
    JourneySettings,
    OTelConfig,
    LLMConfig,
    OrchestratorConfig,
    HandoffConfig,
    ToolDispatchConfig,
)

__all__ = [
    "JourneySettings",
    "OTelConfig",
    "LLMConfig",
    "OrchestratorConfig",
    "HandoffConfig",
    "ToolDispatchConfig",
]
