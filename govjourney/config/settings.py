"""
GovJourney configuration management using Pydantic Settings.

Configuration can be provided via:
1. govjourney.yaml config file (primary)
2. Environment variables (API keys like OPENAI_API_KEY, ANTHROPIC_API_KEY, etc.)
3. GOVJ_* env vars (for overrides, but prefer YAML)
4. .env file
5. Direct instantiation

Priority (highest wins): init kwargs > govjourney.yaml > env vars > defaults

The simplified govjourney.yaml format:
    model: anthropic/claude-sonnet-4-5   # optional, auto-detected from API keys
    max_iterations: 5
    failure_threshold: 3
    orchestrator:
      eligibility_checked_state: eligibility-checked
    tracing:
      type: console
"""

import logging
import os
from pathlib import Path
from typing import Optional, Literal, Dict, Any, Tuple, Type

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    PydanticBaseSettingsSource,
)

logger = logging.getLogger(__name__)


def detect_available_model() -> Tuple[str, str, str]:
    """Check env vars and return the best available chat model.

    Returns:
        (model_id, provider_name, env_var_name) tuple.
    """
    if os.environ.get("ANTHROPIC_API_KEY"):
        return ("anthropic/claude-sonnet-4-5", "Anthropic", "ANTHROPIC_API_KEY")
    if os.environ.get("OPENAI_API_KEY"):
        return ("gpt-4o-mini", "OpenAI", "OPENAI_API_KEY")
    if os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY"):
        env_var = "GOOGLE_API_KEY" if os.environ.get("GOOGLE_API_KEY") else "GEMINI_API_KEY"
        return ("gemini/gemini-2.5-flash", "Google Gemini", env_var)
    # No key found: default to the Anthropic model (fails with a clear error later)
    return ("anthropic/claude-sonnet-4-5", "Anthropic", "ANTHROPIC_API_KEY")


def get_default_model() -> str:
    """Helper for Pydantic default_factory to get a detected model."""
    return detect_available_model()[0]


class OTelConfig(BaseModel):
    """OpenTelemetry tracing configuration.

    Supports:
    - otlp: Standard OTLP gRPC endpoint (Jaeger, Tempo, etc.)
    - console: Print spans to stdout (for debugging)
    - none: Disable tracing
    """

    enabled: bool = False
    endpoint: str = "http://localhost:4317"
    service_name: str = "govjourney"
    exporter_type: Literal["otlp", "console", "none"] = "none"
    insecure: bool = True


class LLMConfig(BaseModel):
    """Chat model configuration for the shipped litellm adapter."""

    model: str = Field(default_factory=get_default_model)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    api_key: Optional[str] = None
    base_url: Optional[str] = None


class OrchestratorConfig(BaseModel):
    """Per-request control loop configuration."""

    # Upper bound on model calls per request (tool-use turns included)
    max_iterations: int = Field(default=5, ge=1)
    # Seed state when the caller supplies none
    default_state: str = "not-started"
    # State that surfaces consent requests to the citizen
    eligibility_checked_state: str = "eligibility-checked"
    # How many missing fields the prompt asks for next
    next_fields_limit: int = Field(default=3, ge=1)
    generate_title_default: bool = False


class HandoffConfig(BaseModel):
    """Human handoff detection configuration."""

    failure_threshold: int = Field(default=3, ge=1)
    default_queue: str = "general-enquiries"
    default_channel: str = "phone"


class ToolDispatchConfig(BaseModel):
    """Delegated tool dispatch configuration."""

    # Substring identifying a dropped transport in dispatcher errors
    reconnect_marker: str = "No active transport"
    reconnect_attempts: int = Field(default=1, ge=0)


class YamlConfigSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from a govjourney.yaml config file.

    Discovers config at:
    1. Explicit path passed via _config_path init kwarg
    2. $GOVJ_CONFIG env var
    3. ./govjourney.yaml
    4. ./govjourney.yml

    Maps simplified YAML keys to the nested JourneySettings structure.
    """

    def __init__(
        self, settings_cls: Type[BaseSettings], config_path: Optional[str] = None
    ):
        super().__init__(settings_cls)
        self._config_path = config_path
        self._yaml_data: Optional[Dict[str, Any]] = None
        self._load()

    def _discover_config_file(self) -> Optional[Path]:
        """Find the config file to load."""
        if self._config_path:
            p = Path(self._config_path)
            return p if p.is_file() else None

        env_path = os.environ.get("GOVJ_CONFIG")
        if env_path:
            p = Path(env_path)
            return p if p.is_file() else None

        for name in ("govjourney.yaml", "govjourney.yml"):
            p = Path(name)
            if p.is_file():
                return p

        return None

    def _load(self) -> None:
        """Load and parse the YAML config file."""
        path = self._discover_config_file()
        if path is None:
            self._yaml_data = {}
            return

        try:
            import yaml

            with open(path) as f:
                data = yaml.safe_load(f)
            self._yaml_data = data if isinstance(data, dict) else {}
            logger.debug(f"Loaded config from {path}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            self._yaml_data = {}

    # Short top-level keys and the nested (section, field) they map to
    _SHORTCUTS = {
        "model": ("llm", "model"),
        "max_iterations": ("orchestrator", "max_iterations"),
        "failure_threshold": ("handoff", "failure_threshold"),
    }

    _SECTIONS = ("orchestrator", "llm", "handoff", "tools")

    def _map_to_settings(self) -> Dict[str, Any]:
        """Map simplified YAML keys to nested JourneySettings structure."""
        if not self._yaml_data:
            return {}

        data = self._yaml_data
        result: Dict[str, Any] = {}

        for section in self._SECTIONS:
            section_cfg = data.get(section)
            if isinstance(section_cfg, dict) and section_cfg:
                result.setdefault(section, {}).update(section_cfg)

        for key, (section, field_name) in self._SHORTCUTS.items():
            if key in data:
                result.setdefault(section, {})[field_name] = data[key]

        if "debug" in data:
            result["debug"] = data["debug"]

        if "log_level" in data:
            result["log_level"] = data["log_level"]

        # tracing.* -> otel.*
        tracing_cfg = data.get("tracing", {})
        if isinstance(tracing_cfg, dict) and tracing_cfg:
            otel = result.setdefault("otel", {})
            if "type" in tracing_cfg:
                tracing_type = tracing_cfg["type"]
                otel["exporter_type"] = tracing_type
                otel["enabled"] = tracing_type != "none"
            if "endpoint" in tracing_cfg:
                otel["endpoint"] = tracing_cfg["endpoint"]
            if "service_name" in tracing_cfg:
                otel["service_name"] = tracing_cfg["service_name"]

        return result

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        mapped = self._map_to_settings()
        value = mapped.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> Dict[str, Any]:
        return self._map_to_settings()


class JourneySettings(BaseSettings):
    """
    Main GovJourney configuration.

    All settings can be overridden via environment variables with GOVJ_ prefix.
    Nested settings use double underscore: GOVJ_ORCHESTRATOR__MAX_ITERATIONS

    A govjourney.yaml config file is also supported (config takes priority
    over environment). Pass _config_path to override the config file location.
    """

    model_config = SettingsConfigDict(
        env_prefix="GOVJ_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to govjourney.yaml (set via _config_path kwarg, not a real setting field)
    _config_path: Optional[str] = None

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    tools: ToolDispatchConfig = Field(default_factory=ToolDispatchConfig)
    otel: OTelConfig = Field(default_factory=OTelConfig)

    def __init__(self, _config_path: Optional[str] = None, **kwargs: Any):
        self.__class__._config_path = _config_path
        super().__init__(**kwargs)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Insert YAML config source before env vars.

        Priority (highest first): init > yaml > env > dotenv > file_secret
        """
        yaml_source = YamlConfigSource(settings_cls, config_path=cls._config_path)
        return (
            init_settings,
            yaml_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
