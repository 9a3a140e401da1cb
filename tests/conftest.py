"""Pytest fixtures for GovJourney tests."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def examples_dir() -> Path:
    """Get path to examples directory."""
    return Path(__file__).parent.parent / "examples"


@pytest.fixture
def services_dir(examples_dir: Path) -> Path:
    return examples_dir / "services"


@pytest.fixture
def uc_dir(services_dir: Path) -> Path:
    """Get path to the sample Universal Credit service."""
    return services_dir / "apply-universal-credit"


@pytest.fixture
def uc_artefacts(uc_dir: Path):
    """Load the sample Universal Credit service artefacts."""
    from govjourney.artefacts.registry import ServiceRegistry

    return ServiceRegistry().load_service_directory(uc_dir)


@pytest.fixture
def simple_state_model_dict():
    """Minimal state model: not-started --verify--> verified."""
    return {
        "id": "test.simple",
        "version": "1.0",
        "states": [
            {"id": "not-started", "type": "initial"},
            {"id": "verified", "type": "terminal", "receipt": True},
        ],
        "transitions": [
            {"from": "not-started", "to": "verified", "trigger": "verify"},
        ],
    }


@pytest.fixture
def simple_state_model(simple_state_model_dict):
    from govjourney.artefacts.schema import StateModelDefinition

    return StateModelDefinition.model_validate(simple_state_model_dict)


@pytest.fixture
def chain_state_model():
    """a --t1--> b --t2--> c --t3--> d, with d terminal."""
    from govjourney.artefacts.schema import StateModelDefinition

    return StateModelDefinition.model_validate(
        {
            "id": "test.chain",
            "states": [
                {"id": "a", "type": "initial"},
                {"id": "b"},
                {"id": "c"},
                {"id": "d", "type": "terminal"},
            ],
            "transitions": [
                {"from": "a", "to": "b", "trigger": "t1"},
                {"from": "b", "to": "c", "trigger": "t2"},
                {"from": "c", "to": "d", "trigger": "t3"},
            ],
        }
    )


@pytest.fixture
def age_ruleset():
    """Single rule: age >= 18."""
    from govjourney.artefacts.schema import PolicyRuleset

    return PolicyRuleset.model_validate(
        {
            "id": "test.age",
            "version": "1.0",
            "rules": [
                {
                    "id": "minimum-age",
                    "description": "Must be an adult",
                    "condition": {"field": "age", "operator": ">=", "value": 18},
                    "reason_if_failed": "You must be 18 or over",
                }
            ],
        }
    )


@pytest.fixture
def make_adapter():
    """Build a mock LLM adapter that returns the given results in order."""
    from govjourney.runtime.protocols import LLMAdapter

    def _make(*results):
        adapter = MagicMock(spec=LLMAdapter)
        adapter.model = "test-model"
        adapter.chat = AsyncMock(side_effect=list(results))
        return adapter

    return _make


@pytest.fixture
def text_result():
    """Build a final (end_turn) LLMChatResult from text."""
    from govjourney.runtime.protocols import LLMChatResult

    def _make(text: str, reasoning: str = ""):
        return LLMChatResult(response_text=text, stop_reason="end_turn", reasoning=reasoning)

    return _make


@pytest.fixture
def tool_use_result():
    """Build a tool_use LLMChatResult from (id, name, input) tuples."""
    from govjourney.runtime.protocols import LLMChatResult, ToolCall

    def _make(*calls, text: str = ""):
        tool_calls = [ToolCall(id=cid, name=name, input=args) for cid, name, args in calls]
        raw = [{"type": "text", "text": text}] if text else []
        raw += [
            {"type": "tool_use", "id": c.id, "name": c.name, "input": c.input} for c in tool_calls
        ]
        return LLMChatResult(
            response_text=text,
            stop_reason="tool_use",
            tool_calls=tool_calls,
            raw_content=raw,
        )

    return _make


@pytest.fixture
def fenced():
    """Wrap a JSON payload in the structured-output fence."""

    def _wrap(payload: str) -> str:
        return f"```json\n{payload}\n```"

    return _wrap
