"""
Structured output contract between the model and the orchestrator.

Every model response should end with a fenced ```json block carrying
machine-readable intent:

```json
{
  "title": "Applying for Universal Credit",
  "tasks": [{"description": "...", "detail": "...", "type": "user"}],
  "proposedTransition": "grant-consent",
  "extractedFacts": [{"key": "children", "value": 2, "confidence": "high"}]
}
```

Parsing is lenient per field: invalid entries are dropped, a malformed block
yields an empty StructuredOutput plus a MalformedModelOutput report, and the
block is always removed from the text shown to the citizen.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


FENCE_PATTERN = re.compile(r"```json\s*\n([\s\S]*?)```")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_TASKS = 3
MAX_FACTS = 5
MAX_DESCRIPTION = 60
MAX_DETAIL = 150
MAX_SNIPPET = 200


class ProposedTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION)
    detail: str = Field(..., min_length=1, max_length=MAX_DETAIL)
    type: Literal["agent", "user"]
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    data_needed: List[str] = Field(default_factory=list, alias="dataNeeded")


class ExtractedFact(BaseModel):
    key: str = Field(..., min_length=1)
    value: Any
    confidence: Literal["high", "medium", "low"] = "medium"
    source_snippet: str = ""


class StructuredOutput(BaseModel):
    """Validated contents of the trailing block. Every field is optional."""

    title: Optional[str] = None
    proposed_transition: Optional[str] = None
    tasks: List[ProposedTask] = Field(default_factory=list)
    extracted_facts: List[ExtractedFact] = Field(default_factory=list)

    @property
    def kind(self) -> str:
        """
        Which parts are present: ``"none"`` or a ``+``-joined subset of
        ``title``, ``transition``, ``tasks``, ``facts``.
        """
        parts = []
        if self.title:
            parts.append("title")
        if self.proposed_transition:
            parts.append("transition")
        if self.tasks:
            parts.append("tasks")
        if self.extracted_facts:
            parts.append("facts")
        return "+".join(parts) if parts else "none"

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "StructuredOutput":
        """Build from a decoded JSON object, dropping anything invalid."""
        title = _clean_str(raw.get("title"))

        # "stateTransition" is the older name for the same field
        transition = raw.get("proposedTransition")
        if transition is None:
            transition = raw.get("stateTransition")

        return cls(
            title=title or None,
            proposed_transition=_clean_str(transition) or None,
            tasks=_parse_tasks(raw.get("tasks")),
            extracted_facts=_parse_facts(raw.get("extractedFacts")),
        )


@dataclass(frozen=True)
class MalformedModelOutput:
    """A structured block that was present but unusable."""

    reason: Literal["invalid-json", "not-an-object"]
    snippet: str


@dataclass(frozen=True)
class ParsedModelOutput:
    clean_text: str
    output: StructuredOutput
    malformed: Optional[MalformedModelOutput] = None


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_tasks(value: Any) -> List[ProposedTask]:
    if not isinstance(value, list):
        return []

    tasks: List[ProposedTask] = []
    for item in value[:MAX_TASKS]:
        if not isinstance(item, dict):
            continue
        description = _clean_str(item.get("description"))[:MAX_DESCRIPTION]
        detail = _clean_str(item.get("detail"))[:MAX_DETAIL]
        task_type = item.get("type")
        if not description or not detail or task_type not in ("agent", "user"):
            continue

        due_date = item.get("dueDate")
        if not (isinstance(due_date, str) and ISO_DATE_PATTERN.match(due_date)):
            due_date = None

        data_needed = item.get("dataNeeded")
        if isinstance(data_needed, list):
            data_needed = [d.strip() for d in data_needed if isinstance(d, str) and d.strip()]
        else:
            data_needed = []

        tasks.append(
            ProposedTask(
                description=description,
                detail=detail,
                type=task_type,
                due_date=due_date,
                data_needed=data_needed,
            )
        )
    return tasks


def _parse_facts(value: Any) -> List[ExtractedFact]:
    if not isinstance(value, list):
        return []

    facts: List[ExtractedFact] = []
    for item in value[:MAX_FACTS]:
        if not isinstance(item, dict):
            continue
        key = _clean_str(item.get("key"))
        # An explicit null is a value; a missing key is not
        if not key or "value" not in item:
            continue
        confidence = item.get("confidence")
        if confidence not in ("high", "medium", "low"):
            confidence = "medium"
        facts.append(
            ExtractedFact(
                key=key,
                value=item["value"],
                confidence=confidence,
                source_snippet=_clean_str(item.get("source_snippet"))[:MAX_SNIPPET],
            )
        )
    return facts


def parse_model_output(response_text: str) -> ParsedModelOutput:
    """
    Split a model response into citizen-facing text and structured output.

    Uses the last ```json fence in the text. Never raises.
    """
    match = None
    for match in FENCE_PATTERN.finditer(response_text):
        pass

    if match is None:
        return ParsedModelOutput(clean_text=response_text, output=StructuredOutput())

    clean_text = (response_text[: match.start()] + response_text[match.end():]).strip()
    body = match.group(1)

    try:
        raw = json.loads(body)
    except ValueError:
        logger.warning("Structured output: malformed JSON in fenced block, ignoring")
        return ParsedModelOutput(
            clean_text=clean_text,
            output=StructuredOutput(),
            malformed=MalformedModelOutput(reason="invalid-json", snippet=body[:MAX_SNIPPET]),
        )

    if not isinstance(raw, dict):
        logger.warning("Structured output: fenced block is not a JSON object, ignoring")
        return ParsedModelOutput(
            clean_text=clean_text,
            output=StructuredOutput(),
            malformed=MalformedModelOutput(reason="not-an-object", snippet=body[:MAX_SNIPPET]),
        )

    return ParsedModelOutput(clean_text=clean_text, output=StructuredOutput.from_raw(raw))
