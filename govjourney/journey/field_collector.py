"""
Required-field tracking for a service journey.

Seeded from a manifest's ``input_schema``. Records which fields are known
(from persona data, conversation extraction or task cards) and computes what
is still missing, so the orchestrator decides what to ask for next instead of
the language model.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from govjourney.artefacts.schema import JsonSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectedField:
    value: Any
    source: str


def _display(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class FieldCollector:
    """
    Track required vs collected fields.

    Writes are last-writer-wins with no conflict detection, and fields are
    never removed, so ``is_complete()`` stays true once reached.

    Example:
        ```python
        collector = FieldCollector(manifest.input_schema)
        collector.seed_from_persona(persona_data)
        ask_next = collector.next_required_fields(3)
        ```
    """

    def __init__(self, input_schema: Union[JsonSchema, Mapping[str, Any], None]):
        if input_schema is None:
            input_schema = JsonSchema()
        elif not isinstance(input_schema, JsonSchema):
            input_schema = JsonSchema.model_validate(dict(input_schema))

        self.schema = input_schema
        self._all_fields: List[str] = list(input_schema.properties.keys())
        self._required_fields: List[str] = list(input_schema.required)
        self._collected: Dict[str, CollectedField] = {}

    @property
    def required_fields(self) -> List[str]:
        return list(self._required_fields)

    def seed_from_persona(self, data: Optional[Mapping[str, Any]]) -> None:
        """Copy schema-declared keys with non-empty values, tagged ``persona``."""
        if not data:
            return
        for key in self._all_fields:
            value = data.get(key)
            if value is None or value == "":
                continue
            self._collected[key] = CollectedField(value=value, source="persona")

    def record_field(self, key: str, value: Any, source: str) -> None:
        self._collected[key] = CollectedField(value=value, source=source)

    def record_fields(self, fields: Mapping[str, Any], source: str) -> None:
        """Record several fields at once. ``None`` values are skipped."""
        for key, value in fields.items():
            if value is not None:
                self.record_field(key, value, source)

    def get_collected(self) -> Dict[str, CollectedField]:
        return dict(self._collected)

    def get_missing(self) -> List[str]:
        """Required fields with no entry, in schema order."""
        return [f for f in self._required_fields if f not in self._collected]

    def next_required_fields(self, limit: int = 3) -> List[str]:
        return self.get_missing()[:limit]

    def is_complete(self) -> bool:
        return not self.get_missing()

    def get_value(self, key: str) -> Any:
        entry = self._collected.get(key)
        return entry.value if entry else None

    def has_field(self, key: str) -> bool:
        return key in self._collected

    def to_context(self) -> str:
        """
        Render the collected/missing block for the system prompt.

        Output depends only on recorded fields (in insertion order) and the
        schema, so identical inputs give identical text for prompt hashing.
        """
        lines: List[str] = []

        if self._collected:
            lines.append("FIELDS COLLECTED:")
            for key, entry in self._collected.items():
                lines.append(f"  - {key}: {_display(entry.value)} (source: {entry.source})")

        missing = self.get_missing()
        if missing:
            lines.append("")
            lines.append("FIELDS STILL REQUIRED:")
            for key in missing:
                prop = self.schema.properties.get(key)
                desc = ""
                if isinstance(prop, dict) and prop.get("description"):
                    desc = f" - {prop['description']}"
                lines.append(f"  - {key}{desc}")

        if self.is_complete():
            lines.append("")
            lines.append("ALL REQUIRED FIELDS COLLECTED.")

        return "\n".join(lines)

    def to_stats(self) -> Dict[str, Any]:
        """Counts for trace metadata."""
        return {
            "collected": len(self._collected),
            "required": len(self._required_fields),
            "missing": len(self.get_missing()),
            "complete": self.is_complete(),
        }
