"""
Service artefact parser.

Loads and validates artefacts from YAML or JSON files, strings or dicts.
"""

import json
import logging
from pathlib import Path
from typing import Union, Dict, Type, Any

import yaml
from pydantic import BaseModel, ValidationError

from govjourney.artefacts.schema import (
    CapabilityManifest,
    PolicyRuleset,
    StateModelDefinition,
    ConsentModel,
    StateInstructions,
)
from govjourney.exceptions import ArtefactError

logger = logging.getLogger(__name__)


ARTEFACT_KINDS: Dict[str, Type[BaseModel]] = {
    "manifest": CapabilityManifest,
    "policy": PolicyRuleset,
    "state-model": StateModelDefinition,
    "consent": ConsentModel,
    "instructions": StateInstructions,
}


class ArtefactParser:
    """
    Parse and validate service artefacts.

    Supports:
    - YAML files (.yaml, .yml)
    - JSON files (.json)
    - Direct string and dict parsing

    Example:
        ```python
        state_model = ArtefactParser.parse_file("state-model.json", kind="state-model")

        policy = ArtefactParser.parse_dict(
            {"rules": [{"id": "age", "condition": {"field": "age", "operator": ">=", "value": 18}}]},
            kind="policy",
        )
        ```
    """

    @staticmethod
    def model_for(kind: str) -> Type[BaseModel]:
        model = ARTEFACT_KINDS.get(kind)
        if model is None:
            available = ", ".join(ARTEFACT_KINDS)
            raise ValueError(f"Unknown artefact kind: '{kind}'. Available: {available}")
        return model

    @staticmethod
    def parse_file(path: Union[str, Path], kind: str) -> Any:
        """
        Parse an artefact from file.

        Args:
            path: Path to artefact file (YAML or JSON)
            kind: One of manifest, policy, state-model, consent, instructions

        Returns:
            The validated artefact model

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format or kind is unsupported
            ArtefactError: If the artefact is invalid
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Artefact file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            return ArtefactParser.parse_string(content, kind=kind, format="yaml")
        elif path.suffix == ".json":
            return ArtefactParser.parse_string(content, kind=kind, format="json")
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}")

    @staticmethod
    def parse_string(content: str, kind: str, format: str = "yaml") -> Any:
        """Parse an artefact from YAML or JSON string content."""
        if format == "yaml":
            data = yaml.safe_load(content)
        elif format == "json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported format: {format}")

        if data is None:
            raise ValueError("Empty artefact definition")

        return ArtefactParser.parse_dict(data, kind=kind)

    @staticmethod
    def parse_dict(data: dict, kind: str) -> Any:
        """Validate an artefact given as a dict."""
        model = ArtefactParser.model_for(kind)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ArtefactError(
                f"Invalid {kind} artefact: {e}",
                context={"kind": kind, "errors": e.errors(include_url=False)},
            ) from e

    @staticmethod
    def validate_file(path: Union[str, Path], kind: str) -> tuple[bool, str]:
        """
        Validate an artefact file without keeping the result.

        Returns:
            Tuple of (is_valid, message)
        """
        try:
            artefact = ArtefactParser.parse_file(path, kind=kind)
            label = getattr(artefact, "id", "") or getattr(artefact, "name", "") or kind
            version = getattr(artefact, "version", "?")
            return True, f"Valid {kind}: {label} v{version}"
        except FileNotFoundError as e:
            return False, f"File not found: {e}"
        except ArtefactError as e:
            return False, f"Validation error: {e}"
        except (ValueError, yaml.YAMLError) as e:
            return False, f"Invalid format: {e}"
