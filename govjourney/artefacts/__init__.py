"""
Service artefacts: manifest, policy, state model, consent and state instructions.

Provides:
- Pydantic models for each artefact, validated at load time
- ArtefactParser for YAML/JSON files, strings and dicts
- ServiceRegistry for loading service directories
"""

from govjourney.artefacts.schema import (
    KNOWN_OPERATORS,
    JsonSchema,
    HandoffContact,
    Redress,
    CapabilityManifest,
    PolicyCondition,
    PolicyRule,
    PolicyEdgeCase,
    PolicyRuleset,
    StateDefinition,
    TransitionDefinition,
    StateModelDefinition,
    ConsentGrant,
    ConsentModel,
    AutoTransition,
    StateInstructions,
    ServiceArtefacts,
    slug_from_id,
)
from govjourney.artefacts.parser import ArtefactParser, ARTEFACT_KINDS
from govjourney.artefacts.registry import ServiceRegistry

__all__ = [
    "KNOWN_OPERATORS",
    "JsonSchema",
    "HandoffContact",
    "Redress",
    "CapabilityManifest",
    "PolicyCondition",
    "PolicyRule",
    "PolicyEdgeCase",
    "PolicyRuleset",
    "StateDefinition",
    "TransitionDefinition",
    "StateModelDefinition",
    "ConsentGrant",
    "ConsentModel",
    "AutoTransition",
    "StateInstructions",
    "ServiceArtefacts",
    "slug_from_id",
    "ArtefactParser",
    "ARTEFACT_KINDS",
    "ServiceRegistry",
]
