"""
Per-request journey state: the state machine and the required-field tracker.
"""

from govjourney.journey.state_machine import (
    StateMachine,
    TransitionOutcome,
    TransitionStatus,
)
from govjourney.journey.field_collector import CollectedField, FieldCollector

__all__ = [
    "StateMachine",
    "TransitionOutcome",
    "TransitionStatus",
    "CollectedField",
    "FieldCollector",
]
