"""
Journey state machine.

Validates and applies triggered transitions over a StateModelDefinition.
The graph is the single source of truth for legality: nothing, including
the language model, can move the journey along an edge that is not declared.

One instance is built per request, seeded from the caller's current state,
mutated in place during the request and then discarded.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from govjourney.artefacts.schema import StateModelDefinition, TransitionDefinition

logger = logging.getLogger(__name__)


class TransitionStatus(Enum):
    """Result of a transition attempt."""

    SUCCESS = "success"
    INVALID_TRANSITION = "invalid_transition"
    TERMINAL_STATE = "terminal_state"


@dataclass(frozen=True)
class TransitionOutcome:
    """Reported result of ``StateMachine.transition``. Failure is not an error."""

    status: TransitionStatus
    from_state: str
    to_state: str
    trigger: str
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == TransitionStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Wire form shared with remote state tools."""
        data: Dict[str, Any] = {
            "success": self.success,
            "fromState": self.from_state,
            "toState": self.to_state,
            "trigger": self.trigger,
        }
        if self.error:
            data["error"] = self.error
        return data


class StateMachine:
    """
    State machine for a single journey.

    Example:
        ```python
        machine = StateMachine(state_model)
        machine.set_state("not-started")

        outcome = machine.transition("check-eligibility")
        if outcome.success:
            print(machine.current_state)
        ```
    """

    def __init__(self, definition: StateModelDefinition):
        self.definition = definition
        self._states = {s.id: s for s in definition.states}
        self._initial_state = definition.initial_state.id
        self.current_state = self._initial_state

    @property
    def initial_state(self) -> str:
        return self._initial_state

    def get_state(self) -> str:
        return self.current_state

    def set_state(self, state_id: str) -> None:
        """
        Seed the current state from caller-supplied data.

        No validation happens here: the value may be stale client data, and
        an undeclared state simply has no legal transitions out of it.
        """
        if state_id not in self._states:
            logger.debug(
                f"State model '{self.definition.id}' has no state '{state_id}'; "
                f"transitions from it will be rejected"
            )
        self.current_state = state_id

    def knows_state(self, state_id: str) -> bool:
        return state_id in self._states

    def reset(self) -> None:
        """Return to the initial state."""
        self.current_state = self._initial_state

    def allowed_transitions(self) -> List[TransitionDefinition]:
        """All transitions leaving the current state, in declaration order."""
        return self.definition.get_transitions_from(self.current_state)

    def allowed_triggers(self) -> List[str]:
        return [t.trigger for t in self.allowed_transitions() if t.trigger]

    def transition(self, trigger: str) -> TransitionOutcome:
        """
        Attempt the transition named by ``trigger`` from the current state.

        On success the current state moves; otherwise it is left untouched
        and the outcome carries a descriptive error.
        """
        current = self.current_state

        if self.is_terminal():
            logger.debug(f"Rejected '{trigger}': state '{current}' is terminal")
            return TransitionOutcome(
                status=TransitionStatus.TERMINAL_STATE,
                from_state=current,
                to_state=current,
                trigger=trigger,
                error=f"State '{current}' is terminal and accepts no transitions",
            )

        match = next(
            (t for t in self.allowed_transitions() if t.trigger == trigger),
            None,
        )
        if match is None:
            logger.debug(f"Rejected '{trigger}': no transition from '{current}'")
            return TransitionOutcome(
                status=TransitionStatus.INVALID_TRANSITION,
                from_state=current,
                to_state=current,
                trigger=trigger,
                error=f"No transition from '{current}' with trigger '{trigger}'",
            )

        self.current_state = match.to_state
        logger.debug(f"'{current}' -> '{match.to_state}' (trigger={trigger})")

        return TransitionOutcome(
            status=TransitionStatus.SUCCESS,
            from_state=current,
            to_state=match.to_state,
            trigger=trigger,
        )

    def is_terminal(self) -> bool:
        state = self._states.get(self.current_state)
        return state.is_terminal if state else False

    def requires_receipt(self) -> bool:
        state = self._states.get(self.current_state)
        return state.receipt if state else False
