"""
Deterministic task overlay.

Some journey states need one specific thing from the citizen. In those
states any model-proposed task on the same topic is replaced by a fixed,
hand-authored task, so the request does not depend on model wording.
Eligibility is computed, never a task, so eligibility-flavoured tasks are
removed in every state.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Sequence

from govjourney.runtime.structured_output import ProposedTask


ELIGIBILITY_PATTERN = re.compile(
    r"eligib|verify.*identity|identity.*verif|check.*uc|uc.*check", re.IGNORECASE
)


@dataclass
class JourneyTask:
    id: str
    description: str
    detail: str
    type: str
    due_date: Optional[str] = None
    data_needed: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return f"{self.description} {self.detail}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "detail": self.detail,
            "type": self.type,
            "dueDate": self.due_date,
            "dataNeeded": list(self.data_needed),
        }


@dataclass(frozen=True)
class TaskOverlay:
    """
    Fixed task for one state, with the heuristic for the model tasks it replaces.

    A model task matches if it needs any of ``data_fields`` or its text
    matches ``keywords``.
    """

    state: str
    topic: str
    data_fields: FrozenSet[str]
    keywords: Pattern
    description: str
    detail: str
    data_needed: Sequence[str]

    def matches(self, task: JourneyTask) -> bool:
        if any(d in self.data_fields for d in task.data_needed):
            return True
        return bool(self.keywords.search(task.text))

    def make_task(self) -> JourneyTask:
        return JourneyTask(
            id=f"task_{self.topic}_{uuid.uuid4().hex[:12]}",
            description=self.description,
            detail=self.detail,
            type="user",
            data_needed=list(self.data_needed),
        )


HOUSING_OVERLAY = TaskOverlay(
    state="personal-details-collected",
    topic="housing",
    data_fields=frozenset(
        {
            "tenure_type",
            "housing_tenure",
            "housing_status",
            "monthly_rent",
            "rent",
            "address",
            "housing tenure",
        }
    ),
    keywords=re.compile(r"housing|tenure|rent|own.*home|accommodation", re.IGNORECASE),
    description="Provide your housing details",
    detail="Select your housing situation and enter your monthly rent if applicable",
    data_needed=("tenure_type", "monthly_rent"),
)

BANK_OVERLAY = TaskOverlay(
    state="income-details-collected",
    topic="bank",
    data_fields=frozenset(
        {
            "sort_code",
            "account_number",
            "bank_accounts",
            "bank_account",
            "bank_details",
            "bank accounts",
        }
    ),
    keywords=re.compile(r"bank\s*account|payment\s*account|sort\s*code", re.IGNORECASE),
    description="Select a bank account for UC payments",
    detail=(
        "Choose which account you'd like Universal Credit payments sent to, "
        "or enter new details"
    ),
    data_needed=("sort_code", "account_number"),
)

DEFAULT_OVERLAYS = (HOUSING_OVERLAY, BANK_OVERLAY)


def build_tasks(proposed: Sequence[ProposedTask]) -> List[JourneyTask]:
    """Assign ids to validated model tasks."""
    batch = uuid.uuid4().hex[:12]
    return [
        JourneyTask(
            id=f"task_{batch}_{i}",
            description=t.description,
            detail=t.detail,
            type=t.type,
            due_date=t.due_date,
            data_needed=list(t.data_needed),
        )
        for i, t in enumerate(proposed)
    ]


def strip_eligibility(tasks: List[JourneyTask]) -> List[JourneyTask]:
    return [t for t in tasks if not ELIGIBILITY_PATTERN.search(t.text)]


def apply_task_overlay(
    tasks: List[JourneyTask],
    pre_state: Optional[str],
    post_state: str,
    transitioned: bool,
    overlays: Sequence[TaskOverlay] = DEFAULT_OVERLAYS,
) -> List[JourneyTask]:
    """
    Apply the overlay for the state the journey is in after reconciliation.

    The pre-transition state only counts when no transition happened this
    turn (the citizen is still being asked for the same thing).
    """
    for overlay in overlays:
        in_state = post_state == overlay.state or (
            pre_state == overlay.state and not transitioned
        )
        if in_state:
            kept = [t for t in tasks if not overlay.matches(t)]
            kept.append(overlay.make_task())
            return strip_eligibility(kept)

    return strip_eligibility(tasks)
