"""
Escalation from the automated agent to a human.

HandoffManager watches for four triggers, checked in priority order:
- safeguarding concern (keyword match)
- citizen asks for a human (keyword match)
- policy edge case (flag from the caller)
- repeated failure of the same operation (counter per caller-scoped key)

and builds a structured HandoffPackage for the escalation channel.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from govjourney.artefacts.schema import CapabilityManifest
from govjourney.config.settings import HandoffConfig

logger = logging.getLogger(__name__)


SAFEGUARDING_KEYWORDS = (
    "suicide",
    "self-harm",
    "kill myself",
    "end my life",
    "domestic abuse",
    "being hurt",
    "violence",
    "child protection",
    "child abuse",
    "homeless",
    "sleeping rough",
    "no food",
    "starving",
    "can't eat",
)

HUMAN_REQUEST_KEYWORDS = (
    "speak to someone",
    "speak to a person",
    "speak to a human",
    "talk to someone",
    "talk to a human",
    "real person",
    "human agent",
    "call someone",
    "want to complain",
    "make a complaint",
)


class HandoffReason(str, Enum):
    SAFEGUARDING = "safeguarding-concern"
    CITIZEN_REQUESTED = "citizen-requested"
    POLICY_EDGE_CASE = "policy-edge-case"
    REPEATED_FAILURE = "repeated-failure"


class HandoffUrgency(str, Enum):
    ROUTINE = "routine"
    PRIORITY = "priority"
    SAFEGUARDING = "safeguarding"


URGENCY_BY_REASON = {
    HandoffReason.SAFEGUARDING: HandoffUrgency.SAFEGUARDING,
    HandoffReason.REPEATED_FAILURE: HandoffUrgency.PRIORITY,
}

SUGGESTED_ACTIONS = {
    HandoffReason.SAFEGUARDING: (
        "Follow safeguarding protocol immediately",
        "Do not redirect citizen to automated systems",
        "Consider multi-agency referral if appropriate",
    ),
    HandoffReason.CITIZEN_REQUESTED: (
        "Review conversation summary before connecting",
        "Confirm citizen's identity and details",
    ),
    HandoffReason.REPEATED_FAILURE: (
        "Investigate the technical cause of the failure",
        "Attempt the operation manually for the citizen",
    ),
    HandoffReason.POLICY_EDGE_CASE: (
        "Review the edge case against policy guidance",
        "Escalate to policy team if unclear",
    ),
}


class FailureCounterStore(ABC):
    """
    Per-key failure counts, owned by the caller.

    Keys should be scoped by the caller (e.g. ``"<session>:<operation>"``)
    so tenants do not share counters.
    """

    @abstractmethod
    def increment(self, key: str) -> int:
        """Add one failure for ``key`` and return the new count."""
        ...

    @abstractmethod
    def get(self, key: str) -> int:
        ...

    @abstractmethod
    def reset(self, key: str) -> None:
        ...


class InMemoryFailureCounter(FailureCounterStore):
    """Process-local counter store. Increments are not atomic across tasks."""

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def increment(self, key: str) -> int:
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        return count

    def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    def reset(self, key: str) -> None:
        self._counts.pop(key, None)


@dataclass(frozen=True)
class HandoffTrigger:
    triggered: bool
    reason: Optional[HandoffReason] = None
    description: Optional[str] = None


NOT_TRIGGERED = HandoffTrigger(triggered=False)


@dataclass
class HandoffCitizen:
    name: str
    preferred_channel: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class ConversationSummary:
    service_attempted: str
    steps_completed: List[str] = field(default_factory=list)
    steps_blocked: List[str] = field(default_factory=list)
    data_collected: List[str] = field(default_factory=list)
    time_spent: str = ""


@dataclass
class HandoffRouting:
    department: str
    service_area: str
    suggested_queue: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "department": self.department,
            "serviceArea": self.service_area,
            "suggestedQueue": self.suggested_queue,
        }


@dataclass
class HandoffPackage:
    """Everything a human agent needs to pick up the conversation."""

    id: str
    created_at: datetime
    urgency: HandoffUrgency
    citizen: HandoffCitizen
    reason: HandoffReason
    description: str
    agent_assessment: str
    conversation_summary: ConversationSummary
    trace_id: str
    receipt_ids: List[str]
    suggested_actions: List[str]
    routing: HandoffRouting

    def to_dict(self) -> Dict[str, Any]:
        summary = self.conversation_summary
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "urgency": self.urgency.value,
            "citizen": {
                "name": self.citizen.name,
                "contactDetails": {
                    "preferredChannel": self.citizen.preferred_channel,
                    "phone": self.citizen.phone,
                    "email": self.citizen.email,
                },
            },
            "reason": {
                "category": self.reason.value,
                "description": self.description,
                "agentAssessment": self.agent_assessment,
            },
            "conversationSummary": {
                "serviceAttempted": summary.service_attempted,
                "stepsCompleted": summary.steps_completed,
                "stepsBlocked": summary.steps_blocked,
                "dataCollected": summary.data_collected,
                "timeSpent": summary.time_spent,
            },
            "traceId": self.trace_id,
            "receiptIds": self.receipt_ids,
            "suggestedActions": self.suggested_actions,
            "routing": self.routing.to_dict(),
        }


class HandoffManager:
    """
    Detect handoff triggers and build handoff packages.

    The failure counter is the only state that outlives a request; it is
    injected so callers control its scope and lifetime.

    Example:
        ```python
        manager = HandoffManager(counter=shared_counter)
        trigger = manager.evaluate_triggers(user_text, failure_key=f"{session}:submit")
        if trigger.triggered:
            package = manager.create_package(trigger.reason, trigger.description, ...)
        ```
    """

    def __init__(
        self,
        counter: Optional[FailureCounterStore] = None,
        config: Optional[HandoffConfig] = None,
    ):
        self.counter = counter if counter is not None else InMemoryFailureCounter()
        self.config = config or HandoffConfig()

    def evaluate_triggers(
        self,
        message_text: str,
        failure_key: Optional[str] = None,
        policy_edge_case: bool = False,
    ) -> HandoffTrigger:
        """
        Check triggers in priority order; the first match wins.

        A ``failure_key`` is only counted when no higher-priority trigger
        fired first.
        """
        text = (message_text or "").lower()

        for keyword in SAFEGUARDING_KEYWORDS:
            if keyword in text:
                logger.info(f"Safeguarding handoff trigger: {keyword!r}")
                return HandoffTrigger(
                    triggered=True,
                    reason=HandoffReason.SAFEGUARDING,
                    description=f'Safeguarding keyword detected: "{keyword}"',
                )

        for keyword in HUMAN_REQUEST_KEYWORDS:
            if keyword in text:
                logger.info("Citizen requested a human agent")
                return HandoffTrigger(
                    triggered=True,
                    reason=HandoffReason.CITIZEN_REQUESTED,
                    description="Citizen requested to speak to a human agent",
                )

        if policy_edge_case:
            return HandoffTrigger(
                triggered=True,
                reason=HandoffReason.POLICY_EDGE_CASE,
                description="Policy edge case detected during eligibility check",
            )

        if failure_key:
            count = self.counter.increment(failure_key)
            logger.debug(f"Failure count for '{failure_key}': {count}")
            if count >= self.config.failure_threshold:
                return HandoffTrigger(
                    triggered=True,
                    reason=HandoffReason.REPEATED_FAILURE,
                    description=f"Operation '{failure_key}' has failed {count} times",
                )

        return NOT_TRIGGERED

    def reset_failures(self, key: str) -> None:
        self.counter.reset(key)

    def create_package(
        self,
        reason: HandoffReason,
        description: str,
        agent_assessment: str,
        citizen: HandoffCitizen,
        service: Optional[CapabilityManifest] = None,
        steps_completed: Optional[List[str]] = None,
        steps_blocked: Optional[List[str]] = None,
        data_collected: Optional[List[str]] = None,
        time_spent: str = "",
        trace_id: str = "",
        receipt_ids: Optional[List[str]] = None,
    ) -> HandoffPackage:
        """Build a fully populated package. Urgency depends on ``reason`` only."""
        reason = HandoffReason(reason)
        urgency = URGENCY_BY_REASON.get(reason, HandoffUrgency.ROUTINE)

        if not citizen.preferred_channel:
            citizen = replace(citizen, preferred_channel=self.config.default_channel)

        queue = None
        if service is not None and service.handoff is not None:
            queue = service.handoff.department_queue

        package = HandoffPackage(
            id=f"handoff_{uuid.uuid4().hex[:16]}",
            created_at=datetime.now(timezone.utc),
            urgency=urgency,
            citizen=citizen,
            reason=reason,
            description=description,
            agent_assessment=agent_assessment,
            conversation_summary=ConversationSummary(
                service_attempted=service.name if service else "Unknown service",
                steps_completed=list(steps_completed or []),
                steps_blocked=list(steps_blocked or []),
                data_collected=list(data_collected or []),
                time_spent=time_spent,
            ),
            trace_id=trace_id,
            receipt_ids=list(receipt_ids or []),
            suggested_actions=self._suggested_actions(reason, service),
            routing=HandoffRouting(
                department=service.department if service else "Unknown",
                service_area=service.name if service else "General",
                suggested_queue=queue or self.config.default_queue,
            ),
        )

        logger.info(
            f"Created {package.id} ({reason.value}, urgency={urgency.value}, "
            f"queue={package.routing.suggested_queue})"
        )
        return package

    def _suggested_actions(
        self, reason: HandoffReason, service: Optional[CapabilityManifest]
    ) -> List[str]:
        actions = list(
            SUGGESTED_ACTIONS.get(
                reason, ("Review the handoff package and conversation history",)
            )
        )
        if service is not None and service.handoff and service.handoff.escalation_phone:
            actions.append(f"Service contact: {service.handoff.escalation_phone}")
        return actions
