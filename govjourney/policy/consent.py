"""
Consent tracking for data-sharing grants.

The orchestrator only surfaces grants; callers that collect the citizen's
answers use ConsentManager to record and query the decisions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from govjourney.artefacts.schema import ConsentGrant, ConsentModel

logger = logging.getLogger(__name__)


@dataclass
class ConsentDecision:
    """A single grant/deny/revoke decision."""

    grant_id: str
    granted: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None


class ConsentManager:
    """Track which consent grants have been given, denied or revoked."""

    def __init__(self, model: ConsentModel):
        self.model = model
        self._decisions: Dict[str, ConsentDecision] = {}

    def get_required_grants(self) -> List[ConsentGrant]:
        return [g for g in self.model.grants if g.required]

    def get_optional_grants(self) -> List[ConsentGrant]:
        return [g for g in self.model.grants if not g.required]

    def get_pending_grants(self) -> List[ConsentGrant]:
        """Grants with no decision yet."""
        return [g for g in self.model.grants if g.id not in self._decisions]

    def record_decision(
        self, grant_id: str, granted: bool, reason: Optional[str] = None
    ) -> ConsentDecision:
        decision = ConsentDecision(grant_id=grant_id, granted=granted, reason=reason)
        self._decisions[grant_id] = decision
        logger.debug(f"Consent '{grant_id}' {'granted' if granted else 'denied'}")
        return decision

    def has_consent(self, grant_id: str) -> bool:
        decision = self._decisions.get(grant_id)
        return decision is not None and decision.granted

    def revoke(self, grant_id: str, reason: Optional[str] = None) -> ConsentDecision:
        return self.record_decision(grant_id, False, reason or "Revoked by citizen")

    def all_required_granted(self) -> bool:
        return all(self.has_consent(g.id) for g in self.get_required_grants())

    def get_all_decisions(self) -> List[ConsentDecision]:
        return list(self._decisions.values())

    def get_data_shared(self, grant_id: str) -> List[str]:
        for grant in self.model.grants:
            if grant.id == grant_id:
                return list(grant.data_shared)
        return []
