"""
GovJourney policy layer.

Deterministic eligibility evaluation and consent tracking. Nothing here
consults the language model.

Usage:
    ```python
    from govjourney.policy import PolicyEvaluator

    result = PolicyEvaluator().evaluate(ruleset, {"age": 17})
    assert not result.eligible
    ```
"""

from govjourney.policy.evaluator import (
    MISSING,
    PolicyEvaluator,
    PolicyResult,
    PolicySummary,
    evaluate_condition,
    resolve_path,
)
from govjourney.policy.consent import ConsentDecision, ConsentManager

__all__ = [
    "MISSING",
    "PolicyEvaluator",
    "PolicyResult",
    "PolicySummary",
    "evaluate_condition",
    "resolve_path",
    "ConsentDecision",
    "ConsentManager",
]
