"""
Deterministic eligibility evaluation.

Evaluates a PolicyRuleset against a plain context dict. Supported operators:
>=, <=, ==, !=, exists, not-exists, in.

Comparison semantics are strict:
- no implicit coercion (``"18" >= 18`` fails, ``True == 1`` fails)
- numeric operators fail closed on non-numeric values instead of raising
- ``in`` compares scalars by value and containers by identity
- an unknown operator fails the rule
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from govjourney.artefacts.schema import (
    PolicyCondition,
    PolicyEdgeCase,
    PolicyRule,
    PolicyRuleset,
)

logger = logging.getLogger(__name__)


class _Missing:
    """Marker for a path that does not resolve (distinct from an explicit None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def resolve_path(context: Any, path: str) -> Any:
    """
    Resolve a dot-separated path into nested dicts/lists.

    Missing keys at any depth resolve to MISSING; nothing here raises.
    """
    current = context
    for key in path.split("."):
        if current is MISSING or current is None:
            return MISSING
        if isinstance(current, dict):
            current = current.get(key, MISSING)
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else MISSING
        else:
            return MISSING
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without coercion between types."""
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def is_truthy(value: Any) -> bool:
    """Truthiness as used for edge-case detection: empty containers still count."""
    if value is MISSING or value is None:
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return len(value) > 0
    return True


def evaluate_condition(condition: PolicyCondition, context: Dict[str, Any]) -> bool:
    """Evaluate one condition. Never raises."""
    field_value = resolve_path(context, condition.field)
    expected = condition.value if "value" in condition.model_fields_set else MISSING
    operator = condition.operator

    if operator == "exists":
        return field_value is not MISSING and field_value is not None
    if operator == "not-exists":
        return field_value is MISSING or field_value is None
    if operator == "==":
        return strict_equals(field_value, expected)
    if operator == "!=":
        return not strict_equals(field_value, expected)
    if operator == ">=":
        return _is_number(field_value) and _is_number(expected) and field_value >= expected
    if operator == "<=":
        return _is_number(field_value) and _is_number(expected) and field_value <= expected
    if operator == "in":
        if isinstance(expected, (list, tuple)):
            return any(strict_equals(field_value, candidate) for candidate in expected)
        return False

    logger.warning(f"Unknown policy operator '{operator}' on field '{condition.field}'")
    return False


@dataclass(frozen=True)
class PolicyResult:
    """Outcome of evaluating a ruleset. A fresh value per evaluation."""

    eligible: bool
    passed: Tuple[PolicyRule, ...] = field(default_factory=tuple)
    failed: Tuple[PolicyRule, ...] = field(default_factory=tuple)
    edge_cases: Tuple[PolicyEdgeCase, ...] = field(default_factory=tuple)
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form, as returned by the eligibility tool."""
        return {
            "eligible": self.eligible,
            "passed": [r.model_dump(exclude_none=True) for r in self.passed],
            "failed": [r.model_dump(exclude_none=True) for r in self.failed],
            "edgeCases": [e.model_dump() for e in self.edge_cases],
            "explanation": self.explanation,
        }

    def summary(self) -> "PolicySummary":
        return PolicySummary(
            eligible=self.eligible,
            explanation=self.explanation,
            passed_count=len(self.passed),
            failed_count=len(self.failed),
            edge_case_count=len(self.edge_cases),
        )


@dataclass(frozen=True)
class PolicySummary:
    """Counts-only view of a PolicyResult for the response payload."""

    eligible: bool
    explanation: str
    passed_count: int
    failed_count: int
    edge_case_count: int


class PolicyEvaluator:
    """
    Evaluate eligibility rules against a citizen context.

    Every rule is evaluated on every call; there is no short-circuiting and
    rule order does not matter. Edge cases are reported alongside the outcome
    and never change it.

    Example:
        ```python
        result = PolicyEvaluator().evaluate(ruleset, {"age": 17})
        if not result.eligible:
            print(result.explanation)
        ```
    """

    def evaluate(self, ruleset: PolicyRuleset, context: Dict[str, Any]) -> PolicyResult:
        passed: List[PolicyRule] = []
        failed: List[PolicyRule] = []

        for rule in ruleset.rules:
            if evaluate_condition(rule.condition, context):
                passed.append(rule)
            else:
                failed.append(rule)

        detected = [
            edge_case
            for edge_case in ruleset.edge_cases
            if is_truthy(resolve_path(context, edge_case.detection))
        ]

        eligible = not failed

        if eligible:
            if ruleset.explanation_template:
                explanation = ruleset.explanation_template.replace("{outcome}", "eligible", 1)
            else:
                explanation = f"All {len(passed)} eligibility rules passed."
        else:
            reasons = "; ".join(r.reason_if_failed for r in failed)
            explanation = f"Not eligible: {reasons}"

        if detected:
            explanation += f" Note: {len(detected)} edge case(s) detected."

        logger.debug(
            f"Ruleset '{ruleset.id}' v{ruleset.version}: eligible={eligible} "
            f"(passed={len(passed)}, failed={len(failed)}, edge_cases={len(detected)})"
        )

        return PolicyResult(
            eligible=eligible,
            passed=tuple(passed),
            failed=tuple(failed),
            edge_cases=tuple(detected),
            explanation=explanation,
        )

