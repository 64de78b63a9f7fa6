"""Guard-condition evaluation against a proposal.

Field paths are dotted (``insurance_coverage.provider``); each segment is
resolved as a dict key or an attribute. A missing segment resolves to None.
"""

from __future__ import annotations

import logging
from enum import Enum

from proposal_workflow.models.workflow import ConditionOperator, WorkflowCondition

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_field(obj, path: str):
    value = obj
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, _MISSING)
            if value is _MISSING:
                return None
    if isinstance(value, Enum):
        return value.value
    return value


def _as_number(value):
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return not value


def evaluate_condition(obj, condition: WorkflowCondition) -> bool:
    """Return True when ``condition`` holds for ``obj``.

    Non-numeric operands of GREATER_THAN / LESS_THAN make the condition fail
    rather than raise.
    """
    actual = resolve_field(obj, condition.field)
    expected = condition.value
    if isinstance(expected, Enum):
        expected = expected.value
    op = condition.operator

    if op == ConditionOperator.EQUALS:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if op == ConditionOperator.GREATER_THAN else left < right
    if op == ConditionOperator.CONTAINS:
        if actual is None:
            return False
        if isinstance(actual, (list, tuple, set)):
            return expected in actual
        return str(expected) in str(actual)
    if op == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    logger.warning("Unknown condition operator %s", op)
    return False


def first_failing(obj, conditions) -> WorkflowCondition | None:
    """Return the first condition that does not hold, or None."""
    for condition in conditions:
        if not evaluate_condition(obj, condition):
            return condition
    return None


def describe(condition: WorkflowCondition) -> str:
    if condition.description:
        return condition.description
    op = condition.operator.value if isinstance(condition.operator, ConditionOperator) else condition.operator
    return f"{condition.field} {op} {condition.value!r}"
