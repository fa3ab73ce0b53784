"""Condition evaluator for edge conditions.

Semantics:
- ``all: []`` is true, ``any: []`` is false
- a condition on an absent fact is false for every operator, ``neq`` included
- gt/gte/lt/lte compare numbers only; booleans are not numbers
- contains: substring for strings, membership for lists
- in: membership of the fact value in the right-hand list
"""

from typing import Any

from journeyrun.models.graph import Condition, ConditionGroup, ConditionOp, Edge

Facts = dict[str, Any]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that never lets a boolean stand in for a number."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if _is_number(left) != _is_number(right):
        return False
    return left == right


def _compare(op: ConditionOp, left: Any, right: Any) -> bool:
    if not (_is_number(left) and _is_number(right)):
        return False
    if op == ConditionOp.GT:
        return left > right
    if op == ConditionOp.GTE:
        return left >= right
    if op == ConditionOp.LT:
        return left < right
    return left <= right


def evaluate_condition(condition: Condition, facts: Facts) -> bool:
    """Evaluate one condition against the current facts."""
    fact_value = facts.get(condition.fact)
    if fact_value is None:
        return False
    target = condition.value

    if condition.op == ConditionOp.EQ:
        return strict_equals(fact_value, target)
    if condition.op == ConditionOp.NEQ:
        return not strict_equals(fact_value, target)
    if condition.op in (ConditionOp.GT, ConditionOp.GTE, ConditionOp.LT, ConditionOp.LTE):
        return _compare(condition.op, fact_value, target)
    if condition.op == ConditionOp.CONTAINS:
        if isinstance(fact_value, (list, tuple, set)):
            return any(strict_equals(item, target) for item in fact_value)
        if isinstance(fact_value, str) and isinstance(target, str):
            return target in fact_value
        return False
    if condition.op == ConditionOp.IN:
        if isinstance(target, (list, tuple, set)):
            return any(strict_equals(fact_value, item) for item in target)
        return False
    return False


def evaluate_group(group: ConditionGroup, facts: Facts) -> bool:
    """Recursively evaluate a condition group."""
    if group.all is not None:
        return all(_evaluate_node(node, facts) for node in group.all)
    if group.any is not None:
        return any(_evaluate_node(node, facts) for node in group.any)
    return True


def _evaluate_node(node: Condition | ConditionGroup, facts: Facts) -> bool:
    if isinstance(node, Condition):
        return evaluate_condition(node, facts)
    return evaluate_group(node, facts)


def evaluate_edge_condition(edge: Edge, facts: Facts) -> bool:
    """An edge without a condition always matches."""
    if edge.condition is None:
        return True
    return evaluate_group(edge.condition, facts)
