"""Tests for the condition evaluator."""

import pytest

from journeyrun.engine.conditions import (
    evaluate_condition,
    evaluate_edge_condition,
    evaluate_group,
    strict_equals,
)
from journeyrun.models.graph import Condition, ConditionGroup, Edge


def cond(fact: str, op: str, value) -> Condition:
    return Condition(fact=fact, op=op, value=value)


FACT_SETS = [
    {},
    {"quiz.scorePercent": 80},
    {"quiz.scorePercent": 10, "quiz.weakTopics": ["loops"], "block.status": "completed"},
]


# =============================================================================
# Vacuous groups
# =============================================================================


@pytest.mark.parametrize("facts", FACT_SETS)
def test_empty_all_is_true(facts):
    assert evaluate_group(ConditionGroup(all=[]), facts) is True


@pytest.mark.parametrize("facts", FACT_SETS)
def test_empty_any_is_false(facts):
    assert evaluate_group(ConditionGroup(any=[]), facts) is False


def test_group_with_neither_key_is_true():
    assert evaluate_group(ConditionGroup(), {}) is True


def test_all_wins_when_both_keys_present():
    group = ConditionGroup(all=[], any=[])
    assert evaluate_group(group, {}) is True


def test_edge_without_condition_matches():
    edge = Edge.model_validate({"from": "a", "to": "b"})
    assert evaluate_edge_condition(edge, {}) is True


# =============================================================================
# Missing facts
# =============================================================================


class TestMissingFact:
    """A condition on an absent fact is false, whatever the operator."""

    @pytest.mark.parametrize("op", ["eq", "neq", "gt", "gte", "lt", "lte", "contains", "in"])
    def test_absent_fact_is_false(self, op):
        value = [1, 2] if op == "in" else 1
        assert evaluate_condition(cond("quiz.scorePercent", op, value), {}) is False

    def test_none_counts_as_absent(self):
        facts = {"quiz.scorePercent": None}
        assert evaluate_condition(cond("quiz.scorePercent", "neq", 5), facts) is False


# =============================================================================
# Operators
# =============================================================================


class TestEquality:
    def test_eq(self):
        assert evaluate_condition(cond("block.status", "eq", "completed"), {"block.status": "completed"})
        assert not evaluate_condition(cond("block.status", "eq", "failed"), {"block.status": "completed"})

    def test_neq(self):
        assert evaluate_condition(cond("block.status", "neq", "failed"), {"block.status": "completed"})

    def test_int_equals_float(self):
        assert evaluate_condition(cond("quiz.scorePercent", "eq", 50), {"quiz.scorePercent": 50.0})

    def test_bool_is_not_number(self):
        assert not strict_equals(True, 1)
        assert not strict_equals(0, False)
        assert evaluate_condition(cond("output.passed", "neq", 1), {"output.passed": True})

    def test_string_is_not_number(self):
        assert not evaluate_condition(cond("quiz.scorePercent", "eq", "50"), {"quiz.scorePercent": 50})


class TestNumericComparison:
    @pytest.mark.parametrize(
        "op,value,expected",
        [
            ("gt", 49, True),
            ("gt", 50, False),
            ("gte", 50, True),
            ("lt", 51, True),
            ("lt", 50, False),
            ("lte", 50, True),
        ],
    )
    def test_comparisons(self, op, value, expected):
        facts = {"quiz.scorePercent": 50}
        assert evaluate_condition(cond("quiz.scorePercent", op, value), facts) is expected

    def test_non_numeric_operand_is_false(self):
        assert not evaluate_condition(cond("block.status", "gt", 1), {"block.status": "done"})
        assert not evaluate_condition(cond("quiz.scorePercent", "lt", "90"), {"quiz.scorePercent": 10})

    def test_bool_operand_is_false(self):
        assert not evaluate_condition(cond("output.flag", "gte", 0), {"output.flag": True})


class TestContainsAndIn:
    def test_contains_list_membership(self):
        facts = {"quiz.weakTopics": ["loops", "functions"]}
        assert evaluate_condition(cond("quiz.weakTopics", "contains", "loops"), facts)
        assert not evaluate_condition(cond("quiz.weakTopics", "contains", "classes"), facts)

    def test_contains_substring(self):
        facts = {"output.answer": "I like list comprehensions"}
        assert evaluate_condition(cond("output.answer", "contains", "comprehension"), facts)

    def test_contains_on_number_is_false(self):
        assert not evaluate_condition(cond("quiz.scorePercent", "contains", 5), {"quiz.scorePercent": 50})

    def test_in(self):
        facts = {"block.status": "completed"}
        assert evaluate_condition(cond("block.status", "in", ["completed", "skipped"]), facts)
        assert not evaluate_condition(cond("block.status", "in", ["failed"]), facts)

    def test_in_requires_list(self):
        assert not evaluate_condition(cond("block.status", "in", "completed"), {"block.status": "completed"})


# =============================================================================
# Nesting
# =============================================================================


def test_nested_groups():
    group = ConditionGroup.model_validate(
        {
            "any": [
                {"fact": "quiz.scorePercent", "op": "gte", "value": 90},
                {
                    "all": [
                        {"fact": "quiz.scorePercent", "op": "gte", "value": 50},
                        {"fact": "block.attemptsCount", "op": "lte", "value": 2},
                    ]
                },
            ]
        }
    )
    assert evaluate_group(group, {"quiz.scorePercent": 95})
    assert evaluate_group(group, {"quiz.scorePercent": 60, "block.attemptsCount": 1})
    assert not evaluate_group(group, {"quiz.scorePercent": 60, "block.attemptsCount": 3})
    assert not evaluate_group(group, {"quiz.scorePercent": 60})
