"""Tests for predicate evaluation."""

import pytest

from screenflow import evaluate_condition
from screenflow.engine import DiagnosticCode, EvaluationContext
from screenflow.engine.conditions import (
    compile_predicate,
    flatten,
    merge_condition_data,
)
from screenflow.engine.exceptions import PredicateParseError


@pytest.mark.parametrize(
    "expression,data,expected",
    [
        ("ageGroup == 'adult'", {"ageGroup": "adult"}, True),
        ('ageGroup != "adult"', {"ageGroup": "adult"}, False),
        ("age >= 18 && consent", {"age": 20, "consent": True}, True),
        ("age < 18 || consent", {"age": 20, "consent": False}, False),
        ("!consent", {"consent": False}, True),
        ("not consent and age > 1", {"consent": False, "age": 2}, True),
        ("(a == 1 || b == 2) && c", {"a": 0, "b": 2, "c": True}, True),
        ("household.head.gender == 'F'", {"household": {"head": {"gender": "F"}}}, True),
        ("flag == true", {"flag": "true"}, True),
        ("score > -1", {"score": 0}, True),
        ("value == null", {"value": None}, True),
    ],
)
def test_expressions(evaluator, expression, data, expected):
    assert evaluator.evaluate(expression, data) is expected


def test_default_is_true_with_its_own_code(evaluator, diagnostics):
    assert evaluator.evaluate("DEFAULT", {}) is True
    assert diagnostics.codes() == [DiagnosticCode.PREDICATE_DEFAULT]


def test_parse_error_is_false_and_distinct(evaluator, diagnostics):
    assert evaluator.evaluate("age >", {"age": 3}) is False
    assert evaluator.evaluate("age @ 3", {"age": 3}) is False
    assert diagnostics.codes() == [
        DiagnosticCode.PREDICATE_PARSE_ERROR,
        DiagnosticCode.PREDICATE_PARSE_ERROR,
    ]


def test_false_result_is_distinct_from_broken_expression(evaluator, diagnostics):
    assert evaluator.evaluate("age > 100", {"age": 3}) is False
    assert diagnostics.codes() == [DiagnosticCode.PREDICATE_FALSE]


def test_unknown_identifier_fails_closed(evaluator, diagnostics):
    assert evaluator.evaluate("missing == 'x'", {"age": 3}) is False
    assert diagnostics.codes() == [DiagnosticCode.PREDICATE_UNRESOLVED]


def test_non_boolean_result_is_evaluation_error(evaluator, diagnostics):
    assert evaluator.evaluate("age", {"age": 3}) is False
    assert diagnostics.codes() == [DiagnosticCode.PREDICATE_EVALUATION_ERROR]


def test_type_mismatch_is_evaluation_error(evaluator, diagnostics):
    assert evaluator.evaluate("age > 'x'", {"age": 3}) is False
    assert diagnostics.codes() == [DiagnosticCode.PREDICATE_EVALUATION_ERROR]


def test_attribute_access_and_arbitrary_calls_are_rejected(evaluator, diagnostics):
    assert evaluator.evaluate("__import__('os')", {}) is False
    assert evaluator.evaluate("age.__class__ == 1", {"age": 1}) is False
    assert diagnostics.codes() == [
        DiagnosticCode.PREDICATE_EVALUATION_ERROR,
        DiagnosticCode.PREDICATE_UNRESOLVED,
    ]


def test_registered_function_calls(evaluator):
    data = {"members": [1, 2, 3]}
    assert evaluator.evaluate("fn:length(members) == 3", data) is True
    assert evaluator.evaluate("length(members) > 5", data) is False


def test_evaluation_context_uses_form_and_navigation(evaluator):
    ctx = EvaluationContext(
        form_data={"ageGroup": "adult", "consent": "true"},
        navigation_params={"mode": "edit"},
        item={"status": "DONE"},
    )
    assert evaluator.evaluate("ageGroup == 'adult' && consent && mode == 'edit'", ctx) is True
    assert evaluator.evaluate("item.status == 'DONE'", ctx) is True


def test_evaluation_is_pure(evaluator):
    data = {"ageGroup": "adult", "consent": "true"}
    results = {evaluator.evaluate("ageGroup == 'adult' && consent", data) for _ in range(5)}
    assert results == {True}
    assert data == {"ageGroup": "adult", "consent": "true"}


def test_module_level_helper():
    assert evaluate_condition("x == 1", {"x": 1}) is True
    assert evaluate_condition("x ==", {"x": 1}) is False


def test_compile_predicate_uses_opaque_names():
    compiled = compile_predicate("a.0.b == 1 && a.0.b != c")
    assert set(compiled.variables.values()) == {"a.0.b", "c"}
    assert "a.0.b" not in compiled.source

    with pytest.raises(PredicateParseError):
        compile_predicate("")


def test_flatten_and_merge():
    assert flatten({"a": {"b": "true", "c": [1, 2]}, "d": 1}) == {
        "a.b": True,
        "a.c": [1, 2],
        "d": 1,
    }
    assert merge_condition_data({"x": "false", "y": 1}, {"y": 2}) == {"x": False, "y": 2}
