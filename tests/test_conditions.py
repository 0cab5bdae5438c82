"""Tests for automation condition evaluation"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from helpdesk.v1.automation.conditions import evaluate_condition, evaluate_conditions
from helpdesk.v1.automation.schemas import TicketContext, conditions_adapter

from conftest import T0, make_ticket


def _ctx(tags=None, **ticket) -> TicketContext:
    return TicketContext(ticket=make_ticket(**ticket), tags=tags or [])


def _cond(type_: str, value=None):
    return conditions_adapter.validate_python([{"type": type_, "value": value}])[0]


class TestSingleConditions:
    @pytest.mark.parametrize(
        "condition,ticket,expected",
        [
            (("status_equals", "NEW"), {"status": "NEW"}, True),
            (("status_equals", "OPEN"), {"status": "NEW"}, False),
            (("status_in", ["OPEN", "NEW"]), {"status": "NEW"}, True),
            (("status_in", ["CLOSED"]), {"status": "NEW"}, False),
            (("priority_equals", "P1"), {"priority": "P1"}, True),
            (("priority_in", ["P1", "P2"]), {"priority": "P3"}, False),
            (("category_equals", "INCIDENT"), {"category": "INCIDENT"}, True),
            (("assignee_is", "agent-a"), {"assignee_id": "agent-a"}, True),
            (("assignee_is", "agent-a"), {"assignee_id": None}, False),
            (("assignee_is_null", None), {"assignee_id": None}, True),
            (("assignee_is_null", None), {"assignee_id": "agent-a"}, False),
            (("subject_contains", "PRINTER"), {"subject": "printer jam"}, True),
            (("subject_contains", "vpn"), {"subject": "printer jam"}, False),
            (("description_contains", "Invoice"), {"description": "my invoice"}, True),
            (("description_contains", "invoice"), {"description": ""}, False),
        ],
    )
    def test_evaluate(self, condition, ticket, expected):
        assert evaluate_condition(_cond(*condition), _ctx(**ticket)) is expected

    def test_tag_equals_uses_context_tags(self):
        cond = _cond("tag_equals", "vip")
        assert evaluate_condition(cond, _ctx(tags=["vip", "billing"]))
        assert not evaluate_condition(cond, _ctx(tags=["billing"]))

    def test_created_window_is_inclusive(self):
        after = _cond("created_after", T0.isoformat())
        before = _cond("created_before", T0.isoformat())
        ctx = _ctx(created_at=T0)
        assert evaluate_condition(after, ctx)
        assert evaluate_condition(before, ctx)
        assert not evaluate_condition(after, _ctx(created_at=T0 - timedelta(seconds=1)))

    def test_naive_dates_are_treated_as_utc(self):
        cond = _cond("created_after", "2024-01-15T08:00:00")
        assert evaluate_condition(cond, _ctx(created_at=T0))


class TestConditionList:
    def test_empty_list_matches(self):
        assert evaluate_conditions([], _ctx()) is True

    @pytest.mark.parametrize(
        "a,b",
        [
            (("status_equals", "NEW"), ("priority_equals", "P3")),
            (("status_equals", "NEW"), ("priority_equals", "P1")),
            (("status_equals", "OPEN"), ("priority_equals", "P3")),
            (("status_equals", "OPEN"), ("priority_equals", "P1")),
        ],
    )
    def test_and_fold(self, a, b):
        ctx = _ctx()
        cond_a, cond_b = _cond(*a), _cond(*b)
        assert evaluate_conditions([cond_a, cond_b], ctx) == (
            evaluate_conditions([cond_a], ctx) and evaluate_conditions([cond_b], ctx)
        )


class TestConditionSchema:
    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            conditions_adapter.validate_python([{"type": "moon_phase", "value": "full"}])

    def test_wrong_value_type_rejected(self):
        with pytest.raises(ValidationError):
            conditions_adapter.validate_python([{"type": "status_equals", "value": "LOST"}])
