"""Unit tests for stage conditions and the predicate registry."""
import pytest

from journey_service.flow_control.journey.conditions import (
    AllOf,
    AnyOf,
    ConditionError,
    Equals,
    Exists,
    Predicate,
    PredicateRegistry,
    parse_condition,
    resolve_field,
)
from journey_service.flow_control.journey.predicates import high_value_recharge

RECHARGE_VIEW = {"event": "page_view", "details": {"page": "recharge"}}


class TestResolveField:
    """Test null-safe dotted field access."""

    def test_nested_lookup(self):
        assert resolve_field(RECHARGE_VIEW, "details.page") == (True, "recharge")
        assert resolve_field(RECHARGE_VIEW, "event") == (True, "page_view")

    def test_missing_and_malformed(self):
        assert resolve_field(RECHARGE_VIEW, "details.amount") == (False, None)
        assert resolve_field({"details": None}, "details.page") == (False, None)
        assert resolve_field({"details": "recharge"}, "details.page") == (False, None)
        assert resolve_field(None, "event") == (False, None)

    def test_present_null_value(self):
        assert resolve_field({"details": None}, "details") == (True, None)


class TestConditions:
    """Test typed condition evaluation."""

    def test_equals(self):
        condition = Equals("details.page", "recharge")

        assert condition(RECHARGE_VIEW)
        assert not condition({"event": "page_view", "details": {"page": "home"}})
        assert not condition({"event": "page_view"})

    def test_equals_none_requires_presence(self):
        condition = Equals("details.type", None)

        assert condition({"details": {"type": None}})
        assert not condition({"details": {}})

    def test_exists(self):
        condition = Exists("details.page")

        assert condition(RECHARGE_VIEW)
        assert not condition({"details": {"page": None}})
        assert not condition({})

    def test_composites(self):
        both = AllOf((Equals("event", "page_view"), Equals("details.page", "recharge")))
        either = AnyOf((Equals("event", "login"), Equals("details.page", "recharge")))

        assert both(RECHARGE_VIEW)
        assert not both({"event": "page_view", "details": {"page": "home"}})
        assert either(RECHARGE_VIEW)
        assert either({"event": "login"})
        assert not either({"event": "logout"})

    def test_predicate(self):
        registry = PredicateRegistry()

        @registry.register(name="vip", description="VIP users")
        def vip(payload):
            return payload.get("tier") == "vip"

        condition = Predicate("vip", registry=registry)

        assert condition({"tier": "vip"})
        assert not condition({"tier": "basic"})

    def test_unknown_predicate(self):
        with pytest.raises(ConditionError, match="Unknown predicate"):
            Predicate("missing", registry=PredicateRegistry())

    def test_unregistered_predicate_evaluates_false(self):
        registry = PredicateRegistry()
        registry.register(name="vip")(lambda payload: True)
        condition = Predicate("vip", registry=registry)

        assert registry.unregister("vip") is True
        assert condition({}) is False


class TestParseCondition:
    """Test building conditions from declarative definitions."""

    def test_parse_nested(self):
        condition = parse_condition({
            "type": "all",
            "conditions": [
                {"type": "equals", "field": "event", "value": "page_view"},
                {"type": "any", "conditions": [
                    {"type": "equals", "field": "details.page", "value": "recharge"},
                    {"type": "exists", "field": "details.promo"},
                ]},
            ],
        })

        assert condition(RECHARGE_VIEW)
        assert condition({"event": "page_view", "details": {"promo": "x"}})
        assert not condition({"event": "login", "details": {"page": "recharge"}})

    def test_round_trip_definition(self):
        data = {
            "type": "any",
            "conditions": [
                {"type": "equals", "field": "event", "value": "redeem_promo"},
                {"type": "predicate", "name": "high_value_recharge"},
            ],
        }

        assert parse_condition(data).to_dict() == data

    @pytest.mark.parametrize("data, message", [
        ({"type": "regex", "field": "event"}, "Unknown condition type"),
        ({"type": "equals", "field": "event"}, "missing required field: value"),
        ({"type": "equals", "field": "", "value": "x"}, "non-empty string"),
        ({"type": "all", "conditions": []}, "non-empty 'conditions' list"),
        ({"type": "predicate", "name": "not_registered"}, "Unknown predicate"),
        ("event == 'login'", "must be a mapping"),
    ])
    def test_invalid_definitions(self, data, message):
        with pytest.raises(ConditionError, match=message):
            parse_condition(data)


class TestBuiltinPredicates:
    """Test predicates registered at import time."""

    def test_high_value_recharge(self):
        payload = {"event": "transaction", "details": {"type": "recharge", "amount": 750}}

        assert high_value_recharge(payload)
        assert not high_value_recharge({"event": "transaction", "details": {"type": "recharge", "amount": 100}})
        assert not high_value_recharge({"event": "transaction", "details": {"type": "recharge", "amount": "750"}})
        assert not high_value_recharge({"event": "transaction"})
        assert Predicate("high_value_recharge")(payload)
