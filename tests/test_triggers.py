"""Tests for trigger evaluation."""

from __future__ import annotations

import pytest

from conduit.webhooks import TriggerEvaluator

AMOUNT_OVER_100 = [{"field": "amount", "op": ">", "value": 100}]


@pytest.fixture
def evaluator() -> TriggerEvaluator:
    return TriggerEvaluator()


class TestEventMatching:
    def test_fires_without_conditions(self, evaluator, make_webhook, make_event):
        decision = evaluator.evaluate(make_webhook(), make_event())
        assert decision.should_fire
        assert decision.conditions_met == []

    def test_skips_other_events(self, evaluator, make_webhook, make_event):
        decision = evaluator.evaluate(make_webhook(), make_event(name="data_deleted"))
        assert not decision.should_fire

    def test_skips_with_no_declared_events(self, evaluator, make_webhook, make_event):
        decision = evaluator.evaluate(make_webhook(trigger_events=[]), make_event())
        assert not decision.should_fire


class TestConditions:
    """The amount > 100 example from the product docs."""

    def test_fires_when_amount_above(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(trigger_conditions=AMOUNT_OVER_100)
        decision = evaluator.evaluate(webhook, make_event({"amount": 150}))
        assert decision.should_fire
        assert decision.conditions_met == [{"field": "amount", "op": ">", "value": 100}]

    def test_skips_when_amount_below(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(trigger_conditions=AMOUNT_OVER_100)
        assert not evaluator.evaluate(webhook, make_event({"amount": 50})).should_fire

    def test_missing_field_is_non_match(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(trigger_conditions=AMOUNT_OVER_100)
        assert not evaluator.evaluate(webhook, make_event({})).should_fire

    def test_non_object_payload_is_non_match(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(trigger_conditions=AMOUNT_OVER_100)
        assert not evaluator.evaluate(webhook, make_event(["not", "an", "object"])).should_fire

    def test_all_conditions_must_hold(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(
            trigger_conditions=[
                {"field": "amount", "op": ">", "value": 100},
                {"field": "customer.tier", "op": "==", "value": "gold"},
            ]
        )
        gold = make_event({"amount": 150, "customer": {"tier": "gold"}})
        silver = make_event({"amount": 150, "customer": {"tier": "silver"}})

        decision = evaluator.evaluate(webhook, gold)
        assert decision.should_fire
        assert len(decision.conditions_met) == 2
        assert not evaluator.evaluate(webhook, silver).should_fire

    def test_category_field(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(
            trigger_conditions=[{"field": "$category", "op": "equals", "value": "invoice"}]
        )
        assert evaluator.evaluate(webhook, make_event(category="invoice")).should_fire
        assert not evaluator.evaluate(webhook, make_event(category="receipt")).should_fire
        assert not evaluator.evaluate(webhook, make_event()).should_fire

    def test_evaluation_is_idempotent(self, evaluator, make_webhook, make_event):
        webhook = make_webhook(trigger_conditions=AMOUNT_OVER_100)
        event = make_event({"amount": 150})
        first = evaluator.evaluate(webhook, event)
        second = evaluator.evaluate(webhook, event)
        assert first == second
        assert event.data == {"amount": 150}
