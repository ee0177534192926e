"""Trigger evaluation: does a webhook fire for an event?"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from conduit.models import CATEGORY_FIELD, MISSING, DataEvent, Webhook, resolve_field
from conduit.models.conditions import ConditionBase


@dataclass(frozen=True)
class TriggerDecision:
    """Whether to fire, and the conditions that matched."""

    should_fire: bool
    conditions_met: list[dict[str, Any]] = field(default_factory=list)


SKIP = TriggerDecision(should_fire=False)


class TriggerEvaluator:
    """Pure, deterministic trigger evaluation.

    Rules:
    - No declared trigger events, or the event name is not declared: skip.
    - No conditions: fire.
    - Otherwise every condition must hold (logical AND). A field path that
      does not resolve is a non-match, never an error.
    """

    @staticmethod
    def field_value(condition: ConditionBase, event: DataEvent) -> Any:
        if condition.field == CATEGORY_FIELD:
            return event.category if event.category is not None else MISSING
        return resolve_field(event.data, condition.field)

    def evaluate(self, webhook: Webhook, event: DataEvent) -> TriggerDecision:
        if not webhook.listens_to(event.name):
            return SKIP

        if not webhook.trigger_conditions:
            return TriggerDecision(should_fire=True)

        met: list[dict[str, Any]] = []
        for condition in webhook.trigger_conditions:
            if not condition.test(self.field_value(condition, event)):
                return SKIP
            met.append(condition.model_dump(mode="json"))
        return TriggerDecision(should_fire=True, conditions_met=met)


__all__ = ["SKIP", "TriggerDecision", "TriggerEvaluator"]
