"""Built-in named predicates for stage conditions."""
from typing import Any, Dict

from journey_service.flow_control.journey.conditions import predicate_registry, resolve_field

HIGH_VALUE_RECHARGE_AMOUNT = 500


@predicate_registry.register(
    name="high_value_recharge",
    description=f"Recharge transaction of at least {HIGH_VALUE_RECHARGE_AMOUNT}",
)
def high_value_recharge(payload: Dict[str, Any]) -> bool:
    found, event = resolve_field(payload, "event")
    if not found or event != "transaction":
        return False

    found, kind = resolve_field(payload, "details.type")
    if not found or kind != "recharge":
        return False

    found, amount = resolve_field(payload, "details.amount")
    if not found or isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return False
    return amount >= HIGH_VALUE_RECHARGE_AMOUNT

