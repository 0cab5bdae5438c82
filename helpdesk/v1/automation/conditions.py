from collections.abc import Sequence

from helpdesk.v1.automation.schemas import Condition, TicketContext


def evaluate_condition(condition: Condition, ctx: TicketContext) -> bool:
    return condition.evaluate(ctx)


def evaluate_conditions(conditions: Sequence[Condition], ctx: TicketContext) -> bool:
    """AND over all conditions; an empty list always matches."""
    return all(evaluate_condition(c, ctx) for c in conditions)
