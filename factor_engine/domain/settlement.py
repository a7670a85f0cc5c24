"""Settlement math - pure functions over a version's items and responses"""

from typing import Iterable, List, Tuple

from factor_engine.domain.models import (
    ItemAction,
    ItemResponse,
    OperationTotals,
    ResponseStatus,
    SettlementLine,
    SettlementTotals,
)
from factor_engine.domain.reconciliation import resolve_outcome


def calculate_settlement_totals(lines: Iterable[SettlementLine]) -> SettlementTotals:
    """
    Aggregate the amounts a conclusion posts.

    - discount / buyback: sum of final amounts of non-rejected items of that action
    - costs: every response's fee, interest, IOF and other cost, per category
    """
    totals = SettlementTotals()

    for line in lines:
        totals.fee_amount_cents += line.fee_amount_cents
        totals.interest_amount_cents += line.interest_amount_cents
        totals.iof_amount_cents += line.iof_amount_cents
        totals.other_cost_amount_cents += line.other_cost_amount_cents

        if ResponseStatus(line.response_status) == ResponseStatus.REJECTED:
            continue

        action = ItemAction(line.action_type)
        if action == ItemAction.DISCOUNT:
            totals.discount_amount_cents += line.final_amount_cents
        elif action == ItemAction.BUYBACK:
            totals.buyback_amount_cents += line.final_amount_cents

    return totals


def calculate_operation_totals(gross_amount_cents: int, costs_amount_cents: int = 0) -> OperationTotals:
    """Net never goes below zero, even when the factor charges more than the package is worth"""
    return OperationTotals(
        gross_amount_cents=gross_amount_cents,
        costs_amount_cents=costs_amount_cents,
        net_amount_cents=max(0, gross_amount_cents - costs_amount_cents),
    )


def build_settlement_lines(version_items: Iterable, responses: Iterable) -> Tuple[List[SettlementLine], List[str]]:
    """
    Join the items frozen in a version with the responses recorded against it.

    Returns the settlement lines plus the ids of frozen items that still lack a
    response (conclusion must refuse to post while any is missing).
    """
    by_item = {str(r.operation_item_id): r for r in responses}
    lines: List[SettlementLine] = []
    missing: List[str] = []

    for item in version_items:
        response = by_item.get(str(item.operation_item_id))
        if response is None or ResponseStatus(response.response_status) == ResponseStatus.PENDING:
            missing.append(str(item.operation_item_id))
            continue

        outcome = resolve_outcome(
            item.action_type,
            item.amount_snapshot_cents,
            item.due_date_snapshot,
            item.proposed_due_date,
            ItemResponse(
                item_id=item.operation_item_id,
                response_status=ResponseStatus(response.response_status),
                accepted_amount_cents=response.accepted_amount_cents,
                adjusted_amount_cents=response.adjusted_amount_cents,
                adjusted_due_date=response.adjusted_due_date,
            ),
        )
        lines.append(
            SettlementLine(
                action_type=ItemAction(item.action_type),
                response_status=outcome.status,
                final_amount_cents=outcome.final_amount_cents or 0,
                fee_amount_cents=response.fee_amount_cents or 0,
                interest_amount_cents=response.interest_amount_cents or 0,
                iof_amount_cents=response.iof_amount_cents or 0,
                other_cost_amount_cents=response.other_cost_amount_cents or 0,
            )
        )

    return lines, missing
