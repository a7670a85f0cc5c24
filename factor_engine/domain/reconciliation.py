"""Reconciliation of factor responses against a frozen version"""

from datetime import date
from typing import Dict, Iterable, List, Optional

from factor_engine.domain.exceptions import ValidationError
from factor_engine.domain.models import ItemAction, ItemOutcome, ItemResponse, ResponseStatus


def index_responses(version_item_ids: Iterable, responses: List[ItemResponse]) -> Dict:
    """
    Validate a response set against the items frozen in a version and index it by item id.

    Every item needs exactly one explicit, non-pending determination. Nothing is
    applied unless the whole set is valid.

    Raises:
        ValidationError: unknown/duplicate items, missing or pending responses,
            adjusted responses without new terms
    """
    expected = {str(item_id) for item_id in version_item_ids}
    by_item: Dict[str, ItemResponse] = {}

    for response in responses:
        key = str(response.item_id)
        if key not in expected:
            raise ValidationError(
                "responses",
                f"Item {key} is not part of this version",
                code="ITEM_NOT_IN_VERSION",
                item_ids=[key],
            )
        if key in by_item:
            raise ValidationError(
                "responses",
                f"Item {key} has more than one response",
                code="DUPLICATE_ITEM_RESPONSE",
                item_ids=[key],
            )
        by_item[key] = response

    missing = sorted(
        item_id
        for item_id in expected
        if item_id not in by_item or ResponseStatus(by_item[item_id].response_status) == ResponseStatus.PENDING
    )
    if missing:
        raise ValidationError(
            "responses",
            f"Items without a final response: {', '.join(missing)}",
            code="MISSING_ITEM_RESPONSE",
            item_ids=missing,
        )

    for key, response in by_item.items():
        _validate_amounts(key, response)
        if ResponseStatus(response.response_status) == ResponseStatus.ADJUSTED and (
            response.adjusted_amount_cents is None or response.adjusted_due_date is None
        ):
            raise ValidationError(
                "responses",
                f"Adjusted response for item {key} requires adjusted amount and due date",
                code="ADJUSTED_TERMS_REQUIRED",
                item_ids=[key],
            )

    return by_item


def _validate_amounts(item_id: str, response: ItemResponse) -> None:
    amounts = {
        "accepted_amount_cents": response.accepted_amount_cents,
        "adjusted_amount_cents": response.adjusted_amount_cents,
        "fee_amount_cents": response.fee_amount_cents,
        "interest_amount_cents": response.interest_amount_cents,
        "iof_amount_cents": response.iof_amount_cents,
        "other_cost_amount_cents": response.other_cost_amount_cents,
    }
    for name, value in amounts.items():
        if value is not None and value < 0:
            raise ValidationError(
                "responses",
                f"{name} for item {item_id} must not be negative",
                code="NEGATIVE_AMOUNT",
                item_ids=[item_id],
            )


def resolve_outcome(
    action_type: ItemAction,
    amount_snapshot_cents: int,
    due_date_snapshot: date,
    proposed_due_date: Optional[date],
    response: ItemResponse,
) -> ItemOutcome:
    """Final amount and due date an item carries after the factor's determination"""
    status = ResponseStatus(response.response_status)

    if status == ResponseStatus.ADJUSTED:
        return ItemOutcome(status, response.adjusted_amount_cents, response.adjusted_due_date)

    if status == ResponseStatus.REJECTED:
        return ItemOutcome(status, 0, due_date_snapshot)

    final_amount = (
        response.accepted_amount_cents
        if response.accepted_amount_cents is not None
        else amount_snapshot_cents
    )
    final_due_date = (
        proposed_due_date
        if ItemAction(action_type) == ItemAction.DUE_DATE_CHANGE and proposed_due_date is not None
        else due_date_snapshot
    )
    return ItemOutcome(status, final_amount, final_due_date)
