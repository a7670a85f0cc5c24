"""Eligibility rules for adding an installment to a factor operation"""

from datetime import date
from typing import Optional

from factor_engine.domain.exceptions import ValidationError
from factor_engine.domain.models import CustodyStatus, InstallmentStatus, ItemAction

DISCOUNTABLE_STATUSES = frozenset(
    {InstallmentStatus.OPEN, InstallmentStatus.PARTIAL, InstallmentStatus.OVERDUE}
)


def validate_item_eligibility(
    action_type: ItemAction,
    installment_status: InstallmentStatus,
    custody_status: CustodyStatus,
    amount_open_cents: int,
    proposed_due_date: Optional[date] = None,
) -> None:
    """
    Check that an installment can take part in an operation for the given action.

    Rules:
    - discount: open balance (open/partial/overdue, amount > 0) and still in own custody
    - buyback / due_date_change: installment currently in factor custody
    - due_date_change also needs the proposed due date

    Raises:
        ValidationError: naming the offending field
    """
    action_type = ItemAction(action_type)
    custody_status = CustodyStatus(custody_status)

    if action_type == ItemAction.DUE_DATE_CHANGE and proposed_due_date is None:
        raise ValidationError(
            "proposed_due_date",
            "Due date change requires a proposed due date",
            code="MISSING_PROPOSED_DUE_DATE",
        )

    if action_type == ItemAction.DISCOUNT:
        if InstallmentStatus(installment_status) not in DISCOUNTABLE_STATUSES:
            raise ValidationError(
                "installment_id",
                f"Installment with status {InstallmentStatus(installment_status).value} cannot be discounted",
                code="ITEM_NOT_ELIGIBLE",
            )
        if amount_open_cents <= 0:
            raise ValidationError(
                "installment_id",
                "Installment has no open balance to discount",
                code="ITEM_NOT_ELIGIBLE",
            )
        if custody_status == CustodyStatus.WITH_FACTOR:
            raise ValidationError(
                "installment_id",
                "Installment is already in factor custody",
                code="ITEM_NOT_ELIGIBLE",
            )
        return

    if custody_status != CustodyStatus.WITH_FACTOR:
        raise ValidationError(
            "installment_id",
            f"{action_type.value} requires the installment to be in factor custody",
            code="ITEM_NOT_ELIGIBLE",
        )
