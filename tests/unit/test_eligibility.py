"""Unit tests for item eligibility rules"""

import pytest
from datetime import date
from factor_engine.domain.eligibility import validate_item_eligibility
from factor_engine.domain.exceptions import ValidationError
from factor_engine.domain.models import ItemAction


@pytest.mark.parametrize("status", ["open", "partial", "overdue"])
def test_discount_accepts_open_balances(status):
    """Test discount of installments with open balance in own custody"""
    validate_item_eligibility(ItemAction.DISCOUNT, status, "own", 10000)


@pytest.mark.parametrize("status", ["paid", "cancelled"])
def test_discount_rejects_closed_installments(status):
    """Test closed installments cannot be discounted"""
    with pytest.raises(ValidationError) as exc_info:
        validate_item_eligibility(ItemAction.DISCOUNT, status, "own", 10000)

    assert exc_info.value.field == "installment_id"
    assert exc_info.value.code == "ITEM_NOT_ELIGIBLE"


def test_discount_rejects_zero_balance():
    """Test installments without open amount cannot be discounted"""
    with pytest.raises(ValidationError):
        validate_item_eligibility(ItemAction.DISCOUNT, "open", "own", 0)


def test_discount_rejects_factor_custody():
    """Test an installment already with the factor cannot be discounted again"""
    with pytest.raises(ValidationError):
        validate_item_eligibility(ItemAction.DISCOUNT, "open", "with_factor", 10000)


def test_repurchased_installment_can_be_discounted_again():
    """Test repurchased installments are back in the discount pool"""
    validate_item_eligibility(ItemAction.DISCOUNT, "open", "repurchased", 10000)


def test_buyback_requires_factor_custody():
    """Test buyback only for installments with the factor"""
    validate_item_eligibility(ItemAction.BUYBACK, "open", "with_factor", 20000)

    with pytest.raises(ValidationError) as exc_info:
        validate_item_eligibility(ItemAction.BUYBACK, "open", "own", 20000)
    assert exc_info.value.code == "ITEM_NOT_ELIGIBLE"


def test_due_date_change_requires_proposed_date():
    """Test due date change without proposed date"""
    with pytest.raises(ValidationError) as exc_info:
        validate_item_eligibility(ItemAction.DUE_DATE_CHANGE, "open", "with_factor", 20000)

    assert exc_info.value.field == "proposed_due_date"


def test_due_date_change_with_proposed_date():
    """Test due date change for an installment with the factor"""
    validate_item_eligibility(
        ItemAction.DUE_DATE_CHANGE, "open", "with_factor", 20000, proposed_due_date=date(2030, 1, 15)
    )
