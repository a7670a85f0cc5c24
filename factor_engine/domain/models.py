"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, List, Optional


class OperationStatus(str, Enum):
    DRAFT = "draft"
    SENT_TO_FACTOR = "sent_to_factor"
    IN_ADJUSTMENT = "in_adjustment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ItemAction(str, Enum):
    DISCOUNT = "discount"
    BUYBACK = "buyback"
    DUE_DATE_CHANGE = "due_date_change"


class ResponseStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ADJUSTED = "adjusted"


class CustodyStatus(str, Enum):
    OWN = "own"
    WITH_FACTOR = "with_factor"
    REPURCHASED = "repurchased"


class InstallmentStatus(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class PostingKind(str, Enum):
    AR_SETTLEMENT = "ar_settlement"
    AP_ENTRY = "ap_entry"
    COST_ENTRY = "cost_entry"


class CostCategory(str, Enum):
    NONE = "none"  # AR/AP postings carry no cost category
    FEE = "fee"
    INTEREST = "interest"
    IOF = "iof"
    OTHER = "other"


class BundleSelector(str, Enum):
    ALL = "all"
    SOURCE_DOCS_A = "source-docs-a"
    SOURCE_DOCS_B = "source-docs-b"


@dataclass
class ItemResponse:
    """Factor determination for one item of a version"""

    item_id: Any
    response_status: ResponseStatus
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    accepted_amount_cents: Optional[int] = None
    adjusted_amount_cents: Optional[int] = None
    adjusted_due_date: Optional[date] = None
    fee_amount_cents: int = 0
    interest_amount_cents: int = 0
    iof_amount_cents: int = 0
    other_cost_amount_cents: int = 0

    @property
    def total_cost_cents(self) -> int:
        return (
            self.fee_amount_cents
            + self.interest_amount_cents
            + self.iof_amount_cents
            + self.other_cost_amount_cents
        )


@dataclass
class ItemOutcome:
    """Final terms of an item after a factor determination"""

    status: ResponseStatus
    final_amount_cents: int
    final_due_date: Optional[date]


@dataclass
class SettlementLine:
    """Item of a version joined with its response, as seen by settlement"""

    action_type: ItemAction
    response_status: ResponseStatus
    final_amount_cents: int
    fee_amount_cents: int = 0
    interest_amount_cents: int = 0
    iof_amount_cents: int = 0
    other_cost_amount_cents: int = 0


@dataclass
class SettlementTotals:
    """Amounts the conclusion of an operation posts to the ledger"""

    discount_amount_cents: int = 0
    buyback_amount_cents: int = 0
    fee_amount_cents: int = 0
    interest_amount_cents: int = 0
    iof_amount_cents: int = 0
    other_cost_amount_cents: int = 0

    @property
    def factor_costs_amount_cents(self) -> int:
        return (
            self.fee_amount_cents
            + self.interest_amount_cents
            + self.iof_amount_cents
            + self.other_cost_amount_cents
        )

    def cost_breakdown(self) -> List[tuple]:
        """(category, amount) pairs in posting order"""
        return [
            (CostCategory.FEE, self.fee_amount_cents),
            (CostCategory.INTEREST, self.interest_amount_cents),
            (CostCategory.IOF, self.iof_amount_cents),
            (CostCategory.OTHER, self.other_cost_amount_cents),
        ]


@dataclass
class OperationTotals:
    gross_amount_cents: int
    costs_amount_cents: int
    net_amount_cents: int


@dataclass
class ConclusionResult:
    """Outcome of conclude; idempotent=True means nothing was written"""

    operation: Any
    idempotent: bool
    postings: List[Any] = field(default_factory=list)
    totals: Optional[SettlementTotals] = None
