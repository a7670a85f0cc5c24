"""Financial ledger: append-only settlement postings written inside the caller's transaction"""

import logging
import uuid
from typing import List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import DuplicatePostingError, LedgerWriteFailure
from factor_engine.domain.models import CostCategory, PostingKind
from factor_engine.infrastructure.database.models import LedgerPosting

logger = logging.getLogger(__name__)


def build_posting_key(operation_id: uuid.UUID, version_id: uuid.UUID, kind: PostingKind, category: CostCategory) -> str:
    return f"{operation_id}:{version_id}:{kind.value}:{category.value}"


class SqlLedger:
    """
    Ledger sink for settlement postings.

    Postings are keyed by (operation, version, kind, category) and a second
    posting with the same key is rejected, independently of the caller's own
    idempotency guard. Nothing is committed here: the enclosing conclude
    transaction commits or rolls back every posting together.
    """

    def __init__(self, db: Session):
        self.db = db

    def post_ar_settlement(self, amount_cents: int, operation_id: uuid.UUID, version_id: uuid.UUID) -> LedgerPosting:
        return self._post(PostingKind.AR_SETTLEMENT, CostCategory.NONE, amount_cents, operation_id, version_id)

    def post_ap_entry(self, amount_cents: int, operation_id: uuid.UUID, version_id: uuid.UUID) -> LedgerPosting:
        return self._post(PostingKind.AP_ENTRY, CostCategory.NONE, amount_cents, operation_id, version_id)

    def post_cost_entry(
        self, amount_cents: int, category: CostCategory, operation_id: uuid.UUID, version_id: uuid.UUID
    ) -> LedgerPosting:
        if CostCategory(category) == CostCategory.NONE:
            raise LedgerWriteFailure("Cost postings require a cost category", code="INVALID_COST_CATEGORY")
        return self._post(PostingKind.COST_ENTRY, CostCategory(category), amount_cents, operation_id, version_id)

    def list_postings(self, operation_id: uuid.UUID) -> List[LedgerPosting]:
        return (
            self.db.query(LedgerPosting)
            .filter(LedgerPosting.operation_id == operation_id)
            .order_by(LedgerPosting.kind, LedgerPosting.category)
            .all()
        )

    def _post(
        self,
        kind: PostingKind,
        category: CostCategory,
        amount_cents: int,
        operation_id: uuid.UUID,
        version_id: uuid.UUID,
    ) -> LedgerPosting:
        if amount_cents <= 0:
            raise LedgerWriteFailure(f"Posting amount must be positive, got {amount_cents}", code="INVALID_POSTING_AMOUNT")

        posting_key = build_posting_key(operation_id, version_id, kind, category)
        existing = self.db.query(LedgerPosting).filter(LedgerPosting.posting_key == posting_key).first()
        if existing is not None:
            raise DuplicatePostingError(f"Posting {posting_key} already exists")

        posting = LedgerPosting(
            operation_id=operation_id,
            version_id=version_id,
            kind=kind.value,
            category=category.value,
            amount_cents=amount_cents,
            posting_key=posting_key,
        )
        self.db.add(posting)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Concurrent writer won the unique constraint race
            raise DuplicatePostingError(f"Posting {posting_key} already exists") from e
        except SQLAlchemyError as e:
            raise LedgerWriteFailure(f"Ledger write failed for {posting_key}: {e}") from e

        logger.info(
            "Ledger posting written",
            extra={
                "operation_id": str(operation_id),
                "version_id": str(version_id),
                "kind": kind.value,
                "category": category.value,
                "amount_cents": amount_cents,
            },
        )
        return posting
