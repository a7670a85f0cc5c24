"""Settlement posting generator: concludes an operation and posts to the ledger exactly once"""

import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import DomainException, StateConflictError, ValidationError
from factor_engine.domain.models import ConclusionResult, ItemAction, OperationStatus, ResponseStatus
from factor_engine.domain.settlement import build_settlement_lines, calculate_settlement_totals
from factor_engine.domain.state_machine import CONCLUDABLE_STATUSES
from factor_engine.infrastructure.database.models import FactorOperation, FactorOperationVersion
from factor_engine.infrastructure.database.repositories import (
    AuditRepository,
    InstallmentRepository,
    OperationRepository,
    ResponseRepository,
    VersionRepository,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.infrastructure.ledger import SqlLedger
from factor_engine.infrastructure.observability.logging import log_settlement
from factor_engine.infrastructure.observability.metrics import record_conclusion
from factor_engine.services.registry import announce_transition, apply_transition
from factor_engine.utils.date_utils import date_or_today, utcnow


class SettlementPostingGenerator:
    """Turns a resolved operation into ledger postings and custody changes"""

    def __init__(self, db: Session, ledger: Optional[SqlLedger] = None):
        self.db = db
        self.ledger = ledger or SqlLedger(db)
        self.operations = OperationRepository(db)
        self.versions = VersionRepository(db)
        self.responses = ResponseRepository(db)
        self.installments = InstallmentRepository(db)
        self.audit = AuditRepository(db)

    def conclude(
        self,
        operation_id: uuid.UUID,
        settlement_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> ConclusionResult:
        """
        Conclude the operation against its current version.

        A completed operation returns idempotent=True without touching the
        ledger, so retried requests never double-post. Otherwise postings,
        custody changes and the status change commit together; a ledger
        failure rolls all of them back and leaves the status unchanged.

        Raises:
            StateConflictError: status not sent_to_factor / in_adjustment, or
                items edited since the current version
            ValidationError: no current version, or items without a response
            LedgerWriteFailure: ledger rejected a posting (nothing committed)
        """
        try:
            with atomic(self.db):
                operation = self.operations.get_for_update(operation_id)

                if operation.status == OperationStatus.COMPLETED.value:
                    result = ConclusionResult(
                        operation=operation,
                        idempotent=True,
                        postings=self.ledger.list_postings(operation.id),
                    )
                else:
                    result, previous = self._conclude(operation, settlement_date, notes)
        except DomainException:
            record_conclusion("failed")
            raise

        if result.idempotent:
            record_conclusion("idempotent")
            log_settlement(operation_id, result.operation.current_version_id, idempotent=True)
            return result

        totals = result.totals
        record_conclusion("completed", result.postings)
        announce_transition(result.operation.id, previous, OperationStatus.COMPLETED, result.operation.current_version_id)
        log_settlement(
            operation_id,
            result.operation.current_version_id,
            idempotent=False,
            discount_amount_cents=totals.discount_amount_cents,
            buyback_amount_cents=totals.buyback_amount_cents,
            factor_costs_amount_cents=totals.factor_costs_amount_cents,
        )
        return result

    def _conclude(self, operation: FactorOperation, settlement_date: Optional[date], notes: Optional[str]):
        if operation.status not in {s.value for s in CONCLUDABLE_STATUSES}:
            raise StateConflictError(
                f"Operation in status {operation.status} cannot be concluded",
                operation_id=operation.id,
                status=operation.status,
                code="OPERATION_CONCLUDE_INVALID_STATUS",
            )
        if operation.current_version_id is None:
            raise ValidationError("current_version_id", "Operation has no version to conclude", code="MISSING_VERSION")
        if operation.has_unversioned_changes:
            raise StateConflictError(
                "Items changed since the last version; generate, send and reconcile a new version before concluding",
                operation_id=operation.id,
                status=operation.status,
                code="STALE_VERSION",
            )

        version = self.versions.get_version(operation.id, operation.current_version_id)
        responses = self.responses.list_for_version(version.id)
        lines, missing = build_settlement_lines(version.items, responses)
        if missing:
            raise ValidationError(
                "responses",
                f"Items without a response for the current version: {', '.join(missing)}",
                code="MISSING_ITEM_RESPONSE",
                item_ids=missing,
            )

        totals = calculate_settlement_totals(lines)
        postings = []
        if totals.discount_amount_cents > 0:
            postings.append(self.ledger.post_ar_settlement(totals.discount_amount_cents, operation.id, version.id))
        if totals.buyback_amount_cents > 0:
            postings.append(self.ledger.post_ap_entry(totals.buyback_amount_cents, operation.id, version.id))
        for category, amount_cents in totals.cost_breakdown():
            if amount_cents > 0:
                postings.append(self.ledger.post_cost_entry(amount_cents, category, operation.id, version.id))

        now = utcnow()
        self._apply_custody_changes(operation, version, responses, now)

        previous = apply_transition(operation, OperationStatus.COMPLETED)
        operation.completed_at = now
        operation.settlement_date = date_or_today(settlement_date or operation.expected_settlement_date)
        if notes is not None:
            operation.notes = notes
        self.audit.record(
            "factor_operation_completed",
            "factor_operations",
            operation.id,
            {
                "operation_number": operation.operation_number,
                "version_id": str(version.id),
                "discount_amount_cents": totals.discount_amount_cents,
                "buyback_amount_cents": totals.buyback_amount_cents,
                "factor_costs_amount_cents": totals.factor_costs_amount_cents,
                "postings": len(postings),
            },
        )
        return ConclusionResult(operation=operation, idempotent=False, postings=postings, totals=totals), previous

    def _apply_custody_changes(self, operation: FactorOperation, version: FactorOperationVersion, responses, now) -> None:
        """Discounted installments move to the factor, bought-back ones return, due dates follow the factor"""
        by_item = {r.operation_item_id: r for r in responses}
        final_terms = {item.id: item for item in operation.items}

        for frozen in version.items:
            response = by_item[frozen.operation_item_id]
            if response.response_status == ResponseStatus.REJECTED.value:
                continue

            action = ItemAction(frozen.action_type)
            if action == ItemAction.DISCOUNT:
                self.installments.assign_to_factor(frozen.installment_id, operation.factor_id, now)
            elif action == ItemAction.BUYBACK:
                self.installments.release_from_factor(frozen.installment_id, now)
            elif action == ItemAction.DUE_DATE_CHANGE:
                final_due_date = final_terms[frozen.operation_item_id].final_due_date or frozen.proposed_due_date
                if final_due_date is None:
                    raise ValidationError(
                        "final_due_date",
                        f"Due date change item {frozen.operation_item_id} has no final due date",
                        code="MISSING_FINAL_DUE_DATE",
                    )
                self.installments.change_due_date(frozen.installment_id, final_due_date)
