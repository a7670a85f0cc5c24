"""Item assembler: adds and removes package lines while the operation is editable"""

import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from factor_engine.domain.eligibility import validate_item_eligibility
from factor_engine.domain.exceptions import ValidationError
from factor_engine.domain.models import ItemAction
from factor_engine.infrastructure.database.models import FactorOperationItem
from factor_engine.infrastructure.database.repositories import (
    AuditRepository,
    InstallmentRepository,
    OperationRepository,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.services.registry import require_editable
from factor_engine.utils.date_utils import utcnow


class ItemAssembler:
    """Maintains the live item list of an operation"""

    def __init__(self, db: Session):
        self.db = db
        self.operations = OperationRepository(db)
        self.installments = InstallmentRepository(db)
        self.audit = AuditRepository(db)

    def add_item(
        self,
        operation_id: uuid.UUID,
        action_type: ItemAction,
        installment_id: uuid.UUID,
        proposed_due_date: Optional[date] = None,
    ) -> FactorOperationItem:
        """
        Append an installment to the package.

        Snapshots (title/installment number, due date, open amount) are copied
        from the installment now and never re-read.

        Raises:
            StateConflictError: operation not editable
            NotFoundError: installment does not exist
            ValidationError: installment not eligible for the action, already in
                another active operation, or missing proposed due date
        """
        action_type = ItemAction(action_type)

        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            require_editable(operation, "adding items")

            installment = self.installments.get_installment(installment_id)
            validate_item_eligibility(
                action_type=action_type,
                installment_status=installment.status,
                custody_status=installment.custody_status,
                amount_open_cents=installment.amount_open_cents,
                proposed_due_date=proposed_due_date,
            )

            active_item = self.installments.find_active_item(installment.id)
            if active_item is not None:
                raise ValidationError(
                    "installment_id",
                    f"Installment {installment.id} is already part of an active operation",
                    code="INSTALLMENT_IN_ACTIVE_OPERATION",
                    operation_id=str(active_item.operation_id),
                )

            item = self.operations.add_item(
                operation,
                action_type=action_type.value,
                installment_id=installment.id,
                title_number_snapshot=installment.title_number,
                installment_number_snapshot=installment.installment_number,
                due_date_snapshot=installment.due_date,
                amount_snapshot_cents=installment.amount_open_cents,
                proposed_due_date=proposed_due_date if action_type == ItemAction.DUE_DATE_CHANGE else None,
            )
            operation.has_unversioned_changes = True
            self.audit.record(
                "factor_item_added",
                "factor_operation_items",
                item.id,
                {
                    "operation_id": str(operation.id),
                    "action_type": action_type.value,
                    "installment_id": str(installment.id),
                },
            )
        return item

    def remove_item(self, operation_id: uuid.UUID, item_id: uuid.UUID) -> None:
        """Soft-remove a live item; versions that captured it keep their frozen copy"""
        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            require_editable(operation, "removing items")

            item = self.operations.get_live_item(operation, item_id)
            self.operations.remove_item(operation, item, utcnow())
            operation.has_unversioned_changes = True
            self.audit.record(
                "factor_item_removed",
                "factor_operation_items",
                item.id,
                {"operation_id": str(operation.id)},
            )
