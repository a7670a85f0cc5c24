"""Data access layer for factor operations"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import NotFoundError
from factor_engine.domain.models import CustodyStatus, InstallmentStatus, ItemResponse
from factor_engine.domain.state_machine import ACTIVE_STATUSES
from factor_engine.utils.date_utils import utcnow
from factor_engine.infrastructure.database.models import (
    AuditLogEntry,
    Factor,
    FactorOperation,
    FactorOperationItem,
    FactorOperationResponse,
    FactorOperationVersion,
    FactorOperationVersionItem,
    ReceivableInstallment,
)


class FactorRepository:
    """Repository for factor master data"""

    def __init__(self, db: Session):
        self.db = db

    def create_factor(self, name: str, **fields: Any) -> Factor:
        db_factor = Factor(name=name, **fields)
        self.db.add(db_factor)
        self.db.flush()  # Get ID without committing
        return db_factor

    def get_factor(self, factor_id: uuid.UUID) -> Factor:
        factor = self.db.get(Factor, factor_id)
        if factor is None:
            raise NotFoundError("Factor", factor_id)
        return factor

    def list_factors(self, include_inactive: bool = False) -> List[Factor]:
        query = self.db.query(Factor)
        if not include_inactive:
            query = query.filter(Factor.is_active.is_(True))
        return query.order_by(Factor.name).all()


class InstallmentRepository:
    """Eligibility provider backed by the receivables table"""

    def __init__(self, db: Session):
        self.db = db

    def get_installment(self, installment_id: uuid.UUID) -> ReceivableInstallment:
        installment = self.db.get(ReceivableInstallment, installment_id)
        if installment is None:
            raise NotFoundError("Installment", installment_id)
        return installment

    def list_open_installments(self, search: Optional[str] = None) -> List[ReceivableInstallment]:
        """Installments with an open balance that are not in factor custody"""
        query = self.db.query(ReceivableInstallment).filter(
            ReceivableInstallment.status.in_(
                [InstallmentStatus.OPEN.value, InstallmentStatus.PARTIAL.value, InstallmentStatus.OVERDUE.value]
            ),
            ReceivableInstallment.amount_open_cents > 0,
            ReceivableInstallment.custody_status != CustodyStatus.WITH_FACTOR.value,
        )
        if search and search.strip():
            query = query.filter(ReceivableInstallment.title_number.ilike(f"%{search.strip()}%"))
        return query.order_by(ReceivableInstallment.due_date, ReceivableInstallment.installment_number).all()

    def list_installments_in_factor_custody(self) -> List[ReceivableInstallment]:
        """Installments eligible for buyback or due date change"""
        return (
            self.db.query(ReceivableInstallment)
            .filter(ReceivableInstallment.custody_status == CustodyStatus.WITH_FACTOR.value)
            .order_by(ReceivableInstallment.due_date, ReceivableInstallment.installment_number)
            .all()
        )

    def find_active_item(self, installment_id: uuid.UUID) -> Optional[FactorOperationItem]:
        """Live item referencing the installment in any non-terminal operation"""
        return (
            self.db.query(FactorOperationItem)
            .join(FactorOperation, FactorOperation.id == FactorOperationItem.operation_id)
            .filter(
                FactorOperationItem.installment_id == installment_id,
                FactorOperationItem.removed_at.is_(None),
                FactorOperation.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .first()
        )

    def assign_to_factor(self, installment_id: uuid.UUID, factor_id: uuid.UUID, at: datetime) -> None:
        installment = self.get_installment(installment_id)
        installment.custody_status = CustodyStatus.WITH_FACTOR.value
        installment.factor_id = factor_id
        installment.factor_assigned_at = at

    def release_from_factor(self, installment_id: uuid.UUID, at: datetime) -> None:
        installment = self.get_installment(installment_id)
        installment.custody_status = CustodyStatus.REPURCHASED.value
        installment.factor_released_at = at

    def change_due_date(self, installment_id: uuid.UUID, due_date: date) -> None:
        installment = self.get_installment(installment_id)
        installment.due_date = due_date


class OperationRepository:
    """Repository for the FactorOperation aggregate and its live items"""

    def __init__(self, db: Session):
        self.db = db

    def create_operation(self, factor_id: uuid.UUID, issue_date: date, **fields: Any) -> FactorOperation:
        next_number = (self.db.query(func.max(FactorOperation.operation_number)).scalar() or 0) + 1
        db_operation = FactorOperation(
            factor_id=factor_id,
            operation_number=next_number,
            issue_date=issue_date,
            status="draft",
            version_counter=0,
            gross_amount_cents=0,
            costs_amount_cents=0,
            net_amount_cents=0,
            has_unversioned_changes=False,
            **fields,
        )
        self.db.add(db_operation)
        self.db.flush()
        return db_operation

    def get_operation(self, operation_id: uuid.UUID) -> FactorOperation:
        operation = self.db.get(FactorOperation, operation_id)
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        return operation

    def get_for_update(self, operation_id: uuid.UUID) -> FactorOperation:
        """Load the aggregate row locked for the rest of the transaction"""
        operation = self.db.execute(
            select(FactorOperation)
            .where(FactorOperation.id == operation_id)
            .with_for_update()  # Row-level lock
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        return operation

    def list_operations(
        self,
        status: Optional[str] = None,
        factor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FactorOperation]:
        query = self.db.query(FactorOperation)
        if status:
            query = query.filter(FactorOperation.status == status)
        if factor_id:
            query = query.filter(FactorOperation.factor_id == factor_id)
        if search and search.strip():
            query = query.filter(FactorOperation.reference.ilike(f"%{search.strip()}%"))
        query = query.order_by(FactorOperation.operation_number.desc())
        if limit and limit > 0:
            query = query.limit(limit)
        return query.all()

    def add_item(self, operation: FactorOperation, **fields: Any) -> FactorOperationItem:
        db_item = FactorOperationItem(
            operation_id=operation.id,
            line_no=len(operation.live_items) + 1,
            status="pending",
            **fields,
        )
        self.db.add(db_item)
        operation.items.append(db_item)
        self.db.flush()
        return db_item

    def get_live_item(self, operation: FactorOperation, item_id: uuid.UUID) -> FactorOperationItem:
        for item in operation.live_items:
            if item.id == item_id:
                return item
        raise NotFoundError("Item", item_id)

    def remove_item(self, operation: FactorOperation, item: FactorOperationItem, at: datetime) -> None:
        """Soft-remove the item and renumber the remaining live items densely"""
        item.removed_at = at
        for line_no, remaining in enumerate(operation.live_items, start=1):
            remaining.line_no = line_no
        self.db.flush()


class VersionRepository:
    """Append-only store of version snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def create_version(
        self,
        operation: FactorOperation,
        version_number: int,
        gross_amount_cents: int,
        costs_amount_cents: int,
        net_amount_cents: int,
        snapshot: Dict[str, Any],
    ) -> FactorOperationVersion:
        """Freeze every live item of the operation into a new version row"""
        live_items = operation.live_items
        db_version = FactorOperationVersion(
            operation_id=operation.id,
            version_number=version_number,
            source_status=operation.status,
            total_items=len(live_items),
            gross_amount_cents=gross_amount_cents,
            costs_amount_cents=costs_amount_cents,
            net_amount_cents=net_amount_cents,
            snapshot=snapshot,
        )
        for item in live_items:
            db_version.items.append(
                FactorOperationVersionItem(
                    operation_item_id=item.id,
                    line_no=item.line_no,
                    action_type=item.action_type,
                    installment_id=item.installment_id,
                    title_number_snapshot=item.title_number_snapshot,
                    installment_number_snapshot=item.installment_number_snapshot,
                    due_date_snapshot=item.due_date_snapshot,
                    amount_snapshot_cents=item.amount_snapshot_cents,
                    proposed_due_date=item.proposed_due_date,
                    final_due_date=item.final_due_date,
                    final_amount_cents=item.final_amount_cents,
                    status=item.status,
                )
            )
        self.db.add(db_version)
        self.db.flush()
        return db_version

    def get_version(self, operation_id: uuid.UUID, version_id: uuid.UUID) -> FactorOperationVersion:
        version = self.db.get(FactorOperationVersion, version_id)
        if version is None or version.operation_id != operation_id:
            raise NotFoundError("Version", version_id)
        return version

    def list_versions(self, operation_id: uuid.UUID) -> List[FactorOperationVersion]:
        return (
            self.db.query(FactorOperationVersion)
            .filter(FactorOperationVersion.operation_id == operation_id)
            .order_by(FactorOperationVersion.version_number)
            .all()
        )


class ResponseRepository:
    """Factor responses keyed by (item, version)"""

    def __init__(self, db: Session):
        self.db = db

    def upsert_response(
        self, operation_id: uuid.UUID, version_id: uuid.UUID, response: ItemResponse
    ) -> FactorOperationResponse:
        """Re-applying against the same version overwrites the previous determination"""
        item_id = response.item_id if isinstance(response.item_id, uuid.UUID) else uuid.UUID(str(response.item_id))
        db_response = (
            self.db.query(FactorOperationResponse)
            .filter(
                FactorOperationResponse.operation_item_id == item_id,
                FactorOperationResponse.version_id == version_id,
            )
            .one_or_none()
        )
        if db_response is None:
            db_response = FactorOperationResponse(
                operation_id=operation_id,
                operation_item_id=item_id,
                version_id=version_id,
            )
            self.db.add(db_response)

        db_response.response_status = response.response_status.value
        db_response.response_code = response.response_code
        db_response.response_message = response.response_message
        db_response.accepted_amount_cents = response.accepted_amount_cents
        db_response.adjusted_amount_cents = response.adjusted_amount_cents
        db_response.adjusted_due_date = response.adjusted_due_date
        db_response.fee_amount_cents = response.fee_amount_cents
        db_response.interest_amount_cents = response.interest_amount_cents
        db_response.iof_amount_cents = response.iof_amount_cents
        db_response.other_cost_amount_cents = response.other_cost_amount_cents
        db_response.total_cost_amount_cents = response.total_cost_cents
        db_response.processed_at = utcnow()
        return db_response

    def list_for_version(self, version_id: uuid.UUID) -> List[FactorOperationResponse]:
        return (
            self.db.query(FactorOperationResponse)
            .filter(FactorOperationResponse.version_id == version_id)
            .all()
        )


class AuditRepository:
    """Append-only audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, action: str, entity_type: str, entity_id: Any, details: Optional[Dict[str, Any]] = None) -> None:
        self.db.add(
            AuditLogEntry(
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                details=details or {},
            )
        )
