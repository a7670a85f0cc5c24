"""Operation registry: factors, operation lifecycle and read models"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import StateConflictError, ValidationError
from factor_engine.domain.models import OperationStatus, SettlementTotals
from factor_engine.domain.settlement import build_settlement_lines, calculate_settlement_totals
from factor_engine.domain.state_machine import assert_transition, can_edit, is_terminal
from factor_engine.infrastructure.database.models import (
    Factor,
    FactorOperation,
    FactorOperationItem,
    FactorOperationResponse,
    FactorOperationVersion,
)
from factor_engine.infrastructure.database.repositories import (
    AuditRepository,
    FactorRepository,
    OperationRepository,
    ResponseRepository,
    VersionRepository,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.infrastructure.observability.logging import log_transition
from factor_engine.infrastructure.observability.metrics import record_transition
from factor_engine.utils.date_utils import date_or_today, utcnow

logger = logging.getLogger(__name__)

MIN_CANCEL_REASON_LENGTH = 3
FACTOR_FIELDS = {
    "name",
    "code",
    "default_interest_rate",
    "default_fee_rate",
    "default_iof_rate",
    "default_other_cost_rate",
    "default_grace_days",
    "is_active",
    "notes",
}
OPERATION_FIELDS = {"reference", "notes", "expected_settlement_date"}


def apply_transition(operation: FactorOperation, target: OperationStatus) -> OperationStatus:
    """Move the operation to target, returning the status it left"""
    current = OperationStatus(operation.status)
    assert_transition(current, target, operation.id)
    operation.status = target.value
    return current


def announce_transition(operation_id: Any, from_status: OperationStatus, to_status: OperationStatus, version_id=None) -> None:
    """Metrics and logs for a committed transition"""
    record_transition(from_status.value, to_status.value)
    log_transition(operation_id, from_status.value, to_status.value, version_id)


def require_editable(operation: FactorOperation, action: str) -> None:
    if not can_edit(operation.status):
        raise StateConflictError(
            f"Operation in status {operation.status} does not allow {action}",
            operation_id=operation.id,
            status=operation.status,
            code="OPERATION_NOT_EDITABLE",
        )


@dataclass
class OperationDetail:
    """Read model of one operation with its history"""

    operation: FactorOperation
    factor: Factor
    items: List[FactorOperationItem]
    versions: List[FactorOperationVersion]
    responses: List[FactorOperationResponse]
    posting_preview: SettlementTotals
    ready_to_conclude: bool


class OperationRegistry:
    """Single source of truth for factor operations and their status"""

    def __init__(self, db: Session):
        self.db = db
        self.factors = FactorRepository(db)
        self.operations = OperationRepository(db)
        self.versions = VersionRepository(db)
        self.responses = ResponseRepository(db)
        self.audit = AuditRepository(db)

    # Factors

    def create_factor(self, name: str, **fields: Any) -> Factor:
        name = (name or "").strip()
        if len(name) < 2:
            raise ValidationError("name", "Factor name must have at least 2 characters")
        _validate_factor_fields(fields)

        with atomic(self.db):
            factor = self.factors.create_factor(name=name, **fields)
            self.audit.record("factor_created", "factors", factor.id, {"factor_name": factor.name})
        return factor

    def update_factor(self, factor_id: uuid.UUID, **fields: Any) -> Factor:
        """Master data stays editable even while operations reference the factor"""
        unknown = set(fields) - FACTOR_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "Field cannot be updated")
        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()
            if len(fields["name"]) < 2:
                raise ValidationError("name", "Factor name must have at least 2 characters")
        _validate_factor_fields(fields)

        with atomic(self.db):
            factor = self.factors.get_factor(factor_id)
            for key, value in fields.items():
                setattr(factor, key, value)
            self.audit.record("factor_updated", "factors", factor.id, {"fields": sorted(fields)})
        return factor

    def list_factors(self) -> List[Factor]:
        return self.factors.list_factors()

    def get_factor(self, factor_id: uuid.UUID) -> Factor:
        return self.factors.get_factor(factor_id)

    # Operations

    def create_operation(
        self,
        factor_id: Optional[uuid.UUID],
        reference: Optional[str] = None,
        issue_date: Optional[date] = None,
        expected_settlement_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> FactorOperation:
        if factor_id is None:
            raise ValidationError("factor_id", "Factor is required")

        with atomic(self.db):
            factor = self.factors.get_factor(factor_id)
            operation = self.operations.create_operation(
                factor_id=factor.id,
                issue_date=date_or_today(issue_date),
                reference=reference,
                expected_settlement_date=expected_settlement_date,
                notes=notes,
            )
            self.audit.record(
                "factor_operation_created",
                "factor_operations",
                operation.id,
                {"operation_number": operation.operation_number, "factor_id": str(factor.id)},
            )
        logger.info(
            "Operation created",
            extra={"operation_id": str(operation.id), "operation_number": operation.operation_number},
        )
        return operation

    def update_operation(self, operation_id: uuid.UUID, **fields: Any) -> FactorOperation:
        unknown = set(fields) - OPERATION_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "Field cannot be updated")

        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            require_editable(operation, "metadata changes")
            for key, value in fields.items():
                setattr(operation, key, value)
            self.audit.record(
                "factor_operation_updated",
                "factor_operations",
                operation.id,
                {key: str(value) if value is not None else None for key, value in fields.items()},
            )
        return operation

    def get_operation(self, operation_id: uuid.UUID) -> FactorOperation:
        return self.operations.get_operation(operation_id)

    def list_operations(
        self,
        status: Optional[OperationStatus] = None,
        factor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FactorOperation]:
        return self.operations.list_operations(
            status=OperationStatus(status).value if status else None,
            factor_id=factor_id,
            search=search,
            limit=limit,
        )

    def get_operation_detail(self, operation_id: uuid.UUID) -> OperationDetail:
        operation = self.operations.get_operation(operation_id)
        versions = self.versions.list_versions(operation.id)
        current = next((v for v in versions if v.id == operation.current_version_id), None)
        responses = self.responses.list_for_version(current.id) if current else []

        lines, missing = build_settlement_lines(current.items if current else [], responses)
        ready = (
            current is not None
            and current.sent_at is not None
            and not missing
            and operation.status == OperationStatus.SENT_TO_FACTOR.value
            and all(r.response_status == "accepted" for r in responses)
        )
        return OperationDetail(
            operation=operation,
            factor=operation.factor,
            items=operation.live_items,
            versions=versions,
            responses=responses,
            posting_preview=calculate_settlement_totals(lines),
            ready_to_conclude=ready,
        )

    def send_to_factor(self, operation_id: uuid.UUID) -> FactorOperation:
        """
        Hand the current version to the factor.

        Sending never creates a version: the package must have been generated
        after the last item edit and must not have been sent already.
        """
        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            require_editable(operation, "sending")

            if operation.current_version_id is None:
                raise StateConflictError(
                    "Generate a version before sending the operation",
                    operation_id=operation.id,
                    status=operation.status,
                    code="MISSING_VERSION",
                )
            version = self.versions.get_version(operation.id, operation.current_version_id)
            if operation.has_unversioned_changes or version.sent_at is not None:
                raise StateConflictError(
                    "Current version is stale; generate a new version before sending",
                    operation_id=operation.id,
                    status=operation.status,
                    code="STALE_VERSION",
                )

            now = utcnow()
            previous = apply_transition(operation, OperationStatus.SENT_TO_FACTOR)
            operation.sent_at = now
            version.sent_at = now
            self.audit.record(
                "factor_operation_sent",
                "factor_operations",
                operation.id,
                {
                    "version_id": str(version.id),
                    "version_number": version.version_number,
                    "total_items": version.total_items,
                    "gross_amount_cents": version.gross_amount_cents,
                },
            )

        announce_transition(operation.id, previous, OperationStatus.SENT_TO_FACTOR, version.id)
        return operation

    def cancel_operation(self, operation_id: uuid.UUID, reason: Optional[str]) -> FactorOperation:
        """Cancel a non-terminal operation; responses already recorded are kept"""
        reason = (reason or "").strip()
        if len(reason) < MIN_CANCEL_REASON_LENGTH:
            raise ValidationError(
                "reason",
                f"Cancel reason must have at least {MIN_CANCEL_REASON_LENGTH} characters",
                code="CANCEL_REASON_TOO_SHORT",
            )

        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            if is_terminal(operation.status):
                raise StateConflictError(
                    f"Operation in status {operation.status} cannot be cancelled",
                    operation_id=operation.id,
                    status=operation.status,
                    code="OPERATION_TERMINAL",
                )
            previous = apply_transition(operation, OperationStatus.CANCELLED)
            operation.cancelled_at = utcnow()
            operation.cancel_reason = reason
            self.audit.record("factor_operation_cancelled", "factor_operations", operation.id, {"reason": reason})

        announce_transition(operation.id, previous, OperationStatus.CANCELLED)
        return operation


def _validate_factor_fields(fields: dict) -> None:
    for rate in ("default_interest_rate", "default_fee_rate", "default_iof_rate", "default_other_cost_rate"):
        value = fields.get(rate)
        if value is not None and not 0 <= value <= 100:
            raise ValidationError(rate, "Rate must be a percentage between 0 and 100")
    grace_days = fields.get("default_grace_days")
    if grace_days is not None and not 0 <= grace_days <= 365:
        raise ValidationError("default_grace_days", "Grace days must be between 0 and 365")
