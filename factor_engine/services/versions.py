"""Version/snapshot engine: freezes the live item set into append-only versions"""

import logging
import uuid
from typing import List

from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import ValidationError
from factor_engine.domain.models import ResponseStatus
from factor_engine.domain.settlement import calculate_operation_totals
from factor_engine.infrastructure.database.models import FactorOperationVersion
from factor_engine.infrastructure.database.repositories import (
    AuditRepository,
    OperationRepository,
    VersionRepository,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.infrastructure.observability.metrics import version_counter
from factor_engine.services.registry import require_editable
from factor_engine.utils.date_utils import to_iso, utcnow

logger = logging.getLogger(__name__)


class VersionEngine:
    """Generates and serves the immutable package history of an operation"""

    def __init__(self, db: Session):
        self.db = db
        self.operations = OperationRepository(db)
        self.versions = VersionRepository(db)
        self.audit = AuditRepository(db)

    def generate_version(self, operation_id: uuid.UUID) -> FactorOperationVersion:
        """
        Freeze the current live items as version N+1.

        Pre-response versions carry no cost data: costs are zero and net equals
        gross. Items the factor rejected must be removed before a new package
        can be generated.
        """
        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            require_editable(operation, "generating versions")

            live_items = operation.live_items
            if not live_items:
                raise ValidationError("items", "Add at least one item before generating a version", code="OPERATION_EMPTY")

            rejected = [str(item.id) for item in live_items if item.status == ResponseStatus.REJECTED.value]
            if rejected:
                raise ValidationError(
                    "items",
                    f"Remove rejected items before generating a new version: {', '.join(rejected)}",
                    code="REJECTED_ITEMS_PRESENT",
                    item_ids=rejected,
                )

            totals = calculate_operation_totals(sum(item.amount_snapshot_cents for item in live_items))
            version_number = operation.version_counter + 1
            factor = operation.factor

            version = self.versions.create_version(
                operation,
                version_number=version_number,
                gross_amount_cents=totals.gross_amount_cents,
                costs_amount_cents=totals.costs_amount_cents,
                net_amount_cents=totals.net_amount_cents,
                snapshot={
                    "generated_at": to_iso(utcnow()),
                    "operation_id": str(operation.id),
                    "operation_number": operation.operation_number,
                    "reference": operation.reference,
                    "issue_date": to_iso(operation.issue_date),
                    "factor_id": str(factor.id),
                    "factor_name": factor.name,
                    "totals": {
                        "gross_amount_cents": totals.gross_amount_cents,
                        "costs_amount_cents": totals.costs_amount_cents,
                        "net_amount_cents": totals.net_amount_cents,
                    },
                },
            )

            operation.version_counter = version_number
            operation.current_version_id = version.id
            operation.gross_amount_cents = totals.gross_amount_cents
            operation.costs_amount_cents = totals.costs_amount_cents
            operation.net_amount_cents = totals.net_amount_cents
            operation.has_unversioned_changes = False
            self.audit.record(
                "factor_version_created",
                "factor_operation_versions",
                version.id,
                {
                    "operation_id": str(operation.id),
                    "version_number": version_number,
                    "total_items": version.total_items,
                },
            )

        version_counter.inc()
        logger.info(
            "Version generated",
            extra={"operation_id": str(operation_id), "version_number": version.version_number},
        )
        return version

    def list_versions(self, operation_id: uuid.UUID) -> List[FactorOperationVersion]:
        self.operations.get_operation(operation_id)
        return self.versions.list_versions(operation_id)

    def get_version(self, operation_id: uuid.UUID, version_id: uuid.UUID) -> FactorOperationVersion:
        return self.versions.get_version(operation_id, version_id)
