"""Response reconciler: applies the factor's per-item determination to a version"""

import uuid
from typing import List

from sqlalchemy.orm import Session

from factor_engine.domain.exceptions import StateConflictError
from factor_engine.domain.models import ItemResponse, OperationStatus
from factor_engine.domain.reconciliation import index_responses, resolve_outcome
from factor_engine.domain.settlement import calculate_operation_totals
from factor_engine.domain.state_machine import RESPONSE_STATUSES, derive_status
from factor_engine.infrastructure.database.models import FactorOperation
from factor_engine.infrastructure.database.repositories import (
    AuditRepository,
    OperationRepository,
    ResponseRepository,
    VersionRepository,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.services.registry import announce_transition, apply_transition
from factor_engine.utils.date_utils import utcnow


class ResponseReconciler:
    """Records factor responses and derives the operation's next status"""

    def __init__(self, db: Session):
        self.db = db
        self.operations = OperationRepository(db)
        self.versions = VersionRepository(db)
        self.responses = ResponseRepository(db)
        self.audit = AuditRepository(db)

    def apply_responses(
        self,
        operation_id: uuid.UUID,
        version_id: uuid.UUID,
        responses: List[ItemResponse],
    ) -> FactorOperation:
        """
        Apply one complete response set against the operation's current version.

        Either every item response is recorded or none is. Re-applying against the
        same version overwrites the earlier determination per item; the status is
        recomputed from the full response set each time.

        Raises:
            StateConflictError: wrong status, superseded or unsent version, or
                items edited since the version was sent
            NotFoundError: version does not belong to the operation
            ValidationError: missing/pending/unknown item responses, adjusted
                responses without new terms
        """
        with atomic(self.db):
            operation = self.operations.get_for_update(operation_id)
            if OperationStatus(operation.status) not in RESPONSE_STATUSES:
                raise StateConflictError(
                    f"Operation in status {operation.status} is not awaiting factor responses",
                    operation_id=operation.id,
                    status=operation.status,
                    code="OPERATION_RESPONSE_INVALID_STATUS",
                )

            version = self.versions.get_version(operation.id, version_id)
            if version.id != operation.current_version_id:
                raise StateConflictError(
                    f"Version {version.version_number} is not the current version of the operation",
                    operation_id=operation.id,
                    status=operation.status,
                    code="VERSION_SUPERSEDED",
                )
            if version.sent_at is None:
                raise StateConflictError(
                    f"Version {version.version_number} was never sent to the factor",
                    operation_id=operation.id,
                    status=operation.status,
                    code="VERSION_NOT_SENT",
                )
            if operation.has_unversioned_changes:
                raise StateConflictError(
                    "Items changed since the version was sent; responses apply to a new version only",
                    operation_id=operation.id,
                    status=operation.status,
                    code="STALE_VERSION",
                )

            by_item = index_responses([vi.operation_item_id for vi in version.items], responses)
            live_items = {str(item.id): item for item in operation.items}

            costs_amount_cents = 0
            for frozen in version.items:
                response = by_item[str(frozen.operation_item_id)]
                outcome = resolve_outcome(
                    frozen.action_type,
                    frozen.amount_snapshot_cents,
                    frozen.due_date_snapshot,
                    frozen.proposed_due_date,
                    response,
                )
                self.responses.upsert_response(operation.id, version.id, response)
                costs_amount_cents += response.total_cost_cents

                item = live_items[str(frozen.operation_item_id)]
                item.status = outcome.status.value
                item.final_amount_cents = outcome.final_amount_cents
                item.final_due_date = outcome.final_due_date

            next_status = derive_status(response.response_status for response in by_item.values())
            previous = OperationStatus(operation.status)
            if previous != next_status:
                apply_transition(operation, next_status)

            totals = calculate_operation_totals(version.gross_amount_cents, costs_amount_cents)
            operation.costs_amount_cents = totals.costs_amount_cents
            operation.net_amount_cents = totals.net_amount_cents
            operation.last_response_at = utcnow()
            self.audit.record(
                "factor_response_applied",
                "factor_operations",
                operation.id,
                {
                    "version_id": str(version.id),
                    "responses": len(by_item),
                    "status_after": next_status.value,
                },
            )

        if previous != next_status:
            announce_transition(operation.id, previous, next_status, version.id)
        return operation
