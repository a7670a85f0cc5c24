"""Factor operation lifecycle: allowed transitions and status derivation"""

from typing import Dict, FrozenSet, Iterable

from factor_engine.domain.exceptions import StateConflictError
from factor_engine.domain.models import OperationStatus, ResponseStatus

TRANSITIONS: Dict[OperationStatus, FrozenSet[OperationStatus]] = {
    OperationStatus.DRAFT: frozenset({OperationStatus.SENT_TO_FACTOR, OperationStatus.CANCELLED}),
    OperationStatus.SENT_TO_FACTOR: frozenset(
        {OperationStatus.IN_ADJUSTMENT, OperationStatus.COMPLETED, OperationStatus.CANCELLED}
    ),
    OperationStatus.IN_ADJUSTMENT: frozenset(
        {OperationStatus.SENT_TO_FACTOR, OperationStatus.COMPLETED, OperationStatus.CANCELLED}
    ),
    OperationStatus.COMPLETED: frozenset(),
    OperationStatus.CANCELLED: frozenset(),
}

EDITABLE_STATUSES = frozenset({OperationStatus.DRAFT, OperationStatus.IN_ADJUSTMENT})
RESPONSE_STATUSES = frozenset({OperationStatus.SENT_TO_FACTOR, OperationStatus.IN_ADJUSTMENT})
CONCLUDABLE_STATUSES = RESPONSE_STATUSES
ACTIVE_STATUSES = frozenset(
    {OperationStatus.DRAFT, OperationStatus.SENT_TO_FACTOR, OperationStatus.IN_ADJUSTMENT}
)


def can_transition(current: OperationStatus, target: OperationStatus) -> bool:
    return OperationStatus(target) in TRANSITIONS[OperationStatus(current)]


def assert_transition(current: OperationStatus, target: OperationStatus, operation_id=None) -> None:
    """Raise StateConflictError unless current -> target is an allowed transition"""
    if not can_transition(current, target):
        raise StateConflictError(
            f"Operation cannot move from {OperationStatus(current).value} to {OperationStatus(target).value}",
            operation_id=operation_id,
            status=OperationStatus(current).value,
            code="INVALID_TRANSITION",
        )


def can_edit(status: OperationStatus) -> bool:
    return OperationStatus(status) in EDITABLE_STATUSES


def is_terminal(status: OperationStatus) -> bool:
    return not TRANSITIONS[OperationStatus(status)]


def derive_status(response_statuses: Iterable[ResponseStatus]) -> OperationStatus:
    """
    Operation status implied by a complete response set for the current version.

    Every item accepted keeps the package with the factor (ready to conclude);
    any rejected or adjusted item sends the operation back to adjustment.
    """
    statuses = [ResponseStatus(s) for s in response_statuses]
    if statuses and all(s == ResponseStatus.ACCEPTED for s in statuses):
        return OperationStatus.SENT_TO_FACTOR
    return OperationStatus.IN_ADJUSTMENT
