"""Domain-specific exceptions"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class ValidationError(DomainException):
    """Input is missing or invalid; carries the offending field"""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str, code: Optional[str] = None, **details: Any):
        super().__init__(message, code)
        self.field = field
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "field": self.field, **self.details}


class StateConflictError(DomainException):
    """Mutation attempted outside its allowed status set; refresh and retry"""

    code = "STATE_CONFLICT"

    def __init__(
        self,
        message: str,
        operation_id: Any = None,
        status: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, code)
        self.operation_id = operation_id
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.operation_id is not None:
            data["operation_id"] = str(self.operation_id)
        if self.status is not None:
            data["status"] = self.status
        return data


class NotFoundError(DomainException):
    """Referenced entity does not exist (or is no longer available)"""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, code: Optional[str] = None):
        super().__init__(f"{entity} {entity_id} not found", code)
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "entity_id": str(self.entity_id)}


class LedgerWriteFailure(DomainException):
    """Ledger rejected or failed a posting; the enclosing transaction is rolled back"""

    code = "LEDGER_WRITE_FAILURE"


class DuplicatePostingError(LedgerWriteFailure):
    """A posting with the same (operation, version, kind, category) already exists"""

    code = "DUPLICATE_POSTING"
