"""
Typed exceptions for the reconciliation engine.

Every error carries a machine-readable ``code`` so callers (and the HTTP
layer) branch on type or code, never on message text.

    ReconciliationError
    +-- NotFoundError            NOT_FOUND
    +-- ValidationError          VALIDATION_ERROR
    |   +-- IneligibleError      INELIGIBLE
    +-- ConflictError            CONFLICT
    +-- PermissionDeniedError    FORBIDDEN
    +-- InvoiceGenerationError   INVOICE_GENERATION_FAILED
"""

from typing import Optional


class ReconciliationError(Exception):
    code: str = "RECONCILIATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(ReconciliationError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(ReconciliationError):
    code = "VALIDATION_ERROR"


class IneligibleError(ValidationError):
    """The voucher cannot be converted to a monetary refund (yet, or ever)."""

    code = "INELIGIBLE"

    def __init__(self, message: str, days_remaining: Optional[int] = None) -> None:
        super().__init__(message)
        self.days_remaining = days_remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.days_remaining is not None:
            data["days_remaining"] = self.days_remaining
        return data


class ConflictError(ReconciliationError):
    code = "CONFLICT"


class PermissionDeniedError(ReconciliationError):
    code = "FORBIDDEN"


class InvoiceGenerationError(ReconciliationError):
    """Aborts an organization's invoice run; nothing from the run is kept."""

    code = "INVOICE_GENERATION_FAILED"

    def __init__(
        self,
        message: str,
        organization_id: str,
        order_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.organization_id = organization_id
        self.order_id = order_id
