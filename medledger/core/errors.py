"""
Domain error taxonomy for the medication ledger.

Route handlers let these bubble up; ``observability.ledger_exception_handler``
maps each family onto an HTTP status and the shared JSON error envelope.
"""


class LedgerError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"


class ValidationError(LedgerError):
    status_code = 422
    code = "validation_error"


class ConflictError(LedgerError):
    status_code = 409
    code = "conflict"


class DuplicateBatchError(ConflictError):
    def __init__(self, batch_number: str):
        super().__init__(f"Batch number {batch_number} already exists for this medication")
        self.batch_number = batch_number


class InsufficientStockError(ConflictError):
    def __init__(self, *, requested: int, available: int, batch_number: str | None = None):
        scope = f"batch {batch_number}" if batch_number else "medication"
        super().__init__(
            f"Insufficient stock in {scope}: requested {requested}, available {available}",
            details=[
                {
                    "field": "quantity",
                    "message": f"available {available}",
                    "type": "insufficient_stock",
                }
            ],
        )
        self.requested = requested
        self.available = available
        self.batch_number = batch_number


class ConcurrentUpdateError(ConflictError):
    def __init__(self, medication_id: str, attempts: int):
        super().__init__(
            f"Medication {medication_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.medication_id = medication_id
        self.attempts = attempts


class TransientError(LedgerError):
    status_code = 503
    code = "unavailable"
