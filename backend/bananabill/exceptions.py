"""Error taxonomy for the billing ledger.

Every error carries a stable machine-readable ``error_code`` and the HTTP
status the web layer answers with.  Messages are safe to show to users;
store-specific error text never ends up in them.
"""

from fastapi import status


class BananaBillException(Exception):
    """Base exception for BananaBill application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(BananaBillException):
    """Bad or missing bill input."""

    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(
            message=f"{field}: {reason}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
        )


class NotFoundError(BananaBillException):
    """Bill, farmer or sequence key absent."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
        )


class ConcurrencyConflict(BananaBillException):
    """The stored version moved on since the caller read the bill."""

    def __init__(self, bill_id: str, expected_version: int, actual_version: int | None = None):
        self.bill_id = bill_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message=(
                f"Bill {bill_id} was modified concurrently "
                f"(expected version {expected_version}). Reload and retry."
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONCURRENCY_CONFLICT",
        )


class SequenceExhausted(BananaBillException):
    """The per-period bill counter passed its ceiling."""

    def __init__(self, period: str, ceiling: int):
        self.period = period
        self.ceiling = ceiling
        super().__init__(
            message=(
                f"Maximum of {ceiling} bills exceeded for period {period}. "
                "Contact administrator."
            ),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="SEQUENCE_EXHAUSTED",
        )


class InvalidPaymentAmount(BananaBillException):
    def __init__(self, message: str = "Payment amount must be positive"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="INVALID_PAYMENT_AMOUNT",
        )


class AlreadyPaid(BananaBillException):
    """Raised only when payments after PAID are disabled in settings."""

    def __init__(self, bill_number: str):
        super().__init__(
            message=f"Bill {bill_number} is already fully paid",
            status_code=status.HTTP_409_CONFLICT,
            error_code="ALREADY_PAID",
        )


class PersistenceUnavailable(BananaBillException):
    def __init__(self, message: str = "Database temporarily unavailable. Please try again."):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PERSISTENCE_UNAVAILABLE",
        )
