class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class FetchError(ServiceError):
    """Raised when the commerce API cannot deliver orders."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        transient: bool = True,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.transient = transient


class OrderValidationError(ServiceError):
    """Raised when a remote record is not a usable order."""


class RenderError(ServiceError):
    """Raised when an invoice PDF could not be produced."""


class PrintError(ServiceError):
    """Raised when a rendered invoice could not be submitted to the printer."""


class NotificationError(ServiceError):
    """Raised by a notification channel; never escapes the fan-out."""


class LedgerError(ServiceError):
    """Raised when the processed-order ledger cannot be persisted."""
