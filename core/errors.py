"""Error taxonomy for the order and payment ledger."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    pass


class ValidationError(LedgerError):
    """Raised when a create/process/refund request is malformed.

    Raised before anything is persisted.
    """

    def __init__(self, message: str, errors: list[dict] | None = None):
        self.errors = errors or []
        super().__init__(message)


class NotFoundError(LedgerError):
    """Raised when a referenced order or payment doesn't exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class ProcessorError(LedgerError):
    """Raised inside a gateway adapter when the provider rejects a call.

    The orchestrator records it on the payment as a failure; it never
    escapes the orchestrator.
    """

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class ReconciliationDrift(LedgerError):
    """Raised when a payment's local status disagrees with its provider."""

    def __init__(self, payment_number: str, local_status: str, remote_status: str | None):
        self.payment_number = payment_number
        self.local_status = local_status
        self.remote_status = remote_status
        super().__init__(
            f"Payment {payment_number} is {local_status} locally but {remote_status} at the provider"
        )


class NumberAllocationError(LedgerError):
    """Raised when no free order/payment number was found."""

    def __init__(self, prefix: str, attempts: int):
        self.prefix = prefix
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique {prefix} number after {attempts} attempts")
