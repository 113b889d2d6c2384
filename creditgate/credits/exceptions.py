"""
Credit-related exceptions.
"""


class CreditError(Exception):
    """Base credit error."""

    def __init__(self, message: str, code: str = "CREDIT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InsufficientCreditsError(CreditError):
    """Raised when a tenant doesn't have enough credits to be admitted."""

    retryable = False

    def __init__(self, tenant_id: str, required: float = 1, available: float = 0):
        self.tenant_id = tenant_id
        self.required = required
        self.available = available
        super().__init__(
            message=f"Insufficient credits: required={required}, available={available}",
            code="INSUFFICIENT_CREDITS",
        )


class InvalidAmountError(CreditError, ValueError):
    """Raised when a ledger mutation is attempted with a non-positive amount."""

    def __init__(self, amount):
        self.amount = amount
        super().__init__(
            message=f"Ledger amount must be a positive finite number, got {amount!r}",
            code="INVALID_AMOUNT",
        )
