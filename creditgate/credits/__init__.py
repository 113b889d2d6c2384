"""
Credits Module.
"""
from .service import CreditLedger, DEFAULT_BALANCE
from .exceptions import CreditError, InsufficientCreditsError, InvalidAmountError

__all__ = [
    "CreditLedger",
    "DEFAULT_BALANCE",
    "CreditError",
    "InsufficientCreditsError",
    "InvalidAmountError",
]
