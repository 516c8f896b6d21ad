"""
Key manager error taxonomy.

All errors are raised synchronously to the caller and never retried
internally; retry policy belongs to the caller.
"""

from __future__ import annotations


class KeyManagerError(Exception):
    pass


class ConfigError(KeyManagerError):
    """Invalid construction options (derivation scheme, network, limits)."""


class MissingKeyError(KeyManagerError):
    """Neither a seed nor a master extended key was supplied."""


class MissingPrivateKeyError(KeyManagerError):
    """Signing requested without a master private key or seed."""


class UnknownAddressError(KeyManagerError):
    """An output or address cannot be traced to a wallet derivation path."""


class EmptyOutputsError(KeyManagerError):
    """A non-CPFP spend was requested without outputs."""


class FundingError(KeyManagerError):
    pass


class InsufficientFundsError(FundingError):
    def __init__(self, needed: int, available: int, message: str | None = None):
        self.needed = needed
        self.available = available
        super().__init__(message or f"Insufficient funds: need {needed}, have {available}")


class FeeExceededError(FundingError):
    def __init__(self, fee: int, max_fee: int):
        self.fee = fee
        self.max_fee = max_fee
        super().__init__(f"Fee {fee} exceeds maximum {max_fee}")


class SanityCheckError(KeyManagerError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"TX failed sanity check: {reason}")


class ContextCheckError(KeyManagerError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"TX failed context check: {reason}")
