"""
Exceptions raised by the primitives layer.
"""

from __future__ import annotations


class PrimitiveError(Exception):
    pass


class NetworkError(PrimitiveError):
    """Unknown or malformed network profile."""


class InvalidKeyError(PrimitiveError):
    """Bad extended key, seed or derivation path."""


class AddressError(PrimitiveError):
    """Address cannot be decoded for the given network."""


class TransactionError(PrimitiveError):
    """Malformed transaction or unsupported signing request."""
