"""
kmwallet - HD key manager and transaction construction core

Derives gap-limited receive/change address pools, resolves UTXOs to their
derivation paths, builds standard, RBF and CPFP transactions and signs them.
"""

__version__ = "0.3.0"

from kmwallet.config import KeyManagerConfig
from kmwallet.errors import (
    ConfigError,
    ContextCheckError,
    EmptyOutputsError,
    FeeExceededError,
    FundingError,
    InsufficientFundsError,
    KeyManagerError,
    MissingKeyError,
    MissingPrivateKeyError,
    SanityCheckError,
    UnknownAddressError,
)
from kmwallet.events import NewAddressEvent, NewKeysEvent
from kmwallet.key_manager import KeyManager
from kmwallet.models import (
    Address,
    AddressInfo,
    Branch,
    DerivationScheme,
    RawKeys,
    SpendableUtxo,
    SpendTarget,
    UtxoInfo,
)

__all__ = [
    "KeyManager",
    "KeyManagerConfig",
    "Address",
    "AddressInfo",
    "Branch",
    "DerivationScheme",
    "RawKeys",
    "SpendableUtxo",
    "SpendTarget",
    "UtxoInfo",
    "NewAddressEvent",
    "NewKeysEvent",
    "KeyManagerError",
    "ConfigError",
    "MissingKeyError",
    "MissingPrivateKeyError",
    "UnknownAddressError",
    "EmptyOutputsError",
    "FundingError",
    "InsufficientFundsError",
    "FeeExceededError",
    "SanityCheckError",
    "ContextCheckError",
]
