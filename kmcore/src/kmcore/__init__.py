"""
kmcore - Bitcoin primitives for the key manager

Provides key derivation, address and script encoding, transaction
(de)serialization, consensus sanity checks and ECDSA signing.
"""

__version__ = "0.3.0"

from kmcore.bip32 import HDKey
from kmcore.networks import NetworkProfile, get_network, register_network
from kmcore.transaction import Coin, MutableTransaction, OutPoint, Transaction

__all__ = [
    "HDKey",
    "NetworkProfile",
    "get_network",
    "register_network",
    "Coin",
    "MutableTransaction",
    "OutPoint",
    "Transaction",
]
