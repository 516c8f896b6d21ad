"""
Fee and input size estimation.

Fee rates are expressed in satoshis per virtual byte.
"""

from __future__ import annotations

import math

from kmcore.bitcoin import is_p2sh, varint_size
from kmcore.constants import (
    COMPRESSED_PUBKEY_SIZE,
    MAX_DER_SIGNATURE_SIZE,
    P2WPKH_REDEEM_SCRIPT_SIZE,
    WITNESS_SCALE_FACTOR,
)
from kmcore.transaction import SizeEstimator

from kmwallet.models import DerivationScheme


def size_varint(n: int) -> int:
    """Serialized size of a CompactSize integer."""
    return varint_size(n)


def signature_script_size() -> int:
    """Worst-case push of a DER signature plus a compressed public key."""
    size = 1 + MAX_DER_SIGNATURE_SIZE + 1 + COMPRESSED_PUBKEY_SIZE
    return size + size_varint(size)


def nested_witness_overhead() -> int:
    """Redeem script push and witness item count, in virtual bytes."""
    weight = P2WPKH_REDEEM_SCRIPT_SIZE * WITNESS_SCALE_FACTOR + 1
    return math.ceil(weight / WITNESS_SCALE_FACTOR)


def input_size_estimator(scheme: DerivationScheme) -> SizeEstimator:
    """
    Per-input script size estimator for the wallet's derivation scheme.

    bip49 wallets add the nested witness overhead for P2SH outputs and defer
    to the default templates for anything else; other wallets budget a
    signature and public key for every input.
    """
    if scheme.nested_witness:

        def estimate(prev_script: bytes) -> int:
            if not is_p2sh(prev_script):
                return -1
            return signature_script_size() + nested_witness_overhead()

        return estimate

    def estimate_plain(prev_script: bytes) -> int:
        return signature_script_size()

    return estimate_plain


def fee_for_size(rate: float, vsize: int) -> int:
    """Fee in satoshis for ``vsize`` virtual bytes at ``rate`` sat/vB."""
    return math.ceil(rate * vsize)
