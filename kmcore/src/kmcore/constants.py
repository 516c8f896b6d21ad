"""
Consensus and policy constants shared by the primitives layer.
"""

from __future__ import annotations

SATS_PER_BTC = 100_000_000

# Consensus
MAX_MONEY = 21_000_000 * SATS_PER_BTC
COINBASE_MATURITY = 100
WITNESS_SCALE_FACTOR = 4
MAX_BLOCK_WEIGHT = 4_000_000

# Sequence numbers
SEQUENCE_FINAL = 0xFFFFFFFF
# BIP125: any sequence below 0xfffffffe signals replaceability
RBF_SEQUENCE = SEQUENCE_FINAL - 2

# Policy: minimum relay fee in satoshis per virtual byte
MIN_RELAY_FEE_RATE = 1

# Signature hash types
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80

# Placeholder sizes used for fee estimation
MAX_DER_SIGNATURE_SIZE = 73
COMPRESSED_PUBKEY_SIZE = 33
P2WPKH_REDEEM_SCRIPT_SIZE = 23

# BIP32
HARDENED_OFFSET = 0x80000000
SECP256K1_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
