"""
Transaction signing utilities.

Provides:
- Legacy and BIP143 (SegWit) signature digests
- Sighash strategies selected by network profile (standard or fork-id)
- Input templating (scriptSig/witness placeholders) and signing for
  P2PKH, P2SH-P2WPKH and P2WPKH inputs
- Signature verification for the same input types
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Protocol

from coincurve import PublicKey

from kmcore.bip32 import HDKey
from kmcore.bitcoin import (
    OP_0,
    encode_varint,
    hash160,
    hash256,
    is_p2pkh,
    is_p2sh,
    is_p2wpkh,
    p2pkh_script,
    p2sh_script,
    p2wpkh_redeem_script,
    p2wpkh_script,
    parse_pushes,
    push_data,
)
from kmcore.constants import SIGHASH_ALL, SIGHASH_ANYONECANPAY, SIGHASH_FORKID
from kmcore.errors import TransactionError
from kmcore.networks import NetworkProfile, get_network
from kmcore.transaction import MutableTransaction, Transaction, TxIn


class TransactionSigningError(TransactionError):
    pass


# =============================================================================
# Signature digests
# =============================================================================


def _check_hash_type(sighash_type: int) -> None:
    if sighash_type & 0x1F != SIGHASH_ALL:
        raise TransactionSigningError(f"Unsupported sighash type: 0x{sighash_type:02x}")


def compute_sighash_legacy(
    tx: Transaction, input_index: int, script_code: bytes, sighash_type: int = SIGHASH_ALL
) -> bytes:
    """
    Pre-SegWit signature digest.

    Every scriptSig is blanked except the one being signed, which is replaced
    by ``script_code`` (the previous output script).
    """
    if input_index >= len(tx.inputs):
        raise TransactionSigningError(f"Input index {input_index} out of range")
    _check_hash_type(sighash_type)

    if sighash_type & SIGHASH_ANYONECANPAY:
        signing = tx.inputs[input_index]
        inputs = [TxIn(signing.prevout, script_code, signing.sequence)]
    else:
        inputs = [
            TxIn(inp.prevout, script_code if i == input_index else b"", inp.sequence)
            for i, inp in enumerate(tx.inputs)
        ]
    stripped = Transaction(
        version=tx.version, inputs=inputs, outputs=list(tx.outputs), locktime=tx.locktime
    )
    preimage = stripped.serialize(include_witness=False) + struct.pack("<I", sighash_type)
    return hash256(preimage)


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    BIP143 signature digest.

    Also used by fork-id chains for every input type.
    """
    if input_index >= len(tx.inputs):
        raise TransactionSigningError(f"Input index {input_index} out of range")
    _check_hash_type(sighash_type)

    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)
    zero = bytes(32)

    if anyone_can_pay:
        hash_prevouts = zero
        hash_sequence = zero
    else:
        hash_prevouts = hash256(b"".join(inp.prevout.to_bytes() for inp in tx.inputs))
        hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    inp = tx.inputs[input_index]
    preimage = (
        struct.pack("<i", tx.version)
        + hash_prevouts
        + hash_sequence
        + inp.prevout.to_bytes()
        + encode_varint(len(script_code))
        + script_code
        + struct.pack("<q", value)
        + struct.pack("<I", inp.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )
    return hash256(preimage)


def create_p2wpkh_script_code(pubkey: bytes) -> bytes:
    """
    BIP143 scriptCode for P2WPKH spends: the P2PKH script of the key hash.
    """
    return p2pkh_script(hash160(pubkey))


# =============================================================================
# Sighash strategies
# =============================================================================


class SighashStrategy(Protocol):
    hash_type: int

    def digest(
        self, tx: Transaction, input_index: int, script_code: bytes, value: int, witness: bool
    ) -> bytes: ...


class StandardSighash:
    """SIGHASH_ALL; legacy digest for bare inputs, BIP143 for witness inputs."""

    hash_type = SIGHASH_ALL

    def digest(
        self, tx: Transaction, input_index: int, script_code: bytes, value: int, witness: bool
    ) -> bytes:
        if witness:
            return compute_sighash_segwit(tx, input_index, script_code, value, self.hash_type)
        return compute_sighash_legacy(tx, input_index, script_code, self.hash_type)


class ForkIdSighash:
    """
    Replay-protected digest used by the Bitcoin Cash family.

    The fork-id bit is set in the hash type and the BIP143 algorithm is used
    regardless of the input's script type.
    """

    hash_type = SIGHASH_ALL | SIGHASH_FORKID

    def digest(
        self, tx: Transaction, input_index: int, script_code: bytes, value: int, witness: bool
    ) -> bytes:
        return compute_sighash_segwit(tx, input_index, script_code, value, self.hash_type)


def sighash_strategy_for(network: str | NetworkProfile) -> SighashStrategy:
    if get_network(network).uses_forkid:
        return ForkIdSighash()
    return StandardSighash()


# =============================================================================
# Signing keys and input templates
# =============================================================================


@dataclass
class SigningKey:
    """
    Leaf key used to spend wallet outputs.

    ``nested`` marks P2SH-wrapped witness outputs, ``witness`` marks SegWit
    spends. BIP49 keys set both.
    """

    key: HDKey
    nested: bool = False
    witness: bool = False

    @property
    def public_key(self) -> bytes:
        return self.key.get_public_key_bytes()

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.public_key)

    @property
    def redeem_script(self) -> bytes:
        return p2wpkh_redeem_script(self.public_key)

    def owns(self, script: bytes) -> bool:
        """Whether this key can spend an output locked by ``script``."""
        if is_p2pkh(script):
            return script == p2pkh_script(self.pubkey_hash)
        if is_p2sh(script) and self.nested:
            return script == p2sh_script(hash160(self.redeem_script))
        if is_p2wpkh(script) and self.witness:
            return script == p2wpkh_script(self.pubkey_hash)
        return False


def template_input(tx: MutableTransaction, input_index: int, key: SigningKey) -> bool:
    """
    Attach the script placeholders ``key`` needs to spend input ``input_index``.

    Returns:
        False if the input's coin is unknown or not spendable by ``key``
    """
    inp = tx.inputs[input_index]
    coin = tx.get_coin(inp)
    if coin is None or not key.owns(coin.script):
        return False

    if is_p2pkh(coin.script):
        inp.script_sig = bytes([OP_0]) + push_data(key.public_key)
        inp.witness = []
    elif is_p2sh(coin.script):
        inp.script_sig = push_data(key.redeem_script)
        inp.witness = [b"", key.public_key]
    else:
        inp.script_sig = b""
        inp.witness = [b"", key.public_key]
    return True


def sign_input(
    tx: MutableTransaction, input_index: int, key: SigningKey, strategy: SighashStrategy
) -> bool:
    """
    Sign one templated input in place.

    Returns:
        False if the input is not spendable by ``key``
    """
    if input_index >= len(tx.inputs):
        raise TransactionSigningError(f"Input index {input_index} out of range")
    inp = tx.inputs[input_index]
    coin = tx.get_coin(inp)
    if coin is None or not key.owns(coin.script):
        return False

    witness = not is_p2pkh(coin.script)
    script_code = coin.script if not witness else create_p2wpkh_script_code(key.public_key)
    digest = strategy.digest(tx, input_index, script_code, coin.value, witness)
    signature = key.key.sign(digest) + bytes([strategy.hash_type & 0xFF])

    if witness:
        inp.witness = [signature, key.public_key]
    else:
        inp.script_sig = push_data(signature) + push_data(key.public_key)
    return True


def sign_transaction(
    tx: MutableTransaction, keys: list[SigningKey], strategy: SighashStrategy
) -> int:
    """
    Template every input, then sign each input with the first matching key.

    Returns:
        Number of inputs signed
    """
    for index in range(len(tx.inputs)):
        for key in keys:
            if template_input(tx, index, key):
                break

    signed = 0
    for index in range(len(tx.inputs)):
        for key in keys:
            if sign_input(tx, index, key, strategy):
                signed += 1
                break
    return signed


# =============================================================================
# Verification
# =============================================================================


def _extract_signature(tx: MutableTransaction, input_index: int) -> tuple[bytes, bytes, bool]:
    inp = tx.inputs[input_index]
    coin = tx.get_coin(inp)
    if coin is None:
        raise TransactionSigningError(f"No coin for input {input_index}")

    if is_p2pkh(coin.script):
        try:
            items = parse_pushes(inp.script_sig)
        except ValueError as e:
            raise TransactionSigningError(f"Bad scriptSig on input {input_index}") from e
        if len(items) != 2 or p2pkh_script(hash160(items[1])) != coin.script:
            raise TransactionSigningError(f"Input {input_index} does not match its P2PKH output")
        return items[0], items[1], False

    if len(inp.witness) != 2:
        raise TransactionSigningError(f"Input {input_index} has no P2WPKH witness")
    signature, pubkey = inp.witness
    if is_p2sh(coin.script):
        redeem = p2wpkh_redeem_script(pubkey)
        if inp.script_sig != push_data(redeem) or p2sh_script(hash160(redeem)) != coin.script:
            raise TransactionSigningError(f"Input {input_index} does not match its P2SH output")
    elif not (is_p2wpkh(coin.script) and coin.script == p2wpkh_script(hash160(pubkey))):
        raise TransactionSigningError(f"Input {input_index} does not match its output")
    return signature, pubkey, True


def verify_input(
    tx: MutableTransaction, input_index: int, strategy: SighashStrategy
) -> bool:
    """Check the signature on one input against its previous output."""
    try:
        signature, pubkey, witness = _extract_signature(tx, input_index)
    except TransactionSigningError:
        return False
    if len(signature) < 9:
        return False

    hash_type = signature[-1]
    if hash_type != strategy.hash_type & 0xFF:
        return False

    coin = tx.get_coin(tx.inputs[input_index])
    script_code = create_p2wpkh_script_code(pubkey) if witness else coin.script
    digest = strategy.digest(tx, input_index, script_code, coin.value, witness)
    try:
        return PublicKey(pubkey).verify(signature[:-1], digest, hasher=None)
    except ValueError:
        return False


def verify_transaction(tx: MutableTransaction, strategy: SighashStrategy) -> bool:
    """True when every input carries a valid signature."""
    return bool(tx.inputs) and all(
        verify_input(tx, index, strategy) for index in range(len(tx.inputs))
    )
