"""
Transaction model, serialization and consensus checks.

``Transaction`` is a plain serializable transaction. ``MutableTransaction``
adds a coin view (the previous outputs being spent) so that fees, contextual
input checks and size estimates can be computed before signing.
"""

from __future__ import annotations

import math
import struct
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from kmcore.bitcoin import (
    decode_varint,
    encode_varint,
    hash256,
    is_p2pkh,
    is_p2sh,
    is_p2wpkh,
    is_unspendable,
    is_witness_program,
    varint_size,
)
from kmcore.constants import (
    COINBASE_MATURITY,
    COMPRESSED_PUBKEY_SIZE,
    MAX_BLOCK_WEIGHT,
    MAX_DER_SIGNATURE_SIZE,
    MAX_MONEY,
    MIN_RELAY_FEE_RATE,
    SEQUENCE_FINAL,
    WITNESS_SCALE_FACTOR,
)
from kmcore.errors import TransactionError

NULL_TXID = "00" * 32

# Size of an input without its scriptSig: outpoint (36) + sequence (4)
_INPUT_BASE_SIZE = 40

# Per-input script size estimator: given the previous output script, returns
# the estimated virtual size of the spending scriptSig/witness, or -1 to fall
# back to the built-in templates.
SizeEstimator = Callable[[bytes], int]


@dataclass(frozen=True)
class OutPoint:
    """Reference to a previous output. ``txid`` is in RPC (big-endian) hex."""

    txid: str
    index: int

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.index)

    @property
    def is_null(self) -> bool:
        return self.txid == NULL_TXID and self.index == 0xFFFFFFFF

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"


@dataclass
class TxIn:
    prevout: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.prevout.to_bytes()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + struct.pack("<I", self.sequence)
        )


@dataclass
class TxOut:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + encode_varint(len(self.script)) + self.script

    @property
    def size(self) -> int:
        return 8 + varint_size(len(self.script)) + len(self.script)

    def dust_threshold(self, rate: int = MIN_RELAY_FEE_RATE) -> int:
        """
        Minimum value for this output to be worth spending at ``rate`` sat/vB.

        Three times the cost of the output plus the input that will spend it.
        """
        if is_unspendable(self.script):
            return 0
        if is_witness_program(self.script):
            spend_size = 32 + 4 + 1 + 107 // WITNESS_SCALE_FACTOR + 4
        else:
            spend_size = 32 + 4 + 1 + 107 + 4
        return 3 * (self.size + spend_size) * rate

    def is_dust(self, rate: int = MIN_RELAY_FEE_RATE) -> bool:
        return self.value < self.dust_threshold(rate)


@dataclass(frozen=True)
class Coin:
    """A spendable previous output together with its confirmation context."""

    txid: str
    index: int
    value: int
    script: bytes
    height: int = -1  # -1 while unconfirmed
    coinbase: bool = False

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.index)

    def depth(self, chain_height: int) -> int:
        if self.height == -1:
            return 0
        return max(chain_height - self.height + 1, 0)

    @classmethod
    def from_tx(cls, tx: Transaction, index: int, height: int = -1) -> Coin:
        if index >= len(tx.outputs):
            raise TransactionError(f"Transaction {tx.txid} has no output {index}")
        output = tx.outputs[index]
        return cls(
            txid=tx.txid,
            index=index,
            value=output.value,
            script=output.script,
            height=height,
            coinbase=tx.is_coinbase,
        )


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    locktime: int = 0

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if with_witness:
            result += bytes([0x00, 0x01])  # SegWit marker and flag

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += encode_varint(len(inp.witness))
                for item in inp.witness:
                    result += encode_varint(len(item)) + item

        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """
        Parse a transaction, with or without SegWit serialization.

        Raises:
            TransactionError: If the data is truncated or has trailing bytes
        """
        try:
            tx, offset = cls._parse(data)
        except (IndexError, struct.error) as e:
            raise TransactionError(f"Malformed transaction: {e}") from e
        if offset != len(data):
            raise TransactionError("Trailing data after transaction")
        return tx

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            data = bytes.fromhex(tx_hex)
        except ValueError as e:
            raise TransactionError("Transaction is not valid hex") from e
        return cls.from_bytes(data)

    @classmethod
    def _parse(cls, data: bytes) -> tuple[Transaction, int]:
        offset = 0
        version = struct.unpack("<i", data[offset : offset + 4])[0]
        offset += 4

        has_witness = data[offset] == 0x00 and data[offset + 1] == 0x01
        if has_witness:
            offset += 2

        input_count, offset = decode_varint(data, offset)
        inputs = []
        for _ in range(input_count):
            txid = data[offset : offset + 32][::-1].hex()
            offset += 32
            vout = struct.unpack("<I", data[offset : offset + 4])[0]
            offset += 4
            script_len, offset = decode_varint(data, offset)
            script_sig = data[offset : offset + script_len]
            if len(script_sig) != script_len:
                raise IndexError("scriptSig truncated")
            offset += script_len
            sequence = struct.unpack("<I", data[offset : offset + 4])[0]
            offset += 4
            inputs.append(TxIn(OutPoint(txid, vout), script_sig, sequence))

        output_count, offset = decode_varint(data, offset)
        outputs = []
        for _ in range(output_count):
            value = struct.unpack("<q", data[offset : offset + 8])[0]
            offset += 8
            script_len, offset = decode_varint(data, offset)
            script = data[offset : offset + script_len]
            if len(script) != script_len:
                raise IndexError("scriptPubKey truncated")
            offset += script_len
            outputs.append(TxOut(value, script))

        if has_witness:
            for inp in inputs:
                item_count, offset = decode_varint(data, offset)
                for _ in range(item_count):
                    item_len, offset = decode_varint(data, offset)
                    inp.witness.append(data[offset : offset + item_len])
                    offset += item_len

        locktime = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime), offset

    # -------------------------------------------------------------------------
    # Identity and size
    # -------------------------------------------------------------------------

    @property
    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    @property
    def base_size(self) -> int:
        return len(self.serialize(include_witness=False))

    @property
    def total_size(self) -> int:
        return len(self.serialize())

    @property
    def weight(self) -> int:
        return self.base_size * (WITNESS_SCALE_FACTOR - 1) + self.total_size

    @property
    def vsize(self) -> int:
        return (self.weight + WITNESS_SCALE_FACTOR - 1) // WITNESS_SCALE_FACTOR

    @property
    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].prevout.is_null

    @property
    def output_value(self) -> int:
        return sum(out.value for out in self.outputs)

    # -------------------------------------------------------------------------
    # Consensus checks
    # -------------------------------------------------------------------------

    def check_sanity(self) -> tuple[bool, str]:
        """
        Context-free consensus checks.

        Returns:
            (True, "") when sane, otherwise (False, reject reason)
        """
        if not self.inputs:
            return False, "bad-txns-vin-empty"
        if not self.outputs:
            return False, "bad-txns-vout-empty"
        if self.base_size * WITNESS_SCALE_FACTOR > MAX_BLOCK_WEIGHT:
            return False, "bad-txns-oversize"

        total = 0
        for out in self.outputs:
            if out.value < 0:
                return False, "bad-txns-vout-negative"
            if out.value > MAX_MONEY:
                return False, "bad-txns-vout-toolarge"
            total += out.value
            if total > MAX_MONEY:
                return False, "bad-txns-txouttotal-toolarge"

        seen: set[OutPoint] = set()
        for inp in self.inputs:
            if inp.prevout in seen:
                return False, "bad-txns-inputs-duplicate"
            seen.add(inp.prevout)

        if self.is_coinbase:
            if not 2 <= len(self.inputs[0].script_sig) <= 100:
                return False, "bad-cb-length"
        else:
            for inp in self.inputs:
                if inp.prevout.is_null:
                    return False, "bad-txns-prevout-null"

        return True, ""

    def is_sane(self) -> bool:
        return self.check_sanity()[0]


class MutableTransaction(Transaction):
    """
    Transaction under construction, with the coins it spends.

    ``view`` maps each input's outpoint to the :class:`Coin` being spent.
    """

    def __init__(
        self,
        version: int = 2,
        inputs: list[TxIn] | None = None,
        outputs: list[TxOut] | None = None,
        locktime: int = 0,
    ):
        super().__init__(
            version=version,
            inputs=inputs if inputs is not None else [],
            outputs=outputs if outputs is not None else [],
            locktime=locktime,
        )
        self.view: dict[OutPoint, Coin] = {}
        self.change_index = -1

    def add_coin(self, coin: Coin, sequence: int = SEQUENCE_FINAL) -> TxIn:
        inp = TxIn(coin.outpoint, sequence=sequence)
        self.inputs.append(inp)
        self.view[coin.outpoint] = coin
        return inp

    def add_output(self, script: bytes, value: int) -> TxOut:
        out = TxOut(value, script)
        self.outputs.append(out)
        return out

    def get_coin(self, inp: TxIn) -> Coin | None:
        return self.view.get(inp.prevout)

    @property
    def input_value(self) -> int:
        total = 0
        for inp in self.inputs:
            coin = self.view.get(inp.prevout)
            if coin is not None:
                total += coin.value
        return total

    @property
    def fee(self) -> int:
        return self.input_value - self.output_value

    def check_inputs(self, height: int) -> tuple[int, str]:
        """
        Contextual input checks at chain ``height``.

        Every input must have a known coin, coinbase coins must be mature,
        values must be in money range and inputs must cover outputs.

        Returns:
            (fee, "") on success, otherwise (-1, reject reason)
        """
        total = 0
        for inp in self.inputs:
            coin = self.view.get(inp.prevout)
            if coin is None:
                return -1, "bad-txns-inputs-missingorspent"
            if coin.coinbase and height != -1:
                if coin.height == -1 or height - coin.height < COINBASE_MATURITY:
                    return -1, "bad-txns-premature-spend-of-coinbase"
            if coin.value < 0 or coin.value > MAX_MONEY:
                return -1, "bad-txns-inputvalues-outofrange"
            total += coin.value
            if total > MAX_MONEY:
                return -1, "bad-txns-inputvalues-outofrange"

        output_value = self.output_value
        if total < output_value:
            return -1, "bad-txns-in-belowout"

        fee = total - output_value
        if fee > MAX_MONEY:
            return -1, "bad-txns-fee-outofrange"
        return fee, ""

    def verify_inputs(self, height: int) -> bool:
        return self.check_inputs(height)[0] != -1

    def estimate_size(self, estimator: SizeEstimator | None = None) -> int:
        """
        Estimate the virtual size of the signed transaction.

        Outputs and the fixed parts of each input are measured exactly; the
        scriptSig/witness of each input comes from ``estimator`` when it
        returns a non-negative value, otherwise from the standard templates.
        """
        total = 4  # version
        total += varint_size(len(self.inputs))
        total += len(self.inputs) * _INPUT_BASE_SIZE
        total += varint_size(len(self.outputs))
        total += sum(out.size for out in self.outputs)
        total += 4  # locktime

        for inp in self.inputs:
            coin = self.view.get(inp.prevout)
            if coin is None:
                # Unknown previous output: assume P2PKH
                total += 110
                continue
            if estimator is not None:
                size = estimator(coin.script)
                if size != -1:
                    total += size
                    continue
            total += default_input_script_size(coin.script)

        return total

    def clone(self) -> MutableTransaction:
        copy = MutableTransaction(
            version=self.version,
            inputs=[
                TxIn(inp.prevout, inp.script_sig, inp.sequence, list(inp.witness))
                for inp in self.inputs
            ],
            outputs=[TxOut(out.value, out.script) for out in self.outputs],
            locktime=self.locktime,
        )
        copy.view = dict(self.view)
        copy.change_index = self.change_index
        return copy

    def set_sequence(self, sequence: int, inputs: Iterable[TxIn] | None = None) -> None:
        for inp in inputs if inputs is not None else self.inputs:
            inp.sequence = sequence


def default_input_script_size(prev_script: bytes) -> int:
    """Virtual size of the scriptSig (+ discounted witness) spending a standard output."""
    sig_and_key = 1 + MAX_DER_SIGNATURE_SIZE + 1 + COMPRESSED_PUBKEY_SIZE
    witness = math.ceil((1 + sig_and_key) / WITNESS_SCALE_FACTOR)

    if is_p2pkh(prev_script):
        return sig_and_key + varint_size(sig_and_key)
    if is_p2wpkh(prev_script):
        return 1 + witness
    if is_p2sh(prev_script):
        # Assume P2SH-P2WPKH: scriptSig pushes the 22-byte witness program
        return 1 + 23 + witness
    return 110
