"""
Key manager data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from kmcore.bip32 import HDKey
from pydantic import AliasChoices, BaseModel, Field, SecretStr


class Branch(IntEnum):
    RECEIVE = 0
    CHANGE = 1


class DerivationScheme(str, Enum):
    BIP32 = "bip32"  # m/0, no separate change branch
    BIP44 = "bip44"  # P2PKH
    BIP49 = "bip49"  # P2SH-wrapped P2WPKH

    @property
    def nested_witness(self) -> bool:
        return self is DerivationScheme.BIP49


class Address(BaseModel):
    """A derived wallet address. Immutable once created."""

    display_address: str
    script_hash: str
    index: int = Field(..., ge=0)
    branch: Branch

    model_config = {"frozen": True}


class UtxoInfo(BaseModel):
    """Unspent output as reported by an Electrum-style server."""

    txid: str = Field(..., validation_alias=AliasChoices("txid", "tx_hash"))
    index: int = Field(..., ge=0, validation_alias=AliasChoices("index", "tx_pos", "vout"))
    value: int = Field(..., ge=0)
    height: int | None = None

    model_config = {"populate_by_name": True}


class AddressInfo(BaseModel):
    """
    Externally owned metadata for one address, keyed by script hash.

    The key manager only reads these.
    """

    display_address: str = Field(
        ..., validation_alias=AliasChoices("display_address", "displayAddress")
    )
    path: str
    used: bool = False
    utxos: list[UtxoInfo] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RawKeyRing(BaseModel):
    xpriv: SecretStr | None = None
    xpub: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.xpriv is None and self.xpub is None


class RawKeys(BaseModel):
    """Serialized key rings, the persisted form handed to the key cache."""

    master: RawKeyRing = Field(default_factory=RawKeyRing)
    receive: RawKeyRing = Field(default_factory=RawKeyRing)
    change: RawKeyRing = Field(default_factory=RawKeyRing)

    def to_dict(self) -> dict[str, dict[str, str]]:
        """Plain dict with private keys revealed, for durable storage."""
        result: dict[str, dict[str, str]] = {}
        for name in ("master", "receive", "change"):
            ring: RawKeyRing = getattr(self, name)
            entry: dict[str, str] = {}
            if ring.xpriv is not None:
                entry["xpriv"] = ring.xpriv.get_secret_value()
            if ring.xpub is not None:
                entry["xpub"] = ring.xpub
            result[name] = entry
        return result


@dataclass
class KeyRing:
    """One derivation branch: extended keys plus derived addresses in index order."""

    pub_key: HDKey | None = None
    priv_key: HDKey | None = None
    children: list[Address] = field(default_factory=list)


@dataclass
class KeyRings:
    master: KeyRing = field(default_factory=KeyRing)
    receive: KeyRing = field(default_factory=KeyRing)
    change: KeyRing = field(default_factory=KeyRing)

    def for_branch(self, branch: Branch) -> KeyRing:
        return self.receive if Branch(branch) is Branch.RECEIVE else self.change


class SpendTarget(BaseModel):
    address: str = Field(..., validation_alias=AliasChoices("address", "public_address"))
    amount: int = Field(..., ge=0, validation_alias=AliasChoices("amount", "native_amount"))

    model_config = {"populate_by_name": True}


class SpendableUtxo(BaseModel):
    """Candidate coin: the UTXO, the raw transaction that created it and its height."""

    utxo: UtxoInfo
    raw_tx: str
    height: int = -1

    model_config = {"populate_by_name": True}


def as_address_info(value: AddressInfo | dict[str, Any]) -> AddressInfo:
    if isinstance(value, AddressInfo):
        return value
    return AddressInfo.model_validate(value)
