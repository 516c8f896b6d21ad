"""
BIP32 HD key derivation.

Supports private and public (watch-only) extended keys, hardened and
non-hardened derivation, and base58 xprv/xpub serialization for any
registered network profile.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import struct

import base58
from coincurve import PrivateKey, PublicKey
from mnemonic import Mnemonic

from kmcore.bitcoin import hash160
from kmcore.constants import HARDENED_OFFSET, SECP256K1_ORDER
from kmcore.errors import InvalidKeyError
from kmcore.networks import NetworkProfile, get_network

_SERIALIZED_KEY_LENGTH = 78


def parse_path(path: str) -> list[int]:
    """
    Parse a path like ``m/44'/0'/0'`` into child indexes.

    ``'`` or ``h`` marks hardened derivation.
    """
    if not path.startswith("m"):
        raise InvalidKeyError(f"Path must start with 'm': {path}")

    indexes = []
    for part in path.split("/")[1:]:
        if not part:
            continue
        hardened = part.endswith("'") or part.endswith("h")
        index_str = part.rstrip("'h")
        if not index_str.isdigit():
            raise InvalidKeyError(f"Invalid path component '{part}' in {path}")
        index = int(index_str)
        if index >= HARDENED_OFFSET:
            raise InvalidKeyError(f"Path index out of range: {part}")
        indexes.append(index + HARDENED_OFFSET if hardened else index)
    return indexes


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 derivation.

    A key without ``private_key`` is a neutered (public) extended key and can
    only derive non-hardened children.
    """

    def __init__(
        self,
        chain_code: bytes,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        if private_key is None and public_key is None:
            raise InvalidKeyError("HDKey needs a private or a public key")
        self.private_key = private_key
        self.public_key = public_key if public_key is not None else private_key.public_key
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return f"HDKey({kind}, depth={self.depth}, fingerprint={self.fingerprint.hex()})"

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise InvalidKeyError(f"Seed must be 16-64 bytes, got {len(seed)}")

        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        key_int = int.from_bytes(key_bytes, "big")
        if key_int == 0 or key_int >= SECP256K1_ORDER:
            raise InvalidKeyError("Seed produces an invalid master key")

        return cls(chain_code, private_key=PrivateKey(key_bytes), depth=0)

    @classmethod
    def from_base58(cls, encoded: str, network: str | NetworkProfile = "mainnet") -> HDKey:
        """
        Parse a serialized xprv/xpub for ``network``.

        Raises:
            InvalidKeyError: On checksum, length or version mismatch
        """
        profile = get_network(network)
        try:
            data = base58.b58decode_check(encoded)
        except ValueError as e:
            raise InvalidKeyError("Invalid extended key checksum") from e
        if len(data) != _SERIALIZED_KEY_LENGTH:
            raise InvalidKeyError(f"Invalid extended key length: {len(data)}")

        version = struct.unpack(">I", data[0:4])[0]
        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = struct.unpack(">I", data[9:13])[0]
        chain_code = data[13:45]
        key_data = data[45:78]

        if version == profile.xprv_version:
            if key_data[0] != 0:
                raise InvalidKeyError("Invalid private key prefix")
            key_int = int.from_bytes(key_data[1:], "big")
            if key_int == 0 or key_int >= SECP256K1_ORDER:
                raise InvalidKeyError("Private key out of range")
            return cls(
                chain_code,
                private_key=PrivateKey(key_data[1:]),
                depth=depth,
                parent_fingerprint=parent_fingerprint,
                child_number=child_number,
            )
        if version == profile.xpub_version:
            try:
                public_key = PublicKey(key_data)
            except ValueError as e:
                raise InvalidKeyError("Invalid public key") from e
            return cls(
                chain_code,
                public_key=public_key,
                depth=depth,
                parent_fingerprint=parent_fingerprint,
                child_number=child_number,
            )
        raise InvalidKeyError(
            f"Extended key version 0x{version:08x} does not match network {profile.name}"
        )

    @property
    def is_private(self) -> bool:
        return self.private_key is not None

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.get_public_key_bytes())[:4]

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/44'/0'/0'/0/0"),
        relative to this key. ' indicates hardened derivation.
        """
        key = self
        for index in parse_path(path):
            key = key.derive_child(index)
        return key

    def derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            if self.private_key is None:
                raise InvalidKeyError("Cannot derive a hardened child from a public key")
            data = b"\x00" + self.get_private_key_bytes() + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_ORDER:
            raise InvalidKeyError(f"Invalid child key at index {index}")

        if self.private_key is not None:
            parent_key_int = int.from_bytes(self.get_private_key_bytes(), "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_ORDER
            if child_key_int == 0:
                raise InvalidKeyError(f"Invalid child key at index {index}")
            return HDKey(
                child_chain,
                private_key=PrivateKey(child_key_int.to_bytes(32, "big")),
                depth=self.depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
            )

        try:
            child_public_key = self.public_key.add(key_offset)
        except ValueError as e:
            raise InvalidKeyError(f"Invalid child key at index {index}") from e
        return HDKey(
            child_chain,
            public_key=child_public_key,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def to_public(self) -> HDKey:
        """Neutered copy of this key."""
        return HDKey(
            self.chain_code,
            public_key=self.public_key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
        )

    def _serialize(self, version: int, key_data: bytes) -> str:
        payload = (
            struct.pack(">I", version)
            + bytes([self.depth])
            + self.parent_fingerprint
            + struct.pack(">I", self.child_number)
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    def get_xpub(self, network: str | NetworkProfile = "mainnet") -> str:
        """Serialize the public extended key (xpub/tpub/...)."""
        return self._serialize(get_network(network).xpub_version, self.get_public_key_bytes())

    def get_xprv(self, network: str | NetworkProfile = "mainnet") -> str:
        """Serialize the private extended key (xprv/tprv/...)."""
        if self.private_key is None:
            raise InvalidKeyError("Public extended key has no xprv")
        return self._serialize(
            get_network(network).xprv_version, b"\x00" + self.get_private_key_bytes()
        )

    def to_base58(self, network: str | NetworkProfile = "mainnet") -> str:
        """xprv for private keys, xpub for public keys."""
        if self.private_key is not None:
            return self.get_xprv(network)
        return self.get_xpub(network)

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self.private_key is None:
            raise InvalidKeyError("Public extended key has no private key")
        return self.private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self.public_key.format(compressed=compressed)

    def sign(self, digest: bytes) -> bytes:
        """DER signature (low-S, RFC 6979 nonce) over a 32-byte digest."""
        if self.private_key is None:
            raise InvalidKeyError("Cannot sign with a public extended key")
        return self.private_key.sign(digest, hasher=None)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert a BIP39 mnemonic to its 64-byte seed.

    Raises:
        InvalidKeyError: If the phrase fails the English wordlist checksum
    """
    normalized = " ".join(mnemonic.split())
    if not Mnemonic("english").check(normalized):
        raise InvalidKeyError("Invalid BIP39 mnemonic")
    return Mnemonic.to_seed(normalized, passphrase)


def seed_to_bytes(seed: str | bytes, passphrase: str = "") -> bytes:
    """
    Resolve a wallet seed to raw BIP32 seed bytes.

    A string is first tried as a BIP39 mnemonic; anything else is decoded as
    base64 raw seed bytes. ``bytes`` are used as-is.

    Raises:
        InvalidKeyError: If the string is neither a mnemonic nor base64
    """
    if isinstance(seed, bytes):
        return seed
    try:
        return mnemonic_to_seed(seed, passphrase)
    except InvalidKeyError:
        pass
    try:
        return base64.b64decode(seed, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyError("Seed is neither a BIP39 mnemonic nor base64") from e
