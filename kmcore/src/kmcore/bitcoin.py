"""
Bitcoin utilities for the key manager.

This module provides the stateless Bitcoin operations used by the wallet core:
- Hash functions (hash160, hash256)
- Varint encoding/decoding
- Output script construction and classification
- Address encoding/decoding (base58, bech32) for any registered network

Uses external libraries for security-critical operations:
- bech32: BIP173 bech32 encoding
- base58: Base58Check encoding
"""

from __future__ import annotations

import hashlib
import struct

import base58
import bech32 as bech32_lib

from kmcore.errors import AddressError
from kmcore.networks import NetworkProfile, get_network

# Opcodes used by the standard templates
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1 = 0x51
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC


# =============================================================================
# Hash Functions
# =============================================================================


def hash160(data: bytes) -> bytes:
    """
    RIPEMD160(SHA256(data)) - Used for Bitcoin addresses.

    Args:
        data: Input data to hash

    Returns:
        20-byte hash
    """
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def hash256(data: bytes) -> bytes:
    """
    SHA256(SHA256(data)) - Used for Bitcoin txids and signature digests.

    Args:
        data: Input data to hash

    Returns:
        32-byte hash
    """
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def sha256(data: bytes) -> bytes:
    """Single SHA256 hash."""
    return hashlib.sha256(data).digest()


# =============================================================================
# Varint Encoding/Decoding
# =============================================================================


def encode_varint(n: int) -> bytes:
    """
    Encode integer as Bitcoin varint.

    Args:
        n: Integer to encode

    Returns:
        Encoded bytes
    """
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode Bitcoin varint from bytes.

    Args:
        data: Input bytes
        offset: Starting offset in data

    Returns:
        (value, new_offset) tuple
    """
    first = data[offset]
    if first < 0xFD:
        return first, offset + 1
    elif first == 0xFD:
        return struct.unpack("<H", data[offset + 1 : offset + 3])[0], offset + 3
    elif first == 0xFE:
        return struct.unpack("<I", data[offset + 1 : offset + 5])[0], offset + 5
    else:
        return struct.unpack("<Q", data[offset + 1 : offset + 9])[0], offset + 9


def varint_size(n: int) -> int:
    """Number of bytes :func:`encode_varint` produces for ``n``."""
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


# =============================================================================
# Scripts
# =============================================================================


def push_data(data: bytes) -> bytes:
    """Minimal push of ``data`` onto the script stack."""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + struct.pack("<H", length) + data
    raise ValueError(f"Push too large: {length} bytes")


def parse_pushes(script: bytes) -> list[bytes]:
    """
    Split a push-only script into its data items.

    Raises:
        ValueError: If the script contains a non-push opcode or is truncated
    """
    items: list[bytes] = []
    offset = 0
    while offset < len(script):
        op = script[offset]
        offset += 1
        if op == OP_0:
            items.append(b"")
            continue
        if op < OP_PUSHDATA1:
            length = op
        elif op == OP_PUSHDATA1:
            length = script[offset]
            offset += 1
        elif op == OP_PUSHDATA2:
            length = struct.unpack("<H", script[offset : offset + 2])[0]
            offset += 2
        else:
            raise ValueError(f"Non-push opcode 0x{op:02x} in script")
        if offset + length > len(script):
            raise ValueError("Truncated push in script")
        items.append(script[offset : offset + length])
        offset += length
    return items


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG"""
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20-byte-scripthash> OP_EQUAL"""
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """OP_0 <20-byte-pubkeyhash>"""
    return bytes([OP_0, 0x14]) + pubkey_hash


def p2wpkh_redeem_script(pubkey: bytes) -> bytes:
    """Witness program wrapped by P2SH-P2WPKH (BIP49) outputs."""
    return p2wpkh_script(hash160(pubkey))


def is_p2pkh(script: bytes) -> bool:
    return (
        len(script) == 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == 0x14
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    )


def is_p2sh(script: bytes) -> bool:
    return len(script) == 23 and script[0] == OP_HASH160 and script[1] == 0x14 and script[22] == OP_EQUAL


def is_p2wpkh(script: bytes) -> bool:
    return len(script) == 22 and script[0] == OP_0 and script[1] == 0x14


def is_p2wsh(script: bytes) -> bool:
    return len(script) == 34 and script[0] == OP_0 and script[1] == 0x20


def is_witness_program(script: bytes) -> bool:
    """Version byte (OP_0 or OP_1..OP_16) followed by a single 2-40 byte push."""
    if not 4 <= len(script) <= 42:
        return False
    if script[0] != OP_0 and not OP_1 <= script[0] <= 0x60:
        return False
    return script[1] + 2 == len(script)


def is_unspendable(script: bytes) -> bool:
    """OP_RETURN outputs can never be spent."""
    return len(script) > 0 and script[0] == 0x6A


# =============================================================================
# Address Encoding/Decoding
# =============================================================================


def _base58_address(version: int, payload: bytes) -> str:
    return base58.b58encode_check(bytes([version]) + payload).decode("ascii")


def pubkey_to_p2pkh_address(pubkey: bytes | str, network: str | NetworkProfile = "mainnet") -> str:
    """
    Convert public key to a legacy P2PKH address.

    Args:
        pubkey: Compressed public key (bytes or hex string)
        network: Network name or profile

    Returns:
        Base58Check P2PKH address
    """
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    profile = get_network(network)
    return _base58_address(profile.p2pkh_version, hash160(pubkey))


def pubkey_to_p2sh_p2wpkh_address(
    pubkey: bytes | str, network: str | NetworkProfile = "mainnet"
) -> str:
    """
    Convert public key to a nested SegWit (P2SH-P2WPKH, BIP49) address.

    Args:
        pubkey: 33-byte compressed public key (bytes or hex string)
        network: Network name or profile

    Returns:
        Base58Check P2SH address
    """
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    profile = get_network(network)
    return _base58_address(profile.p2sh_version, hash160(p2wpkh_redeem_script(pubkey)))


def pubkey_to_p2wpkh_address(pubkey: bytes | str, network: str | NetworkProfile = "mainnet") -> str:
    """
    Convert compressed public key to P2WPKH (native SegWit) address.

    Raises:
        AddressError: If the network has no bech32 prefix
    """
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    profile = get_network(network)
    if profile.bech32_hrp is None:
        raise AddressError(f"Network {profile.name} has no SegWit address format")
    result = bech32_lib.encode(profile.bech32_hrp, 0, hash160(pubkey))
    if result is None:
        raise AddressError("Failed to encode bech32 address")
    return result


def address_to_scriptpubkey(address: str, network: str | NetworkProfile = "mainnet") -> bytes:
    """
    Convert an address of the given network to its scriptPubKey.

    Supports P2PKH, P2SH, P2WPKH, P2WSH and P2TR.

    Args:
        address: Address string
        network: Network name or profile the address must belong to

    Returns:
        scriptPubKey bytes

    Raises:
        AddressError: If the address is malformed or belongs to another network
    """
    profile = get_network(network)

    hrp = profile.bech32_hrp
    if hrp is not None and address.lower().startswith(hrp + "1"):
        witver, witprog = bech32_lib.decode(hrp, address)
        if witver is None or witprog is None:
            raise AddressError(f"Invalid bech32 address: {address}")
        program = bytes(witprog)
        if witver == 0 and len(program) in (20, 32):
            return bytes([OP_0, len(program)]) + program
        if witver == 1 and len(program) == 32:
            return bytes([OP_1, 0x20]) + program
        raise AddressError(f"Unsupported witness version: {witver}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise AddressError(f"Invalid base58 address: {address}") from e
    if len(decoded) != 21:
        raise AddressError(f"Invalid address payload length: {address}")

    version = decoded[0]
    payload = decoded[1:]
    if version == profile.p2pkh_version:
        return p2pkh_script(payload)
    if version == profile.p2sh_version:
        return p2sh_script(payload)
    raise AddressError(f"Address {address} does not belong to network {profile.name}")


def scriptpubkey_to_address(scriptpubkey: bytes, network: str | NetworkProfile = "mainnet") -> str:
    """
    Convert scriptPubKey to address.

    Raises:
        AddressError: For non-standard scripts
    """
    profile = get_network(network)

    if is_p2pkh(scriptpubkey):
        return _base58_address(profile.p2pkh_version, scriptpubkey[3:23])
    if is_p2sh(scriptpubkey):
        return _base58_address(profile.p2sh_version, scriptpubkey[2:22])
    if profile.bech32_hrp is not None:
        if is_p2wpkh(scriptpubkey) or is_p2wsh(scriptpubkey):
            result = bech32_lib.encode(profile.bech32_hrp, 0, scriptpubkey[2:])
            if result is not None:
                return result
        if len(scriptpubkey) == 34 and scriptpubkey[0] == OP_1 and scriptpubkey[1] == 0x20:
            result = bech32_lib.encode(profile.bech32_hrp, 1, scriptpubkey[2:])
            if result is not None:
                return result

    raise AddressError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")


def script_to_script_hash(script: bytes) -> str:
    """
    Electrum-protocol script hash: SHA256 of the output script, byte-reversed hex.

    This is the key used for ``blockchain.scripthash.*`` subscriptions.
    """
    return sha256(script)[::-1].hex()


def address_to_script_hash(address: str, network: str | NetworkProfile = "mainnet") -> str:
    """Script hash of the output script paying ``address``."""
    return script_to_script_hash(address_to_scriptpubkey(address, network))
