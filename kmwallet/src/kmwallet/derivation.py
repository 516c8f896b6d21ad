"""
Derivation tree helpers.

Maps a derivation scheme to its master path, converts key rings to and from
their serialized form, and turns branch public keys into wallet addresses.
"""

from __future__ import annotations

from kmcore.bip32 import HDKey
from kmcore.bitcoin import (
    hash160,
    p2pkh_script,
    p2sh_script,
    p2wpkh_redeem_script,
    pubkey_to_p2pkh_address,
    pubkey_to_p2sh_p2wpkh_address,
    script_to_script_hash,
)
from kmcore.errors import InvalidKeyError
from kmcore.networks import NetworkProfile
from pydantic import SecretStr

from kmwallet.errors import ConfigError
from kmwallet.models import Address, Branch, DerivationScheme, KeyRing, KeyRings, RawKeyRing, RawKeys

_PURPOSE = {
    DerivationScheme.BIP44: 44,
    DerivationScheme.BIP49: 49,
}


def master_path(scheme: DerivationScheme | str, coin_type: int, account: int = 0) -> str:
    """
    Derivation path of the wallet's master (account) key.

    bip32 wallets live under ``m/0``; bip44/bip49 wallets under
    ``m/<purpose>'/<coin_type>'/<account>'``.

    Raises:
        ConfigError: If the scheme is unknown
    """
    try:
        scheme = DerivationScheme(scheme)
    except ValueError:
        raise ConfigError(f"Unknown bip type: {scheme}") from None

    if scheme is DerivationScheme.BIP32:
        return "m/0"
    return f"m/{_PURPOSE[scheme]}'/{coin_type}'/{account}'"


def address_path(root: str, branch: Branch, index: int) -> str:
    return f"{root}/{int(branch)}/{index}"


def parse_address_path(root: str, path: str) -> tuple[Branch, int] | None:
    """
    Split a full address path into (branch, index) relative to ``root``.

    Returns None when the path is not a direct ``<root>/<branch>/<index>``
    descendant.
    """
    prefix = root + "/"
    if not path.startswith(prefix):
        return None
    parts = path[len(prefix) :].split("/")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    branch, index = int(parts[0]), int(parts[1])
    if branch not in (Branch.RECEIVE, Branch.CHANGE):
        return None
    return Branch(branch), index


def output_script(public_key: bytes, scheme: DerivationScheme) -> bytes:
    if scheme.nested_witness:
        return p2sh_script(hash160(p2wpkh_redeem_script(public_key)))
    return p2pkh_script(hash160(public_key))


def derive_address(
    branch_key: HDKey,
    branch: Branch,
    index: int,
    scheme: DerivationScheme,
    network: NetworkProfile,
) -> Address:
    """Derive the address at ``index`` below a branch public key."""
    public_key = branch_key.derive_child(index).get_public_key_bytes()
    if scheme.nested_witness:
        display = pubkey_to_p2sh_p2wpkh_address(public_key, network)
    else:
        display = pubkey_to_p2pkh_address(public_key, network)
    return Address(
        display_address=display,
        script_hash=script_to_script_hash(output_script(public_key, scheme)),
        index=index,
        branch=branch,
    )


# =============================================================================
# Key ring serialization
# =============================================================================


def _load_ring(raw: RawKeyRing, network: NetworkProfile, name: str) -> KeyRing:
    ring = KeyRing()
    try:
        if raw.xpriv is not None:
            ring.priv_key = HDKey.from_base58(raw.xpriv.get_secret_value(), network)
            if not ring.priv_key.is_private:
                raise ConfigError(f"Cached {name} xpriv is a public key")
        if raw.xpub is not None:
            ring.pub_key = HDKey.from_base58(raw.xpub, network)
    except InvalidKeyError as e:
        raise ConfigError(f"Invalid cached {name} key: {e}") from e
    return ring


def load_key_rings(raw: RawKeys, network: NetworkProfile) -> KeyRings:
    """
    Rebuild key rings from their serialized form.

    Raises:
        ConfigError: If a cached key does not parse for ``network``
    """
    return KeyRings(
        master=_load_ring(raw.master, network, "master"),
        receive=_load_ring(raw.receive, network, "receive"),
        change=_load_ring(raw.change, network, "change"),
    )


def _dump_ring(ring: KeyRing, network: NetworkProfile) -> RawKeyRing:
    return RawKeyRing(
        xpriv=SecretStr(ring.priv_key.get_xprv(network)) if ring.priv_key else None,
        xpub=ring.pub_key.get_xpub(network) if ring.pub_key else None,
    )


def dump_key_rings(rings: KeyRings, network: NetworkProfile) -> RawKeys:
    return RawKeys(
        master=_dump_ring(rings.master, network),
        receive=_dump_ring(rings.receive, network),
        change=_dump_ring(rings.change, network),
    )
