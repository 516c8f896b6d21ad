"""
Network profiles for Bitcoin-family chains.

A profile carries every network-specific parameter the wallet core needs:
address version bytes, extended key versions, the BIP44 coin type and the
signature-hash flavour. Profiles are plain immutable models; alternate forks
are added with :func:`register_network` instead of patching library globals.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from kmcore.errors import NetworkError


class SighashKind(str, Enum):
    STANDARD = "standard"
    FORKID = "forkid"  # BIP143 digest with the replay-protection bit set


class NetworkProfile(BaseModel):
    name: str = Field(..., min_length=1)
    coin_type: int = Field(..., ge=0)
    p2pkh_version: int = Field(..., ge=0, le=255)
    p2sh_version: int = Field(..., ge=0, le=255)
    xpub_version: int = Field(..., ge=0, le=0xFFFFFFFF)
    xprv_version: int = Field(..., ge=0, le=0xFFFFFFFF)
    bech32_hrp: str | None = None
    sighash: SighashKind = SighashKind.STANDARD

    model_config = {"frozen": True}

    @property
    def uses_forkid(self) -> bool:
        return self.sighash is SighashKind.FORKID


_MAIN_XPUB = 0x0488B21E
_MAIN_XPRV = 0x0488ADE4
_TEST_XPUB = 0x043587CF
_TEST_XPRV = 0x04358394

_NETWORKS: dict[str, NetworkProfile] = {}


def register_network(profile: NetworkProfile) -> NetworkProfile:
    """Register (or replace) a network profile under its name."""
    _NETWORKS[profile.name] = profile
    return profile


def get_network(network: str | NetworkProfile) -> NetworkProfile:
    """
    Resolve a network identifier to its profile.

    Args:
        network: Registered network name, or an already resolved profile

    Returns:
        NetworkProfile

    Raises:
        NetworkError: If the name is not registered
    """
    if isinstance(network, NetworkProfile):
        return network
    try:
        return _NETWORKS[network]
    except KeyError:
        raise NetworkError(f"Unknown network: {network}") from None


def list_networks() -> list[str]:
    return sorted(_NETWORKS)


register_network(
    NetworkProfile(
        name="mainnet",
        coin_type=0,
        p2pkh_version=0x00,
        p2sh_version=0x05,
        xpub_version=_MAIN_XPUB,
        xprv_version=_MAIN_XPRV,
        bech32_hrp="bc",
    )
)
register_network(
    NetworkProfile(
        name="testnet",
        coin_type=1,
        p2pkh_version=0x6F,
        p2sh_version=0xC4,
        xpub_version=_TEST_XPUB,
        xprv_version=_TEST_XPRV,
        bech32_hrp="tb",
    )
)
register_network(
    NetworkProfile(
        name="signet",
        coin_type=1,
        p2pkh_version=0x6F,
        p2sh_version=0xC4,
        xpub_version=_TEST_XPUB,
        xprv_version=_TEST_XPRV,
        bech32_hrp="tb",
    )
)
register_network(
    NetworkProfile(
        name="regtest",
        coin_type=1,
        p2pkh_version=0x6F,
        p2sh_version=0xC4,
        xpub_version=_TEST_XPUB,
        xprv_version=_TEST_XPRV,
        bech32_hrp="bcrt",
    )
)
register_network(
    NetworkProfile(
        name="bitcoincash",
        coin_type=145,
        p2pkh_version=0x00,
        p2sh_version=0x05,
        xpub_version=_MAIN_XPUB,
        xprv_version=_MAIN_XPRV,
        sighash=SighashKind.FORKID,
    )
)
register_network(
    NetworkProfile(
        name="bitcoincashtestnet",
        coin_type=1,
        p2pkh_version=0x6F,
        p2sh_version=0xC4,
        xpub_version=_TEST_XPUB,
        xprv_version=_TEST_XPRV,
        sighash=SighashKind.FORKID,
    )
)
register_network(
    NetworkProfile(
        name="litecoin",
        coin_type=2,
        p2pkh_version=0x30,
        p2sh_version=0x32,
        xpub_version=0x019DA462,
        xprv_version=0x019D9CFE,
        bech32_hrp="ltc",
    )
)
