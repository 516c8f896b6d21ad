"""
UTXO to derivation path resolution.
"""

from __future__ import annotations

from typing import Any

from kmcore.transaction import OutPoint

from kmwallet.errors import UnknownAddressError
from kmwallet.models import Address, AddressInfo, Branch, as_address_info


class UtxoResolverMixin:
    """Mixin mapping spent outpoints back to the wallet address that owns them.

    Expects the host class to provide ``address_infos`` and ``_by_script_hash``.
    A ``(txid, index) -> script_hash`` index speeds up lookups; every hit is
    checked against ``address_infos`` because the caller may change it at
    any time.
    """

    # Declared for mypy -- actually set by the host class __init__
    address_infos: dict[str, AddressInfo | dict[str, Any]]
    _by_script_hash: dict[str, Address]
    _utxo_index: dict[tuple[str, int], str]

    def _holds_utxo(self, script_hash: str, txid: str, index: int) -> bool:
        value = self.address_infos.get(script_hash)
        if value is None:
            return False
        return any(u.txid == txid and u.index == index for u in as_address_info(value).utxos)

    def _rebuild_utxo_index(self) -> None:
        index: dict[tuple[str, int], str] = {}
        for script_hash, value in self.address_infos.items():
            for utxo in as_address_info(value).utxos:
                index.setdefault((utxo.txid, utxo.index), script_hash)
        self._utxo_index = index

    def _find_script_hash(self, txid: str, index: int) -> str | None:
        script_hash = self._utxo_index.get((txid, index))
        if script_hash is not None and self._holds_utxo(script_hash, txid, index):
            return script_hash
        self._rebuild_utxo_index()
        return self._utxo_index.get((txid, index))

    def resolve_path(self, prevout: OutPoint) -> tuple[Branch, int]:
        """
        Find the branch and index of the address holding ``prevout``.

        Raises:
            UnknownAddressError: If no known UTXO matches, or it belongs to a
                script hash this wallet has not derived
        """
        script_hash = self._find_script_hash(prevout.txid, prevout.index)
        if script_hash is None:
            raise UnknownAddressError(f"No wallet UTXO matches {prevout}")
        address = self._by_script_hash.get(script_hash)
        if address is None:
            raise UnknownAddressError(f"UTXO {prevout} belongs to unknown script hash {script_hash}")
        return address.branch, address.index
