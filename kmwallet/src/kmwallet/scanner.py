"""
Gap-limit address scanner.

Keeps at least ``gap_limit`` unused addresses derived past the last used
address on every branch, and answers next-address queries.
"""

from __future__ import annotations

from typing import Any

from kmcore.networks import NetworkProfile
from loguru import logger

from kmwallet.config import KeyManagerConfig
from kmwallet.derivation import address_path, derive_address, parse_address_path
from kmwallet.errors import MissingKeyError, UnknownAddressError
from kmwallet.events import EventOutbox, NewAddressEvent
from kmwallet.models import (
    Address,
    AddressInfo,
    Branch,
    DerivationScheme,
    KeyRings,
    as_address_info,
)


class GapLimitMixin:
    """Mixin deriving and indexing wallet addresses.

    Expects the host class to provide ``config``, ``network``, ``master_path``,
    ``rings``, ``address_infos``, ``outbox`` and ``_keys_changed()``.
    """

    # Declared for mypy -- actually set by the host class __init__
    config: KeyManagerConfig
    network: NetworkProfile
    master_path: str
    rings: KeyRings
    address_infos: dict[str, AddressInfo | dict[str, Any]]
    outbox: EventOutbox

    _by_address: dict[str, Address]
    _by_script_hash: dict[str, Address]
    _pending: dict[Branch, dict[int, Address]]

    def _keys_changed(self) -> None:
        raise NotImplementedError

    def _branches(self) -> list[Branch]:
        if self.config.scheme is DerivationScheme.BIP32:
            return [Branch.RECEIVE]
        return [Branch.RECEIVE, Branch.CHANGE]

    def _address_info(self, script_hash: str) -> AddressInfo | None:
        value = self.address_infos.get(script_hash)
        if value is None:
            return None
        return as_address_info(value)

    def _is_used(self, address: Address) -> bool:
        info = self._address_info(address.script_hash)
        return info is not None and info.used

    # -------------------------------------------------------------------------
    # Warm start
    # -------------------------------------------------------------------------

    def _warm_start(self) -> None:
        """Restore cached addresses below this wallet's master path."""
        branches = self._branches()
        for script_hash, value in self.address_infos.items():
            info = as_address_info(value)
            location = parse_address_path(self.master_path, info.path)
            if location is None or location[0] not in branches:
                logger.warning(f"Ignoring cached address {info.display_address} at {info.path}")
                continue
            branch, index = location
            pending = self._pending[branch]
            if index in pending:
                logger.debug(f"Duplicate cached address for {info.path}, keeping the first")
                continue
            pending[index] = Address(
                display_address=info.display_address,
                script_hash=script_hash,
                index=index,
                branch=branch,
            )

        for branch in branches:
            self._adopt_pending(branch)

    def _adopt_pending(self, branch: Branch) -> None:
        """Move cached addresses that continue the branch without a hole."""
        children = self.rings.for_branch(branch).children
        pending = self._pending[branch]
        while len(children) in pending:
            self._append(pending.pop(len(children)))

    def _fill_holes(self, branch: Branch) -> None:
        pending = self._pending[branch]
        if not pending:
            return
        children = self.rings.for_branch(branch).children
        last = max(pending)
        missing = last + 1 - len(children) - len(pending)
        logger.info(f"Filling {missing} missing address(es) on branch {int(branch)}")
        while len(children) <= last:
            cached = pending.pop(len(children), None)
            if cached is not None:
                self._append(cached)
            else:
                self._derive_next(branch)

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    def _append(self, address: Address) -> None:
        self.rings.for_branch(address.branch).children.append(address)
        self._by_address[address.display_address] = address
        self._by_script_hash[address.script_hash] = address

    def _ensure_branch_key(self, branch: Branch) -> None:
        ring = self.rings.for_branch(branch)
        if ring.pub_key is not None:
            return
        if ring.priv_key is not None:
            ring.pub_key = ring.priv_key.to_public()
        else:
            master = self.rings.master.pub_key
            if master is None:
                raise MissingKeyError("Master public key not loaded")
            ring.pub_key = master.derive_child(int(branch))
        logger.debug(f"Derived branch {int(branch)} public key")
        self._keys_changed()

    def _derive_next(self, branch: Branch) -> Address:
        ring = self.rings.for_branch(branch)
        index = len(ring.children)
        address = derive_address(ring.pub_key, branch, index, self.config.scheme, self.network)
        path = address_path(self.master_path, branch, index)
        self._append(address)
        self.outbox.push(NewAddressEvent(address.script_hash, address.display_address, path))
        logger.debug(f"Derived {address.display_address} at {path}")
        return address

    def _derive_next_if_needed(self, branch: Branch) -> bool:
        children = self.rings.for_branch(branch).children
        n = len(children)
        gap_limit = self.config.gap_limit

        if n < gap_limit:
            self._derive_next(branch)
            return True

        for i, address in enumerate(children):
            if self._is_used(address) and n - i <= gap_limit:
                self._derive_next(branch)
                return True
        return False

    def _scan(self) -> None:
        for branch in self._branches():
            self._ensure_branch_key(branch)
            self._fill_holes(branch)
            while self._derive_next_if_needed(branch):
                pass

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _next_available(self, branch: Branch) -> str:
        for address in self.rings.for_branch(branch).children:
            info = self._address_info(address.script_hash)
            if info is None or not info.used:
                return address.display_address
        return ""

    def get_receive_address(self) -> str:
        """First receive address not known to be used, or "" if none is derived."""
        return self._next_available(Branch.RECEIVE)

    def get_change_address(self) -> str:
        """First change address not known to be used; bip32 wallets reuse the receive branch."""
        if self.config.scheme is DerivationScheme.BIP32:
            return self._next_available(Branch.RECEIVE)
        return self._next_available(Branch.CHANGE)

    def addresses(self, branch: Branch = Branch.RECEIVE) -> list[Address]:
        return list(self.rings.for_branch(branch).children)

    def get_address(self, display_address: str) -> Address | None:
        return self._by_address.get(display_address)

    def get_address_path(self, display_address: str) -> str:
        """
        Full derivation path of a wallet address.

        Raises:
            UnknownAddressError: If the address was not derived by this wallet
        """
        address = self._by_address.get(display_address)
        if address is None:
            raise UnknownAddressError(f"Address {display_address} is not part of this wallet")
        return address_path(self.master_path, address.branch, address.index)
