"""
HD key manager.

Owns the wallet's key tree and address pool, builds transactions from
caller supplied UTXOs and signs them. Chain data and persistence live
outside: UTXO sets arrive through ``address_infos`` and every newly derived
key or address is reported through callbacks and the event outbox.
"""

from __future__ import annotations

import asyncio
from typing import Any

from kmcore.bip32 import HDKey
from kmcore.errors import PrimitiveError
from kmcore.networks import NetworkProfile
from kmcore.transaction import MutableTransaction
from loguru import logger
from pydantic import ValidationError

from kmwallet.builder import TransactionBuilderMixin
from kmwallet.config import DEFAULT_GAP_LIMIT, KeyManagerConfig
from kmwallet.derivation import dump_key_rings, load_key_rings, master_path
from kmwallet.errors import ConfigError, MissingKeyError
from kmwallet.events import Event, EventOutbox, NewAddressCallback, NewKeyCallback, NewKeysEvent
from kmwallet.models import Address, AddressInfo, Branch, RawKeys
from kmwallet.resolver import UtxoResolverMixin
from kmwallet.scanner import GapLimitMixin
from kmwallet.signer import SignerMixin


class KeyManager(GapLimitMixin, UtxoResolverMixin, TransactionBuilderMixin, SignerMixin):
    """
    Gap-limited HD wallet core.

    Args:
        network: Network name or profile
        account: BIP44/49 account index
        scheme: "bip32", "bip44" or "bip49"
        raw_keys: Previously emitted key set (RawKeys or its dict form)
        seed: BIP39 mnemonic, base64 seed or raw seed bytes
        gap_limit: Unused addresses kept past the last used one
        on_new_address: Called with (script_hash, address, path) per new address
        on_new_key: Called with the full RawKeys whenever a key is materialized
        address_infos: Caller owned map of script hash to AddressInfo; read only
        passphrase: BIP39 passphrase for mnemonic seeds

    Raises:
        MissingKeyError: Neither a seed nor a master extended key was supplied
        ConfigError: Invalid scheme, network, limits or cached keys
    """

    def __init__(
        self,
        network: str | NetworkProfile,
        account: int = 0,
        scheme: str = "bip32",
        raw_keys: RawKeys | dict[str, Any] | None = None,
        seed: str | bytes = "",
        gap_limit: int = DEFAULT_GAP_LIMIT,
        on_new_address: NewAddressCallback | None = None,
        on_new_key: NewKeyCallback | None = None,
        address_infos: dict[str, AddressInfo | dict[str, Any]] | None = None,
        passphrase: str = "",
    ):
        if raw_keys is None:
            raw_keys = RawKeys()
        elif not isinstance(raw_keys, RawKeys):
            raw_keys = RawKeys.model_validate(raw_keys)
        if not seed and raw_keys.master.is_empty:
            raise MissingKeyError("A seed or master extended key is required")

        try:
            self.config = KeyManagerConfig(
                network=network, scheme=scheme, account=account, gap_limit=gap_limit
            )
        except ValidationError as e:
            raise ConfigError(str(e)) from e

        self.network = self.config.network
        self.master_path = master_path(
            self.config.scheme, self.network.coin_type, self.config.account
        )
        self.rings = load_key_rings(raw_keys, self.network)
        self._seed = seed
        self._passphrase = passphrase

        self.address_infos = address_infos if address_infos is not None else {}
        self.outbox = EventOutbox(on_new_address, on_new_key)

        self._lock = asyncio.Lock()
        self._by_address: dict[str, Address] = {}
        self._by_script_hash: dict[str, Address] = {}
        self._utxo_index: dict[tuple[str, int], str] = {}
        self._pending: dict[Branch, dict[int, Address]] = {b: {} for b in Branch}

        self._warm_start()
        logger.debug(
            f"KeyManager for {self.network.name} {self.config.scheme.value} at {self.master_path}"
        )

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def _keys_changed(self) -> None:
        try:
            raw = dump_key_rings(self.rings, self.network)
        except PrimitiveError as e:
            logger.warning(f"Failed to serialize wallet keys: {e}")
            return
        self.outbox.push(NewKeysEvent(raw))

    def _load_keys(self) -> None:
        master = self.rings.master
        if master.priv_key is None and master.pub_key is None:
            master.priv_key = self._master_from_seed()
            master.pub_key = master.priv_key.to_public()
            logger.info(f"Derived master key {self.master_path} from seed")
            self._keys_changed()
        elif master.pub_key is None:
            master.pub_key = master.priv_key.to_public()
            self._keys_changed()

    def raw_keys(self) -> RawKeys:
        return dump_key_rings(self.rings, self.network)

    def get_xpub(self, branch: Branch | None = None) -> str:
        """
        Extended public key of the master key, or of ``branch`` when given.

        Raises:
            MissingKeyError: If that key has not been materialized yet
        """
        ring = self.rings.master if branch is None else self.rings.for_branch(branch)
        key: HDKey | None = ring.pub_key
        if key is None and ring.priv_key is not None:
            key = ring.priv_key.to_public()
        if key is None:
            raise MissingKeyError("Key not loaded, call load() first")
        return key.get_xpub(self.network)

    # -------------------------------------------------------------------------
    # Locked operations
    # -------------------------------------------------------------------------

    async def load(self) -> None:
        """Materialize the master key and derive the address pool."""
        async with self._lock:
            self._load_keys()
            self._scan()
        logger.info(
            f"Loaded {len(self.rings.receive.children)} receive and "
            f"{len(self.rings.change.children)} change addresses"
        )
        self.outbox.deliver()

    async def scan(self) -> None:
        """Extend the address pool after address usage changed."""
        async with self._lock:
            self._scan()
        self.outbox.deliver()

    async def sign(self, tx: MutableTransaction) -> int:
        """
        Sign every wallet input of ``tx`` in place.

        Returns:
            Number of inputs signed

        Raises:
            MissingPrivateKeyError: No master private key and no seed
            UnknownAddressError: An input cannot be traced to a wallet address
        """
        try:
            async with self._lock:
                return self._sign(tx)
        finally:
            self.outbox.deliver()

    def drain_events(self) -> list[Event]:
        return self.outbox.drain()
